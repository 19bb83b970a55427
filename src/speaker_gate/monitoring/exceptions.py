"""Custom exceptions for speaker monitoring functionality."""


class MonitoringError(Exception):
    """Base exception for monitoring errors."""

    pass


class AudioInputError(MonitoringError):
    """Exception raised for audio input related errors."""

    pass


class MicrophoneNotFoundError(AudioInputError):
    """Exception raised when no input device is found."""

    pass


class InputUnavailableError(AudioInputError):
    """Exception raised when the input device cannot be opened or was denied."""

    pass


class GatewayError(MonitoringError):
    """Exception raised for device gateway call failures."""

    pass


class RecordingError(MonitoringError):
    """Exception raised when capturing, transcoding or uploading a clip fails."""

    pass


class ConfigError(MonitoringError):
    """Exception raised for invalid monitoring configuration values."""

    pass


class StorageError(MonitoringError):
    """Exception raised for settings store errors."""

    pass
