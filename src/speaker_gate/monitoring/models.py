"""Data models for speaker monitoring functionality."""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from . import config
from .exceptions import ConfigError
from .logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AudioSample:
    """A single level reading produced by the level meter."""

    level_percent: int
    timestamp: float


class ActivationState(str, Enum):
    """Activation state of the speaker controller."""

    IDLE = "idle"
    SUSTAIN_PENDING = "sustain_pending"
    ACTIVE = "active"
    RELEASE_PENDING = "release_pending"


class LogEntryType(str, Enum):
    """Activity log entry type."""

    AUDIO_DETECTED = "audio_detected"
    AUDIO_SILENT = "audio_silent"
    SPEAKERS_ENABLED = "speakers_enabled"
    SPEAKERS_DISABLED = "speakers_disabled"
    VOLUME_CHANGE = "volume_change"


@dataclass(frozen=True)
class LogEntry:
    """One immutable activity log record."""

    timestamp: datetime
    type: LogEntryType
    message: str
    level_percent: int | None = None
    threshold_percent: int | None = None
    speakers_enabled: bool | None = None
    volume_percent: int | None = None
    recording_ref: str | None = None


@dataclass(frozen=True)
class DeviceConnection:
    """Connection descriptor for one addressable speaker endpoint."""

    address: str
    credential: str
    auth_method: str = config.DEFAULT_AUTH_METHOD

    def to_payload(self) -> dict[str, str]:
        return {
            "address": self.address,
            "credential": self.credential,
            "authMethod": self.auth_method,
        }


@dataclass
class SpeakerDevice:
    """A device known to the registry (paging adapter or speaker)."""

    id: str
    name: str
    type: str
    address: str
    credential: str
    auth_method: str = config.DEFAULT_AUTH_METHOD
    zone: str = ""
    linked_speaker_ids: list[str] = field(default_factory=list)

    @property
    def is_paging_adapter(self) -> bool:
        return self.type == config.PAGING_ADAPTER_TYPE

    def connection(self) -> DeviceConnection:
        return DeviceConnection(self.address, self.credential, self.auth_method)


@dataclass(frozen=True)
class SpeakerGroup:
    """A selected speaker group resolved to its endpoints."""

    id: str
    name: str
    endpoints: tuple[DeviceConnection, ...] = ()


@dataclass
class RecordingClip:
    """Raw audio captured during one activation interval."""

    started_at: datetime
    pcm: bytes
    sample_rate: int
    channels: int = 1

    @property
    def duration(self) -> float:
        frames = len(self.pcm) // (2 * self.channels)
        return frames / self.sample_rate if self.sample_rate else 0.0


# (type, minimum, maximum exclusive upper bound or None)
_FIELD_RULES: dict[str, tuple[type, int | None, int | None]] = {
    "audio_threshold_percent": (int, 0, config.MAX_AUDIO_THRESHOLD_PERCENT + 1),
    "sustain_duration_ms": (int, 0, None),
    "disable_delay_ms": (int, 0, None),
    "target_volume_percent": (int, 0, 101),
    "input_gain_percent": (int, 0, 101),
    "ramp_enabled": (bool, None, None),
    "ramp_duration_s": (int, 0, None),
    "day_night_mode_enabled": (bool, None, None),
    "day_start_hour": (int, 0, 24),
    "day_end_hour": (int, 0, 24),
    "night_ramp_duration_s": (int, 0, None),
    "logging_enabled": (bool, None, None),
    "recording_enabled": (bool, None, None),
}


def _coerce(name: str, value: Any) -> Any:
    """
    Convert a raw value to the field's type and check its range.

    Raises:
        ConfigError: If the value cannot be converted or is out of range
    """
    expected, minimum, upper = _FIELD_RULES[name]

    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ConfigError(f"{name} must be a boolean, got {value!r}")

    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if upper is not None and value >= upper:
        raise ConfigError(f"{name} must be < {upper}, got {value}")
    return value


@dataclass(frozen=True)
class MonitoringConfig:
    """User-adjustable monitoring settings, persisted across restarts."""

    audio_threshold_percent: int = config.DEFAULT_AUDIO_THRESHOLD_PERCENT
    sustain_duration_ms: int = config.DEFAULT_SUSTAIN_DURATION_MS
    disable_delay_ms: int = config.DEFAULT_DISABLE_DELAY_MS
    target_volume_percent: int = config.DEFAULT_TARGET_VOLUME_PERCENT
    input_gain_percent: int = config.DEFAULT_INPUT_GAIN_PERCENT
    ramp_enabled: bool = config.DEFAULT_RAMP_ENABLED
    ramp_duration_s: int = config.DEFAULT_RAMP_DURATION_S
    day_night_mode_enabled: bool = config.DEFAULT_DAY_NIGHT_MODE_ENABLED
    day_start_hour: int = config.DEFAULT_DAY_START_HOUR
    day_end_hour: int = config.DEFAULT_DAY_END_HOUR
    night_ramp_duration_s: int = config.DEFAULT_NIGHT_RAMP_DURATION_S
    logging_enabled: bool = config.DEFAULT_LOGGING_ENABLED
    recording_enabled: bool = config.DEFAULT_RECORDING_ENABLED

    def __post_init__(self) -> None:
        for name in _FIELD_RULES:
            _coerce(name, getattr(self, name))

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in dataclasses.fields(cls)]

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "MonitoringConfig":
        """
        Build a config from untrusted values such as persisted settings.

        Missing fields use their defaults. Malformed or out-of-range fields are
        ignored with a warning and also fall back to their defaults.

        Args:
            raw: Mapping of field name to raw value

        Returns:
            A valid MonitoringConfig
        """
        values: dict[str, Any] = {}
        for name in cls.field_names():
            if name not in raw or raw[name] is None:
                continue
            try:
                values[name] = _coerce(name, raw[name])
            except ConfigError as e:
                logger.warning(f"Ignoring invalid setting, using default: {e}")
        return cls(**values)

    def replace(self, **changes: Any) -> "MonitoringConfig":
        """
        Return a copy with the given fields changed.

        Raises:
            ConfigError: If a field is unknown or a value is invalid
        """
        unknown = set(changes) - set(_FIELD_RULES)
        if unknown:
            raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        coerced = {name: _coerce(name, value) for name, value in changes.items()}
        return dataclasses.replace(self, **coerced)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)
