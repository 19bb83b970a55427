"""Audio level meter producing 0-100 activity readings."""

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Any

import numpy as np
import pyaudio

from .config import (
    BYTE_SCALE_MAX,
    DEFAULT_INPUT_GAIN_PERCENT,
    DEFAULT_SAMPLE_RATE,
    FFT_SIZE,
    GAIN_UNITY_PERCENT,
    METER_INTERVAL,
    METER_MAX_DECIBELS,
    METER_MIN_DECIBELS,
)
from .exceptions import AudioInputError, InputUnavailableError, MicrophoneNotFoundError
from .logging_utils import get_logger
from .models import AudioSample

logger = get_logger(__name__)


def compute_level(samples: np.ndarray, gain: float = 1.0, fft_size: int = FFT_SIZE) -> int:
    """
    Compute the activity level of the most recent frequency-domain frame.

    The last ``fft_size`` samples are windowed and transformed; each bin's
    magnitude is converted to decibels, mapped from the meter's dB range to a
    0-255 byte scale, and the mean of the bins is normalized to 0-100.

    Args:
        samples: 16-bit PCM samples (any length, most recent last)
        gain: Linear input gain applied before analysis
        fft_size: Analysis frame size in samples

    Returns:
        Level as an integer percentage
    """
    frame = np.zeros(fft_size, dtype=np.float64)
    recent = np.asarray(samples, dtype=np.float64)[-fft_size:]
    if recent.size:
        frame[-recent.size :] = recent
    frame = frame / 32768.0 * gain

    spectrum = np.abs(np.fft.rfft(frame * np.blackman(fft_size)))[: fft_size // 2] / fft_size
    decibels = 20 * np.log10(np.maximum(spectrum, 1e-12))
    scaled = (decibels - METER_MIN_DECIBELS) / (METER_MAX_DECIBELS - METER_MIN_DECIBELS)
    byte_values = np.floor(np.clip(scaled, 0.0, 1.0) * BYTE_SCALE_MAX)
    return int(round(float(byte_values.mean()) / BYTE_SCALE_MAX * 100))


def _device_field(device_info: Any, name: str, default: Any) -> Any:
    if hasattr(device_info, "get"):
        return device_info.get(name, default)
    return getattr(device_info, name, default)


def list_input_devices() -> list[dict[str, Any]]:
    """
    List audio devices that provide input channels.

    Returns:
        List of dicts with index, name, channels and sample_rate
    """
    pa = pyaudio.PyAudio()
    try:
        devices = []
        for i in range(pa.get_device_count()):
            try:
                info = pa.get_device_info_by_index(i)
            except OSError as e:
                logger.trace(f"  [{i}] Error getting device info: {e}")
                continue
            channels = _device_field(info, "maxInputChannels", 0)
            if channels > 0:
                devices.append(
                    {
                        "index": i,
                        "name": _device_field(info, "name", f"Device {i}"),
                        "channels": channels,
                        "sample_rate": _device_field(info, "defaultSampleRate", 0),
                    }
                )
        return devices
    finally:
        pa.terminate()


class LevelMeter:
    """Samples an input device and yields activity levels at a fixed cadence."""

    def __init__(
        self,
        sample_rate: int | None = None,
        fft_size: int = FFT_SIZE,
        interval: float = METER_INTERVAL,
        gain_percent: int = DEFAULT_INPUT_GAIN_PERCENT,
    ) -> None:
        """
        Initialize the level meter.

        Args:
            sample_rate: Capture sample rate in Hz
            fft_size: Samples per analysis frame
            interval: Seconds between level samples
            gain_percent: Input gain, 50 = unity, 100 = 2x boost
        """
        self.sample_rate = sample_rate if sample_rate is not None else DEFAULT_SAMPLE_RATE
        if self.sample_rate <= 0:
            raise ValueError("Sample rate must be positive")
        if fft_size <= 0:
            raise ValueError("FFT size must be positive")
        if interval <= 0:
            raise ValueError("Interval must be positive")

        self.fft_size = fft_size
        self.interval = interval
        self._gain = gain_percent / GAIN_UNITY_PERCENT
        self._pyaudio: Any | None = None
        self._stream: Any | None = None
        self._capturing = False
        self._buffer = np.zeros(fft_size, dtype=np.int16)
        self.current_level = 0
        self.last_error: str | None = None
        self.device_name: str | None = None
        self.device_index: int | None = None

    def set_gain(self, gain_percent: int) -> None:
        self._gain = max(0, gain_percent) / GAIN_UNITY_PERCENT

    def is_capturing(self) -> bool:
        return self._capturing

    def start(self, device_id: str | None = None) -> None:
        """
        Open the input device and start capturing.

        Args:
            device_id: Device index or name fragment; None/empty uses the default

        Raises:
            AudioInputError: If already capturing
            MicrophoneNotFoundError: If the device does not exist
            InputUnavailableError: If the device cannot be opened
        """
        if self._capturing:
            raise AudioInputError("Already capturing")

        self.last_error = None
        try:
            self._pyaudio = pyaudio.PyAudio()
            self.device_index = device_index = self._resolve_device(device_id)
            try:
                self._stream = self._pyaudio.open(
                    format=pyaudio.paInt16,
                    channels=1,
                    rate=self.sample_rate,
                    input=True,
                    input_device_index=device_index,
                    frames_per_buffer=self.fft_size,
                )
                self._stream.start_stream()
            except OSError as e:
                if "Permission denied" in str(e):
                    logger.error("❌ Audio input permission denied")
                    raise InputUnavailableError("Permission denied") from e
                logger.error(f"❌ Failed to open audio input: {e}")
                raise InputUnavailableError(f"Failed to open audio input: {e}") from e
        except AudioInputError as e:
            self.last_error = str(e)
            self._release()
            raise

        self._buffer = np.zeros(self.fft_size, dtype=np.int16)
        self._capturing = True
        logger.info(f"🎤 Level meter started on {self.device_name or 'default input'}")

    def stop(self) -> None:
        """Stop capturing. Safe to call when not capturing."""
        if not self._capturing:
            return
        self._capturing = False
        self.current_level = 0
        self._release()
        logger.debug("Level meter stopped")

    async def samples(self) -> AsyncIterator[AudioSample]:
        """
        Yield one AudioSample per interval until capture stops.

        A read failure stops the meter and records ``last_error`` instead of
        raising, so consumers simply see the sequence end.
        """
        while self._capturing:
            level = self.read_level()
            if level is None:
                return
            yield AudioSample(level_percent=level, timestamp=time.monotonic())
            await asyncio.sleep(self.interval)

    def read_level(self) -> int | None:
        """
        Read whatever input is available and compute the current level.

        Returns:
            Level 0-100, or None if capture is stopped or failed
        """
        if not self._capturing or self._stream is None:
            return None
        try:
            available = self._stream.get_read_available()
            if available > 0:
                data = self._stream.read(available, exception_on_overflow=False)
                fresh = np.frombuffer(data, dtype=np.int16)
                self._buffer = np.concatenate((self._buffer, fresh))[-self.fft_size :]
        except OSError as e:
            logger.error(f"❌ Audio input became unavailable: {e}")
            self.last_error = f"Audio input became unavailable: {e}"
            self.stop()
            return None

        self.current_level = compute_level(self._buffer, self._gain, self.fft_size)
        logger.trace(f"🔊 level={self.current_level}%")
        return self.current_level

    def _resolve_device(self, device_id: str | None) -> int | None:
        pa = self._pyaudio
        if not device_id:
            try:
                info = pa.get_default_input_device_info()
            except OSError as e:
                logger.error("❌ No default input device found")
                raise MicrophoneNotFoundError("No input device found") from e
            self.device_name = _device_field(info, "name", "default input")
            return None

        if device_id.isdigit():
            try:
                info = pa.get_device_info_by_index(int(device_id))
            except (OSError, ValueError) as e:
                raise MicrophoneNotFoundError(f"Input device {device_id} not found") from e
            if _device_field(info, "maxInputChannels", 0) <= 0:
                raise MicrophoneNotFoundError(f"Device {device_id} has no input channels")
            self.device_name = _device_field(info, "name", device_id)
            return int(device_id)

        needle = device_id.lower()
        for i in range(pa.get_device_count()):
            try:
                info = pa.get_device_info_by_index(i)
            except OSError:
                continue
            name = str(_device_field(info, "name", ""))
            if needle in name.lower() and _device_field(info, "maxInputChannels", 0) > 0:
                self.device_name = name
                return i
        raise MicrophoneNotFoundError(f"Input device {device_id!r} not found")

    def _release(self) -> None:
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.debug(f"Error closing input stream: {e}")
            self._stream = None
        if self._pyaudio is not None:
            self._pyaudio.terminate()
            self._pyaudio = None
