"""Tests for the audio level meter."""

from unittest.mock import Mock, patch

import numpy as np
import pytest

from speaker_gate.monitoring.exceptions import (
    AudioInputError,
    InputUnavailableError,
    MicrophoneNotFoundError,
)
from speaker_gate.monitoring.level_meter import LevelMeter, compute_level, list_input_devices


def _sine(amplitude: float, frequency: float = 1000.0, count: int = 256, rate: int = 48000) -> np.ndarray:
    t = np.arange(count) / rate
    return (amplitude * 32767 * np.sin(2 * np.pi * frequency * t)).astype(np.int16)


def _noise(amplitude: float, count: int = 256) -> np.ndarray:
    rng = np.random.default_rng(1234)
    return (amplitude * 32767 * rng.uniform(-1, 1, count)).astype(np.int16)


@pytest.mark.unit
class TestComputeLevel:
    """Frequency-domain level computation."""

    def test_silence_is_zero(self) -> None:
        assert compute_level(np.zeros(256, dtype=np.int16)) == 0

    def test_empty_input_is_zero(self) -> None:
        assert compute_level(np.array([], dtype=np.int16)) == 0

    def test_level_within_bounds(self) -> None:
        level = compute_level(_noise(1.0))

        assert 0 <= level <= 100

    def test_louder_input_reads_higher(self) -> None:
        quiet = compute_level(_noise(0.001))
        loud = compute_level(_noise(0.5))

        assert loud > quiet
        assert loud > 0

    def test_gain_boosts_level(self) -> None:
        samples = _noise(0.01)

        assert compute_level(samples, gain=2.0) > compute_level(samples, gain=1.0)
        assert compute_level(samples, gain=0.0) == 0

    def test_only_latest_frame_is_used(self) -> None:
        samples = np.concatenate((_noise(0.8, 1024), np.zeros(256, dtype=np.int16)))

        assert compute_level(samples) == 0


def _mock_pyaudio(mock_pyaudio: Mock) -> tuple[Mock, Mock]:
    pa = Mock()
    mock_pyaudio.return_value = pa
    stream = Mock()
    pa.open.return_value = stream
    pa.get_default_input_device_info.return_value = {"name": "Built-in Mic", "maxInputChannels": 1}
    return pa, stream


@pytest.mark.unit
class TestLevelMeter:
    """Capture lifecycle with a mocked PyAudio."""

    def test_initialization(self) -> None:
        meter = LevelMeter()

        assert meter.sample_rate == 48000
        assert meter.fft_size == 256
        assert meter.is_capturing() is False
        assert meter.current_level == 0

    def test_invalid_parameters(self) -> None:
        with pytest.raises(ValueError, match="Sample rate must be positive"):
            LevelMeter(sample_rate=0)
        with pytest.raises(ValueError, match="Interval must be positive"):
            LevelMeter(interval=0)

    @patch("pyaudio.PyAudio")
    def test_start_default_input(self, mock_pyaudio: Mock) -> None:
        pa, stream = _mock_pyaudio(mock_pyaudio)
        meter = LevelMeter()

        meter.start()

        assert meter.is_capturing() is True
        assert meter.device_name == "Built-in Mic"
        assert pa.open.call_args.kwargs["input_device_index"] is None
        stream.start_stream.assert_called_once()

    @patch("pyaudio.PyAudio")
    def test_start_twice_raises(self, mock_pyaudio: Mock) -> None:
        _mock_pyaudio(mock_pyaudio)
        meter = LevelMeter()
        meter.start()

        with pytest.raises(AudioInputError, match="Already capturing"):
            meter.start()

    @patch("pyaudio.PyAudio")
    def test_no_default_device(self, mock_pyaudio: Mock) -> None:
        pa, _ = _mock_pyaudio(mock_pyaudio)
        pa.get_default_input_device_info.side_effect = OSError("No Default Input Device Available")
        meter = LevelMeter()

        with pytest.raises(MicrophoneNotFoundError):
            meter.start()

        assert meter.is_capturing() is False
        assert meter.last_error == "No input device found"
        pa.terminate.assert_called_once()

    @patch("pyaudio.PyAudio")
    def test_permission_denied(self, mock_pyaudio: Mock) -> None:
        pa, _ = _mock_pyaudio(mock_pyaudio)
        pa.open.side_effect = OSError("[Errno -9997] Permission denied")
        meter = LevelMeter()

        with pytest.raises(InputUnavailableError, match="Permission denied"):
            meter.start()

        assert meter.last_error == "Permission denied"

    @patch("pyaudio.PyAudio")
    def test_start_by_name_fragment(self, mock_pyaudio: Mock) -> None:
        pa, _ = _mock_pyaudio(mock_pyaudio)
        infos = [
            {"name": "HDMI Output", "maxInputChannels": 0},
            {"name": "USB Paging Mic", "maxInputChannels": 1},
        ]
        pa.get_device_count.return_value = len(infos)
        pa.get_device_info_by_index.side_effect = lambda i: infos[i]
        meter = LevelMeter()

        meter.start("paging")

        assert meter.device_index == 1
        assert pa.open.call_args.kwargs["input_device_index"] == 1

    @patch("pyaudio.PyAudio")
    def test_unknown_device_name(self, mock_pyaudio: Mock) -> None:
        pa, _ = _mock_pyaudio(mock_pyaudio)
        pa.get_device_count.return_value = 0
        meter = LevelMeter()

        with pytest.raises(MicrophoneNotFoundError, match="not found"):
            meter.start("studio")

    @patch("pyaudio.PyAudio")
    def test_read_level(self, mock_pyaudio: Mock) -> None:
        _, stream = _mock_pyaudio(mock_pyaudio)
        stream.get_read_available.return_value = 256
        stream.read.return_value = _noise(0.5).tobytes()
        meter = LevelMeter()
        meter.start()

        level = meter.read_level()

        assert level is not None and level > 0
        assert meter.current_level == level

    @patch("pyaudio.PyAudio")
    def test_read_failure_stops_meter(self, mock_pyaudio: Mock) -> None:
        """A device that disappears ends capture without raising."""
        _, stream = _mock_pyaudio(mock_pyaudio)
        stream.get_read_available.side_effect = OSError("Stream closed")
        meter = LevelMeter()
        meter.start()

        assert meter.read_level() is None
        assert meter.is_capturing() is False
        assert "unavailable" in meter.last_error

    @pytest.mark.asyncio
    @patch("pyaudio.PyAudio")
    async def test_samples_stream(self, mock_pyaudio: Mock) -> None:
        _, stream = _mock_pyaudio(mock_pyaudio)
        stream.get_read_available.return_value = 0
        meter = LevelMeter(interval=0.001)
        meter.start()

        collected = []
        async for sample in meter.samples():
            collected.append(sample)
            if len(collected) == 3:
                meter.stop()

        assert len(collected) == 3
        assert all(sample.level_percent == 0 for sample in collected)

    @patch("pyaudio.PyAudio")
    def test_stop_releases_device(self, mock_pyaudio: Mock) -> None:
        pa, stream = _mock_pyaudio(mock_pyaudio)
        meter = LevelMeter()
        meter.start()

        meter.stop()
        meter.stop()

        stream.close.assert_called_once()
        pa.terminate.assert_called_once()
        assert meter.is_capturing() is False


@pytest.mark.unit
@patch("pyaudio.PyAudio")
def test_list_input_devices(mock_pyaudio: Mock) -> None:
    pa = Mock()
    mock_pyaudio.return_value = pa
    infos = [
        {"name": "Speakers", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
        {"name": "Mic", "maxInputChannels": 2, "defaultSampleRate": 44100.0},
    ]
    pa.get_device_count.return_value = 2
    pa.get_device_info_by_index.side_effect = lambda i: infos[i]

    devices = list_input_devices()

    assert devices == [{"index": 1, "name": "Mic", "channels": 2, "sample_rate": 44100.0}]
    pa.terminate.assert_called_once()
