"""Configuration constants for speaker monitoring functionality."""

import os

# Audio Input
DEFAULT_SAMPLE_RATE = 48000  # Hz
DEFAULT_CHANNELS = 1
FFT_SIZE = 256  # samples per analysis frame
METER_INTERVAL = 1 / 60  # seconds - one level sample per display refresh
METER_MIN_DECIBELS = -100.0  # dB mapped to level 0
METER_MAX_DECIBELS = -30.0  # dB mapped to full scale
BYTE_SCALE_MAX = 255.0
GAIN_UNITY_PERCENT = 50  # input gain percent that maps to 1.0x

# Activation Defaults
DEFAULT_AUDIO_THRESHOLD_PERCENT = 5
MAX_AUDIO_THRESHOLD_PERCENT = 50
DEFAULT_SUSTAIN_DURATION_MS = 0
DEFAULT_DISABLE_DELAY_MS = 10000  # 10 seconds of silence before disabling

# Volume and Ramp Defaults
DEFAULT_TARGET_VOLUME_PERCENT = 100
DEFAULT_INPUT_GAIN_PERCENT = GAIN_UNITY_PERCENT
DEFAULT_RAMP_ENABLED = True
DEFAULT_RAMP_DURATION_S = 15
DEFAULT_DAY_NIGHT_MODE_ENABLED = False
DEFAULT_DAY_START_HOUR = 6
DEFAULT_DAY_END_HOUR = 18
DEFAULT_NIGHT_RAMP_DURATION_S = 10
RAMP_STEP_INTERVAL = 0.5  # seconds between ramp steps

# Device volume scale: 0..10 levels, 3 dB apart, level 10 = 0 dB
VOLUME_LEVELS = 10
VOLUME_DB_PER_LEVEL = 3

# Side-effect Pipelines
DEFAULT_LOGGING_ENABLED = True
DEFAULT_RECORDING_ENABLED = False

# Activity Log
LOG_CAPACITY = 500
CSV_HEADER = ["Timestamp", "Type", "Audio Level", "Threshold", "Speakers", "Volume", "Message"]

# Device Gateway
DEFAULT_GATEWAY_URL = "http://localhost:3000/api/algo"
GATEWAY_SETTINGS_PATH = "/settings"
GATEWAY_SPEAKER_GROUP_PATH = "/speakers/group"
GATEWAY_VOLUME_KEY = "audio.page.vol"
GATEWAY_TIMEOUT = 5.0  # seconds
DEFAULT_AUTH_METHOD = "standard"
PAGING_ADAPTER_TYPE = "8301"
SPEAKER_TYPE = "8180g2"

# Recorder
RECORDER_CHUNK_SIZE = 4096  # frames per buffered chunk
RECORDING_PATH_PREFIX = "audio-recordings"
RECORDING_EXTENSION = "mp3"
FFMPEG_BINARY = "ffmpeg"
MP3_BITRATE = "128k"
DEFAULT_RECORDINGS_DIR = os.path.expanduser("~/.speaker-gate/blobs")

# Persistence
DEFAULT_DATABASE_PATH = os.path.expanduser("~/.speaker-gate/settings.db")
DEFAULT_WAL_MODE = True
SCHEMA_VERSION = 1
RESUME_GRACE_DELAY = 0.5  # seconds before auto-resuming a previous session

# Stable key for every persisted value
STORAGE_KEYS = {
    "is_monitoring": "live_is_monitoring",
    "selected_devices": "live_selected_devices",
    "selected_input": "live_selected_input",
    "audio_threshold_percent": "live_audio_threshold",
    "sustain_duration_ms": "live_sustain_duration",
    "disable_delay_ms": "live_disable_delay",
    "target_volume_percent": "live_target_volume",
    "input_gain_percent": "live_input_gain",
    "ramp_enabled": "live_ramp_enabled",
    "ramp_duration_s": "live_ramp_duration",
    "day_night_mode_enabled": "live_day_night_mode",
    "day_start_hour": "live_day_start_hour",
    "day_end_hour": "live_day_end_hour",
    "night_ramp_duration_s": "live_night_ramp_duration",
    "logging_enabled": "live_logging_enabled",
    "recording_enabled": "live_recording_enabled",
}
