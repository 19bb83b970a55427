"""Audio-activity gated speaker control."""

from .activity_log import ActivityLog
from .controller import MonitoringController
from .devices import DeviceRegistry
from .gateway import HttpDeviceGateway, percent_to_db
from .level_meter import LevelMeter
from .models import (
    ActivationState,
    AudioSample,
    DeviceConnection,
    LogEntry,
    LogEntryType,
    MonitoringConfig,
    SpeakerDevice,
    SpeakerGroup,
)
from .ramp import VolumeRampEngine, get_effective_ramp_duration
from .recorder import LocalBlobStore, Recorder
from .settings_store import SettingsStore
from .state_machine import ActivationStateMachine

__all__ = [
    "ActivationState",
    "ActivationStateMachine",
    "ActivityLog",
    "AudioSample",
    "DeviceConnection",
    "DeviceRegistry",
    "HttpDeviceGateway",
    "LevelMeter",
    "LocalBlobStore",
    "LogEntry",
    "LogEntryType",
    "MonitoringConfig",
    "MonitoringController",
    "Recorder",
    "SettingsStore",
    "SpeakerDevice",
    "SpeakerGroup",
    "VolumeRampEngine",
    "get_effective_ramp_duration",
    "percent_to_db",
]
