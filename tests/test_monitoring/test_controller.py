"""Tests for the monitoring controller."""

import asyncio

import pytest
import pytest_asyncio

from speaker_gate.monitoring.activity_log import ActivityLog
from speaker_gate.monitoring.config import STORAGE_KEYS
from speaker_gate.monitoring.controller import MonitoringController
from speaker_gate.monitoring.devices import DeviceRegistry
from speaker_gate.monitoring.exceptions import ConfigError, InputUnavailableError
from speaker_gate.monitoring.models import AudioSample, LogEntryType
from speaker_gate.monitoring.scheduler import VirtualClock
from speaker_gate.monitoring.settings_store import SettingsStore

REGISTRY = {
    "devices": [
        {
            "id": "adapter-1",
            "name": "Warehouse",
            "type": "8301",
            "address": "10.0.1.1",
            "credential": "pw",
            "linked_speaker_ids": ["spk-1"],
        },
        {"id": "spk-1", "name": "Dock", "type": "8180g2", "address": "10.0.1.2", "credential": "pw"},
    ]
}


class FakeMeter:
    """Level meter double fed from a queue; None simulates a lost device."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[int | None] = asyncio.Queue()
        self.capturing = False
        self.start_error: Exception | None = None
        self.started_with: list[str | None] = []
        self.gain: int | None = None
        self.last_error: str | None = None
        self.current_level = 0
        self.device_name = "Fake Mic"
        self.device_index = 3

    def set_gain(self, gain_percent: int) -> None:
        self.gain = gain_percent

    def is_capturing(self) -> bool:
        return self.capturing

    def start(self, device_id: str | None = None) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.capturing = True
        self.last_error = None
        self.started_with.append(device_id)

    def stop(self) -> None:
        self.capturing = False

    async def samples(self):
        while self.capturing:
            level = await self.queue.get()
            if level is None:
                self.last_error = "Audio input became unavailable"
                self.capturing = False
                return
            self.current_level = level
            yield AudioSample(level, 0.0)


async def _let_run(controller: MonitoringController) -> None:
    for _ in range(10):
        await asyncio.sleep(0)
    await controller.machine.settle()


@pytest_asyncio.fixture
async def controller(fake_gateway):
    store = SettingsStore(":memory:")
    ctrl = MonitoringController(
        store=store,
        registry=DeviceRegistry.from_dict(REGISTRY),
        gateway=fake_gateway,
        meter=FakeMeter(),
        clock=VirtualClock(),
        activity_log=ActivityLog(),
        resume_delay=0,
    )
    await ctrl.initialize()
    await ctrl.update_config(ramp_enabled=False)
    await ctrl.set_selected_devices(["adapter-1"])
    yield ctrl
    await ctrl.close()


@pytest.mark.unit
class TestMonitoringLifecycle:
    """Start, stop and resume."""

    @pytest.mark.asyncio
    async def test_start_persists_session(self, controller) -> None:
        await controller.start_monitoring("2")

        assert controller.is_monitoring is True
        assert controller.meter.started_with == ["2"]
        assert await controller.store.get(STORAGE_KEYS["is_monitoring"]) is True
        assert await controller.store.get(STORAGE_KEYS["selected_input"]) == "2"

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, controller) -> None:
        await controller.start_monitoring()
        await controller.start_monitoring()

        assert controller.meter.started_with == [None]

    @pytest.mark.asyncio
    async def test_input_error_is_surfaced(self, controller) -> None:
        controller.meter.start_error = InputUnavailableError("Permission denied")

        with pytest.raises(InputUnavailableError):
            await controller.start_monitoring()

        assert controller.is_monitoring is False
        assert controller.status()["last_error"] == "Permission denied"

    @pytest.mark.asyncio
    async def test_stop_persists_flag(self, controller) -> None:
        await controller.start_monitoring()

        await controller.stop_monitoring()

        assert controller.is_monitoring is False
        assert controller.meter.capturing is False
        assert await controller.store.get(STORAGE_KEYS["is_monitoring"]) is False

    @pytest.mark.asyncio
    async def test_auto_resume_after_restart(self, fake_gateway) -> None:
        store = SettingsStore(":memory:")
        await store.initialize()
        await store.set_many(
            {
                STORAGE_KEYS["is_monitoring"]: True,
                STORAGE_KEYS["selected_input"]: "USB",
                STORAGE_KEYS["selected_devices"]: ["spk-1"],
                STORAGE_KEYS["audio_threshold_percent"]: 20,
            }
        )
        meter = FakeMeter()
        ctrl = MonitoringController(
            store=store,
            registry=DeviceRegistry.from_dict(REGISTRY),
            gateway=fake_gateway,
            meter=meter,
            clock=VirtualClock(),
            resume_delay=0,
        )

        await ctrl.initialize()
        assert ctrl.resume_task is not None
        await ctrl.resume_task

        assert ctrl.is_monitoring is True
        assert meter.started_with == ["USB"]
        assert ctrl.selected_input == "USB"
        assert ctrl.selected_devices == ["spk-1"]
        assert ctrl.config.audio_threshold_percent == 20
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_no_resume_when_not_monitoring(self, controller) -> None:
        assert controller.resume_task is None
        assert controller.is_monitoring is False

    @pytest.mark.asyncio
    async def test_close_keeps_monitoring_flag(self, tmp_path, fake_gateway) -> None:
        path = str(tmp_path / "settings.db")
        ctrl = MonitoringController(
            store=SettingsStore(path),
            registry=DeviceRegistry(),
            gateway=fake_gateway,
            meter=FakeMeter(),
            clock=VirtualClock(),
        )
        await ctrl.initialize()
        await ctrl.start_monitoring()

        await ctrl.close()

        assert fake_gateway.closed is True
        reopened = SettingsStore(path)
        await reopened.initialize()
        assert await reopened.get(STORAGE_KEYS["is_monitoring"]) is True
        await reopened.close()


@pytest.mark.integration
class TestMonitoringFlow:
    """Samples flowing through the controller to the devices."""

    @pytest.mark.asyncio
    async def test_audio_enables_selected_speakers(self, controller, fake_gateway) -> None:
        await controller.start_monitoring()

        await controller.meter.queue.put(40)
        await _let_run(controller)

        assert controller.status()["speakers_enabled"] is True
        assert ("enable", ("10.0.1.2",), None) in fake_gateway.calls

    @pytest.mark.asyncio
    async def test_stop_while_active_disables_speakers(self, controller, fake_gateway) -> None:
        await controller.start_monitoring()
        await controller.meter.queue.put(40)
        await _let_run(controller)

        await controller.stop_monitoring()

        assert controller.machine.active is False
        assert fake_gateway.ops()[-1] == "disable"
        assert controller.activity_log.entries()[-1].type == LogEntryType.SPEAKERS_DISABLED

    @pytest.mark.asyncio
    async def test_lost_input_powers_speakers_down(self, controller, fake_gateway) -> None:
        await controller.start_monitoring()
        await controller.meter.queue.put(40)
        await _let_run(controller)

        await controller.meter.queue.put(None)
        await controller._loop_task

        assert controller.is_monitoring is False
        assert controller.last_error == "Audio input became unavailable"
        assert controller.machine.active is False
        assert fake_gateway.ops()[-1] == "disable"
        assert await controller.store.get(STORAGE_KEYS["is_monitoring"]) is False

    @pytest.mark.asyncio
    async def test_failed_input_switch_powers_speakers_down(self, controller, fake_gateway) -> None:
        await controller.start_monitoring()
        await controller.meter.queue.put(40)
        await _let_run(controller)
        assert controller.machine.active is True

        controller.meter.start_error = InputUnavailableError("Device busy")
        with pytest.raises(InputUnavailableError):
            await controller.set_input_device("7")

        assert controller.is_monitoring is False
        assert controller.machine.active is False
        assert controller.machine.controlling is False
        assert fake_gateway.ops()[-1] == "disable"
        assert controller.last_error == "Device busy"
        assert await controller.store.get(STORAGE_KEYS["is_monitoring"]) is False
        assert await controller.store.get(STORAGE_KEYS["selected_input"]) == "7"

    @pytest.mark.asyncio
    async def test_target_volume_change_restarts_ramp(self, controller) -> None:
        await controller.start_monitoring()
        await controller.meter.queue.put(40)
        await _let_run(controller)

        await controller.update_config(target_volume_percent=30)

        last = controller.activity_log.entries()[-1]
        assert last.type == LogEntryType.VOLUME_CHANGE
        assert last.volume_percent == 30
        assert controller.ramp.current_percent == 30

    @pytest.mark.asyncio
    async def test_input_switch_keeps_speakers(self, controller) -> None:
        await controller.start_monitoring()
        await controller.meter.queue.put(40)
        await _let_run(controller)

        await controller.set_input_device("5")

        assert controller.meter.started_with == [None, "5"]
        assert controller.is_monitoring is True
        assert controller.machine.active is True


@pytest.mark.unit
class TestConfigUpdates:
    """Live configuration changes."""

    @pytest.mark.asyncio
    async def test_changes_are_persisted(self, controller) -> None:
        await controller.update_config(audio_threshold_percent=12, input_gain_percent=80)

        assert await controller.store.get(STORAGE_KEYS["audio_threshold_percent"]) == 12
        assert controller.meter.gain == 80

    @pytest.mark.asyncio
    async def test_logging_toggle(self, controller) -> None:
        await controller.update_config(logging_enabled=False)

        assert controller.activity_log.enabled is False

    @pytest.mark.asyncio
    async def test_invalid_change_rejected(self, controller) -> None:
        with pytest.raises(ConfigError):
            await controller.update_config(audio_threshold_percent=99)

        assert controller.config.audio_threshold_percent == 5

    @pytest.mark.asyncio
    async def test_selection_persisted(self, controller) -> None:
        await controller.set_selected_devices(["spk-1", "spk-1", "ghost"])

        assert controller.selected_devices == ["spk-1", "ghost"]
        assert await controller.store.get(STORAGE_KEYS["selected_devices"]) == ["spk-1", "ghost"]
        assert [g.id for g in controller.selected_groups()] == ["spk-1"]

    @pytest.mark.asyncio
    async def test_status_fields(self, controller) -> None:
        status = controller.status()

        assert status == {
            "capturing": False,
            "state": "idle",
            "speakers_enabled": False,
            "controlling": False,
            "audio_level": 0,
            "volume": 0,
            "last_error": None,
            "selected_devices": ["adapter-1"],
        }
