"""Monitoring controller wiring meter, state machine, devices and storage."""

import asyncio
import contextlib
from typing import Any

from .activity_log import ActivityLog
from .config import RESUME_GRACE_DELAY, STORAGE_KEYS
from .devices import DeviceRegistry
from .exceptions import AudioInputError, StorageError
from .interfaces import Clock, DeviceGateway
from .level_meter import LevelMeter
from .logging_utils import get_logger
from .models import MonitoringConfig, SpeakerGroup
from .ramp import VolumeRampEngine
from .recorder import Recorder
from .scheduler import SystemClock, TimerScheduler
from .settings_store import SettingsStore
from .state_machine import ActivationStateMachine

logger = get_logger(__name__)


class MonitoringController:
    """
    Long-lived owner of a monitoring session.

    Constructed once with its collaborators. Holds the live configuration,
    the speaker selection and the tick loop that feeds level samples into the
    activation state machine.
    """

    def __init__(
        self,
        store: SettingsStore,
        registry: DeviceRegistry,
        gateway: DeviceGateway,
        meter: LevelMeter,
        recorder: Recorder | None = None,
        clock: Clock | None = None,
        activity_log: ActivityLog | None = None,
        user_id: str | None = None,
        resume_delay: float = RESUME_GRACE_DELAY,
    ) -> None:
        """
        Initialize the controller.

        Args:
            store: Settings persistence
            registry: Device registry used to resolve the selection
            gateway: Device gateway
            meter: Level meter for the monitored input
            recorder: Optional evidence recorder
            clock: Time source (defaults to the system clock)
            activity_log: Activity log (a new one is created if omitted)
            user_id: Authenticated user, required for recordings
            resume_delay: Seconds to wait before auto-resuming a session
        """
        self.store = store
        self.registry = registry
        self.gateway = gateway
        self.meter = meter
        self.recorder = recorder
        self.clock = clock or SystemClock()
        self.activity_log = activity_log or ActivityLog()
        self.user_id = user_id
        self.resume_delay = resume_delay

        self.config = MonitoringConfig()
        self.selected_devices: list[str] = []
        self.selected_input: str | None = None
        self.last_error: str | None = None
        self.resume_task: asyncio.Task | None = None

        self.scheduler = TimerScheduler(self.clock)
        self.ramp = VolumeRampEngine(gateway, self.scheduler)
        self.machine = ActivationStateMachine(
            scheduler=self.scheduler,
            config_provider=lambda: self.config,
            targets_provider=self.selected_groups,
            gateway=gateway,
            ramp=self.ramp,
            activity_log=self.activity_log,
            recorder=recorder,
            user_id_provider=lambda: self.user_id,
        )
        self._loop_task: asyncio.Task | None = None

    @property
    def is_monitoring(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def selected_groups(self) -> list[SpeakerGroup]:
        return self.registry.resolve_many(self.selected_devices)

    async def initialize(self) -> None:
        """
        Restore persisted settings and resume a previous session.

        If monitoring was on when the process last exited, capture restarts
        automatically after a short grace delay with the saved input.
        """
        await self.store.initialize()
        self.config = await self.store.load_config()

        selected = await self.store.get(STORAGE_KEYS["selected_devices"], [])
        if isinstance(selected, list) and all(isinstance(item, str) for item in selected):
            self.selected_devices = selected
        else:
            logger.warning("Ignoring malformed stored device selection")

        selected_input = await self.store.get(STORAGE_KEYS["selected_input"])
        self.selected_input = str(selected_input) if selected_input not in (None, "") else None

        self.activity_log.enabled = self.config.logging_enabled
        self.meter.set_gain(self.config.input_gain_percent)
        logger.info(
            f"Settings loaded: threshold {self.config.audio_threshold_percent}%, "
            f"{len(self.selected_devices)} device(s) selected"
        )

        if await self.store.get(STORAGE_KEYS["is_monitoring"], False) is True:
            logger.info(f"🔄 Resuming monitoring in {self.resume_delay:g}s")
            self.resume_task = asyncio.get_running_loop().create_task(self._resume())

    async def _resume(self) -> None:
        await asyncio.sleep(self.resume_delay)
        try:
            await self.start_monitoring()
        except AudioInputError as e:
            logger.error(f"❌ Could not resume monitoring: {e}")

    async def start_monitoring(self, input_device: str | None = None) -> None:
        """
        Start capturing and evaluating audio.

        Args:
            input_device: Input to capture (defaults to the saved input)

        Raises:
            AudioInputError: If the input cannot be opened
        """
        if self.is_monitoring:
            logger.debug("Monitoring already running")
            return

        device = input_device if input_device is not None else self.selected_input
        self.last_error = None
        self.meter.set_gain(self.config.input_gain_percent)
        try:
            self.meter.start(device)
        except AudioInputError as e:
            self.last_error = str(e)
            raise

        if input_device is not None:
            self.selected_input = input_device
        if self.recorder is not None:
            self.recorder.device_index = self.meter.device_index

        await self.store.set_many(
            {
                STORAGE_KEYS["is_monitoring"]: True,
                STORAGE_KEYS["selected_input"]: self.selected_input,
            }
        )
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        logger.info("✅ Monitoring started")

    async def _run(self) -> None:
        try:
            async for sample in self.meter.samples():
                self.machine.process_sample(sample.level_percent)
        except Exception as e:
            logger.error(f"❌ Monitoring loop failed: {e}", exc_info=True)
            self.meter.stop()
            self.last_error = str(e)
        else:
            if self.meter.last_error:
                self.last_error = self.meter.last_error
        if self.last_error:
            logger.error(f"❌ Monitoring stopped: {self.last_error}")
            # Never leave speakers powered without a live input
            await self.machine.shutdown()
            try:
                await self.store.set(STORAGE_KEYS["is_monitoring"], False)
            except StorageError as e:
                logger.error(f"Could not persist stopped monitoring state: {e}")

    async def _halt(self) -> None:
        if self.resume_task is not None and not self.resume_task.done():
            self.resume_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.resume_task
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        self.meter.stop()
        await self.machine.shutdown()

    async def stop_monitoring(self) -> None:
        """Stop capturing; speakers that are on are disabled before this returns."""
        await self._halt()
        await self.store.set(STORAGE_KEYS["is_monitoring"], False)
        logger.info("⏹️ Monitoring stopped")

    async def update_config(self, **changes: Any) -> MonitoringConfig:
        """
        Apply and persist configuration changes.

        Raises:
            ConfigError: If a field is unknown or a value is invalid
        """
        previous = self.config
        updated = previous.replace(**changes)
        changed = [name for name in changes if getattr(updated, name) != getattr(previous, name)]
        self.config = updated
        if not changed:
            return updated

        await self.store.save_config(updated, changed)
        logger.info(f"Settings updated: {', '.join(changed)}")

        if "logging_enabled" in changed:
            self.activity_log.enabled = updated.logging_enabled
        if "input_gain_percent" in changed:
            self.meter.set_gain(updated.input_gain_percent)
        if "target_volume_percent" in changed:
            await self.machine.restart_ramp()
        return updated

    async def set_selected_devices(self, device_ids: list[str]) -> None:
        """Select the speaker groups driven by the next activation."""
        ids = list(dict.fromkeys(device_ids))
        for device_id in ids:
            if self.registry.get(device_id) is None:
                logger.warning(f"Selected device {device_id} is not in the registry")
        self.selected_devices = ids
        await self.store.set(STORAGE_KEYS["selected_devices"], ids)

    async def set_input_device(self, device_id: str | None) -> None:
        """
        Change the monitored input.

        While monitoring, capture is reopened on the new input without
        touching the speaker state. If the new input cannot be opened, monitoring stops and speakers that
        are on are disabled before the error is raised.

        Raises:
            AudioInputError: If the new input cannot be opened
        """
        self.selected_input = device_id or None
        await self.store.set(STORAGE_KEYS["selected_input"], self.selected_input)
        if not self.is_monitoring:
            return

        self._loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._loop_task
        self._loop_task = None
        self.meter.stop()
        logger.info(f"Switching input to {self.selected_input or 'default'}")
        try:
            await self.start_monitoring(self.selected_input)
        except AudioInputError:
            await self.machine.shutdown()
            await self.store.set(STORAGE_KEYS["is_monitoring"], False)
            raise

    def status(self) -> dict[str, Any]:
        return {
            "capturing": self.meter.is_capturing(),
            "state": self.machine.state.value,
            "speakers_enabled": self.machine.active,
            "controlling": self.machine.controlling,
            "audio_level": self.meter.current_level,
            "volume": round(self.ramp.current_percent),
            "last_error": self.last_error,
            "selected_devices": list(self.selected_devices),
        }

    async def close(self) -> None:
        """
        Stop capture and release resources.

        The persisted monitoring flag is left as is so the next start resumes.
        """
        await self._halt()
        await self.gateway.aclose()
        await self.store.close()
