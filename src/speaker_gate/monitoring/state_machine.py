"""Activation state machine gating speaker power on audio activity."""

import asyncio
from collections.abc import Callable

from .activity_log import ActivityLog
from .exceptions import RecordingError
from .gateway import percent_to_db
from .interfaces import DeviceGateway
from .logging_utils import get_logger
from .models import (
    ActivationState,
    DeviceConnection,
    LogEntry,
    LogEntryType,
    MonitoringConfig,
    SpeakerGroup,
)
from .ramp import VolumeRampEngine
from .recorder import Recorder
from .scheduler import TimerHandle, TimerScheduler

logger = get_logger(__name__)


def _endpoints(groups: list[SpeakerGroup]) -> list[DeviceConnection]:
    seen: dict[str, DeviceConnection] = {}
    for group in groups:
        for endpoint in group.endpoints:
            seen.setdefault(endpoint.address, endpoint)
    return list(seen.values())


class ActivationStateMachine:
    """
    Debounced sustain/release controller for the speaker endpoints.

    Each sample above the threshold keeps (or starts) the sustain timer and
    cancels any release timer; each sample at or below it cancels the sustain
    timer and, while active, starts the release timer. Transitions run their
    device work as an asyncio task guarded by the single ``controlling`` flag:
    a trigger that arrives while a control sequence is in flight is dropped,
    and the still-elapsed timer is re-evaluated on the next sample.
    """

    def __init__(
        self,
        scheduler: TimerScheduler,
        config_provider: Callable[[], MonitoringConfig],
        targets_provider: Callable[[], list[SpeakerGroup]],
        gateway: DeviceGateway,
        ramp: VolumeRampEngine,
        activity_log: ActivityLog,
        recorder: Recorder | None = None,
        user_id_provider: Callable[[], str | None] | None = None,
    ) -> None:
        """
        Initialize the state machine.

        Args:
            scheduler: Timer scheduler (its clock is the machine's time source)
            config_provider: Returns the live monitoring configuration
            targets_provider: Returns the currently selected speaker groups
            gateway: Device gateway for enable/disable/volume calls
            ramp: Volume ramp engine
            activity_log: Log receiving every transition
            recorder: Optional evidence recorder
            user_id_provider: Returns the authenticated user id, if any
        """
        self._scheduler = scheduler
        self._clock = scheduler.clock
        self._config_provider = config_provider
        self._targets_provider = targets_provider
        self._gateway = gateway
        self._ramp = ramp
        self._log = activity_log
        self._recorder = recorder
        self._user_id_provider = user_id_provider or (lambda: None)

        self._active = False
        self._controlling = False
        self._sustain_timer: TimerHandle | None = None
        self._release_timer: TimerHandle | None = None
        self._silence_logged = False
        self._active_groups: list[SpeakerGroup] = []
        self._recording = False
        self._control_task: asyncio.Task | None = None
        self._last_level = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def controlling(self) -> bool:
        return self._controlling

    @property
    def last_level(self) -> int:
        return self._last_level

    @property
    def state(self) -> ActivationState:
        if self._active:
            if self._release_timer is not None:
                return ActivationState.RELEASE_PENDING
            return ActivationState.ACTIVE
        if self._sustain_timer is not None:
            return ActivationState.SUSTAIN_PENDING
        return ActivationState.IDLE

    def process_sample(self, level_percent: int) -> None:
        """
        Evaluate one level sample and run any timers that are due.

        Must be called from within the running event loop.
        """
        cfg = self._config_provider()
        now = self._clock.monotonic()
        self._last_level = level_percent

        if level_percent > cfg.audio_threshold_percent:
            self._cancel_release()
            self._silence_logged = False
            if not self._active:
                if self._sustain_timer is None:
                    self._sustain_timer = self._scheduler.call_at(
                        now + cfg.sustain_duration_ms / 1000, self._on_sustain_elapsed
                    )
                elif self._sustain_timer.elapsed(now):
                    self._try_activate()
        else:
            # Activity must be continuous: one quiet sample restarts the debounce
            self._cancel_sustain()
            if self._active:
                if self._release_timer is None:
                    self._release_timer = self._scheduler.call_at(
                        now + cfg.disable_delay_ms / 1000, self._on_release_elapsed
                    )
                    if not self._silence_logged:
                        self._silence_logged = True
                        self._append(
                            LogEntryType.AUDIO_SILENT,
                            f"Audio below threshold, disabling in {cfg.disable_delay_ms / 1000:g}s",
                            level_percent=level_percent,
                            threshold_percent=cfg.audio_threshold_percent,
                            speakers_enabled=True,
                        )
                elif self._release_timer.elapsed(now):
                    self._try_deactivate()

        self._scheduler.run_due(now)

    def tick(self) -> None:
        """Run due timers without a new sample."""
        self._scheduler.run_due(self._clock.monotonic())

    async def settle(self) -> None:
        """Wait until no control sequence or ramp call is in flight."""
        while self._control_task is not None and not self._control_task.done():
            await asyncio.shield(self._control_task)
        await self._ramp.drain()

    async def shutdown(self) -> None:
        """
        Cancel pending timers and power the speakers down if active.

        Returns only after the disable sequence has completed.
        """
        self._cancel_sustain()
        self._cancel_release()
        await self.settle()

        if self._active:
            logger.info("Monitoring stopped while active, disabling speakers")
            self._begin_deactivation()
            await self.settle()
        elif self._ramp.is_ramping:
            await self._ramp.stop()

    async def restart_ramp(self) -> bool:
        """
        Re-target the ramp after a live target volume change.

        The new ramp starts from the current interpolated volume.

        Returns:
            True if a ramp was restarted
        """
        if not self._active or self._controlling:
            return False
        cfg = self._config_provider()
        start_from = self._ramp.current_percent
        duration = self._ramp.effective_duration_ms(cfg)
        self._append(
            LogEntryType.VOLUME_CHANGE,
            f"Target volume changed, ramping {start_from:.0f}% -> {cfg.target_volume_percent}%",
            speakers_enabled=True,
            volume_percent=cfg.target_volume_percent,
        )
        self._controlling = True
        self._control_task = asyncio.get_running_loop().create_task(
            self._retarget_sequence(self._active_groups, start_from, cfg.target_volume_percent, duration)
        )
        await asyncio.shield(self._control_task)
        return True

    def _on_sustain_elapsed(self) -> None:
        if self._sustain_timer is not None:
            self._try_activate()

    def _on_release_elapsed(self) -> None:
        if self._release_timer is not None:
            self._try_deactivate()

    def _cancel_sustain(self) -> None:
        if self._sustain_timer is not None:
            self._sustain_timer.cancel()
            self._sustain_timer = None

    def _cancel_release(self) -> None:
        if self._release_timer is not None:
            self._release_timer.cancel()
            self._release_timer = None

    def _try_activate(self) -> None:
        if self._active:
            return
        if self._controlling:
            logger.debug("Activation dropped: control operation in flight")
            return

        cfg = self._config_provider()
        self._cancel_sustain()
        self._active = True
        self._controlling = True
        self._active_groups = list(self._targets_provider())

        self._append(
            LogEntryType.AUDIO_DETECTED,
            f"Audio detected at {self._last_level}% (threshold {cfg.audio_threshold_percent}%)",
            level_percent=self._last_level,
            threshold_percent=cfg.audio_threshold_percent,
        )
        self._append(
            LogEntryType.SPEAKERS_ENABLED,
            f"Speakers enabled on {len(self._active_groups)} group(s)",
            level_percent=self._last_level,
            threshold_percent=cfg.audio_threshold_percent,
            speakers_enabled=True,
            volume_percent=cfg.target_volume_percent,
        )
        self._control_task = asyncio.get_running_loop().create_task(
            self._enable_sequence(self._active_groups)
        )

    def _try_deactivate(self) -> None:
        if not self._active:
            return
        if self._controlling:
            logger.debug("Deactivation dropped: control operation in flight")
            return
        self._cancel_release()
        self._begin_deactivation()

    def _begin_deactivation(self) -> None:
        self._active = False
        self._controlling = True
        self._silence_logged = False
        self._control_task = asyncio.get_running_loop().create_task(
            self._disable_sequence(self._active_groups)
        )

    async def _enable_sequence(self, groups: list[SpeakerGroup]) -> None:
        try:
            endpoints = _endpoints(groups)
            self._start_recording()

            await self._gateway.set_volume(endpoints, percent_to_db(0))
            for group in groups:
                logger.info(f"Enabling speakers for {group.name}")
                await self._gateway.enable_output(group.endpoints)

            cfg = self._config_provider()
            duration = self._ramp.effective_duration_ms(cfg)
            if duration:
                message = f"Ramping volume 0% -> {cfg.target_volume_percent}% over {duration / 1000:g}s"
            else:
                message = f"Volume set to {cfg.target_volume_percent}%"
            self._append(
                LogEntryType.VOLUME_CHANGE,
                message,
                speakers_enabled=True,
                volume_percent=cfg.target_volume_percent,
            )
            await self._ramp.start(endpoints, 0, cfg.target_volume_percent, duration)
        except Exception as e:
            logger.error(f"Error while enabling speakers: {e}", exc_info=True)
        finally:
            self._controlling = False

    async def _retarget_sequence(
        self, groups: list[SpeakerGroup], from_percent: float, to_percent: int, duration_ms: int
    ) -> None:
        try:
            await self._ramp.start(_endpoints(groups), from_percent, to_percent, duration_ms)
        except Exception as e:
            logger.error(f"Error while restarting volume ramp: {e}", exc_info=True)
        finally:
            self._controlling = False

    async def _disable_sequence(self, groups: list[SpeakerGroup]) -> None:
        try:
            endpoints = _endpoints(groups)
            try:
                await self._ramp.stop(endpoints)
            except Exception as e:
                logger.error(f"Error while stopping volume ramp: {e}")

            reference = await self._finish_recording()
            cfg = self._config_provider()
            self._append(
                LogEntryType.SPEAKERS_DISABLED,
                f"Speakers disabled after {cfg.disable_delay_ms / 1000:g}s of silence",
                level_percent=self._last_level,
                threshold_percent=cfg.audio_threshold_percent,
                speakers_enabled=False,
                volume_percent=0,
                recording_ref=reference,
            )

            await self._gateway.set_volume(endpoints, percent_to_db(0))
            for group in groups:
                logger.info(f"Disabling speakers for {group.name}")
                await self._gateway.disable_output(group.endpoints)
        except Exception as e:
            logger.error(f"Error while disabling speakers: {e}", exc_info=True)
        finally:
            self._controlling = False

    def _start_recording(self) -> None:
        self._recording = False
        if self._recorder is None or not self._config_provider().recording_enabled:
            return
        if not self._user_id_provider():
            logger.debug("Recording skipped: no user context")
            return
        try:
            self._recorder.start()
            self._recording = True
        except RecordingError as e:
            logger.warning(f"Recording unavailable: {e}")

    async def _finish_recording(self) -> str | None:
        if not self._recording or self._recorder is None:
            return None
        self._recording = False
        user_id = self._user_id_provider()
        try:
            if not user_id:
                self._recorder.stop()
                return None
            return await self._recorder.stop_and_upload(user_id)
        except Exception as e:
            logger.warning(f"Recording not saved: {e}")
            return None

    def _append(self, entry_type: LogEntryType, message: str, **fields: object) -> None:
        self._log.append(
            LogEntry(timestamp=self._clock.now(), type=entry_type, message=message, **fields)
        )
