"""Volume ramp engine and ramp duration scheduling."""

import asyncio
import math
from collections.abc import Sequence
from functools import partial

from .config import RAMP_STEP_INTERVAL
from .gateway import percent_to_db
from .interfaces import DeviceGateway
from .logging_utils import get_logger
from .models import DeviceConnection, MonitoringConfig
from .scheduler import TimerHandle, TimerScheduler

logger = get_logger(__name__)


def is_daytime(config: MonitoringConfig, hour: int) -> bool:
    """Whether ``hour`` falls inside [day_start_hour, day_end_hour)."""
    return config.day_start_hour <= hour < config.day_end_hour


def get_effective_ramp_duration(config: MonitoringConfig, hour: int) -> int:
    """
    Resolve the ramp duration to use for an activation starting now.

    Args:
        config: Current monitoring configuration
        hour: Current local hour (0-23)

    Returns:
        Ramp duration in milliseconds (0 means instant volume)
    """
    if not config.ramp_enabled:
        logger.debug("Ramp disabled - instant volume")
        return 0

    if config.day_night_mode_enabled:
        if is_daytime(config, hour):
            logger.debug("Daytime detected - instant volume")
            return 0
        logger.debug(f"Nighttime detected - {config.night_ramp_duration_s}s ramp")
        return config.night_ramp_duration_s * 1000

    logger.debug(f"Manual mode - {config.ramp_duration_s}s ramp")
    return config.ramp_duration_s * 1000


class VolumeRampEngine:
    """
    Drives target speakers from one volume to another over time.

    Steps are timers on the shared TimerScheduler, so they advance whenever
    the monitoring tick loop runs due timers. Each step fires a gateway batch
    call; intermediate steps that quantize to the same device setting as the
    previous call are skipped, the final step is always sent.
    """

    def __init__(
        self,
        gateway: DeviceGateway,
        scheduler: TimerScheduler,
        step_interval: float = RAMP_STEP_INTERVAL,
    ) -> None:
        """
        Initialize the ramp engine.

        Args:
            gateway: Device gateway used for volume calls
            scheduler: Scheduler the ramp steps are placed on
            step_interval: Seconds between ramp steps
        """
        if step_interval <= 0:
            raise ValueError("Step interval must be positive")
        self._gateway = gateway
        self._scheduler = scheduler
        self._step_interval = step_interval

        self.current_percent: float = 0.0
        self._targets: tuple[DeviceConnection, ...] = ()
        self._steps: list[TimerHandle] = []
        self._last_db: str | None = None
        self._sends: set[asyncio.Task] = set()

    @property
    def is_ramping(self) -> bool:
        return any(step.pending for step in self._steps)

    @property
    def targets(self) -> tuple[DeviceConnection, ...]:
        return self._targets

    def effective_duration_ms(self, config: MonitoringConfig) -> int:
        """Resolve the ramp duration for the scheduler clock's current hour."""
        return get_effective_ramp_duration(config, self._scheduler.clock.now().hour)

    async def start(
        self,
        targets: Sequence[DeviceConnection],
        from_percent: float,
        to_percent: float,
        duration_ms: int,
    ) -> None:
        """
        Start a ramp, replacing any ramp already in progress.

        Args:
            targets: Endpoints to drive
            from_percent: Starting volume
            to_percent: Final volume
            duration_ms: Total ramp time; 0 sets the final volume at once
        """
        self._cancel_steps()
        self._targets = tuple(targets)

        if duration_ms <= 0:
            logger.info(f"Instant volume: {to_percent:.0f}%")
            self.current_percent = to_percent
            await self._send_now(to_percent)
            return

        interval_ms = self._step_interval * 1000
        step_count = max(1, math.ceil(duration_ms / interval_ms))
        logger.info(
            f"Starting volume ramp: {from_percent:.0f}% -> {to_percent:.0f}% "
            f"over {duration_ms / 1000:g}s ({step_count} steps)"
        )

        self.current_percent = from_percent
        self._last_db = None
        await self._send_now(from_percent)

        started = self._scheduler.clock.monotonic()
        for k in range(1, step_count + 1):
            final = k == step_count
            percent = to_percent if final else from_percent + (to_percent - from_percent) * k / step_count
            self._steps.append(
                self._scheduler.call_at(
                    started + k * self._step_interval,
                    partial(self._step, percent, final),
                )
            )

    async def stop(self, targets: Sequence[DeviceConnection] | None = None) -> None:
        """
        Cancel any ramp and force the volume to 0.

        Args:
            targets: Endpoints to silence (defaults to the last ramp's targets)
        """
        self._cancel_steps()
        for task in list(self._sends):
            task.cancel()
        if targets is not None:
            self._targets = tuple(targets)
        self.current_percent = 0.0
        await self._send_now(0.0)

    async def drain(self) -> None:
        """Wait for in-flight step calls to finish."""
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)

    def _cancel_steps(self) -> None:
        for step in self._steps:
            step.cancel()
        self._steps = []

    def _step(self, percent: float, final: bool) -> None:
        self.current_percent = percent
        db = percent_to_db(percent)
        if not final and db == self._last_db:
            logger.trace(f"Ramp step {percent:.1f}% unchanged at {db}, skipped")
            return
        self._last_db = db
        task = asyncio.get_running_loop().create_task(self._gateway.set_volume(self._targets, db))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        if final:
            self._steps = []
            logger.info(f"Volume ramp complete at {percent:.0f}%")

    async def _send_now(self, percent: float) -> None:
        db = percent_to_db(percent)
        self._last_db = db
        logger.debug(f"Setting volume: {percent:.0f}% -> {db}")
        await self._gateway.set_volume(self._targets, db)
