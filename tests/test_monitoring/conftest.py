"""Shared fixtures for monitoring tests."""

import asyncio
from collections.abc import Sequence

import pytest

from speaker_gate.monitoring.activity_log import ActivityLog
from speaker_gate.monitoring.exceptions import GatewayError
from speaker_gate.monitoring.interfaces import DeviceGateway
from speaker_gate.monitoring.models import DeviceConnection, MonitoringConfig, SpeakerGroup
from speaker_gate.monitoring.ramp import VolumeRampEngine
from speaker_gate.monitoring.scheduler import TimerScheduler, VirtualClock
from speaker_gate.monitoring.state_machine import ActivationStateMachine


class FakeGateway(DeviceGateway):
    """Gateway double recording every call in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[str, ...], str | None]] = []
        self.failing: set[str] = set()
        self.raise_on: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def _record(self, op: str, devices: Sequence[DeviceConnection], db: str | None) -> dict[str, bool]:
        if self.gate is not None:
            await self.gate.wait()
        addresses = tuple(device.address for device in devices)
        self.calls.append((op, addresses, db))
        if op in self.raise_on:
            raise GatewayError(f"{op} request failed")
        return {address: address not in self.failing for address in addresses}

    async def set_volume(self, devices: Sequence[DeviceConnection], db: str) -> dict[str, bool]:
        return await self._record("volume", devices, db)

    async def enable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        return await self._record("enable", devices, None)

    async def disable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        return await self._record("disable", devices, None)

    async def aclose(self) -> None:
        self.closed = True

    def ops(self) -> list[str]:
        return [op for op, _, _ in self.calls]

    def volumes(self) -> list[str]:
        return [db for op, _, db in self.calls if op == "volume"]


class Harness:
    """A state machine wired to a virtual clock and a fake gateway."""

    def __init__(
        self,
        config: MonitoringConfig,
        groups: list[SpeakerGroup],
        recorder: object | None = None,
        user_id: str | None = None,
    ) -> None:
        self.config = config
        self.groups = groups
        self.user_id = user_id
        self.clock = VirtualClock()
        self.scheduler = TimerScheduler(self.clock)
        self.gateway = FakeGateway()
        self.log = ActivityLog()
        self.ramp = VolumeRampEngine(self.gateway, self.scheduler)
        self.machine = ActivationStateMachine(
            scheduler=self.scheduler,
            config_provider=lambda: self.config,
            targets_provider=lambda: self.groups,
            gateway=self.gateway,
            ramp=self.ramp,
            activity_log=self.log,
            recorder=recorder,
            user_id_provider=lambda: self.user_id,
        )

    async def feed(self, level: int, at_ms: int) -> None:
        """Advance the clock to ``at_ms`` and process one sample."""
        target = at_ms / 1000
        delta = target - self.clock.monotonic()
        if delta > 0:
            self.clock.advance(delta)
        self.machine.process_sample(level)
        await asyncio.sleep(0)

    async def settle(self) -> None:
        await self.machine.settle()

    def types(self) -> list[str]:
        return [entry.type.value for entry in self.log.entries()]


@pytest.fixture
def endpoint() -> DeviceConnection:
    return DeviceConnection("10.0.0.11", "secret")


@pytest.fixture
def group(endpoint: DeviceConnection) -> SpeakerGroup:
    return SpeakerGroup(id="adapter-1", name="Lobby", endpoints=(endpoint,))


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_harness(group: SpeakerGroup):
    def _make(recorder: object | None = None, user_id: str | None = None, **overrides: object) -> Harness:
        return Harness(MonitoringConfig().replace(**overrides), [group], recorder, user_id)

    return _make
