"""Device registry resolving selected speaker groups to endpoints."""

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .config import DEFAULT_AUTH_METHOD
from .exceptions import ConfigError
from .logging_utils import get_logger
from .models import DeviceConnection, SpeakerDevice, SpeakerGroup

logger = get_logger(__name__)


class DeviceRegistry:
    """
    In-memory registry of paging adapters and speakers.

    A paging adapter resolves to its linked speakers; a plain speaker id
    resolves to that speaker alone.
    """

    def __init__(self, devices: Iterable[SpeakerDevice] = ()) -> None:
        self._devices: dict[str, SpeakerDevice] = {}
        for device in devices:
            self.add(device)

    @classmethod
    def from_file(cls, path: str | Path) -> "DeviceRegistry":
        """
        Load a registry from a JSON file of the form {"devices": [...]}.

        Raises:
            ConfigError: If the file cannot be read or is malformed
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot load device registry {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeviceRegistry":
        raw_devices = data.get("devices") if isinstance(data, dict) else None
        if not isinstance(raw_devices, list):
            raise ConfigError("Device registry must contain a 'devices' list")

        devices = []
        for raw in raw_devices:
            try:
                devices.append(
                    SpeakerDevice(
                        id=str(raw["id"]),
                        name=str(raw.get("name", raw["id"])),
                        type=str(raw["type"]),
                        address=str(raw["address"]),
                        credential=str(raw.get("credential", "")),
                        auth_method=str(raw.get("auth_method", DEFAULT_AUTH_METHOD)),
                        zone=str(raw.get("zone", "")),
                        linked_speaker_ids=[str(i) for i in raw.get("linked_speaker_ids", [])],
                    )
                )
            except (KeyError, TypeError) as e:
                raise ConfigError(f"Invalid device entry {raw!r}: {e}") from e
        return cls(devices)

    def add(self, device: SpeakerDevice) -> None:
        self._devices[device.id] = device

    def get(self, device_id: str) -> SpeakerDevice | None:
        return self._devices.get(device_id)

    def list_devices(self) -> list[SpeakerDevice]:
        return list(self._devices.values())

    def resolve(self, group_id: str) -> SpeakerGroup | None:
        """
        Resolve one selected id to its endpoints.

        Returns:
            The resolved group, or None for unknown ids
        """
        device = self._devices.get(group_id)
        if device is None:
            logger.warning(f"Selected device {group_id} is not in the registry")
            return None

        if not device.is_paging_adapter:
            return SpeakerGroup(device.id, device.name, (device.connection(),))

        endpoints: list[DeviceConnection] = []
        for speaker_id in device.linked_speaker_ids:
            speaker = self._devices.get(speaker_id)
            if speaker is None:
                logger.warning(f"{device.name}: linked speaker {speaker_id} not found")
                continue
            endpoints.append(speaker.connection())
        return SpeakerGroup(device.id, device.name, tuple(endpoints))

    def resolve_many(self, group_ids: Iterable[str]) -> list[SpeakerGroup]:
        groups = []
        for group_id in group_ids:
            group = self.resolve(group_id)
            if group is not None:
                groups.append(group)
        return groups
