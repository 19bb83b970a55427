"""Abstract interfaces for the speaker monitoring system."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from .models import DeviceConnection


class DeviceGateway(ABC):
    """
    Abstract interface for the remote speaker control capability.

    All operations are idempotent batch calls. A failure for one device is
    reported in the result mapping (address -> success) and never raised, so
    sibling devices still receive their calls.
    """

    @abstractmethod
    async def set_volume(
        self, devices: Sequence[DeviceConnection], db: str
    ) -> dict[str, bool]:
        """
        Set the paging volume on every device.

        Args:
            devices: Target endpoints
            db: Device volume string such as "-12dB"

        Returns:
            Mapping of device address to success flag
        """
        pass

    @abstractmethod
    async def enable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        """Enable speaker output on every device."""
        pass

    @abstractmethod
    async def disable_output(self, devices: Sequence[DeviceConnection]) -> dict[str, bool]:
        """Disable speaker output on every device."""
        pass

    async def aclose(self) -> None:
        """Release any underlying connections."""
        return None


class BlobStore(ABC):
    """Abstract interface for the recording blob store."""

    @abstractmethod
    async def upload(self, path: str, data: bytes) -> str:
        """
        Store bytes under a relative path.

        Args:
            path: Relative storage path, e.g. audio-recordings/<user>/recording-....mp3
            data: Encoded clip bytes

        Returns:
            A retrievable reference (URL or URI) for the stored object
        """
        pass


class Clock(ABC):
    """Time source for timers and log timestamps."""

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds on a monotonic timeline, used for all timer arithmetic."""
        pass

    @abstractmethod
    def now(self) -> datetime:
        """Current local wall-clock time, used for log entries and day/night."""
        pass
