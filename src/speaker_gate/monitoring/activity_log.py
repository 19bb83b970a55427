"""Bounded, append-only activity log with CSV export."""

import csv
import io
from collections import deque
from collections.abc import Callable
from pathlib import Path

from .config import CSV_HEADER, LOG_CAPACITY
from .logging_utils import get_logger
from .models import LogEntry

logger = get_logger(__name__)


def _cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    return str(value)


class ActivityLog:
    """
    Ordered ledger of state transitions and side effects.

    Holds at most ``capacity`` entries; appending beyond that evicts the
    oldest. Entries are kept in insertion order.
    """

    def __init__(self, capacity: int = LOG_CAPACITY, enabled: bool = True) -> None:
        if capacity <= 0:
            raise ValueError("Capacity must be positive")
        self.capacity = capacity
        self.enabled = enabled
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._entry_callback: Callable[[LogEntry], None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: LogEntry) -> None:
        if not self.enabled:
            return
        self._entries.append(entry)
        logger.debug(f"[{entry.type.value}] {entry.message}")
        if self._entry_callback is not None:
            try:
                self._entry_callback(entry)
            except Exception as e:
                logger.error(f"Error in log entry callback: {e}")

    def set_entry_callback(self, callback: Callable[[LogEntry], None] | None) -> None:
        """Register a callback invoked with every appended entry."""
        self._entry_callback = callback

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def latest(self, count: int | None = None) -> list[LogEntry]:
        """Newest-first view for display."""
        newest = list(reversed(self._entries))
        return newest if count is None else newest[:count]

    def export_csv(self) -> str:
        """
        Render every entry as CSV with every field quoted.

        Returns:
            Header row plus one row per entry, oldest first
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for entry in self._entries:
            writer.writerow(
                [
                    entry.timestamp.isoformat(),
                    entry.type.value,
                    _cell(entry.level_percent),
                    _cell(entry.threshold_percent),
                    _cell(entry.speakers_enabled),
                    _cell(entry.volume_percent),
                    entry.message,
                ]
            )
        return buffer.getvalue()

    def write_csv(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.export_csv(), encoding="utf-8")
        logger.info(f"Exported {len(self)} log entries to {target}")
        return target
