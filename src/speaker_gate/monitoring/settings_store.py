"""Persistent key-value settings storage using SQLite."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from .config import DEFAULT_DATABASE_PATH, DEFAULT_WAL_MODE, SCHEMA_VERSION, STORAGE_KEYS
from .exceptions import StorageError
from .logging_utils import get_logger
from .models import MonitoringConfig

logger = get_logger(__name__)


class SettingsStore:
    """SQLite-backed store for monitoring settings and session state."""

    def __init__(self, db_path: str = DEFAULT_DATABASE_PATH, wal_mode: bool = DEFAULT_WAL_MODE) -> None:
        """
        Initialize the settings store.

        Args:
            db_path: Path to SQLite database file (use ":memory:" for in-memory)
            wal_mode: Enable WAL mode for concurrent access
        """
        self.db_path = db_path if db_path == ":memory:" else str(Path(db_path).expanduser())
        self.wal_mode = wal_mode
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._connection is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            try:
                self._connection = await aiosqlite.connect(self.db_path)
            except Exception as e:
                raise StorageError(f"Failed to open settings database: {e}") from e

            # WAL is not supported for :memory:
            if self.wal_mode and self.db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")

        await self._create_schema()

    async def _create_schema(self) -> None:
        async with self._get_connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            current_version = result[0] if result and result[0] is not None else 0

            if current_version < 1:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                await conn.execute(
                    "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
            await conn.commit()

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Get database connection context manager.

        Raises:
            StorageError: If the store is not initialized
        """
        if self._connection is None:
            raise StorageError("Settings store not initialized")
        yield self._connection

    async def get_schema_version(self) -> int:
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            return result[0] if result and result[0] is not None else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Read one value.

        Args:
            key: Storage key
            default: Returned when the key is missing or its value is unreadable

        Returns:
            The decoded value or ``default``
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = await cursor.fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable stored value for {key}")
            return default

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: dict[str, Any]) -> None:
        """
        Write several values in one transaction.

        Raises:
            StorageError: If a value cannot be encoded or the write fails
        """
        try:
            rows = [(key, json.dumps(value)) for key, value in values.items()]
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not serializable: {e}") from e

        async with self._get_connection() as conn:
            try:
                await conn.executemany(
                    """
                    INSERT INTO settings (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                await conn.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to save settings: {e}") from e

    async def get_all(self) -> dict[str, Any]:
        """Return every readable stored value keyed by storage key."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT key, value FROM settings ORDER BY key")
            rows = await cursor.fetchall()

        values: dict[str, Any] = {}
        for key, raw in rows:
            try:
                values[key] = json.loads(raw)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unreadable stored value for {key}")
        return values

    async def load_config(self) -> MonitoringConfig:
        """
        Load the monitoring configuration.

        Missing or malformed fields fall back to their defaults.
        """
        stored = await self.get_all()
        raw = {
            name: stored[STORAGE_KEYS[name]]
            for name in MonitoringConfig.field_names()
            if STORAGE_KEYS[name] in stored
        }
        return MonitoringConfig.from_mapping(raw)

    async def save_config(self, config: MonitoringConfig, fields: list[str] | None = None) -> None:
        """
        Persist the monitoring configuration.

        Args:
            config: Configuration to save
            fields: Only persist these fields (defaults to all)
        """
        names = fields if fields is not None else MonitoringConfig.field_names()
        values = config.to_dict()
        await self.set_many({STORAGE_KEYS[name]: values[name] for name in names})
        logger.debug(f"Saved {len(names)} setting(s)")
