"""
SQLite storage for subscription snapshots.

Keeps the last accepted snapshot of every subscription, including the
dedup markers of feeds, so changes are detected across restarts
without re-notifying old items.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from herald.models import Snapshot, snapshot_from_dict

logger = logging.getLogger(__name__)


class StateStore:
    """
    Async SQLite-backed snapshot store with an in-memory read cache.

    Each commit is a single UPSERT executed in autocommit mode, and the
    cache is only updated once the row is written, so a failed or
    interrupted commit leaves the previous snapshot visible.
    """

    def __init__(self, database_path: str | Path):
        """
        Initialize storage with database path.

        Parameters
        ----------
        database_path : str | Path
            Path to the SQLite database file, or ":memory:".
        """
        self.database_path = database_path
        self._connection: aiosqlite.Connection | None = None
        self._snapshots: dict[str, Snapshot] = {}

    async def initialize(self) -> None:
        """
        Open the database, create tables and load stored snapshots.

        Creates the database file and parent directories if they don't exist.
        """
        if str(self.database_path) != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info("Initializing database at %s", self.database_path)

        self._connection = await aiosqlite.connect(self.database_path, isolation_level=None)
        await self._create_tables()
        await self._load()

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS snapshots (
                subscription TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        logger.debug("Database tables created/verified")

    async def _load(self) -> None:
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        async with self._connection.execute(
            "SELECT subscription, kind, payload FROM snapshots"
        ) as cursor:
            rows = await cursor.fetchall()

        for name, kind, payload in rows:
            try:
                self._snapshots[name] = snapshot_from_dict(kind, json.loads(payload))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding unreadable snapshot for '%s': %s", name, e)

        logger.info("Loaded %d stored snapshot(s)", len(self._snapshots))

    async def get(self, name: str) -> Snapshot | None:
        """
        Get the last committed snapshot of a subscription.

        Parameters
        ----------
        name : str
            Subscription name.

        Returns
        -------
        Snapshot | None
            The snapshot, or None if no baseline exists yet.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")
        return self._snapshots.get(name)

    async def commit(self, name: str, snapshot: Snapshot) -> None:
        """
        Atomically replace the snapshot of a subscription.

        The write runs to completion even if the calling task is
        cancelled while waiting on it.

        Parameters
        ----------
        name : str
            Subscription name.
        snapshot : Snapshot
            The new snapshot.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await asyncio.shield(self._write(name, snapshot))

    async def _write(self, name: str, snapshot: Snapshot) -> None:
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        now = datetime.now(timezone.utc).isoformat()

        await self._connection.execute(
            """
            INSERT INTO snapshots (subscription, kind, payload, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(subscription) DO UPDATE SET
                kind = excluded.kind,
                payload = excluded.payload,
                updated_at = excluded.updated_at
            """,
            (name, snapshot.kind, payload, now),
        )
        self._snapshots[name] = snapshot
        logger.debug("Committed %s snapshot for '%s'", snapshot.kind, name)

    async def forget(self, name: str) -> None:
        """
        Drop the snapshot of a subscription so the next fetch is a baseline.

        Parameters
        ----------
        name : str
            Subscription name.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        await self._connection.execute("DELETE FROM snapshots WHERE subscription = ?", (name,))
        self._snapshots.pop(name, None)

    def names(self) -> list[str]:
        """Names of all subscriptions with a committed snapshot."""
        return sorted(self._snapshots)

    async def count(self) -> int:
        """
        Count stored snapshot rows.

        Returns
        -------
        int
            Number of rows in the snapshots table.
        """
        if self._connection is None:
            raise RuntimeError("Database not initialized")

        async with self._connection.execute("SELECT COUNT(*) FROM snapshots") as cursor:
            result = await cursor.fetchone()
        return result[0] if result else 0

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    async def __aenter__(self) -> "StateStore":
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
