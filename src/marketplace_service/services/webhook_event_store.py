"""Durable log of processed payment gateway webhook events."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marketplace_service.services.database import Database


class WebhookEventStore:
    """Processed event ids, evicted once older than the retention window."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def is_processed(self, event_id: str) -> bool:
        """Whether an event id has already been processed."""
        row = await self._db.fetch_one(
            "SELECT event_id FROM webhook_events WHERE event_id = ?", (event_id,)
        )
        return row is not None

    async def mark_processed(self, event_id: str, event_type: str, processed_at: str) -> bool:
        """Record an event id. Returns False if it was already recorded."""
        inserted = await self._db.execute(
            "INSERT OR IGNORE INTO webhook_events (event_id, event_type, processed_at) "
            "VALUES (?, ?, ?)",
            (event_id, event_type, processed_at),
        )
        return inserted == 1

    async def purge_older_than(self, cutoff: str) -> int:
        """Evict event ids processed before the cutoff timestamp."""
        return await self._db.execute(
            "DELETE FROM webhook_events WHERE processed_at < ?", (cutoff,)
        )
