"""SQLite-backed notification storage."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from marketplace_service.services.database import Database


class NotificationStore:
    """Storage for persisted user notifications."""

    _COLUMNS: tuple[str, ...] = (
        "notification_id",
        "user_id",
        "type",
        "title",
        "message",
        "data",
        "read",
        "read_at",
        "action_url",
        "dedupe_key",
        "created_at",
    )
    # dedupe_key is write-only; reads never expose it.
    _READ_COLUMNS: tuple[str, ...] = tuple(c for c in _COLUMNS if c != "dedupe_key")
    _SELECT_SQL = "SELECT " + ", ".join(_READ_COLUMNS) + " FROM notifications"

    def __init__(self, db: Database) -> None:
        self._db = db

    def _row_to_notification(self, row: dict[str, Any]) -> dict[str, Any]:
        notification = dict(row)
        notification["data"] = json.loads(row["data"]) if row["data"] else {}
        notification["read"] = bool(row["read"])
        return notification

    async def insert_notification(self, notification_data: dict[str, Any]) -> bool:
        """
        Insert a notification.

        Returns False when a row with the same dedupe key already exists,
        in which case nothing is written.
        """
        values = [notification_data[column] for column in self._COLUMNS]
        values[self._COLUMNS.index("data")] = json.dumps(notification_data["data"], default=str)
        values[self._COLUMNS.index("read")] = 1 if notification_data["read"] else 0
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        inserted = await self._db.execute(
            f"INSERT OR IGNORE INTO notifications ({', '.join(self._COLUMNS)}) "  # nosec B608
            f"VALUES ({placeholders})",
            values,
        )
        return inserted == 1

    async def get_notification(self, notification_id: str) -> dict[str, Any] | None:
        """Fetch a notification by ID."""
        row = await self._db.fetch_one(
            self._SELECT_SQL + " WHERE notification_id = ?", (notification_id,)
        )
        if row is None:
            return None
        return self._row_to_notification(row)

    async def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List a user's notifications, newest first."""
        query = self._SELECT_SQL + " WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        rows = await self._db.fetch_all(query, (user_id, limit, offset))
        return [self._row_to_notification(row) for row in rows]

    async def count_for_user(self, user_id: str, *, unread_only: bool) -> int:
        """Count a user's notifications."""
        query = "SELECT COUNT(*) FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        return int(await self._db.scalar(query, (user_id,)))

    async def mark_read(self, notification_id: str, read_at: str) -> int:
        """Mark one unread notification as read."""
        return await self._db.execute(
            "UPDATE notifications SET read = 1, read_at = ? "
            "WHERE notification_id = ? AND read = 0",
            (read_at, notification_id),
        )

    async def mark_all_read(self, user_id: str, read_at: str) -> int:
        """Mark every unread notification for a user as read."""
        return await self._db.execute(
            "UPDATE notifications SET read = 1, read_at = ? WHERE user_id = ? AND read = 0",
            (read_at, user_id),
        )
