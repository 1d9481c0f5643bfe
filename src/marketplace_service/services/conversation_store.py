"""SQLite-backed conversation and message storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

from marketplace_service.services.database import is_unique_violation

if TYPE_CHECKING:
    from marketplace_service.services.database import Database


class DuplicateConversationError(Exception):
    """Raised when a conversation already exists for a job/bid pair."""


class ConversationStore:
    """
    Storage for the conversation paired with each contract, and its messages.

    Deleted messages keep their row with ``deleted_at`` set and drop out of
    every listing and count. Read state is one high-water mark per
    participant: messages from others created after it are unread.
    """

    _SELECT_SQL = (
        "SELECT conversation_id, participants, job_id, bid_id, contract_id, created_at "
        "FROM conversations"
    )
    _MESSAGE_SELECT_SQL = (
        "SELECT message_id, conversation_id, sender_id, content, type, created_at, deleted_at "
        "FROM messages"
    )

    def __init__(self, db: Database) -> None:
        self._db = db

    def _row_to_conversation(self, row: dict[str, Any]) -> dict[str, Any]:
        conversation = dict(row)
        conversation["participants"] = json.loads(row["participants"])
        return conversation

    async def insert_conversation(self, conversation_data: dict[str, Any]) -> None:
        """Insert a conversation row."""
        try:
            await self._db.execute(
                "INSERT INTO conversations "
                "(conversation_id, participants, job_id, bid_id, contract_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    conversation_data["conversation_id"],
                    json.dumps(conversation_data["participants"]),
                    conversation_data["job_id"],
                    conversation_data["bid_id"],
                    conversation_data["contract_id"],
                    conversation_data["created_at"],
                ),
            )
        except sqlite3.IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateConversationError(
                    "A conversation for this job and bid already exists"
                ) from exc
            raise

    async def get_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        """Fetch a conversation by ID."""
        row = await self._db.fetch_one(
            self._SELECT_SQL + " WHERE conversation_id = ?", (conversation_id,)
        )
        if row is None:
            return None
        return self._row_to_conversation(row)

    async def find_by_job_bid(self, job_id: str, bid_id: str) -> dict[str, Any] | None:
        """Find the conversation opened for a job/bid pair, linked or not."""
        row = await self._db.fetch_one(
            self._SELECT_SQL + " WHERE job_id = ? AND bid_id = ?", (job_id, bid_id)
        )
        if row is None:
            return None
        return self._row_to_conversation(row)

    async def link_contract(self, conversation_id: str, contract_id: str) -> int:
        """Back-link a contract into a conversation that has none yet."""
        return await self._db.execute(
            "UPDATE conversations SET contract_id = ? "
            "WHERE conversation_id = ? AND contract_id IS NULL",
            (contract_id, conversation_id),
        )

    async def list_for_participant(self, user_id: str) -> list[dict[str, Any]]:
        """List the user's conversations, most recent activity first."""
        rows = await self._db.fetch_all(
            "SELECT c.conversation_id, c.participants, c.job_id, c.bid_id, c.contract_id, "
            "c.created_at FROM conversations c "
            "WHERE EXISTS (SELECT 1 FROM json_each(c.participants) WHERE json_each.value = ?) "
            "ORDER BY COALESCE("
            "(SELECT MAX(m.created_at) FROM messages m "
            "WHERE m.conversation_id = c.conversation_id AND m.deleted_at IS NULL), "
            "c.created_at) DESC",
            (user_id,),
        )
        return [self._row_to_conversation(row) for row in rows]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert_message(self, message_data: dict[str, Any]) -> None:
        """Insert a message row."""
        await self._db.execute(
            "INSERT INTO messages "
            "(message_id, conversation_id, sender_id, content, type, created_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                message_data["message_id"],
                message_data["conversation_id"],
                message_data["sender_id"],
                message_data["content"],
                message_data["type"],
                message_data["created_at"],
                message_data["deleted_at"],
            ),
        )

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Fetch a message by ID, deleted or not."""
        return await self._db.fetch_one(
            self._MESSAGE_SELECT_SQL + " WHERE message_id = ?", (message_id,)
        )

    async def list_messages(
        self,
        conversation_id: str,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List live messages, newest first."""
        return await self._db.fetch_all(
            self._MESSAGE_SELECT_SQL + " WHERE conversation_id = ? AND deleted_at IS NULL "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (conversation_id, limit, offset),
        )

    async def count_messages(self, conversation_id: str) -> int:
        """Count live messages in a conversation."""
        return int(
            await self._db.scalar(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ? AND deleted_at IS NULL",
                (conversation_id,),
            )
        )

    async def latest_message(self, conversation_id: str) -> dict[str, Any] | None:
        """The newest live message of a conversation."""
        rows = await self.list_messages(conversation_id, limit=1, offset=0)
        return rows[0] if rows else None

    async def soft_delete_message(self, message_id: str, deleted_at: str) -> int:
        """Mark a live message deleted. Returns 0 if it was already deleted."""
        return await self._db.execute(
            "UPDATE messages SET deleted_at = ? WHERE message_id = ? AND deleted_at IS NULL",
            (deleted_at, message_id),
        )

    async def mark_read(self, conversation_id: str, user_id: str, read_at: str) -> None:
        """Advance the user's read mark; it never moves backwards."""
        await self._db.execute(
            "INSERT INTO conversation_reads (conversation_id, user_id, last_read_at) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT(conversation_id, user_id) "
            "DO UPDATE SET last_read_at = MAX(last_read_at, excluded.last_read_at)",
            (conversation_id, user_id, read_at),
        )

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        """Count live messages from other participants after the user's read mark."""
        return int(
            await self._db.scalar(
                "SELECT COUNT(*) FROM messages "
                "WHERE conversation_id = ? AND sender_id != ? AND deleted_at IS NULL "
                "AND created_at > COALESCE("
                "(SELECT last_read_at FROM conversation_reads "
                "WHERE conversation_id = ? AND user_id = ?), '')",
                (conversation_id, user_id, conversation_id, user_id),
            )
        )
