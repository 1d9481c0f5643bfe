"""SQLite-backed bid storage."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from marketplace_service.services.database import is_unique_violation

if TYPE_CHECKING:
    from marketplace_service.services.database import Database


class DuplicateBidError(Exception):
    """Raised when attempting to insert a duplicate bid for a job/freelancer pair."""


class BidStore:
    """Storage for bids. Rows are never deleted."""

    _COLUMNS: tuple[str, ...] = (
        "bid_id",
        "job_id",
        "freelancer_id",
        "amount",
        "proposal",
        "timeline_days",
        "status",
        "ai_generated",
        "original_proposal",
        "created_at",
        "updated_at",
    )
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM bids"

    def __init__(self, db: Database) -> None:
        self._db = db

    def _row_to_bid(self, row: dict[str, Any]) -> dict[str, Any]:
        bid = dict(row)
        bid["ai_generated"] = bool(row["ai_generated"])
        return bid

    async def insert_bid(self, bid_data: dict[str, Any]) -> None:
        """Insert a bid and increment the job's proposal counter atomically."""
        values = [bid_data[column] for column in self._COLUMNS]
        values[self._COLUMNS.index("ai_generated")] = 1 if bid_data["ai_generated"] else 0
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        try:
            await self._db.execute_batch(
                [
                    (
                        f"INSERT INTO bids ({', '.join(self._COLUMNS)}) "  # nosec B608
                        f"VALUES ({placeholders})",
                        values,
                    ),
                    (
                        "UPDATE jobs SET proposals = proposals + 1 WHERE job_id = ?",
                        (bid_data["job_id"],),
                    ),
                ]
            )
        except sqlite3.IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateBidError("This freelancer already bid on this job") from exc
            raise

    async def get_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch a bid by ID."""
        row = await self._db.fetch_one(self._SELECT_SQL + " WHERE bid_id = ?", (bid_id,))
        if row is None:
            return None
        return self._row_to_bid(row)

    async def update_bid(
        self,
        bid_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update bid columns, optionally guarded on the current status."""
        if len(updates) == 0:
            return 0
        if any(column not in self._COLUMNS for column in updates):
            msg = "Attempted to update unknown bid column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = "UPDATE bids SET " + set_clause + " WHERE bid_id = ?"  # nosec B608
        params.append(bid_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        return await self._db.execute(query, params)

    async def list_bids_for_job(
        self,
        job_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """List bids on a job, oldest first."""
        query = self._SELECT_SQL + " WHERE job_id = ?"
        params: list[object] = [job_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at"
        rows = await self._db.fetch_all(query, params)
        return [self._row_to_bid(row) for row in rows]

    async def list_bids_for_freelancer(
        self,
        freelancer_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List a freelancer's bids, newest first."""
        query = self._SELECT_SQL + " WHERE freelancer_id = ?"
        params: list[object] = [freelancer_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = await self._db.fetch_all(query, params)
        return [self._row_to_bid(row) for row in rows]

    async def count_bids_for_freelancer(self, freelancer_id: str, status: str | None) -> int:
        """Count a freelancer's bids with an optional status filter."""
        query = "SELECT COUNT(*) FROM bids WHERE freelancer_id = ?"
        params: list[object] = [freelancer_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        return int(await self._db.scalar(query, params))
