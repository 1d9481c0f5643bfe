"""SQLite-backed job storage."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from marketplace_service.services.database import Database

JOB_STATUSES = frozenset({"open", "in_progress", "completed", "cancelled"})


class JobStore:
    """Storage for the job rows bids compete for."""

    _COLUMNS: tuple[str, ...] = (
        "job_id",
        "client_id",
        "title",
        "description",
        "skills",
        "status",
        "selected_bid_id",
        "proposals",
        "created_at",
        "updated_at",
        "completed_at",
    )
    _SELECT_SQL = "SELECT " + ", ".join(_COLUMNS) + " FROM jobs"

    def __init__(self, db: Database) -> None:
        self._db = db

    def _row_to_job(self, row: dict[str, Any]) -> dict[str, Any]:
        job = dict(row)
        job["skills"] = json.loads(row["skills"]) if row["skills"] else []
        return job

    async def insert_job(self, job_data: dict[str, Any]) -> None:
        """Insert a new job row."""
        values = [job_data[column] for column in self._COLUMNS]
        values[self._COLUMNS.index("skills")] = json.dumps(job_data["skills"])
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        await self._db.execute(
            f"INSERT INTO jobs ({', '.join(self._COLUMNS)}) VALUES ({placeholders})",  # nosec B608
            values,
        )

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Fetch a job by ID."""
        row = await self._db.fetch_one(self._SELECT_SQL + " WHERE job_id = ?", (job_id,))
        if row is None:
            return None
        return self._row_to_job(row)

    async def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
        expected_selected_bid_id: str | None = None,
    ) -> int:
        """
        Update job columns and return the number of affected rows.

        When ``expected_status`` is given the write only lands if the row
        still carries that status, which makes the update a compare-and-set.
        ``expected_selected_bid_id`` narrows the guard to one selected bid.
        """
        if len(updates) == 0:
            return 0
        if any(column not in self._COLUMNS for column in updates):
            msg = "Attempted to update unknown job column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())
        query = "UPDATE jobs SET " + set_clause + " WHERE job_id = ?"  # nosec B608
        params.append(job_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        if expected_selected_bid_id is not None:
            query += " AND selected_bid_id = ?"
            params.append(expected_selected_bid_id)
        return await self._db.execute(query, params)

    async def count_jobs_by_status(self) -> dict[str, int]:
        """Count jobs grouped by status."""
        rows = await self._db.fetch_all("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status")
        return {str(row["status"]): int(row["n"]) for row in rows}
