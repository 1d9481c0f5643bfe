"""SQLite-backed storage for contracts and the tasks and milestones they own."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

from marketplace_service.services.database import is_unique_violation

if TYPE_CHECKING:
    from marketplace_service.services.database import Database


class DuplicateContractError(Exception):
    """Raised when a contract already exists for a job/bid pair."""


def _build_update(
    table: str,
    key_column: str,
    key: str,
    updates: dict[str, Any],
    allowed: tuple[str, ...],
    guards: dict[str, Any],
) -> tuple[str, list[object]]:
    if any(column not in allowed for column in updates):
        msg = f"Attempted to update unknown {table} column"
        raise ValueError(msg)
    set_clause = ", ".join(f"{column} = ?" for column in updates)
    params: list[object] = list(updates.values())
    query = f"UPDATE {table} SET {set_clause} WHERE {key_column} = ?"  # nosec B608
    params.append(key)
    for column, expected in guards.items():
        if expected is not None:
            query += f" AND {column} = ?"
            params.append(expected)
    return query, params


class ContractStore:
    """
    Storage for contracts.

    Tasks and milestones live in their own tables keyed by a stable id and
    scoped by ``contract_id``; they are only reachable through the named
    methods below.
    """

    _CONTRACT_COLUMNS: tuple[str, ...] = (
        "contract_id",
        "job_id",
        "bid_id",
        "client_id",
        "freelancer_id",
        "amount",
        "status",
        "payment_status",
        "payment_intent_id",
        "payment_attempt",
        "checkout_session_id",
        "conversation_id",
        "paid_at",
        "start_date",
        "end_date",
        "created_at",
        "updated_at",
    )
    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "contract_id",
        "title",
        "description",
        "status",
        "assigned_to",
        "due_date",
        "completed_at",
        "created_at",
        "updated_at",
    )
    _MILESTONE_COLUMNS: tuple[str, ...] = (
        "milestone_id",
        "contract_id",
        "title",
        "description",
        "amount",
        "status",
        "due_date",
        "approved_at",
        "paid_at",
        "created_at",
        "updated_at",
    )
    _CONTRACT_SELECT_SQL = "SELECT " + ", ".join(_CONTRACT_COLUMNS) + " FROM contracts"
    _TASK_SELECT_SQL = "SELECT " + ", ".join(_TASK_COLUMNS) + " FROM contract_tasks"
    _MILESTONE_SELECT_SQL = "SELECT " + ", ".join(_MILESTONE_COLUMNS) + " FROM milestones"

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    async def insert_contract(self, contract_data: dict[str, Any]) -> None:
        """Insert a contract row. Raises DuplicateContractError on (job_id, bid_id) reuse."""
        columns = self._CONTRACT_COLUMNS
        placeholders = ", ".join("?" for _ in columns)
        try:
            await self._db.execute(
                f"INSERT INTO contracts ({', '.join(columns)}) VALUES ({placeholders})",  # nosec B608
                [contract_data[column] for column in columns],
            )
        except sqlite3.IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateContractError(
                    f"A contract for job_id={contract_data['job_id']} "
                    f"bid_id={contract_data['bid_id']} already exists"
                ) from exc
            raise

    async def get_contract(self, contract_id: str) -> dict[str, Any] | None:
        """Fetch a contract by ID."""
        return await self._db.fetch_one(
            self._CONTRACT_SELECT_SQL + " WHERE contract_id = ?", (contract_id,)
        )

    async def get_by_job_bid(self, job_id: str, bid_id: str) -> dict[str, Any] | None:
        """Fetch the contract materialized from a job/bid pair."""
        return await self._db.fetch_one(
            self._CONTRACT_SELECT_SQL + " WHERE job_id = ? AND bid_id = ?", (job_id, bid_id)
        )

    async def get_by_job(self, job_id: str) -> dict[str, Any] | None:
        """Fetch the contract for a job."""
        return await self._db.fetch_one(
            self._CONTRACT_SELECT_SQL + " WHERE job_id = ? ORDER BY created_at LIMIT 1",
            (job_id,),
        )

    async def get_by_payment_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        """Fetch the contract that holds a gateway payment intent."""
        return await self._db.fetch_one(
            self._CONTRACT_SELECT_SQL + " WHERE payment_intent_id = ?", (payment_intent_id,)
        )

    async def update_contract(
        self,
        contract_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None = None,
        expected_payment_status: str | None = None,
    ) -> int:
        """Update contract columns, optionally guarded on status and payment status."""
        if len(updates) == 0:
            return 0
        query, params = _build_update(
            "contracts",
            "contract_id",
            contract_id,
            updates,
            self._CONTRACT_COLUMNS,
            {"status": expected_status, "payment_status": expected_payment_status},
        )
        return await self._db.execute(query, params)

    async def list_contracts_for_user(
        self,
        user_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List contracts where the user is either party, newest first."""
        query = self._CONTRACT_SELECT_SQL + " WHERE (client_id = ? OR freelancer_id = ?)"
        params: list[object] = [user_id, user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return await self._db.fetch_all(query, params)

    async def count_contracts_for_user(self, user_id: str, status: str | None) -> int:
        """Count contracts where the user is either party."""
        query = "SELECT COUNT(*) FROM contracts WHERE (client_id = ? OR freelancer_id = ?)"
        params: list[object] = [user_id, user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        return int(await self._db.scalar(query, params))

    async def list_payment_history(
        self,
        user_id: str,
        payment_statuses: tuple[str, ...],
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        """List contracts where the user is either party in the given payment states."""
        placeholders = ", ".join("?" for _ in payment_statuses)
        query = (
            self._CONTRACT_SELECT_SQL
            + " WHERE (client_id = ? OR freelancer_id = ?)"
            + f" AND payment_status IN ({placeholders})"  # nosec B608
            + " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        return await self._db.fetch_all(
            query, [user_id, user_id, *payment_statuses, limit, offset]
        )

    async def count_payment_history(
        self,
        user_id: str,
        payment_statuses: tuple[str, ...],
    ) -> int:
        """Count the rows list_payment_history pages over."""
        placeholders = ", ".join("?" for _ in payment_statuses)
        return int(
            await self._db.scalar(
                "SELECT COUNT(*) FROM contracts WHERE (client_id = ? OR freelancer_id = ?) "
                f"AND payment_status IN ({placeholders})",  # nosec B608
                [user_id, user_id, *payment_statuses],
            )
        )

    async def count_by_payment_status(
        self,
        party_column: str,
        user_id: str,
        payment_status: str,
    ) -> int:
        """Count one party's contracts in one payment state."""
        if party_column not in ("client_id", "freelancer_id"):
            msg = f"Unknown party column: {party_column}"
            raise ValueError(msg)
        return int(
            await self._db.scalar(
                f"SELECT COUNT(*) FROM contracts "  # nosec B608
                f"WHERE {party_column} = ? AND payment_status = ?",
                (user_id, payment_status),
            )
        )

    async def sum_amount(self, party_column: str, user_id: str, payment_status: str) -> float:
        """Sum contract amounts for one party in one payment state."""
        if party_column not in ("client_id", "freelancer_id"):
            msg = f"Unknown party column: {party_column}"
            raise ValueError(msg)
        total = await self._db.scalar(
            f"SELECT COALESCE(SUM(amount), 0) FROM contracts "  # nosec B608
            f"WHERE {party_column} = ? AND payment_status = ?",
            (user_id, payment_status),
        )
        return float(total)

    async def count_contracts_by_status(self) -> dict[str, int]:
        """Count contracts grouped by status."""
        rows = await self._db.fetch_all(
            "SELECT status, COUNT(*) AS n FROM contracts GROUP BY status"
        )
        return {str(row["status"]): int(row["n"]) for row in rows}

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a task owned by a contract."""
        columns = self._TASK_COLUMNS
        placeholders = ", ".join("?" for _ in columns)
        await self._db.execute(
            f"INSERT INTO contract_tasks ({', '.join(columns)}) VALUES ({placeholders})",  # nosec B608
            [task_data[column] for column in columns],
        )

    async def get_task(self, contract_id: str, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID within its owning contract."""
        return await self._db.fetch_one(
            self._TASK_SELECT_SQL + " WHERE contract_id = ? AND task_id = ?",
            (contract_id, task_id),
        )

    async def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns, optionally guarded on the current status."""
        if len(updates) == 0:
            return 0
        query, params = _build_update(
            "contract_tasks",
            "task_id",
            task_id,
            updates,
            self._TASK_COLUMNS,
            {"status": expected_status},
        )
        return await self._db.execute(query, params)

    async def list_tasks(self, contract_id: str) -> list[dict[str, Any]]:
        """List a contract's tasks in creation order."""
        return await self._db.fetch_all(
            self._TASK_SELECT_SQL + " WHERE contract_id = ? ORDER BY created_at",
            (contract_id,),
        )

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def insert_milestone(self, milestone_data: dict[str, Any]) -> None:
        """Insert a milestone owned by a contract."""
        columns = self._MILESTONE_COLUMNS
        placeholders = ", ".join("?" for _ in columns)
        await self._db.execute(
            f"INSERT INTO milestones ({', '.join(columns)}) VALUES ({placeholders})",  # nosec B608
            [milestone_data[column] for column in columns],
        )

    async def get_milestone(self, contract_id: str, milestone_id: str) -> dict[str, Any] | None:
        """Fetch a milestone by ID within its owning contract."""
        return await self._db.fetch_one(
            self._MILESTONE_SELECT_SQL + " WHERE contract_id = ? AND milestone_id = ?",
            (contract_id, milestone_id),
        )

    async def update_milestone(
        self,
        milestone_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update milestone columns, optionally guarded on the current status."""
        if len(updates) == 0:
            return 0
        query, params = _build_update(
            "milestones",
            "milestone_id",
            milestone_id,
            updates,
            self._MILESTONE_COLUMNS,
            {"status": expected_status},
        )
        return await self._db.execute(query, params)

    async def list_milestones(self, contract_id: str) -> list[dict[str, Any]]:
        """List a contract's milestones in creation order."""
        return await self._db.fetch_all(
            self._MILESTONE_SELECT_SQL + " WHERE contract_id = ? ORDER BY created_at",
            (contract_id,),
        )

    async def get_contract_detail(self, contract_id: str) -> dict[str, Any] | None:
        """Fetch a contract together with its tasks and milestones."""
        contract = await self.get_contract(contract_id)
        if contract is None:
            return None
        contract["tasks"] = await self.list_tasks(contract_id)
        contract["milestones"] = await self.list_milestones(contract_id)
        return contract
