"""Tasks and milestones owned by a contract."""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace_service.logging import get_logger
from marketplace_service.services.clock import now_iso

if TYPE_CHECKING:
    from marketplace_service.services.contract_store import ContractStore
    from marketplace_service.services.notifier import NotificationFanout

TASK_STATUSES = frozenset({"todo", "in_progress", "completed"})
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000


def _validate_title(title: object) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
    return title.strip()


def _validate_description(description: object) -> str | None:
    if description is None:
        return None
    if not isinstance(description, str) or len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description must be a string of at most {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


def _validate_due_date(due_date: object) -> str | None:
    if due_date is None:
        return None
    if not isinstance(due_date, str):
        raise ValidationError("due_date must be an ISO 8601 string")
    try:
        datetime.fromisoformat(due_date.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError("due_date must be an ISO 8601 string") from exc
    return due_date


class WorkTracker:
    """
    Named operations over a contract's tasks and milestones.

    Either party may add tasks and move them between statuses. Milestones
    are created and approved by the client only. Every status change that
    lands notifies the other party.
    """

    def __init__(
        self,
        contracts: ContractStore,
        notifier: NotificationFanout,
    ) -> None:
        self._contracts = contracts
        self._notifier = notifier
        self._logger = get_logger(__name__)

    async def _load_contract_for_party(self, contract_id: str, actor_id: str) -> dict[str, Any]:
        contract = await self._contracts.get_contract(contract_id)
        if contract is None:
            raise NotFoundError("CONTRACT_NOT_FOUND", "Contract not found")
        if actor_id not in (contract["client_id"], contract["freelancer_id"]):
            raise AuthorizationError("Only contract parties can manage its work")
        return contract

    @staticmethod
    def _require_active(contract: dict[str, Any]) -> None:
        if contract["status"] != "active":
            raise InvalidStateError(
                f"Cannot change work on contract in '{contract['status']}' status, "
                "must be 'active'"
            )

    @staticmethod
    def _other_party(contract: dict[str, Any], actor_id: str) -> str:
        if actor_id == contract["client_id"]:
            return str(contract["freelancer_id"])
        return str(contract["client_id"])

    async def add_task(
        self,
        contract_id: str,
        actor_id: str,
        title: object,
        description: object = None,
        due_date: object = None,
        assigned_to: object = None,
    ) -> dict[str, Any]:
        """Add a todo task. ``assigned_to`` defaults to the freelancer."""
        contract = await self._load_contract_for_party(contract_id, actor_id)
        self._require_active(contract)

        clean_title = _validate_title(title)
        clean_description = _validate_description(description)
        clean_due_date = _validate_due_date(due_date)
        if assigned_to is None:
            assigned_to = contract["freelancer_id"]
        if assigned_to not in (contract["client_id"], contract["freelancer_id"]):
            raise ValidationError("assigned_to must be a contract party")

        created_at = now_iso()
        task = {
            "task_id": f"task-{uuid.uuid4()}",
            "contract_id": contract_id,
            "title": clean_title,
            "description": clean_description,
            "status": "todo",
            "assigned_to": assigned_to,
            "due_date": clean_due_date,
            "completed_at": None,
            "created_at": created_at,
            "updated_at": created_at,
        }
        await self._contracts.insert_task(task)
        await self._contracts.update_contract(contract_id, {"updated_at": created_at})
        self._logger.info(
            "Task added",
            extra={"contract_id": contract_id, "task_id": task["task_id"]},
        )
        return task

    async def update_task_status(
        self,
        contract_id: str,
        task_id: str,
        actor_id: str,
        status: object,
    ) -> dict[str, Any]:
        """
        Move a task to a new status.

        ``completed_at`` is set when the task becomes completed and cleared
        when it leaves completed. Setting the current status again is a
        no-op and notifies nobody.

        Error precedence:
        1. CONTRACT_NOT_FOUND
        2. FORBIDDEN - actor is not a contract party
        3. TASK_NOT_FOUND
        4. VALIDATION_ERROR - unknown status
        """
        contract = await self._load_contract_for_party(contract_id, actor_id)
        task = await self._contracts.get_task(contract_id, task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        if not isinstance(status, str) or status not in TASK_STATUSES:
            raise ValidationError(f"status must be one of {sorted(TASK_STATUSES)}")
        self._require_active(contract)

        if task["status"] == status:
            return task

        updated_at = now_iso()
        updated = await self._contracts.update_task(
            task_id,
            {
                "status": status,
                "completed_at": updated_at if status == "completed" else None,
                "updated_at": updated_at,
            },
            expected_status=task["status"],
        )
        if updated == 0:
            raise InvalidStateError("Task status changed concurrently")
        await self._contracts.update_contract(contract_id, {"updated_at": updated_at})

        await self._notifier.notify(
            self._other_party(contract, actor_id),
            "task_update",
            "Task Updated",
            f'Task "{task["title"]}" status changed to {status}',
            data={"contract_id": contract_id, "task_id": task_id, "status": status},
            action_url=f"/contract/{contract['job_id']}",
        )

        refreshed = await self._contracts.get_task(contract_id, task_id)
        if refreshed is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return refreshed

    async def add_milestone(
        self,
        contract_id: str,
        actor_id: str,
        title: object,
        amount: object,
        description: object = None,
        due_date: object = None,
    ) -> dict[str, Any]:
        """Add a pending milestone. Client only."""
        contract = await self._load_contract_for_party(contract_id, actor_id)
        if actor_id != contract["client_id"]:
            raise AuthorizationError("Only the client can add milestones")
        self._require_active(contract)

        clean_title = _validate_title(title)
        if (
            isinstance(amount, bool)
            or not isinstance(amount, int | float)
            or not math.isfinite(amount)
            or amount < 0
        ):
            raise ValidationError("amount must be a non-negative number")
        clean_description = _validate_description(description)
        clean_due_date = _validate_due_date(due_date)

        created_at = now_iso()
        milestone = {
            "milestone_id": f"ms-{uuid.uuid4()}",
            "contract_id": contract_id,
            "title": clean_title,
            "description": clean_description,
            "amount": float(amount),
            "status": "pending",
            "due_date": clean_due_date,
            "approved_at": None,
            "paid_at": None,
            "created_at": created_at,
            "updated_at": created_at,
        }
        await self._contracts.insert_milestone(milestone)
        await self._contracts.update_contract(contract_id, {"updated_at": created_at})
        self._logger.info(
            "Milestone added",
            extra={"contract_id": contract_id, "milestone_id": milestone["milestone_id"]},
        )
        return milestone

    async def approve_milestone(
        self,
        contract_id: str,
        milestone_id: str,
        actor_id: str,
    ) -> dict[str, Any]:
        """
        Approve a pending milestone and notify the freelancer. Client only.

        Error precedence:
        1. CONTRACT_NOT_FOUND
        2. FORBIDDEN - actor is not the client
        3. MILESTONE_NOT_FOUND
        4. INVALID_STATUS - milestone not pending
        """
        contract = await self._load_contract_for_party(contract_id, actor_id)
        if actor_id != contract["client_id"]:
            raise AuthorizationError("Only the client can approve milestones")
        milestone = await self._contracts.get_milestone(contract_id, milestone_id)
        if milestone is None:
            raise NotFoundError("MILESTONE_NOT_FOUND", "Milestone not found")
        self._require_active(contract)
        if milestone["status"] != "pending":
            raise InvalidStateError(
                f"Cannot approve milestone in '{milestone['status']}' status, must be 'pending'"
            )

        approved_at = now_iso()
        updated = await self._contracts.update_milestone(
            milestone_id,
            {"status": "approved", "approved_at": approved_at, "updated_at": approved_at},
            expected_status="pending",
        )
        if updated == 0:
            raise InvalidStateError("Milestone status changed concurrently")
        await self._contracts.update_contract(contract_id, {"updated_at": approved_at})

        await self._notifier.notify(
            contract["freelancer_id"],
            "milestone_approved",
            "Milestone Approved",
            f'Milestone "{milestone["title"]}" has been approved',
            data={
                "contract_id": contract_id,
                "milestone_id": milestone_id,
                "amount": milestone["amount"],
            },
            action_url=f"/contract/{contract['job_id']}",
            dedupe_key=f"milestone_approved:{milestone_id}",
        )

        refreshed = await self._contracts.get_milestone(contract_id, milestone_id)
        if refreshed is None:
            msg = f"Milestone {milestone_id} not found after update"
            raise RuntimeError(msg)
        return refreshed
