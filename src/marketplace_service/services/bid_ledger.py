"""Bid creation and state transitions, including the bid acceptance saga."""

from __future__ import annotations

import math
import uuid
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace_service.logging import get_logger
from marketplace_service.services.bid_store import DuplicateBidError
from marketplace_service.services.clock import now_iso

if TYPE_CHECKING:
    from marketplace_service.clients.identity_client import Principal
    from marketplace_service.services.bid_store import BidStore
    from marketplace_service.services.contract_factory import ContractFactory
    from marketplace_service.services.job_coordinator import JobStatusCoordinator
    from marketplace_service.services.notifier import NotificationFanout

BID_STATUSES = frozenset({"pending", "accepted", "rejected", "withdrawn"})
MAX_PROPOSAL_LENGTH = 2000


def _is_valid_amount(value: object) -> bool:
    """Check if value is a finite non-negative number (not bool)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value) and value >= 0


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class BidLedger:
    """
    Owns bid creation and the pending -> accepted/rejected/withdrawn transitions.

    A bid leaves ``pending`` exactly once: every transition is a
    compare-and-set on ``status = 'pending'``.
    """

    def __init__(
        self,
        bids: BidStore,
        coordinator: JobStatusCoordinator,
        contract_factory: ContractFactory,
        notifier: NotificationFanout,
    ) -> None:
        self._bids = bids
        self._coordinator = coordinator
        self._contract_factory = contract_factory
        self._notifier = notifier
        self._logger = get_logger(__name__)

    async def _load_bid(self, bid_id: str) -> dict[str, Any]:
        bid = await self._bids.get_bid(bid_id)
        if bid is None:
            raise NotFoundError("BID_NOT_FOUND", "Bid not found")
        return bid

    async def submit_bid(
        self,
        job_id: str,
        freelancer: Principal,
        amount: object,
        proposal: object,
        timeline_days: object,
        *,
        ai_generated: object = False,
        original_proposal: object = None,
    ) -> dict[str, Any]:
        """
        Submit a pending bid on an open job.

        Error precedence:
        1. FORBIDDEN - caller is not a freelancer
        2. VALIDATION_ERROR - amount, proposal, timeline
        3. JOB_NOT_FOUND
        4. INVALID_STATUS - job not open
        5. BID_ALREADY_EXISTS - duplicate (job, freelancer)
        """
        if not freelancer.is_freelancer:
            raise AuthorizationError("Only freelancers can submit bids")

        if not _is_valid_amount(amount):
            raise ValidationError("amount must be a non-negative number")
        if not isinstance(proposal, str) or not proposal.strip():
            raise ValidationError("proposal is required")
        if len(proposal) > MAX_PROPOSAL_LENGTH:
            raise ValidationError(f"proposal must be at most {MAX_PROPOSAL_LENGTH} characters")
        if not _is_positive_int(timeline_days):
            raise ValidationError("timeline_days must be a positive integer")
        if not isinstance(ai_generated, bool):
            raise ValidationError("ai_generated must be a boolean")
        if original_proposal is not None and (
            not isinstance(original_proposal, str) or len(original_proposal) > MAX_PROPOSAL_LENGTH
        ):
            raise ValidationError(
                f"original_proposal must be a string of at most {MAX_PROPOSAL_LENGTH} characters"
            )

        job = await self._coordinator.get_job(job_id)
        if job["status"] != "open":
            raise InvalidStateError(
                f"Cannot bid on job in '{job['status']}' status, must be 'open'"
            )

        created_at = now_iso()
        bid: dict[str, Any] = {
            "bid_id": f"bid-{uuid.uuid4()}",
            "job_id": job_id,
            "freelancer_id": freelancer.user_id,
            "amount": float(amount),  # type: ignore[arg-type]
            "proposal": proposal,
            "timeline_days": timeline_days,
            "status": "pending",
            "ai_generated": ai_generated,
            "original_proposal": original_proposal,
            "created_at": created_at,
            "updated_at": created_at,
        }
        try:
            await self._bids.insert_bid(bid)
        except DuplicateBidError as exc:
            raise ConflictError(
                "BID_ALREADY_EXISTS",
                "You have already submitted a bid for this job",
            ) from exc

        self._logger.info(
            "Bid submitted",
            extra={"bid_id": bid["bid_id"], "job_id": job_id, "freelancer_id": freelancer.user_id},
        )

        await self._notifier.notify(
            job["client_id"],
            "bid_received",
            "New Bid Received",
            f'A freelancer submitted a bid for "{job["title"]}"',
            data={"bid_id": bid["bid_id"], "job_id": job_id, "amount": bid["amount"]},
            action_url=f"/job/{job_id}/bids",
            dedupe_key=f"bid_received:{bid['bid_id']}",
        )
        return bid

    async def accept_bid(self, bid_id: str, actor_id: str) -> dict[str, Any]:
        """
        Accept a bid and run the acceptance saga to completion.

        Steps, each safe to repeat: claim the job (compare-and-set open ->
        in_progress), accept the bid, reject pending siblings, ensure the
        contract and its conversation, notify the freelancer. Calling this
        again for a bid whose job already selects it resumes the remaining
        steps instead of failing.

        Error precedence:
        1. BID_NOT_FOUND / JOB_NOT_FOUND
        2. FORBIDDEN - actor is not the job owner
        3. INVALID_STATUS - bid not pending, or job not open (lost the race)
        """
        bid = await self._load_bid(bid_id)
        job = await self._coordinator.get_job(bid["job_id"])
        if job["client_id"] != actor_id:
            raise AuthorizationError("Only the job owner can accept bids")

        resuming = bid["status"] == "accepted" and job["selected_bid_id"] == bid_id
        if not resuming and bid["status"] != "pending":
            raise InvalidStateError(
                f"Cannot accept bid in '{bid['status']}' status, must be 'pending'"
            )

        claimed = await self._coordinator.claim_for_bid(job["job_id"], bid_id)

        if bid["status"] == "pending":
            updated = await self._bids.update_bid(
                bid_id,
                {"status": "accepted", "updated_at": now_iso()},
                expected_status="pending",
            )
            if updated == 0:
                current = await self._load_bid(bid_id)
                if current["status"] != "accepted":
                    if claimed:
                        await self._coordinator.release_claim(job["job_id"], bid_id)
                    raise InvalidStateError(
                        f"Cannot accept bid in '{current['status']}' status, must be 'pending'"
                    )

        await self._coordinator.reject_sibling_bids(job, bid_id)

        bid = await self._load_bid(bid_id)
        job = await self._coordinator.get_job(job["job_id"])
        contract = await self._contract_factory.ensure_contract(job, bid)

        await self._notifier.notify(
            bid["freelancer_id"],
            "bid_accepted",
            "Bid Accepted!",
            f'Your bid for "{job["title"]}" has been accepted',
            data={
                "bid_id": bid_id,
                "job_id": job["job_id"],
                "contract_id": contract["contract_id"],
            },
            action_url=f"/contract/{job['job_id']}",
            dedupe_key=f"bid_accepted:{bid_id}",
        )

        self._logger.info(
            "Bid accepted",
            extra={
                "bid_id": bid_id,
                "job_id": job["job_id"],
                "contract_id": contract["contract_id"],
                "resumed": not claimed,
            },
        )
        return {"bid": bid, "job": job, "contract": contract}

    async def reject_bid(self, bid_id: str, actor_id: str) -> dict[str, Any]:
        """Reject a pending bid on behalf of the job owner and notify the freelancer."""
        bid = await self._load_bid(bid_id)
        job = await self._coordinator.get_job(bid["job_id"])
        if job["client_id"] != actor_id:
            raise AuthorizationError("Only the job owner can reject bids")
        if bid["status"] != "pending":
            raise InvalidStateError(
                f"Cannot reject bid in '{bid['status']}' status, must be 'pending'"
            )

        updated = await self._bids.update_bid(
            bid_id,
            {"status": "rejected", "updated_at": now_iso()},
            expected_status="pending",
        )
        if updated == 0:
            raise InvalidStateError("Bid status changed concurrently")

        await self._notifier.notify(
            bid["freelancer_id"],
            "bid_rejected",
            "Bid Not Selected",
            f'Your bid for "{job["title"]}" was not selected',
            data={"bid_id": bid_id, "job_id": job["job_id"]},
            action_url="/my-bids",
            dedupe_key=f"bid_rejected:{bid_id}",
        )
        return await self._load_bid(bid_id)

    async def withdraw_bid(self, bid_id: str, actor_id: str) -> dict[str, Any]:
        """Withdraw a pending bid on behalf of the freelancer who placed it."""
        bid = await self._load_bid(bid_id)
        if bid["freelancer_id"] != actor_id:
            raise AuthorizationError("Only the bid owner can withdraw a bid")
        if bid["status"] != "pending":
            raise InvalidStateError(
                f"Cannot withdraw bid in '{bid['status']}' status, must be 'pending'"
            )

        updated = await self._bids.update_bid(
            bid_id,
            {"status": "withdrawn", "updated_at": now_iso()},
            expected_status="pending",
        )
        if updated == 0:
            raise InvalidStateError("Bid status changed concurrently")
        return await self._load_bid(bid_id)

    async def list_bids_for_job(self, job_id: str, actor_id: str) -> dict[str, Any]:
        """List every bid on a job. Only the job owner may see them."""
        job = await self._coordinator.get_job(job_id)
        if job["client_id"] != actor_id:
            raise AuthorizationError("Only the job owner can view bids on this job")
        bids = await self._bids.list_bids_for_job(job_id)
        return {"job_id": job_id, "bids": bids}

    async def list_bids_for_freelancer(
        self,
        freelancer: Principal,
        status: str | None,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        """List the caller's own bids with pagination."""
        if not freelancer.is_freelancer:
            raise AuthorizationError("Only freelancers have bids")
        if status is not None and status not in BID_STATUSES:
            raise ValidationError(f"Unknown bid status: {status}")
        offset = (page - 1) * limit
        bids = await self._bids.list_bids_for_freelancer(
            freelancer.user_id, status, limit, offset
        )
        total = await self._bids.count_bids_for_freelancer(freelancer.user_id, status)
        return {
            "bids": bids,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }
