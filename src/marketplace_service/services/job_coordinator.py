"""Keeps a job's status and selected bid consistent with its bids."""

from __future__ import annotations

import uuid
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
    from marketplace_service.clients.identity_client import Principal
    from marketplace_service.services.bid_store import BidStore
    from marketplace_service.services.job_store import JobStore
    from marketplace_service.services.notifier import NotificationFanout

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000


class JobStatusCoordinator:
    """
    Owns every write to a job's ``status`` and ``selected_bid_id``.

    Bid acceptance is serialized per job by a compare-and-set on
    ``status = 'open'``: of two concurrent acceptances only one write lands,
    and the other caller gets InvalidStateError.
    """

    def __init__(self, jobs: JobStore, bids: BidStore, notifier: NotificationFanout) -> None:
        self._jobs = jobs
        self._bids = bids
        self._notifier = notifier
        self._logger = get_logger(__name__)

    async def post_job(
        self,
        principal: Principal,
        title: object,
        description: object,
        skills: object,
    ) -> dict[str, Any]:
        """Post a new open job on behalf of a client."""
        if not principal.is_client:
            raise AuthorizationError("Only clients can post jobs")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title is required")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("description is required")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )
        if skills is None:
            skills = []
        if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
            raise ValidationError("skills must be a list of strings")

        created_at = now_iso()
        job = {
            "job_id": f"job-{uuid.uuid4()}",
            "client_id": principal.user_id,
            "title": title.strip(),
            "description": description,
            "skills": skills,
            "status": "open",
            "selected_bid_id": None,
            "proposals": 0,
            "created_at": created_at,
            "updated_at": created_at,
            "completed_at": None,
        }
        await self._jobs.insert_job(job)
        self._logger.info(
            "Job posted",
            extra={"job_id": job["job_id"], "client_id": principal.user_id},
        )
        return job

    async def count_jobs_by_status(self) -> dict[str, int]:
        """Job counts per status, for the health endpoint."""
        return await self._jobs.count_jobs_by_status()

    async def get_job(self, job_id: str) -> dict[str, Any]:
        """Fetch a job or raise JOB_NOT_FOUND."""
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found")
        return job

    async def claim_for_bid(self, job_id: str, bid_id: str) -> bool:
        """
        Move a job from open to in_progress with ``bid_id`` selected.

        Returns True when this call performed the transition and False when
        the job already selects ``bid_id`` (a resumed acceptance).

        Raises:
            InvalidStateError: if the job is not open and selects another bid or none
        """
        updated = await self._jobs.update_job(
            job_id,
            {"status": "in_progress", "selected_bid_id": bid_id, "updated_at": now_iso()},
            expected_status="open",
        )
        if updated == 1:
            self._logger.info("Job claimed", extra={"job_id": job_id, "bid_id": bid_id})
            return True

        job = await self.get_job(job_id)
        if job["status"] == "in_progress" and job["selected_bid_id"] == bid_id:
            self._logger.info(
                "Job already claimed by this bid, resuming",
                extra={"job_id": job_id, "bid_id": bid_id},
            )
            return False

        raise InvalidStateError(
            f"Cannot accept bid on job in '{job['status']}' status, must be 'open'",
            details={"job_status": job["status"]},
        )

    async def release_claim(self, job_id: str, bid_id: str) -> None:
        """Undo claim_for_bid when the bid itself could not be accepted."""
        released = await self._jobs.update_job(
            job_id,
            {"status": "open", "selected_bid_id": None, "updated_at": now_iso()},
            expected_status="in_progress",
            expected_selected_bid_id=bid_id,
        )
        self._logger.warning(
            "Job claim released",
            extra={"job_id": job_id, "bid_id": bid_id, "released": released == 1},
        )

    async def reject_sibling_bids(self, job: dict[str, Any], accepted_bid_id: str) -> list[str]:
        """
        Reject every other pending bid on the job and notify each freelancer.

        Every sibling that ends up rejected is notified, including ones a
        previous, interrupted run already moved. The notification's dedupe
        key is shared with an explicit rejection, so no freelancer hears
        about the same bid twice.

        Returns the ids of the bids this call moved to rejected.
        """
        rejected: list[str] = []
        for bid in await self._bids.list_bids_for_job(job["job_id"]):
            if bid["bid_id"] == accepted_bid_id:
                continue
            status = bid["status"]
            if status == "pending":
                updated = await self._bids.update_bid(
                    bid["bid_id"],
                    {"status": "rejected", "updated_at": now_iso()},
                    expected_status="pending",
                )
                if updated == 1:
                    status = "rejected"
                    rejected.append(bid["bid_id"])
                else:
                    current = await self._bids.get_bid(bid["bid_id"])
                    status = current["status"] if current is not None else "missing"
            if status != "rejected":
                continue
            await self._notifier.notify(
                bid["freelancer_id"],
                "bid_rejected",
                "Bid Not Selected",
                f'Your bid for "{job["title"]}" was not selected',
                data={"bid_id": bid["bid_id"], "job_id": job["job_id"]},
                action_url="/my-bids",
                dedupe_key=f"bid_rejected:{bid['bid_id']}",
            )

        if rejected:
            self._logger.info(
                "Sibling bids rejected",
                extra={"job_id": job["job_id"], "rejected_count": len(rejected)},
            )
        return rejected

    async def mark_completed(self, job_id: str) -> None:
        """Mirror a completed contract onto its job."""
        completed_at = now_iso()
        updated = await self._jobs.update_job(
            job_id,
            {"status": "completed", "completed_at": completed_at, "updated_at": completed_at},
            expected_status="in_progress",
        )
        if updated == 1:
            return

        job = await self._jobs.get_job(job_id)
        if job is not None and job["status"] == "completed":
            return
        self._logger.warning(
            "Job not in progress when its contract completed",
            extra={"job_id": job_id, "job_status": job["status"] if job else None},
        )
