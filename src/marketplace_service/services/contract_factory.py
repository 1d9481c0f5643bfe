"""Materializes contracts, with their paired conversation, from accepted bids."""

from __future__ import annotations

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
from marketplace_service.services.clock import now_iso
from marketplace_service.services.contract_store import DuplicateContractError
from marketplace_service.services.conversation_store import DuplicateConversationError

if TYPE_CHECKING:
    from marketplace_service.services.bid_store import BidStore
    from marketplace_service.services.contract_store import ContractStore
    from marketplace_service.services.conversation_store import ConversationStore
    from marketplace_service.services.job_coordinator import JobStatusCoordinator
    from marketplace_service.services.notifier import NotificationFanout

CONTRACT_STATUSES = frozenset({"active", "completed", "cancelled", "disputed"})


class ContractFactory:
    """
    Creates exactly one contract per (job, bid) pair.

    Creation is three dependent writes with no shared transaction:
    conversation, contract, then the conversation back-link. Each step looks
    for the record an earlier attempt may have left behind before writing,
    and unique constraints on (job_id, bid_id) settle concurrent attempts, so
    re-running the sequence converges instead of orphaning records.
    """

    def __init__(
        self,
        contracts: ContractStore,
        conversations: ConversationStore,
        bids: BidStore,
        coordinator: JobStatusCoordinator,
        notifier: NotificationFanout,
    ) -> None:
        self._contracts = contracts
        self._conversations = conversations
        self._bids = bids
        self._coordinator = coordinator
        self._notifier = notifier
        self._logger = get_logger(__name__)

    async def create_contract(self, job_id: str, bid_id: str, actor_id: str) -> dict[str, Any]:
        """
        Explicitly create the contract for an accepted bid.

        Error precedence:
        1. JOB_NOT_FOUND / BID_NOT_FOUND
        2. FORBIDDEN - actor is not the job owner
        3. CONTRACT_ALREADY_EXISTS
        4. INVALID_STATUS - bid is not accepted
        """
        job = await self._coordinator.get_job(job_id)
        bid = await self._bids.get_bid(bid_id)
        if bid is None or bid["job_id"] != job_id:
            raise NotFoundError("BID_NOT_FOUND", "Bid not found")
        if job["client_id"] != actor_id:
            raise AuthorizationError("Only the job owner can create a contract")

        existing = await self._contracts.get_by_job_bid(job_id, bid_id)
        if existing is not None:
            raise ConflictError("CONTRACT_ALREADY_EXISTS", "Contract already exists")

        if bid["status"] != "accepted":
            raise InvalidStateError(
                f"Cannot create a contract for a bid in '{bid['status']}' status, "
                "must be 'accepted'"
            )

        conversation = await self._ensure_conversation(job, bid)
        try:
            contract_id = await self._insert_contract(job, bid, conversation)
        except DuplicateContractError as exc:
            raise ConflictError("CONTRACT_ALREADY_EXISTS", "Contract already exists") from exc
        return await self._finish(conversation, contract_id)

    async def ensure_contract(self, job: dict[str, Any], bid: dict[str, Any]) -> dict[str, Any]:
        """Return the contract for (job, bid), creating whatever parts are missing."""
        job_id = job["job_id"]
        bid_id = bid["bid_id"]

        conversation = await self._ensure_conversation(job, bid)

        contract = await self._contracts.get_by_job_bid(job_id, bid_id)
        if contract is None:
            try:
                await self._insert_contract(job, bid, conversation)
            except DuplicateContractError:
                self._logger.info(
                    "Contract created concurrently, reusing",
                    extra={"job_id": job_id, "bid_id": bid_id},
                )
            contract = await self._contracts.get_by_job_bid(job_id, bid_id)
            if contract is None:
                msg = f"Contract for job {job_id} bid {bid_id} not found after insert"
                raise RuntimeError(msg)
        else:
            self._logger.info(
                "Contract already exists, resuming",
                extra={"contract_id": contract["contract_id"], "job_id": job_id},
            )

        return await self._finish(conversation, contract["contract_id"])

    async def _insert_contract(
        self,
        job: dict[str, Any],
        bid: dict[str, Any],
        conversation: dict[str, Any],
    ) -> str:
        """
        Insert a new active contract and return its id.

        Raises:
            DuplicateContractError: if (job_id, bid_id) already has a contract
        """
        created_at = now_iso()
        contract_data = {
            "contract_id": f"ctr-{uuid.uuid4()}",
            "job_id": job["job_id"],
            "bid_id": bid["bid_id"],
            "client_id": job["client_id"],
            "freelancer_id": bid["freelancer_id"],
            "amount": bid["amount"],
            "status": "active",
            "payment_status": "pending",
            "payment_intent_id": None,
            "payment_attempt": 0,
            "checkout_session_id": None,
            "conversation_id": conversation["conversation_id"],
            "paid_at": None,
            "start_date": created_at,
            "end_date": None,
            "created_at": created_at,
            "updated_at": created_at,
        }
        await self._contracts.insert_contract(contract_data)
        self._logger.info(
            "Contract created",
            extra={
                "contract_id": contract_data["contract_id"],
                "job_id": job["job_id"],
                "bid_id": bid["bid_id"],
            },
        )
        return contract_data["contract_id"]

    async def _finish(self, conversation: dict[str, Any], contract_id: str) -> dict[str, Any]:
        """Back-link the conversation if needed and return the full contract."""
        if conversation["contract_id"] is None:
            await self._conversations.link_contract(conversation["conversation_id"], contract_id)

        detail = await self._contracts.get_contract_detail(contract_id)
        if detail is None:
            msg = f"Contract {contract_id} vanished"
            raise RuntimeError(msg)
        return detail

    async def _ensure_conversation(
        self,
        job: dict[str, Any],
        bid: dict[str, Any],
    ) -> dict[str, Any]:
        existing = await self._conversations.find_by_job_bid(job["job_id"], bid["bid_id"])
        if existing is not None:
            return existing

        try:
            await self._conversations.insert_conversation(
                {
                    "conversation_id": f"conv-{uuid.uuid4()}",
                    "participants": [job["client_id"], bid["freelancer_id"]],
                    "job_id": job["job_id"],
                    "bid_id": bid["bid_id"],
                    "contract_id": None,
                    "created_at": now_iso(),
                }
            )
        except DuplicateConversationError:
            self._logger.info(
                "Conversation created concurrently, reusing",
                extra={"job_id": job["job_id"], "bid_id": bid["bid_id"]},
            )

        conversation = await self._conversations.find_by_job_bid(job["job_id"], bid["bid_id"])
        if conversation is None:
            msg = f"Conversation for job {job['job_id']} bid {bid['bid_id']} not found"
            raise RuntimeError(msg)
        return conversation

    async def count_contracts_by_status(self) -> dict[str, int]:
        """Contract counts per status, for the health endpoint."""
        return await self._contracts.count_contracts_by_status()

    async def get_contract_for_party(self, contract_id: str, actor_id: str) -> dict[str, Any]:
        """Fetch a contract with tasks and milestones, for one of its parties."""
        contract = await self._contracts.get_contract_detail(contract_id)
        if contract is None:
            raise NotFoundError("CONTRACT_NOT_FOUND", "Contract not found")
        if actor_id not in (contract["client_id"], contract["freelancer_id"]):
            raise AuthorizationError("Only contract parties can view this contract")
        return contract

    async def get_contract_for_job(self, job_id: str, actor_id: str) -> dict[str, Any]:
        """Fetch the contract of a job, for one of its parties."""
        contract = await self._contracts.get_by_job(job_id)
        if contract is None:
            raise NotFoundError("CONTRACT_NOT_FOUND", "Contract not found")
        return await self.get_contract_for_party(contract["contract_id"], actor_id)

    async def list_contracts(
        self,
        user_id: str,
        status: str | None,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        """List contracts where the caller is a party."""
        if status is not None and status not in CONTRACT_STATUSES:
            raise ValidationError(f"Unknown contract status: {status}")
        offset = (page - 1) * limit
        contracts = await self._contracts.list_contracts_for_user(user_id, status, limit, offset)
        total = await self._contracts.count_contracts_for_user(user_id, status)
        return {
            "contracts": contracts,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def complete_contract(self, contract_id: str, actor_id: str) -> dict[str, Any]:
        """
        Mark a contract completed and mirror the completion onto its job.

        Completing an already-completed contract resumes the remaining steps
        (job mirror, notification) without repeating them.
        """
        contract = await self._contracts.get_contract(contract_id)
        if contract is None:
            raise NotFoundError("CONTRACT_NOT_FOUND", "Contract not found")
        if contract["client_id"] != actor_id:
            raise AuthorizationError("Only the client can complete a contract")

        if contract["status"] != "completed":
            if contract["status"] != "active":
                raise InvalidStateError(
                    f"Cannot complete contract in '{contract['status']}' status, "
                    "must be 'active'"
                )
            completed_at = now_iso()
            updated = await self._contracts.update_contract(
                contract_id,
                {"status": "completed", "end_date": completed_at, "updated_at": completed_at},
                expected_status="active",
            )
            if updated == 0:
                current = await self._contracts.get_contract(contract_id)
                if current is None or current["status"] != "completed":
                    raise InvalidStateError("Contract status changed concurrently")

        await self._coordinator.mark_completed(contract["job_id"])

        job = await self._coordinator.get_job(contract["job_id"])
        await self._notifier.notify(
            contract["freelancer_id"],
            "contract_completed",
            "Contract Completed",
            f'Contract for "{job["title"]}" has been marked as completed',
            data={"contract_id": contract_id, "job_id": contract["job_id"]},
            action_url=f"/contract/{contract['job_id']}",
            dedupe_key=f"contract_completed:{contract_id}",
        )

        detail = await self._contracts.get_contract_detail(contract_id)
        if detail is None:
            msg = f"Contract {contract_id} not found after update"
            raise RuntimeError(msg)
        return detail
