"""Service-level fixtures wired against a temporary SQLite database."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from marketplace_service.clients.identity_client import Principal
from marketplace_service.services.bid_ledger import BidLedger
from marketplace_service.services.bid_store import BidStore
from marketplace_service.services.contract_factory import ContractFactory
from marketplace_service.services.contract_store import ContractStore
from marketplace_service.services.conversation_store import ConversationStore
from marketplace_service.services.database import Database
from marketplace_service.services.job_coordinator import JobStatusCoordinator
from marketplace_service.services.job_store import JobStore
from marketplace_service.services.message_board import MessageBoard
from marketplace_service.services.notification_store import NotificationStore
from marketplace_service.services.notifier import NotificationFanout
from marketplace_service.services.payment_reconciler import PaymentReconciler
from marketplace_service.services.presence import PresenceRegistry
from marketplace_service.services.webhook_event_store import WebhookEventStore
from marketplace_service.services.work_tracker import WorkTracker
from tests.helpers import WEBHOOK_SECRET

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

CLIENT = Principal(user_id="u-client", role="client")
FREELANCER_1 = Principal(user_id="u-freelancer-1", role="freelancer")
FREELANCER_2 = Principal(user_id="u-freelancer-2", role="freelancer")
OUTSIDER = Principal(user_id="u-outsider", role="client")


@dataclass
class Marketplace:
    """Every store and service, sharing one database."""

    db: Database
    jobs: JobStore
    bids: BidStore
    contracts: ContractStore
    conversations: ConversationStore
    notifications: NotificationStore
    webhook_events: WebhookEventStore
    presence: PresenceRegistry
    notifier: NotificationFanout
    coordinator: JobStatusCoordinator
    factory: ContractFactory
    ledger: BidLedger
    tracker: WorkTracker
    reconciler: PaymentReconciler
    board: MessageBoard
    gateway: AsyncMock

    async def post_job(self, title: str = "Build a website") -> dict[str, Any]:
        return await self.coordinator.post_job(
            CLIENT, title, "A five page marketing site", ["python", "css"]
        )

    async def bid(
        self,
        job_id: str,
        freelancer: Principal,
        amount: float = 500,
        timeline_days: int = 7,
    ) -> dict[str, Any]:
        return await self.ledger.submit_bid(
            job_id, freelancer, amount, f"Proposal from {freelancer.user_id}", timeline_days
        )

    async def active_contract(self, amount: float = 500) -> dict[str, Any]:
        """Post a job, accept one bid, and return the resulting contract."""
        job = await self.post_job()
        bid = await self.bid(job["job_id"], FREELANCER_1, amount=amount)
        result = await self.ledger.accept_bid(bid["bid_id"], CLIENT.user_id)
        return result["contract"]

    async def notifications_for(self, user_id: str) -> list[dict[str, Any]]:
        return await self.notifications.list_for_user(
            user_id, unread_only=False, limit=100, offset=0
        )


@pytest.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    """Open a fresh database file."""
    database = await Database.open(str(tmp_path / "marketplace.db"))
    yield database
    await database.close()


@pytest.fixture
def gateway() -> AsyncMock:
    """Payment gateway mock that hands out one intent per idempotency key."""
    mock = AsyncMock()

    async def _create(**kwargs: Any) -> dict[str, str]:
        key = kwargs["idempotency_key"]
        return {"id": f"pi_{key}", "client_secret": f"pi_{key}_secret"}

    mock.create_payment_intent = AsyncMock(side_effect=_create)
    return mock


@pytest.fixture
def market(db: Database, gateway: AsyncMock) -> Marketplace:
    """Wire the full service graph the way the app lifespan does."""
    jobs = JobStore(db)
    bids = BidStore(db)
    contracts = ContractStore(db)
    conversations = ConversationStore(db)
    notifications = NotificationStore(db)
    webhook_events = WebhookEventStore(db)
    presence = PresenceRegistry(queue_size=10)
    notifier = NotificationFanout(notifications, presence)
    coordinator = JobStatusCoordinator(jobs, bids, notifier)
    factory = ContractFactory(contracts, conversations, bids, coordinator, notifier)
    ledger = BidLedger(bids, coordinator, factory, notifier)
    tracker = WorkTracker(contracts, notifier)
    board = MessageBoard(conversations, notifier)
    reconciler = PaymentReconciler(
        contracts,
        jobs,
        webhook_events,
        notifier,
        gateway,
        currency="usd",
        webhook_secret=WEBHOOK_SECRET,
        signature_tolerance_seconds=300,
        event_retention_days=30,
    )
    return Marketplace(
        db=db,
        jobs=jobs,
        bids=bids,
        contracts=contracts,
        conversations=conversations,
        notifications=notifications,
        webhook_events=webhook_events,
        presence=presence,
        notifier=notifier,
        coordinator=coordinator,
        factory=factory,
        ledger=ledger,
        tracker=tracker,
        reconciler=reconciler,
        board=board,
        gateway=gateway,
    )
