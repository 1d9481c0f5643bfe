"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_service.clients.identity_client import IdentityClient
from marketplace_service.clients.llm_client import LLMClient
from marketplace_service.clients.payment_gateway_client import PaymentGatewayClient
from marketplace_service.config import get_settings
from marketplace_service.core.state import init_app_state
from marketplace_service.logging import get_logger, setup_logging
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
from marketplace_service.services.proposal_writer import ProposalWriter
from marketplace_service.services.webhook_event_store import WebhookEventStore
from marketplace_service.services.work_tracker import WorkTracker

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db = await Database.open(settings.database.path)
    state.db = db

    # Stores share the one connection
    job_store = JobStore(db)
    bid_store = BidStore(db)
    contract_store = ContractStore(db)
    conversation_store = ConversationStore(db)
    notification_store = NotificationStore(db)
    webhook_event_store = WebhookEventStore(db)

    presence = PresenceRegistry(queue_size=settings.notifications.queue_size)
    state.presence = presence
    notifier = NotificationFanout(store=notification_store, presence=presence)
    state.notifier = notifier

    job_coordinator = JobStatusCoordinator(jobs=job_store, bids=bid_store, notifier=notifier)
    state.job_coordinator = job_coordinator
    contract_factory = ContractFactory(
        contracts=contract_store,
        conversations=conversation_store,
        bids=bid_store,
        coordinator=job_coordinator,
        notifier=notifier,
    )
    state.contract_factory = contract_factory
    state.bid_ledger = BidLedger(
        bids=bid_store,
        coordinator=job_coordinator,
        contract_factory=contract_factory,
        notifier=notifier,
    )
    state.work_tracker = WorkTracker(contracts=contract_store, notifier=notifier)
    state.payment_reconciler = PaymentReconciler(
        contracts=contract_store,
        jobs=job_store,
        webhook_events=webhook_event_store,
        notifier=notifier,
        gateway=None,
        currency=settings.payments.currency,
        webhook_secret=settings.payments.webhook_secret,
        signature_tolerance_seconds=settings.payments.signature_tolerance_seconds,
        event_retention_days=settings.payments.event_retention_days,
    )
    state.proposal_writer = ProposalWriter()
    state.message_board = MessageBoard(conversations=conversation_store, notifier=notifier)

    # Initialize IdentityClient (HTTP client for session verification)
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_path=settings.identity.verify_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    # Gateway client only when a secret key is configured; assignment propagates
    payment_gateway: PaymentGatewayClient | None = None
    if settings.payments.secret_key:
        payment_gateway = PaymentGatewayClient(
            api_base_url=settings.payments.api_base_url,
            secret_key=settings.payments.secret_key,
            timeout_seconds=settings.payments.timeout_seconds,
        )
        state.payment_gateway = payment_gateway

    llm_client: LLMClient | None = None
    if settings.ai is not None:
        llm_client = LLMClient(settings.ai)
        state.llm_client = llm_client

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "payment_gateway_configured": payment_gateway is not None,
            "webhook_secret_configured": settings.payments.webhook_secret is not None,
            "ai_configured": llm_client is not None,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await identity_client.close()
    if payment_gateway is not None:
        await payment_gateway.close()
    if llm_client is not None:
        await llm_client.close()
    await db.close()
