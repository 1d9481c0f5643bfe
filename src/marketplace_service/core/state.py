"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from marketplace_service.clients.identity_client import IdentityClient
    from marketplace_service.clients.llm_client import LLMClient
    from marketplace_service.clients.payment_gateway_client import PaymentGatewayClient
    from marketplace_service.services.bid_ledger import BidLedger
    from marketplace_service.services.contract_factory import ContractFactory
    from marketplace_service.services.database import Database
    from marketplace_service.services.job_coordinator import JobStatusCoordinator
    from marketplace_service.services.message_board import MessageBoard
    from marketplace_service.services.notifier import NotificationFanout
    from marketplace_service.services.payment_reconciler import PaymentReconciler
    from marketplace_service.services.presence import PresenceRegistry
    from marketplace_service.services.proposal_writer import ProposalWriter
    from marketplace_service.services.work_tracker import WorkTracker


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    db: Database | None = None
    identity_client: IdentityClient | None = None
    payment_gateway: PaymentGatewayClient | None = None
    llm_client: LLMClient | None = None
    presence: PresenceRegistry | None = None
    notifier: NotificationFanout | None = None
    job_coordinator: JobStatusCoordinator | None = None
    contract_factory: ContractFactory | None = None
    bid_ledger: BidLedger | None = None
    work_tracker: WorkTracker | None = None
    payment_reconciler: PaymentReconciler | None = None
    proposal_writer: ProposalWriter | None = None
    message_board: MessageBoard | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service collaborator references in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        payment_reconciler = self.__dict__.get("payment_reconciler")
        if name == "payment_gateway" and payment_reconciler is not None:
            payment_reconciler.set_gateway(value)
        elif name == "payment_reconciler":
            payment_gateway = self.__dict__.get("payment_gateway")
            if payment_gateway is not None:
                value.set_gateway(payment_gateway)

        proposal_writer = self.__dict__.get("proposal_writer")
        if name == "llm_client" and proposal_writer is not None:
            proposal_writer.set_llm_client(value)
        elif name == "proposal_writer":
            llm_client = self.__dict__.get("llm_client")
            if llm_client is not None:
                value.set_llm_client(llm_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
