"""Service layer components."""

from marketplace_service.services.bid_ledger import BidLedger
from marketplace_service.services.contract_factory import ContractFactory
from marketplace_service.services.job_coordinator import JobStatusCoordinator
from marketplace_service.services.notifier import NotificationFanout
from marketplace_service.services.payment_reconciler import PaymentReconciler
from marketplace_service.services.presence import PresenceRegistry
from marketplace_service.services.proposal_writer import ProposalWriter
from marketplace_service.services.work_tracker import WorkTracker

__all__ = [
    "BidLedger",
    "ContractFactory",
    "JobStatusCoordinator",
    "NotificationFanout",
    "PaymentReconciler",
    "PresenceRegistry",
    "ProposalWriter",
    "WorkTracker",
]
