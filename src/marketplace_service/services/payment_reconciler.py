"""Payment intents and reconciliation of gateway webhook events."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import stripe

from marketplace_service.core.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    SignatureVerificationError,
    ValidationError,
)
from marketplace_service.logging import get_logger
from marketplace_service.services.clock import days_ago_iso, now_iso

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from marketplace_service.clients.identity_client import Principal
    from marketplace_service.clients.payment_gateway_client import PaymentGatewayClient
    from marketplace_service.services.contract_store import ContractStore
    from marketplace_service.services.job_store import JobStore
    from marketplace_service.services.notifier import NotificationFanout
    from marketplace_service.services.webhook_event_store import WebhookEventStore

HISTORY_PAYMENT_STATUSES = ("paid", "pending", "failed")


def idempotency_key_for(contract: dict[str, Any]) -> str:
    """Gateway idempotency key for the contract's current payment attempt."""
    return f"contract-{contract['contract_id']}-attempt-{contract['payment_attempt']}"


class PaymentReconciler:
    """
    Requests payment intents and folds gateway events into contract payment state.

    ``payment_status`` moves pending -> paid or pending -> failed, and then
    paid -> refunded. Every move is a compare-and-set on the current value,
    so a duplicate delivery racing the first one mutates at most once.
    Processed event ids are recorded after successful handling and evicted
    once older than the retention window.
    """

    def __init__(
        self,
        contracts: ContractStore,
        jobs: JobStore,
        webhook_events: WebhookEventStore,
        notifier: NotificationFanout,
        gateway: PaymentGatewayClient | None,
        *,
        currency: str,
        webhook_secret: str | None,
        signature_tolerance_seconds: int,
        event_retention_days: int,
    ) -> None:
        self._contracts = contracts
        self._jobs = jobs
        self._webhook_events = webhook_events
        self._notifier = notifier
        self._gateway = gateway
        self._currency = currency
        self._webhook_secret = webhook_secret
        self._signature_tolerance_seconds = signature_tolerance_seconds
        self._event_retention_days = event_retention_days
        self._logger = get_logger(__name__)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "checkout.session.completed": self._handle_checkout_completed,
            "charge.refunded": self._handle_charge_refunded,
        }

    def set_gateway(self, gateway: PaymentGatewayClient) -> None:
        """Replace the payment gateway client."""
        self._gateway = gateway

    async def _job_title(self, job_id: str) -> str:
        job = await self._jobs.get_job(job_id)
        return str(job["title"]) if job is not None else "your job"

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    async def create_payment_intent(self, contract_id: str, actor_id: str) -> dict[str, Any]:
        """
        Create the gateway payment intent for a contract. Client only.

        The gateway call carries an idempotency key derived from the
        contract's payment attempt, so retrying after the intent id failed
        to persist re-obtains the same intent. A failed payment is reopened
        as a new attempt.

        Error precedence:
        1. CONTRACT_NOT_FOUND
        2. FORBIDDEN - actor is not the client
        3. INVALID_STATUS - already paid or refunded (no gateway call)
        4. PAYMENT_GATEWAY_NOT_CONFIGURED (503)
        5. PAYMENT_GATEWAY_UNAVAILABLE / PAYMENT_GATEWAY_ERROR (502)
        6. PAYMENT_RECORD_FAILED (503) - intent created but not persisted
        """
        contract = await self._contracts.get_contract(contract_id)
        if contract is None:
            raise NotFoundError("CONTRACT_NOT_FOUND", "Contract not found")
        if contract["client_id"] != actor_id:
            raise AuthorizationError("Only the client can initiate payment")
        if contract["payment_status"] == "paid":
            raise InvalidStateError("Contract already paid")
        if contract["payment_status"] == "refunded":
            raise InvalidStateError("Contract payment was refunded")
        if self._gateway is None:
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_NOT_CONFIGURED",
                "Payment gateway is not configured",
                status_code=503,
            )

        if contract["payment_status"] == "failed":
            reopened = await self._contracts.update_contract(
                contract_id,
                {
                    "payment_status": "pending",
                    "payment_attempt": contract["payment_attempt"] + 1,
                    "payment_intent_id": None,
                    "updated_at": now_iso(),
                },
                expected_payment_status="failed",
            )
            if reopened == 0:
                raise InvalidStateError("Contract payment status changed concurrently")
            refreshed = await self._contracts.get_contract(contract_id)
            if refreshed is None:
                msg = f"Contract {contract_id} not found after update"
                raise RuntimeError(msg)
            contract = refreshed
            self._logger.info(
                "Failed payment reopened",
                extra={"contract_id": contract_id, "attempt": contract["payment_attempt"]},
            )

        idempotency_key = idempotency_key_for(contract)
        title = await self._job_title(contract["job_id"])
        intent = await self._gateway.create_payment_intent(
            amount_minor_units=round(contract["amount"] * 100),
            currency=self._currency,
            description=f'Payment for "{title}"',
            metadata={
                "contractId": contract_id,
                "jobId": contract["job_id"],
                "freelancerId": contract["freelancer_id"],
                "paymentAttempt": str(contract["payment_attempt"]),
            },
            idempotency_key=idempotency_key,
        )

        try:
            persisted = await self._contracts.update_contract(
                contract_id,
                {"payment_intent_id": intent["id"], "updated_at": now_iso()},
                expected_payment_status="pending",
            )
        except Exception as exc:
            self._logger.exception(
                "Payment intent created but not persisted",
                extra={"contract_id": contract_id, "payment_intent_id": intent["id"]},
            )
            raise ServiceError(
                "PAYMENT_RECORD_FAILED",
                "Payment intent was created but could not be recorded; retry the request",
                503,
                {"payment_intent_id": intent["id"]},
            ) from exc
        if persisted == 0:
            self._logger.warning(
                "Contract left pending before intent was recorded",
                extra={"contract_id": contract_id, "payment_intent_id": intent["id"]},
            )

        self._logger.info(
            "Payment intent created",
            extra={
                "contract_id": contract_id,
                "payment_intent_id": intent["id"],
                "idempotency_key": idempotency_key,
            },
        )
        return {
            "client_secret": intent["client_secret"],
            "payment_intent_id": intent["id"],
            "amount": contract["amount"],
            "currency": self._currency,
        }

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def _verify_and_parse(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        if self._webhook_secret is None:
            raise ExternalServiceError(
                "WEBHOOK_NOT_CONFIGURED",
                "Webhook secret is not configured",
                status_code=503,
            )
        if not signature_header:
            raise SignatureVerificationError("Missing Stripe-Signature header")

        try:
            payload_text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = "Webhook payload is not valid UTF-8"
            raise ValidationError(msg, error="INVALID_JSON") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload_text,
                signature_header,
                self._webhook_secret,
                self._signature_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            self._logger.warning("Webhook signature verification failed", extra={"error": str(exc)})
            raise SignatureVerificationError("Webhook signature verification failed") from exc

        try:
            event = json.loads(payload_text)
        except json.JSONDecodeError as exc:
            msg = "Webhook payload is not valid JSON"
            raise ValidationError(msg, error="INVALID_JSON") from exc

        if (
            not isinstance(event, dict)
            or not isinstance(event.get("id"), str)
            or not isinstance(event.get("type"), str)
            or not isinstance(event.get("data"), dict)
            or not isinstance(event["data"].get("object"), dict)
        ):
            raise ValidationError("Webhook event must carry id, type and data.object")
        return event

    async def handle_webhook_event(
        self,
        payload: bytes,
        signature_header: str | None,
    ) -> dict[str, Any]:
        """
        Verify, de-duplicate and apply one gateway event.

        An event id already recorded is acknowledged without processing. A
        handler failure propagates and leaves the id unrecorded so the
        gateway's redelivery is processed again.
        """
        event = self._verify_and_parse(payload, signature_header)
        event_id: str = event["id"]
        event_type: str = event["type"]

        if await self._webhook_events.is_processed(event_id):
            self._logger.info(
                "Webhook event already processed",
                extra={"event_id": event_id, "event_type": event_type},
            )
            return {"received": True, "duplicate": True}

        handler = self._handlers.get(event_type)
        if handler is None:
            self._logger.info(
                "Unhandled webhook event type",
                extra={"event_id": event_id, "event_type": event_type},
            )
        else:
            await handler(event["data"]["object"])

        await self._webhook_events.mark_processed(event_id, event_type, now_iso())
        purged = await self._webhook_events.purge_older_than(
            days_ago_iso(self._event_retention_days)
        )
        self._logger.info(
            "Webhook event processed",
            extra={"event_id": event_id, "event_type": event_type, "purged": purged},
        )
        return {"received": True, "duplicate": False}

    async def _locate_contract(
        self,
        obj: dict[str, Any],
        payment_intent_id: str | None,
    ) -> dict[str, Any] | None:
        metadata = obj.get("metadata") or {}
        contract_id = metadata.get("contractId") if isinstance(metadata, dict) else None
        if isinstance(contract_id, str):
            contract = await self._contracts.get_contract(contract_id)
            if contract is not None:
                return contract
        if payment_intent_id:
            return await self._contracts.get_by_payment_intent(payment_intent_id)
        return None

    async def _handle_payment_succeeded(self, intent: dict[str, Any]) -> None:
        intent_id = intent.get("id")
        contract = await self._locate_contract(intent, intent_id)
        if contract is None:
            self._logger.warning("No contract for succeeded intent", extra={"intent_id": intent_id})
            return

        paid_at = now_iso()
        updates: dict[str, Any] = {
            "payment_status": "paid",
            "paid_at": paid_at,
            "updated_at": paid_at,
        }
        if contract["payment_intent_id"] is None and intent_id:
            updates["payment_intent_id"] = intent_id
        current = await self._move_payment_status(contract, updates, expected="pending")
        # A refund implies the payment landed first.
        if current["payment_status"] not in ("paid", "refunded"):
            if current["payment_status"] == "failed":
                self._logger.error(
                    "Payment succeeded after it was recorded as failed",
                    extra={"contract_id": contract["contract_id"], "intent_id": intent_id},
                )
                return
            self._log_unapplied(contract["contract_id"], "payment_intent.succeeded", intent_id)
            return

        title = await self._job_title(contract["job_id"])
        await self._notifier.notify(
            contract["freelancer_id"],
            "payment",
            "Payment Received",
            f'Payment of ${contract["amount"]:.2f} received for "{title}"',
            data={"contract_id": contract["contract_id"], "amount": contract["amount"]},
            action_url=f"/contract/{contract['job_id']}",
            dedupe_key=f"payment_succeeded:{contract['contract_id']}",
        )

    async def _handle_payment_failed(self, intent: dict[str, Any]) -> None:
        intent_id = intent.get("id")
        contract = await self._locate_contract(intent, intent_id)
        if contract is None:
            self._logger.warning("No contract for failed intent", extra={"intent_id": intent_id})
            return
        metadata = intent.get("metadata") or {}
        attempt = metadata.get("paymentAttempt") if isinstance(metadata, dict) else None
        current_intent = contract["payment_intent_id"]
        if (attempt is not None and attempt != str(contract["payment_attempt"])) or (
            current_intent is not None and intent_id and current_intent != intent_id
        ):
            self._logger.info(
                "Ignoring failure of a superseded payment intent",
                extra={"contract_id": contract["contract_id"], "intent_id": intent_id},
            )
            return

        current = await self._move_payment_status(
            contract,
            {"payment_status": "failed", "updated_at": now_iso()},
            expected="pending",
        )
        if (
            current["payment_status"] != "failed"
            or current["payment_attempt"] != contract["payment_attempt"]
        ):
            self._log_unapplied(contract["contract_id"], "payment_intent.payment_failed", intent_id)
            return

        title = await self._job_title(contract["job_id"])
        await self._notifier.notify(
            contract["client_id"],
            "payment",
            "Payment Failed",
            f'Payment failed for "{title}". Please try again.',
            data={"contract_id": contract["contract_id"], "amount": contract["amount"]},
            action_url=f"/contract/{contract['job_id']}",
            dedupe_key=(
                f"payment_failed:{contract['contract_id']}:attempt-{contract['payment_attempt']}"
            ),
        )

    async def _handle_checkout_completed(self, session: dict[str, Any]) -> None:
        payment_intent_id = session.get("payment_intent")
        contract = await self._locate_contract(
            session, payment_intent_id if isinstance(payment_intent_id, str) else None
        )
        if contract is None:
            self._logger.warning(
                "No contract for completed checkout session",
                extra={"session_id": session.get("id")},
            )
            return

        paid_at = now_iso()
        updated = await self._contracts.update_contract(
            contract["contract_id"],
            {
                "payment_status": "paid",
                "checkout_session_id": session.get("id"),
                "paid_at": paid_at,
                "updated_at": paid_at,
            },
            expected_payment_status="pending",
        )
        if updated == 0:
            self._log_unapplied(
                contract["contract_id"], "checkout.session.completed", session.get("id")
            )

    async def _handle_charge_refunded(self, charge: dict[str, Any]) -> None:
        payment_intent_id = charge.get("payment_intent")
        contract = await self._locate_contract(
            charge, payment_intent_id if isinstance(payment_intent_id, str) else None
        )
        if contract is None:
            self._logger.warning(
                "No contract for refunded charge", extra={"charge_id": charge.get("id")}
            )
            return

        current = await self._move_payment_status(
            contract,
            {"payment_status": "refunded", "updated_at": now_iso()},
            expected="paid",
        )
        if current["payment_status"] != "refunded":
            self._log_unapplied(contract["contract_id"], "charge.refunded", charge.get("id"))
            return

        title = await self._job_title(contract["job_id"])
        await self._notifier.notify(
            contract["client_id"],
            "payment",
            "Payment Refunded",
            f'Payment of ${contract["amount"]:.2f} for "{title}" has been refunded',
            data={"contract_id": contract["contract_id"], "amount": contract["amount"]},
            action_url=f"/contract/{contract['job_id']}",
            dedupe_key=f"payment_refunded:{contract['contract_id']}",
        )

    async def _move_payment_status(
        self,
        contract: dict[str, Any],
        updates: dict[str, Any],
        *,
        expected: str,
    ) -> dict[str, Any]:
        """
        Compare-and-set the contract's payment status and return its state afterwards.

        When the move does not land, the stored row is returned as is. A
        caller that finds the target status already in place (a redelivery
        after a partial failure) still emits its notification; the dedupe
        key keeps that to one.
        """
        contract_id = contract["contract_id"]
        updated = await self._contracts.update_contract(
            contract_id, updates, expected_payment_status=expected
        )
        if updated == 1:
            return {**contract, **updates}

        current = await self._contracts.get_contract(contract_id)
        if current is None:
            msg = f"Contract {contract_id} disappeared during a payment update"
            raise RuntimeError(msg)
        return current

    def _log_unapplied(self, contract_id: str, event_type: str, object_id: object) -> None:
        """Log an event that found the contract in a state it cannot move from."""
        self._logger.info(
            "Webhook event did not change payment status",
            extra={"contract_id": contract_id, "event_type": event_type, "object_id": object_id},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def payment_history(
        self,
        principal: Principal,
        page: int,
        limit: int,
    ) -> dict[str, Any]:
        """List the caller's contracts with a paid, pending or failed payment, newest first."""
        offset = (page - 1) * limit
        contracts = await self._contracts.list_payment_history(
            principal.user_id, HISTORY_PAYMENT_STATUSES, limit, offset
        )
        total = await self._contracts.count_payment_history(
            principal.user_id, HISTORY_PAYMENT_STATUSES
        )
        payments = [
            {
                "contract_id": contract["contract_id"],
                "job_id": contract["job_id"],
                "client_id": contract["client_id"],
                "freelancer_id": contract["freelancer_id"],
                "amount": contract["amount"],
                "payment_status": contract["payment_status"],
                "paid_at": contract["paid_at"],
                "updated_at": contract["updated_at"],
            }
            for contract in contracts
        ]
        return {
            "payments": payments,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def payment_stats(self, principal: Principal) -> dict[str, Any]:
        """
        Payment figures from the caller's side.

        Clients get the amount paid and the number of contracts still
        awaiting payment. Everyone else gets earned and pending amounts.
        """
        if principal.is_client:
            return {
                "role": "client",
                "total_paid": await self._contracts.sum_amount(
                    "client_id", principal.user_id, "paid"
                ),
                "pending_payments": await self._contracts.count_by_payment_status(
                    "client_id", principal.user_id, "pending"
                ),
            }
        return {
            "role": "freelancer",
            "total_earned": await self._contracts.sum_amount(
                "freelancer_id", principal.user_id, "paid"
            ),
            "pending_earnings": await self._contracts.sum_amount(
                "freelancer_id", principal.user_id, "pending"
            ),
        }
