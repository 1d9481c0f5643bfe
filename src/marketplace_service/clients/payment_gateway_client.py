"""Payment gateway client built on the Stripe SDK."""

from __future__ import annotations

from typing import Any

import stripe

from marketplace_service.core.exceptions import ExternalServiceError
from marketplace_service.logging import get_logger


class PaymentGatewayClient:
    """
    Client for creating payment intents.

    Every create carries an idempotency key, so a retry with the same key
    returns the intent created by the first call instead of charging twice.
    The SDK's own network retries are disabled; retrying is the caller's call.
    """

    def __init__(
        self,
        api_base_url: str,
        secret_key: str,
        timeout_seconds: int,
    ) -> None:
        self._api_base_url = api_base_url
        self._http_client = stripe.HTTPXClient(timeout=timeout_seconds)
        self._stripe = stripe.StripeClient(
            secret_key,
            base_addresses={"api": api_base_url},
            http_client=self._http_client,
            max_network_retries=0,
        )

    async def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> dict[str, Any]:
        """
        Create (or re-obtain, for a repeated key) a payment intent.

        Returns:
            dict with keys: id (str), client_secret (str)

        Raises:
            ExternalServiceError: PAYMENT_GATEWAY_UNAVAILABLE (502) when the gateway is unreachable
            ExternalServiceError: PAYMENT_GATEWAY_ERROR (502) when the gateway rejects the request
        """
        logger = get_logger(__name__)

        try:
            intent = await self._stripe.v1.payment_intents.create_async(
                params={
                    "amount": amount_minor_units,
                    "currency": currency,
                    "description": description,
                    "metadata": metadata,
                    "automatic_payment_methods": {"enabled": True},
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.APIConnectionError as exc:
            logger.warning(
                "Payment gateway connection failed",
                extra={"error": str(exc), "base_url": self._api_base_url},
            )
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Cannot connect to payment gateway",
            ) from exc
        except stripe.StripeError as exc:
            logger.warning(
                "Payment gateway rejected intent",
                extra={
                    "status_code": exc.http_status,
                    "gateway_code": exc.code,
                    "gateway_message": exc.user_message,
                    "idempotency_key": idempotency_key,
                },
            )
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_ERROR",
                "Failed to create payment intent",
                details={"gateway_status": exc.http_status},
            ) from exc

        intent_id = getattr(intent, "id", None)
        client_secret = getattr(intent, "client_secret", None)
        if not isinstance(intent_id, str) or not isinstance(client_secret, str):
            raise ExternalServiceError(
                "PAYMENT_GATEWAY_ERROR",
                "Payment gateway response is missing id or client_secret",
            )

        return {"id": intent_id, "client_secret": client_secret}

    async def close(self) -> None:
        """Close the SDK's HTTP client."""
        await self._http_client.close_async()
