from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from marketplace_service.clients.payment_gateway_client import PaymentGatewayClient
from marketplace_service.core.exceptions import ServiceError


def _make_client(*, result: Any = None, error: Exception | None = None):
    client = PaymentGatewayClient(
        api_base_url="http://mock-gateway",
        secret_key="sk_test_123",
        timeout_seconds=5,
    )
    mock_stripe = MagicMock()
    create = AsyncMock(side_effect=error) if error is not None else AsyncMock(return_value=result)
    mock_stripe.v1.payment_intents.create_async = create
    client._stripe = mock_stripe
    return client


def _intent(values: dict[str, Any]) -> stripe.PaymentIntent:
    return stripe.PaymentIntent.construct_from(values, "sk_test_123")


async def _create(client: PaymentGatewayClient) -> dict[str, Any]:
    return await client.create_payment_intent(
        amount_minor_units=50025,
        currency="usd",
        description='Payment for "Logo"',
        metadata={"contractId": "ctr-1", "paymentAttempt": "0"},
        idempotency_key="contract-ctr-1-attempt-0",
    )


@pytest.mark.unit
async def test_create_payment_intent_passes_params_and_idempotency_key() -> None:
    client = _make_client(
        result=_intent({"id": "pi_1", "client_secret": "pi_1_secret", "amount": 50025})
    )

    result = await _create(client)

    assert result == {"id": "pi_1", "client_secret": "pi_1_secret"}
    call = client._stripe.v1.payment_intents.create_async.await_args
    assert call.kwargs["options"] == {"idempotency_key": "contract-ctr-1-attempt-0"}
    params = call.kwargs["params"]
    assert params["amount"] == 50025
    assert params["currency"] == "usd"
    assert params["metadata"] == {"contractId": "ctr-1", "paymentAttempt": "0"}
    assert params["automatic_payment_methods"] == {"enabled": True}


@pytest.mark.unit
async def test_create_payment_intent_gateway_rejection() -> None:
    client = _make_client(
        error=stripe.CardError(
            "Your card was declined.", None, "card_declined", http_status=402
        )
    )

    with pytest.raises(ServiceError) as exc_info:
        await _create(client)

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "PAYMENT_GATEWAY_ERROR"
    assert exc_info.value.details == {"gateway_status": 402}


@pytest.mark.unit
async def test_create_payment_intent_connection_failure() -> None:
    client = _make_client(error=stripe.APIConnectionError("refused"))

    with pytest.raises(ServiceError) as exc_info:
        await _create(client)

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "PAYMENT_GATEWAY_UNAVAILABLE"


@pytest.mark.unit
async def test_create_payment_intent_missing_fields() -> None:
    client = _make_client(result=_intent({"id": "pi_1"}))

    with pytest.raises(ServiceError) as exc_info:
        await _create(client)

    assert exc_info.value.error == "PAYMENT_GATEWAY_ERROR"


@pytest.mark.unit
async def test_close_releases_http_client() -> None:
    client = _make_client()
    client._http_client = MagicMock(spec=stripe.HTTPXClient)
    client._http_client.close_async = AsyncMock()

    await client.close()

    client._http_client.close_async.assert_awaited_once()
