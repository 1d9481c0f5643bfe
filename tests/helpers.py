"""Shared test helpers for webhook signing and payload construction."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from pathlib import Path
from typing import Any

WEBHOOK_SECRET = "whsec_test_secret"


def sign_webhook_payload(
    payload: str,
    secret: str = WEBHOOK_SECRET,
    timestamp: int | None = None,
) -> str:
    """Build a Stripe-Signature header value for a raw payload."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_id: str, event_type: str, obj: dict[str, Any]) -> str:
    """Serialize a gateway event envelope."""
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    )


def intent_event(
    event_id: str,
    event_type: str,
    intent_id: str,
    contract_id: str | None,
) -> str:
    """Serialize a payment_intent.* event for a contract."""
    metadata = {"contractId": contract_id} if contract_id is not None else {}
    return make_event(
        event_id,
        event_type,
        {"id": intent_id, "object": "payment_intent", "metadata": metadata},
    )


def write_config(directory: Path, *, with_ai: bool = False) -> Path:
    """Write a complete config.yaml under ``directory`` and return its path."""
    config = f"""\
service:
  name: "marketplace"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8010
  log_level: "warning"
logging:
  level: "WARNING"
  directory: "{directory / "logs"}"
database:
  path: "{directory / "marketplace.db"}"
identity:
  base_url: "http://identity.test"
  verify_path: "/sessions/verify"
  timeout_seconds: 5
payments:
  api_base_url: "http://gateway.test"
  secret_key: null
  webhook_secret: "{WEBHOOK_SECRET}"
  currency: "usd"
  timeout_seconds: 5
  signature_tolerance_seconds: 300
  event_retention_days: 30
notifications:
  queue_size: 10
  keepalive_seconds: 15
request:
  max_body_size: 4096
"""
    if with_ai:
        config += """\
ai:
  base_url: "http://llm.test/v1"
  api_key: "sk-test"
  model_id: "test-model"
  temperature: 0.5
  max_tokens: 300
"""
    config_path = directory / "config.yaml"
    config_path.write_text(config)
    return config_path
