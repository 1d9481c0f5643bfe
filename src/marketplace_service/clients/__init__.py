"""HTTP clients for external service communication."""

from marketplace_service.clients.identity_client import IdentityClient, Principal
from marketplace_service.clients.llm_client import LLMClient
from marketplace_service.clients.payment_gateway_client import PaymentGatewayClient

__all__ = ["IdentityClient", "LLMClient", "PaymentGatewayClient", "Principal"]
