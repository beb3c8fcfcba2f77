# ============================================================================
# Evaluation Desk v1.0.0
# Broker Integration Module - Nelogica Connectivity
# ============================================================================
#
# Components:
#   - BrokerTokenSession: Token cache with single-flight renewal
#   - NelogicaApiClient: REST client for provisioning and account control
#   - NelogicaRealtimeClient: Websocket session for account telemetry
#
# ============================================================================

from app.broker.token_session import BrokerSessionToken, BrokerTokenSession
from app.broker.nelogica_client import (
    NelogicaApiClient,
    BrokerClientError,
    AuthenticationError,
    BrokerApiError,
    SubscriptionResult,
)

__all__ = [
    "BrokerSessionToken",
    "BrokerTokenSession",
    "NelogicaApiClient",
    "BrokerClientError",
    "AuthenticationError",
    "BrokerApiError",
    "SubscriptionResult",
]
