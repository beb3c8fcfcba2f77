# ============================================================================
# Evaluation Desk v1.0.0
# Nelogica API Client - Broker Provisioning Integration
# ============================================================================
#
# Reliability Level: L6 Critical
# Purpose: Authenticated calls against the Nelogica manager/commerce API
#
# MANDATE:
#   - Every authenticated call checks the token first (BrokerTokenSession)
#   - Every call is capped by a timeout; a stalled broker fails the call
#   - Every response is parsed as {isSuccess, status, message, data, ...}
#   - Failures carry the upstream message; nothing is retried or swallowed
#
# Error Codes:
#   - BRK-AUTH-001: Broker rejected the credentials
#   - BRK-API-001: Broker answered with isSuccess=false
#   - BRK-API-002: Transport failure (connection, protocol)
#   - BRK-API-003: Call exceeded the configured timeout
#   - BRK-API-004: Response body is not a broker envelope
#
# ============================================================================

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.broker.token_session import (
    DEFAULT_SAFETY_MARGIN_SECONDS,
    BrokerSessionToken,
    BrokerTokenSession,
    parse_expiry,
)
from app.observability.metrics import record_broker_call

logger = logging.getLogger(__name__)


# ============================================================================
# Error Codes
# ============================================================================

class BrokerErrorCode:
    """Broker client error codes for audit logging."""
    AUTH_REJECTED = "BRK-AUTH-001"
    API_REJECTED = "BRK-API-001"
    TRANSPORT_FAILURE = "BRK-API-002"
    TIMEOUT = "BRK-API-003"
    MALFORMED_RESPONSE = "BRK-API-004"
    PARTIAL_PROVISIONING = "BRK-API-005"


# ============================================================================
# Exceptions
# ============================================================================

class BrokerClientError(Exception):
    """Base exception for Nelogica client errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


class AuthenticationError(BrokerClientError):
    """Raised when the broker rejects the login (BRK-AUTH-001)."""

    def __init__(self, message: str):
        super().__init__(BrokerErrorCode.AUTH_REJECTED, message)


class BrokerApiError(BrokerClientError):
    """
    Raised on a non-success envelope or a transport fault.

    message holds the upstream text so it can be shown to the operator.
    """

    def __init__(
        self,
        message: str,
        error_code: str = BrokerErrorCode.API_REJECTED,
        operation: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        self.operation = operation
        self.status_code = status_code
        super().__init__(error_code, message)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class BrokerEnvelope:
    """Uniform response wrapper returned by every broker endpoint."""
    is_success: bool
    status: Optional[int]
    message: str
    data: Any = None
    notifications: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, body: Any) -> "BrokerEnvelope":
        if not isinstance(body, dict) or "isSuccess" not in body:
            raise ValueError("response is not a broker envelope")
        return cls(
            is_success=bool(body.get("isSuccess")),
            status=body.get("status"),
            message=str(body.get("message") or ""),
            data=body.get("data"),
            notifications=body.get("notifications") or {},
        )

    def describe_failure(self) -> str:
        """Upstream message plus any field notifications."""
        details = [
            f"{key}: {', '.join(str(item) for item in items)}"
            for key, items in self.notifications.items()
            if items
        ]
        message = self.message or "Broker rejected the request"
        if details:
            message = f"{message} ({'; '.join(details)})"
        return message


@dataclass
class BrokerAccount:
    """Trading account under a license."""
    account: str
    profile_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "BrokerAccount":
        return cls(
            account=str(item.get("account", "")),
            profile_id=item.get("profileId"),
            name=item.get("name"),
        )


@dataclass
class SubscriptionResult:
    """Identifiers returned by subscription creation."""
    customer_id: str
    subscription_id: str
    license_id: str
    accounts: List[BrokerAccount] = field(default_factory=list)


@dataclass
class BrokerEnvironment:
    environment_id: str
    name: str
    description: str = ""
    is_test: bool = False
    is_simulator: bool = False
    software_id: Optional[int] = None


@dataclass
class RiskProfile:
    """Broker-side risk configuration applied to an account."""
    profile_id: str
    initial_balance: Optional[float] = None
    trailing: Optional[bool] = None
    stop_out_rule: Optional[float] = None
    leverage: Optional[float] = None
    enable_loss: Optional[bool] = None
    loss_rule: Optional[float] = None
    enable_gain: Optional[bool] = None
    gain_rule: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "RiskProfile":
        return cls(
            profile_id=str(item.get("profileId", "")),
            initial_balance=item.get("initialBalance"),
            trailing=item.get("trailing"),
            stop_out_rule=item.get("stopOutRule"),
            leverage=item.get("leverage"),
            enable_loss=item.get("enableLoss"),
            loss_rule=item.get("lossRule"),
            enable_gain=item.get("enableGain"),
            gain_rule=item.get("gainRule"),
            raw=dict(item),
        )


@dataclass
class BrokerSubscription:
    subscription_id: str
    license_id: str
    customer_id: str
    created_at: Optional[str] = None
    accounts: List[BrokerAccount] = field(default_factory=list)


# ============================================================================
# Nelogica API Client
# ============================================================================

class NelogicaApiClient:
    """
    Nelogica broker API client.

    Wraps the manager/commerce REST surface with:
    - BrokerTokenSession for login and single-flight renewal
    - A per-call timeout (asyncio.wait_for)
    - Envelope parsing with typed results

    Reliability Level: L6 Critical

    Example Usage:
        async with NelogicaApiClient(url, user, password) as client:
            result = await client.create_subscription(params)
            await client.create_account(result.license_id, [{"name": ..., "profileId": ...}])
    """

    LOGIN_PATH = "api/v2/auth/login"
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self._username = username
        self._password = password
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self.session = BrokerTokenSession(
            self._perform_login,
            safety_margin_seconds=safety_margin_seconds,
        )

        logger.info(
            f"[BRK-CLI] Client initialized | base_url={self.base_url} | timeout={timeout}s"
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "NelogicaApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ========================================================================
    # Authentication
    # ========================================================================

    def is_token_valid(self) -> bool:
        return self.session.is_token_valid()

    async def login(self) -> BrokerSessionToken:
        """
        Authenticate and cache the token.

        Concurrent callers join the login already in flight. A still-valid
        token is returned without a network call.

        Raises:
            AuthenticationError: If the broker rejects the credentials
            BrokerApiError: On transport failure or timeout
        """
        return await self.session.ensure_valid()

    async def _perform_login(self) -> BrokerSessionToken:
        logger.info(f"[BRK-CLI] Logging in | username={self._username}")
        try:
            envelope = await self._send(
                "POST",
                self.LOGIN_PATH,
                operation="login",
                json={"username": self._username, "password": self._password},
                authenticated=False,
            )
        except BrokerApiError as e:
            if e.status_code in (400, 401, 403) or e.error_code == BrokerErrorCode.API_REJECTED:
                logger.error(f"[{BrokerErrorCode.AUTH_REJECTED}] Login rejected | error={e.message}")
                raise AuthenticationError(f"Authentication failed: {e.message}")
            raise

        data = envelope.data if isinstance(envelope.data, dict) else {}
        token = data.get("token")
        expires_at = data.get("expiresAt")
        if not token or not expires_at:
            raise AuthenticationError("Authentication failed: login response lacks token/expiresAt")
        try:
            expiry = parse_expiry(str(expires_at))
        except ValueError:
            raise AuthenticationError(f"Authentication failed: invalid expiresAt {expires_at!r}")
        return BrokerSessionToken(token=str(token), expires_at=expiry)

    # ========================================================================
    # Transport
    # ========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> BrokerEnvelope:
        """Authenticated call: renews the token first when needed."""
        await self.session.ensure_valid()
        try:
            envelope = await self._send(method, path, operation, json=json, params=params)
        except BrokerApiError as e:
            record_broker_call(operation, "failure")
            logger.error(
                f"[{e.error_code}] Broker call failed | operation={operation} | "
                f"path={path} | error={e.message}"
            )
            raise
        record_broker_call(operation, "success")
        return envelope

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True
    ) -> BrokerEnvelope:
        headers: Dict[str, str] = {}
        if authenticated:
            token = self.session.current
            if token is not None:
                headers["Authorization"] = f"Bearer {token.token}"

        clean_params = {k: v for k, v in (params or {}).items() if v is not None} or None

        try:
            response = await asyncio.wait_for(
                self._http.request(method, path, json=json, params=clean_params, headers=headers),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise BrokerApiError(
                f"Broker did not answer within {self.timeout}s",
                error_code=BrokerErrorCode.TIMEOUT,
                operation=operation,
            )
        except httpx.HTTPError as e:
            raise BrokerApiError(
                f"Broker request failed: {e}",
                error_code=BrokerErrorCode.TRANSPORT_FAILURE,
                operation=operation,
            )

        if authenticated and response.status_code == 401:
            self.session.invalidate()

        try:
            envelope = BrokerEnvelope.from_json(response.json())
        except ValueError:
            if response.is_error:
                raise BrokerApiError(
                    f"Broker returned HTTP {response.status_code}",
                    error_code=BrokerErrorCode.TRANSPORT_FAILURE,
                    operation=operation,
                    status_code=response.status_code,
                )
            raise BrokerApiError(
                "Broker response is not a valid envelope",
                error_code=BrokerErrorCode.MALFORMED_RESPONSE,
                operation=operation,
                status_code=response.status_code,
            )

        if not envelope.is_success:
            raise BrokerApiError(
                envelope.describe_failure(),
                operation=operation,
                status_code=response.status_code,
            )
        return envelope

    # ========================================================================
    # Subscriptions & Accounts
    # ========================================================================

    async def create_subscription(self, params: Dict[str, Any]) -> SubscriptionResult:
        """
        Create a customer subscription (and license) on the broker.

        Args:
            params: Broker payload (firstName, lastName, email, document, ...)
        """
        logger.info(f"[BRK-CLI] Creating subscription | email={params.get('email')}")
        envelope = await self._request(
            "POST", "api/v2/manager/subscriptions", "create_subscription", json=params
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        try:
            result = SubscriptionResult(
                customer_id=str(data["customerId"]),
                subscription_id=str(data["subscriptionId"]),
                license_id=str(data["licenseId"]),
                accounts=[BrokerAccount.from_json(a) for a in data.get("accounts") or []],
            )
        except KeyError as e:
            raise BrokerApiError(
                f"Subscription response lacks {e.args[0]}",
                error_code=BrokerErrorCode.MALFORMED_RESPONSE,
                operation="create_subscription",
            )
        logger.info(
            f"[BRK-CLI] Subscription created | subscription_id={result.subscription_id} | "
            f"license_id={result.license_id}"
        )
        return result

    async def create_account(
        self,
        license_id: str,
        accounts: List[Dict[str, str]]
    ) -> List[BrokerAccount]:
        """
        Create trading accounts under a license.

        Args:
            accounts: Items of {"name": ..., "profileId": ...}
        """
        logger.info(f"[BRK-CLI] Creating {len(accounts)} account(s) | license_id={license_id}")
        envelope = await self._request(
            "POST", f"api/v2/manager/{license_id}/accounts", "create_account", json=accounts
        )
        items = envelope.data if isinstance(envelope.data, list) else []
        created = [BrokerAccount.from_json(item) for item in items]
        if not created:
            raise BrokerApiError(
                "Account creation returned no accounts",
                error_code=BrokerErrorCode.MALFORMED_RESPONSE,
                operation="create_account",
            )
        return created

    async def cancel_subscription(self, subscription_id: str) -> BrokerEnvelope:
        logger.info(f"[BRK-CLI] Cancelling subscription | subscription_id={subscription_id}")
        return await self._request(
            "DELETE",
            f"api/v2/commerce/subscriptions/products/{subscription_id}",
            "cancel_subscription",
        )

    async def block_account(self, license_id: str, account: str) -> BrokerEnvelope:
        logger.info(f"[BRK-CLI] Blocking account | license_id={license_id} | account={account}")
        return await self._request(
            "PUT",
            f"api/v2/manager/licenses/{license_id}/block/accounts/{account}",
            "block_account",
        )

    async def unblock_account(self, license_id: str, account: str) -> BrokerEnvelope:
        logger.info(f"[BRK-CLI] Unblocking account | license_id={license_id} | account={account}")
        return await self._request(
            "DELETE",
            f"api/v2/manager/licenses/{license_id}/block/accounts/{account}",
            "unblock_account",
        )

    async def remove_account(self, license_id: str, account: str) -> BrokerEnvelope:
        logger.info(f"[BRK-CLI] Removing account | license_id={license_id} | account={account}")
        return await self._request(
            "DELETE",
            f"api/v2/manager/license/{license_id}/accounts/{account}",
            "remove_account",
        )

    async def set_account_risk(
        self,
        license_id: str,
        account: str,
        profile_id: str,
        account_type: int = 0
    ) -> BrokerEnvelope:
        """Apply a risk profile to an account (account_type 0: evaluation)."""
        logger.info(
            f"[BRK-CLI] Setting account risk | license_id={license_id} | "
            f"account={account} | profile_id={profile_id} | account_type={account_type}"
        )
        return await self._request(
            "POST",
            f"api/v2/manager/{license_id}/accounts/{account}",
            "set_account_risk",
            json={"profileId": profile_id, "accountType": account_type},
        )

    # ========================================================================
    # Environments & Risk Profiles
    # ========================================================================

    async def list_environments(
        self,
        page_number: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> List[BrokerEnvironment]:
        envelope = await self._request(
            "POST",
            "api/v2/commerce/environments",
            "list_environments",
            params={"pageNumber": page_number, "pageSize": page_size},
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return [
            BrokerEnvironment(
                environment_id=str(item.get("environmentId", "")),
                name=str(item.get("name", "")),
                description=str(item.get("description") or ""),
                is_test=bool(item.get("isTest", False)),
                is_simulator=bool(item.get("isSimulator", False)),
                software_id=item.get("softwareId"),
            )
            for item in data.get("environments") or []
        ]

    async def list_risk_profiles(
        self,
        environment_id: str,
        page_number: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> List[RiskProfile]:
        envelope = await self._request(
            "GET",
            f"api/v2/manager/risk/{environment_id}",
            "list_risk_profiles",
            params={"pageNumber": page_number, "pageSize": page_size},
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return [RiskProfile.from_json(item) for item in data.get("riskProfiles") or []]

    async def create_risk_profile(self, environment_id: str, params: Dict[str, Any]) -> str:
        """Create a risk profile; returns the new profileId."""
        envelope = await self._request(
            "POST", f"api/v2/manager/risk/{environment_id}", "create_risk_profile", json=params
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return str(data.get("profileId", ""))

    async def update_risk_profile(
        self,
        environment_id: str,
        profile_id: str,
        params: Dict[str, Any]
    ) -> BrokerEnvelope:
        body = dict(params)
        body["profileId"] = profile_id
        return await self._request(
            "PUT", f"api/v2/manager/risk/{environment_id}", "update_risk_profile", json=body
        )

    # ========================================================================
    # Customers
    # ========================================================================

    async def list_subscriptions(
        self,
        account: Optional[str] = None,
        customer_id: Optional[str] = None,
        page_number: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> List[BrokerSubscription]:
        envelope = await self._request(
            "GET",
            "api/v2/manager/subscriptions",
            "list_subscriptions",
            params={
                "account": account,
                "customerId": customer_id,
                "pageNumber": page_number,
                "pageSize": page_size,
            },
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return [
            BrokerSubscription(
                subscription_id=str(item.get("subscriptionId", "")),
                license_id=str(item.get("licenseId", "")),
                customer_id=str(item.get("customerId", "")),
                created_at=item.get("createdAt"),
                accounts=[BrokerAccount.from_json(a) for a in item.get("accounts") or []],
            )
            for item in data.get("subscriptions") or []
        ]

    async def update_customer(
        self,
        customer_id: str,
        first_name: str,
        last_name: str
    ) -> BrokerEnvelope:
        return await self._request(
            "PUT",
            f"api/v2/manager/customers/{customer_id}",
            "update_customer",
            json={"firstName": first_name, "lastName": last_name},
        )


__all__ = [
    "BrokerErrorCode",
    "BrokerClientError",
    "AuthenticationError",
    "BrokerApiError",
    "BrokerEnvelope",
    "BrokerAccount",
    "SubscriptionResult",
    "BrokerEnvironment",
    "RiskProfile",
    "BrokerSubscription",
    "NelogicaApiClient",
]
