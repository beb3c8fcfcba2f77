# ============================================================================
# Evaluation Desk v1.0.0
# Broker Token Session - Single-Flight Credential Cache
# ============================================================================
#
# Reliability Level: L6 Critical
# Purpose: Hold the Nelogica bearer token and renew it on demand
#
# MANDATE:
#   - Token state is an immutable value, replaced wholesale on renewal
#   - A token expiring within the safety margin counts as invalid
#   - Concurrent callers share one in-flight login (no duplicate logins)
#   - Process memory only; nothing survives a restart
#
# ============================================================================

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


# Renew tokens that expire within five minutes
DEFAULT_SAFETY_MARGIN_SECONDS = 300


# ============================================================================
# Token Value
# ============================================================================

@dataclass(frozen=True)
class BrokerSessionToken:
    """Bearer token issued by the broker login endpoint."""
    token: str
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None, margin_seconds: int = 0) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at > now + timedelta(seconds=margin_seconds)


def parse_expiry(raw: str) -> datetime:
    """
    Parse the broker's expiresAt field into an aware UTC datetime.

    Naive timestamps are taken as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp
    """
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ============================================================================
# Session Manager
# ============================================================================

class BrokerTokenSession:
    """
    Owns the current broker token and serialises renewals.

    The login coroutine is supplied by the API client. Renewal runs as one
    shared task; callers arriving while it is outstanding await the same
    task instead of issuing their own login.

    Example Usage:
        session = BrokerTokenSession(client._perform_login)
        token = await session.ensure_valid()
    """

    def __init__(
        self,
        login_fn: Callable[[], Awaitable[BrokerSessionToken]],
        safety_margin_seconds: int = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._login_fn = login_fn
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token: Optional[BrokerSessionToken] = None
        self._inflight: Optional["asyncio.Future[BrokerSessionToken]"] = None

    @property
    def current(self) -> Optional[BrokerSessionToken]:
        """Current token value, or None before the first login."""
        return self._token

    @property
    def login_in_progress(self) -> bool:
        return self._inflight is not None

    def is_token_valid(self) -> bool:
        """True when a token exists and outlives the safety margin."""
        token = self._token
        if token is None:
            return False
        return token.is_valid(self._clock(), self.safety_margin_seconds)

    def invalidate(self) -> None:
        """Drop the cached token so the next call logs in again."""
        if self._token is not None:
            logger.info("[BRK-TOKEN] Cached token invalidated")
        self._token = None

    async def ensure_valid(self) -> BrokerSessionToken:
        """
        Return a token that is valid beyond the safety margin.

        Logs in transparently when the cached token is missing or about to
        expire.

        Raises:
            Whatever the login coroutine raises (AuthenticationError,
            BrokerApiError); every waiter of that login sees the same error.
        """
        token = self._token
        if token is not None and token.is_valid(self._clock(), self.safety_margin_seconds):
            return token
        return await self.refresh()

    async def refresh(self) -> BrokerSessionToken:
        """Force a login, joining one that is already running."""
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._run_login())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        else:
            logger.debug("[BRK-TOKEN] Login already in flight, awaiting it")
        # Cancelling one waiter must not abort the shared login
        return await asyncio.shield(task)

    async def _run_login(self) -> BrokerSessionToken:
        token = await self._login_fn()
        self._token = token
        logger.info(
            f"[BRK-TOKEN] Token renewed | expires_at={token.expires_at.isoformat()}"
        )
        return token

    def _clear_inflight(self, task: "asyncio.Future[BrokerSessionToken]") -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the outcome retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()


__all__ = [
    "DEFAULT_SAFETY_MARGIN_SECONDS",
    "BrokerSessionToken",
    "BrokerTokenSession",
    "parse_expiry",
]
