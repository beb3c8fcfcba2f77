"""
============================================================================
Evaluation Desk v1.0.0
Nelogica Realtime Client - Account Telemetry over WebSocket
============================================================================

Reliability Level: L5 Standard (independent of provisioning)
Input Constraints: Pre-shared session token (never renewed by this client)
Side Effects: Network I/O, background asyncio tasks

SESSION:
    connect → authenticate frame {name, request_id, msg:{token}}
            → "authenticated" frame with msg.success
    keepAlive frame every 55s (server drops idle sockets at 60s)
    unexpected close → one supervised reconnect task, fixed 5s backoff,
                       repeated until it succeeds or close() is called

REQUESTS:
    sendMessage:      get-margin, get-balance, get-blocking-update,
                      get-ip-update, get-risk-update, get-position-update
    subscribeMessage: margin-changed, balance-changed, blocking-changed,
                      ip-changed, risk-changed, position-changed
    requestMessage:   request-trade-history

    A "result" frame with success=false fails the request. success=true
    completes subscriptions; data requests stay pending for their data
    frame.

EVENTS (published to subscriber queues):
    margin, balance, blocking-update, ip-update, risk-update,
    position-update, balance-operation-result, trade-history-result,
    reconnected

ERROR CODES:
    - WS-001: Authentication rejected
    - WS-002: Request rejected by the server
    - WS-003: Request or connect timed out
    - WS-004: Not connected / connection lost
    - WS-005: Unparseable frame (logged, dropped)

============================================================================
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

KEEPALIVE_INTERVAL_SECONDS = 55.0
RECONNECT_DELAY_SECONDS = 5.0
REQUEST_TIMEOUT_SECONDS = 30.0

EVENT_NAMES = (
    "margin",
    "balance",
    "blocking-update",
    "ip-update",
    "risk-update",
    "position-update",
    "balance-operation-result",
    "trade-history-result",
)

RECONNECTED_EVENT = "reconnected"


# =============================================================================
# Error Codes
# =============================================================================

class RealtimeErrorCode:
    AUTH_REJECTED = "WS-001"
    REQUEST_REJECTED = "WS-002"
    TIMEOUT = "WS-003"
    NOT_CONNECTED = "WS-004"
    INVALID_FRAME = "WS-005"


class RealtimeSessionError(Exception):
    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


@dataclass
class _PendingRequest:
    future: "asyncio.Future[Dict[str, Any]]"
    ack_only: bool


def _new_request_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Realtime Client
# =============================================================================

class NelogicaRealtimeClient:
    """
    Persistent websocket session to the broker.

    Example Usage:
        client = NelogicaRealtimeClient(url, token)
        await client.connect()
        margins = client.subscribe("margin")
        await client.subscribe_margin_changed()
        update = await margins.get()
        await client.close()
    """

    def __init__(
        self,
        url: str,
        token: str,
        keepalive_seconds: float = KEEPALIVE_INTERVAL_SECONDS,
        reconnect_delay_seconds: float = RECONNECT_DELAY_SECONDS,
        request_timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        connect_factory: Optional[Callable[[str], Awaitable[Any]]] = None
    ):
        self.url = url
        self._token = token
        self.keepalive_seconds = keepalive_seconds
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self._connect_factory = connect_factory or websockets.connect

        self._ws = None
        self._reader_task = None  # type: Optional[asyncio.Task]
        self._keepalive_task = None  # type: Optional[asyncio.Task]
        self._reconnect_task = None  # type: Optional[asyncio.Task]
        self._pending = {}  # type: Dict[str, _PendingRequest]
        self._subscribers = {}  # type: Dict[str, List[asyncio.Queue]]
        self._closing = False
        self.authenticated = False

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self.authenticated

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """
        Open and authenticate the session.

        Raises:
            RealtimeSessionError: WS-001 if the token is rejected, WS-003 on timeout
            OSError / WebSocketException: If the socket cannot be opened
        """
        await _cancel(self._reconnect_task)
        self._reconnect_task = None
        if self._ws is not None:
            await self._teardown()
        self._closing = False
        await self._open()

    async def _open(self) -> None:
        logger.info(f"[WS-CLI] Connecting | url={self.url}")
        try:
            ws = await asyncio.wait_for(
                self._connect_factory(self.url), timeout=self.request_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise RealtimeSessionError(RealtimeErrorCode.TIMEOUT, "Connect timed out")

        self._ws = ws
        self._reader_task = asyncio.ensure_future(self._read_loop(ws))
        try:
            await self._authenticate()
            if self._ws is not ws:
                raise RealtimeSessionError(
                    RealtimeErrorCode.NOT_CONNECTED, "Connection closed during authentication"
                )
        except BaseException:
            await self._teardown()
            raise

        self.authenticated = True
        self._keepalive_task = asyncio.ensure_future(self._keepalive_loop())
        logger.info(f"[WS-CLI] Session authenticated | url={self.url}")

    async def _authenticate(self) -> None:
        frame = await self._exchange("authenticate", {"token": self._token}, ack_only=False)
        msg = frame.get("msg") or {}
        if frame.get("name") != "authenticated" or not msg.get("success"):
            logger.error(f"[{RealtimeErrorCode.AUTH_REJECTED}] Websocket authentication rejected")
            raise RealtimeSessionError(
                RealtimeErrorCode.AUTH_REJECTED, "Websocket authentication rejected"
            )

    async def close(self) -> None:
        """Deliberate close: stops keepalive, reconnect and reader tasks."""
        self._closing = True
        await _cancel(self._reconnect_task)
        self._reconnect_task = None
        await self._teardown()
        logger.info(f"[WS-CLI] Session closed | url={self.url}")

    async def _teardown(self) -> None:
        ws = self._ws
        # Detach first so the reader exit is not taken for a lost connection
        self._mark_disconnected(ws)
        await _cancel(self._keepalive_task)
        self._keepalive_task = None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"[WS-CLI] Close raised | error={e}")
        await _cancel(self._reader_task)
        self._reader_task = None

    def _mark_disconnected(self, ws: Any) -> bool:
        """Forget a dead socket; returns True if it was the live one."""
        if ws is None or ws is not self._ws:
            return False
        self._ws = None
        was_authenticated = self.authenticated
        self.authenticated = False
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            self._keepalive_task = None
        error = RealtimeSessionError(RealtimeErrorCode.NOT_CONNECTED, "Connection lost")
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(error)
        return was_authenticated

    def _on_connection_lost(self, ws: Any) -> None:
        was_live = self._mark_disconnected(ws)
        if was_live and not self._closing:
            logger.warning(
                f"[{RealtimeErrorCode.NOT_CONNECTED}] Connection lost, reconnecting in "
                f"{self.reconnect_delay_seconds}s | url={self.url}"
            )
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnecting:
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closing:
            await asyncio.sleep(self.reconnect_delay_seconds)
            if self._closing:
                return
            attempt += 1
            try:
                await self._open()
            except (OSError, WebSocketException, RealtimeSessionError) as e:
                logger.warning(
                    f"[WS-CLI] Reconnect attempt failed | attempt={attempt} | error={e}"
                )
                continue
            self._reconnect_task = None
            logger.info(f"[WS-CLI] Reconnected | attempt={attempt}")
            self._publish(RECONNECTED_EVENT, {"attempt": attempt})
            return

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_seconds)
            try:
                await self._send_frame(
                    {"name": "keepAlive", "request_id": _new_request_id(), "msg": {}}
                )
            except (RealtimeSessionError, ConnectionClosed) as e:
                logger.debug(f"[WS-CLI] keepAlive not sent | error={e}")
                return

    # -------------------------------------------------------------------------
    # Frame I/O
    # -------------------------------------------------------------------------

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning(
                        f"[{RealtimeErrorCode.INVALID_FRAME}] Unparseable frame dropped | "
                        f"size={len(raw) if raw else 0}"
                    )
                    continue
                if isinstance(frame, dict):
                    self._dispatch(frame)
        except ConnectionClosed as e:
            logger.warning(f"[WS-CLI] Connection closed by server | error={e}")
        finally:
            self._on_connection_lost(ws)

    def _dispatch(self, frame: Dict[str, Any]) -> None:
        name = frame.get("name")
        request_id = frame.get("request_id")
        pending = self._pending.get(request_id) if request_id else None

        if pending is not None and not pending.future.done():
            if name == "result":
                msg = frame.get("msg") or {}
                if not msg.get("success"):
                    reason = msg.get("reason") or "unknown reason"
                    pending.future.set_exception(
                        RealtimeSessionError(
                            RealtimeErrorCode.REQUEST_REJECTED, f"Request rejected: {reason}"
                        )
                    )
                elif pending.ack_only:
                    pending.future.set_result(frame)
                # Accepted data request: its data frame follows
            else:
                pending.future.set_result(frame)

        if name in EVENT_NAMES:
            self._publish(name, frame.get("msg"))

    async def _send_frame(self, frame: Dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise RealtimeSessionError(RealtimeErrorCode.NOT_CONNECTED, "Websocket is not connected")
        await ws.send(json.dumps(frame))

    async def _exchange(
        self,
        frame_name: str,
        msg: Dict[str, Any],
        ack_only: bool
    ) -> Dict[str, Any]:
        request_id = _new_request_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingRequest(future=future, ack_only=ack_only)
        try:
            await self._send_frame({"name": frame_name, "request_id": request_id, "msg": msg})
            return await asyncio.wait_for(future, timeout=self.request_timeout_seconds)
        except asyncio.TimeoutError:
            raise RealtimeSessionError(
                RealtimeErrorCode.TIMEOUT,
                f"No answer to {frame_name} within {self.request_timeout_seconds}s",
            )
        finally:
            self._pending.pop(request_id, None)

    async def _request(
        self,
        frame_name: str,
        message_name: str,
        body: Dict[str, Any],
        ack_only: bool = False
    ) -> Dict[str, Any]:
        if not self.is_connected:
            raise RealtimeSessionError(
                RealtimeErrorCode.NOT_CONNECTED, "Websocket is not connected or authenticated"
            )
        return await self._exchange(
            frame_name, {"name": message_name, "body": body}, ack_only=ack_only
        )

    # -------------------------------------------------------------------------
    # Event channels
    # -------------------------------------------------------------------------

    def subscribe(self, event: str, maxsize: int = 0) -> "asyncio.Queue[Any]":
        """Register a queue that receives the msg payload of every `event` frame."""
        if event not in EVENT_NAMES and event != RECONNECTED_EVENT:
            raise ValueError(f"Unknown realtime event: {event!r}")
        queue = asyncio.Queue(maxsize=maxsize)  # type: asyncio.Queue
        self._subscribers.setdefault(event, []).append(queue)
        return queue

    def unsubscribe(self, event: str, queue: "asyncio.Queue[Any]") -> None:
        queues = self._subscribers.get(event, [])
        if queue in queues:
            queues.remove(queue)

    def _publish(self, event: str, payload: Any) -> None:
        for queue in list(self._subscribers.get(event, [])):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(f"[WS-CLI] Subscriber queue full, event dropped | event={event}")

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def get_margin(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-margin", {"account": account})

    async def get_balance(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-balance", {"account": account})

    async def get_blocking_update(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-blocking-update", {"account": account})

    async def get_ip_update(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-ip-update", {"account": account})

    async def get_risk_update(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-risk-update", {"account": account})

    async def get_position_update(self, account: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("sendMessage", "get-position-update", {"account": account})

    async def subscribe_margin_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "margin-changed", {}, ack_only=True)

    async def subscribe_balance_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "balance-changed", {}, ack_only=True)

    async def subscribe_blocking_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "blocking-changed", {}, ack_only=True)

    async def subscribe_ip_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "ip-changed", {}, ack_only=True)

    async def subscribe_risk_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "risk-changed", {}, ack_only=True)

    async def subscribe_position_changed(self) -> Dict[str, Any]:
        return await self._request("subscribeMessage", "position-changed", {}, ack_only=True)

    async def request_trade_history(
        self,
        account: str,
        date_start: datetime,
        date_end: datetime
    ) -> Dict[str, Any]:
        return await self._request(
            "requestMessage",
            "request-trade-history",
            {
                "account": account,
                "date_start": date_start.isoformat(),
                "date_end": date_end.isoformat(),
            },
        )


async def _cancel(task: Optional["asyncio.Task[Any]"]) -> None:
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


__all__ = [
    "RealtimeErrorCode",
    "RealtimeSessionError",
    "NelogicaRealtimeClient",
    "EVENT_NAMES",
    "RECONNECTED_EVENT",
]
