"""
============================================================================
Evaluation Desk v1.0.0
Unit Tests: Nelogica Realtime Client
============================================================================

Reliability Level: L5 Standard
Input Constraints: In-process fake websocket (no network)
Side Effects: None

Tests:
- Authentication handshake (WS-001 on rejection)
- Request/response correlation by request_id
- Subscription acknowledgement vs data requests
- Server rejections (WS-002), timeouts (WS-003), not connected (WS-004)
- Event fan-out to subscriber queues, bad frames dropped
- keepAlive cadence, automatic reconnect, deliberate close and reconnect

============================================================================
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.broker.realtime_client import (
    NelogicaRealtimeClient,
    RealtimeErrorCode,
    RealtimeSessionError,
)


_CLOSED = object()


# =============================================================================
# Fake Server
# =============================================================================

def default_responder(frame: Dict[str, Any]) -> List[Any]:
    """Accept authentication and acknowledge subscriptions."""
    rid = frame.get("request_id")
    if frame["name"] == "authenticate":
        return [{"name": "authenticated", "request_id": rid, "msg": {"success": True}}]
    if frame["name"] == "subscribeMessage":
        return [{"name": "result", "request_id": rid, "msg": {"success": True}}]
    if frame["name"] == "sendMessage" and frame["msg"]["name"] == "get-margin":
        return [
            {"name": "result", "request_id": rid, "msg": {"success": True}},
            {"name": "margin", "request_id": rid, "msg": {"account": "ACC-1", "margin": 1500.0}},
        ]
    return []


class FakeWebSocket:
    """Async-iterable socket whose replies come from a responder function."""

    def __init__(self, responder: Callable[[Dict[str, Any]], List[Any]] = default_responder):
        self.responder = responder
        self.incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    def push(self, frame: Any) -> None:
        self.incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """Server-side close."""
        self.incoming.put_nowait(_CLOSED)

    async def send(self, data: str) -> None:
        frame = json.loads(data)
        self.sent.append(frame)
        for reply in self.responder(frame):
            self.push(reply)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self.incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def names(self) -> List[str]:
        return [frame["name"] for frame in self.sent]


class SocketFactory:
    """connect_factory handing out fresh FakeWebSockets."""

    def __init__(self, responder: Callable[[Dict[str, Any]], List[Any]] = default_responder):
        self.responder = responder
        self.sockets: List[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        ws = FakeWebSocket(self.responder)
        self.sockets.append(ws)
        return ws


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def make_client(factory: SocketFactory, **kwargs) -> NelogicaRealtimeClient:
    options = {
        "keepalive_seconds": 60.0,
        "reconnect_delay_seconds": 0.01,
        "request_timeout_seconds": 0.5,
    }
    options.update(kwargs)
    return NelogicaRealtimeClient("wss://realtime.test", "ws-token", connect_factory=factory, **options)


# =============================================================================
# Tests
# =============================================================================

class TestAuthentication:
    """Handshake on connect."""

    @pytest.mark.asyncio
    async def test_connect_authenticates(self):
        factory = SocketFactory()
        client = make_client(factory)

        await client.connect()
        try:
            assert client.is_connected
            first = factory.sockets[0].sent[0]
            assert first["name"] == "authenticate"
            assert first["msg"] == {"token": "ws-token"}
            assert first["request_id"]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        def reject(frame):
            return [{"name": "authenticated", "request_id": frame["request_id"],
                     "msg": {"success": False}}]

        factory = SocketFactory(reject)
        client = make_client(factory)

        with pytest.raises(RealtimeSessionError) as exc_info:
            await client.connect()

        assert exc_info.value.error_code == RealtimeErrorCode.AUTH_REJECTED
        assert not client.is_connected
        assert factory.sockets[0].closed

    @pytest.mark.asyncio
    async def test_silent_server_times_out(self):
        factory = SocketFactory(lambda frame: [])
        client = make_client(factory, request_timeout_seconds=0.05)

        with pytest.raises(RealtimeSessionError) as exc_info:
            await client.connect()

        assert exc_info.value.error_code == RealtimeErrorCode.TIMEOUT
        assert not client.is_connected


class TestRequests:
    """Correlation and acknowledgement."""

    @pytest.mark.asyncio
    async def test_data_request_waits_for_data_frame(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        try:
            frame = await client.get_margin("ACC-1")
        finally:
            await client.close()

        assert frame["name"] == "margin"
        assert frame["msg"]["margin"] == 1500.0
        request = factory.sockets[0].sent[1]
        assert request["name"] == "sendMessage"
        assert request["msg"] == {"name": "get-margin", "body": {"account": "ACC-1"}}

    @pytest.mark.asyncio
    async def test_subscription_resolves_on_ack(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        try:
            ack = await client.subscribe_balance_changed()
        finally:
            await client.close()

        assert ack["name"] == "result"
        request = factory.sockets[0].sent[1]
        assert request["name"] == "subscribeMessage"
        assert request["msg"] == {"name": "balance-changed", "body": {}}

    @pytest.mark.asyncio
    async def test_rejected_request(self):
        def responder(frame):
            if frame["name"] == "sendMessage":
                return [{"name": "result", "request_id": frame["request_id"],
                         "msg": {"success": False, "reason": "account not found"}}]
            return default_responder(frame)

        client = make_client(SocketFactory(responder))
        await client.connect()
        try:
            with pytest.raises(RealtimeSessionError) as exc_info:
                await client.get_balance("ACC-404")
        finally:
            await client.close()

        assert exc_info.value.error_code == RealtimeErrorCode.REQUEST_REJECTED
        assert "account not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unanswered_request_times_out(self):
        client = make_client(SocketFactory(), request_timeout_seconds=0.05)
        await client.connect()
        try:
            with pytest.raises(RealtimeSessionError) as exc_info:
                await client.get_risk_update("ACC-1")
        finally:
            await client.close()

        assert exc_info.value.error_code == RealtimeErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_request_when_not_connected(self):
        client = make_client(SocketFactory())

        with pytest.raises(RealtimeSessionError) as exc_info:
            await client.get_margin()

        assert exc_info.value.error_code == RealtimeErrorCode.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_trade_history_body(self):
        from datetime import datetime, timezone

        factory = SocketFactory()
        client = make_client(factory, request_timeout_seconds=0.05)
        await client.connect()
        try:
            with pytest.raises(RealtimeSessionError):
                await client.request_trade_history(
                    "ACC-1",
                    datetime(2024, 5, 1, tzinfo=timezone.utc),
                    datetime(2024, 5, 31, tzinfo=timezone.utc),
                )
        finally:
            await client.close()

        request = factory.sockets[0].sent[1]
        assert request["name"] == "requestMessage"
        assert request["msg"]["name"] == "request-trade-history"
        assert request["msg"]["body"]["date_start"].startswith("2024-05-01")


class TestEvents:
    """Fan-out to subscriber queues."""

    @pytest.mark.asyncio
    async def test_unsolicited_event_published(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        queue = client.subscribe("position-update")
        try:
            factory.sockets[0].push({"name": "position-update", "msg": {"account": "ACC-1"}})
            payload = await asyncio.wait_for(queue.get(), timeout=1.0)
        finally:
            await client.close()

        assert payload == {"account": "ACC-1"}

    @pytest.mark.asyncio
    async def test_bad_frame_dropped(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        queue = client.subscribe("balance")
        try:
            factory.sockets[0].push("{not json")
            factory.sockets[0].push({"name": "balance", "msg": {"balance": 10}})
            payload = await asyncio.wait_for(queue.get(), timeout=1.0)
            assert client.is_connected
        finally:
            await client.close()

        assert payload == {"balance": 10}

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        queue = client.subscribe("margin")
        client.unsubscribe("margin", queue)
        try:
            await client.get_margin("ACC-1")
        finally:
            await client.close()

        assert queue.empty()

    def test_unknown_event_rejected(self):
        client = make_client(SocketFactory())
        with pytest.raises(ValueError):
            client.subscribe("weather")


class TestSessionLifecycle:
    """keepAlive, reconnect and close."""

    @pytest.mark.asyncio
    async def test_keepalive_sent(self):
        factory = SocketFactory()
        client = make_client(factory, keepalive_seconds=0.01)
        await client.connect()
        try:
            await wait_until(lambda: "keepAlive" in factory.sockets[0].names())
        finally:
            await client.close()

        keepalive = [f for f in factory.sockets[0].sent if f["name"] == "keepAlive"][0]
        assert keepalive["msg"] == {}

    @pytest.mark.asyncio
    async def test_reconnects_after_server_drop(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        reconnected = client.subscribe("reconnected")
        try:
            factory.sockets[0].drop()
            event = await asyncio.wait_for(reconnected.get(), timeout=1.0)

            assert event == {"attempt": 1}
            assert len(factory.sockets) == 2
            assert client.is_connected
            assert factory.sockets[1].sent[0]["name"] == "authenticate"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_pending_request_fails_on_drop(self):
        factory = SocketFactory(lambda frame: default_responder(frame)
                                if frame["name"] == "authenticate" else [])
        client = make_client(factory, request_timeout_seconds=2.0)
        await client.connect()
        try:
            pending = asyncio.ensure_future(client.get_ip_update("ACC-1"))
            await wait_until(lambda: len(factory.sockets[0].sent) == 2)
            factory.sockets[0].drop()
            with pytest.raises(RealtimeSessionError) as exc_info:
                await pending
        finally:
            await client.close()

        assert exc_info.value.error_code == RealtimeErrorCode.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_close_does_not_reconnect(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()

        await client.close()
        await asyncio.sleep(0.05)

        assert len(factory.sockets) == 1
        assert not client.is_connected
        assert not client.reconnecting
        assert factory.sockets[0].closed

    @pytest.mark.asyncio
    async def test_reconnect_on_live_session_replaces_socket(self):
        factory = SocketFactory()
        client = make_client(factory)
        await client.connect()
        try:
            await client.connect()
            await asyncio.sleep(0.05)

            assert not client.reconnecting
            assert len(factory.sockets) == 2
            assert factory.sockets[0].closed
            assert not factory.sockets[1].closed
            assert client.is_connected
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connect_cancels_pending_reconnect(self):
        factory = SocketFactory()
        client = make_client(factory, reconnect_delay_seconds=0.2)
        await client.connect()
        try:
            factory.sockets[0].drop()
            await wait_until(lambda: client.reconnecting)

            await client.connect()
            await asyncio.sleep(0.3)

            assert not client.reconnecting
            assert len(factory.sockets) == 2
            assert client.is_connected
        finally:
            await client.close()
