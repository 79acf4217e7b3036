"""Tests for the SocketCluster-style signaling transport."""

import asyncio

import pytest

from conftest import FakeWebSocket
from presence.core.config import PresenceConfig
from presence.core.exceptions import TransportError
from presence.signaling.transport import SignalingTransport


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


def make_transport(ws, config=None):
    connects = []

    async def connector(url, **kwargs):
        connects.append((url, kwargs))
        return ws

    transport = SignalingTransport(config or PresenceConfig(from_env=False, ack_timeout=1.0), connector=connector)
    transport.connects = connects
    return transport


def record_listeners(transport):
    events = []
    transport.set_basic_listener(
        on_connect=lambda t: events.append("connect"),
        on_connect_error=lambda t, error: events.append(("connect_error", type(error).__name__)),
        on_disconnect=lambda t, error: events.append("disconnect")
    )
    transport.set_authentication_listener(
        on_set_authentication=lambda t, token: events.append(("token", token)),
        on_authentication=lambda t, ok: events.append(("authentication", ok))
    )
    return events


def test_connect_performs_handshake_and_notifies():
    async def scenario():
        ws = FakeWebSocket(authenticated=False)
        transport = make_transport(ws)
        events = record_listeners(transport)

        await transport.connect()

        assert transport.connected is True
        assert transport.socket_id == "socket-1"
        assert ws.sent_frames()[0]["event"] == "#handshake"
        # Handshake completion unlocks the session even without a token
        assert events == ["connect", ("authentication", False)]
        assert transport.connects[0][0] == "ws://localhost:8000/socketcluster/"

        await transport.disconnect()

    asyncio.run(scenario())


def test_connect_and_disconnect_are_idempotent():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        events = record_listeners(transport)

        await transport.connect()
        await transport.connect()
        assert len(transport.connects) == 1

        await transport.disconnect()
        await transport.disconnect()

        assert transport.connected is False
        assert events.count("disconnect") == 1
        assert ws.closed is True

    asyncio.run(scenario())


def test_connector_failure_raises_transport_error():
    async def scenario():
        async def refusing(url, **kwargs):
            raise ConnectionRefusedError("nobody home")

        transport = SignalingTransport(PresenceConfig(from_env=False), connector=refusing)
        events = record_listeners(transport)

        with pytest.raises(TransportError):
            await transport.connect()

        assert events == [("connect_error", "TransportError")]
        assert transport.connected is False

    asyncio.run(scenario())


def test_emit_ack_returns_error_and_response():
    async def scenario():
        ws = FakeWebSocket(replies={
            "signal": {"data": {"offer": {"sdp": "v=0", "type": "offer"}}},
            "broken": {"error": {"message": "nope"}},
        })
        transport = make_transport(ws)
        await transport.connect()

        assert await transport.emit_ack("signal", {"channelId": "ALPHA"}) == (
            None, {"offer": {"sdp": "v=0", "type": "offer"}})
        assert await transport.emit_ack("broken", {}) == ({"message": "nope"}, None)

        frame = ws.sent_frames()[1]
        assert frame["event"] == "signal"
        assert frame["data"] == {"channelId": "ALPHA"}
        assert isinstance(frame["cid"], int)

        await transport.disconnect()

    asyncio.run(scenario())


def test_emit_ack_times_out():
    async def scenario():
        transport = make_transport(FakeWebSocket(), PresenceConfig(from_env=False, ack_timeout=0.05))
        await transport.connect()

        with pytest.raises(TransportError):
            await transport.emit_ack("signal", {"channelId": "ALPHA"})
        assert transport.get_status()["pending_acks"] == 0

        await transport.disconnect()

    asyncio.run(scenario())


def test_connection_loss_fails_pending_ack():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        events = record_listeners(transport)
        await transport.connect()

        pending = asyncio.create_task(transport.emit_ack("signal", {"channelId": "ALPHA"}))
        await settle()
        ws.incoming.put_nowait(None)

        with pytest.raises(TransportError):
            await pending
        assert transport.connected is False
        assert events[-1] == "disconnect"

    asyncio.run(scenario())


def test_emit_without_socket_raises():
    async def scenario():
        transport = make_transport(FakeWebSocket())

        with pytest.raises(TransportError):
            await transport.emit_ack("signal", {})
        with pytest.raises(TransportError):
            await transport.publish("answer:ALPHA", {})

    asyncio.run(scenario())


def test_ping_is_answered_with_pong():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        await transport.connect()

        ws.push("#1")
        await settle()

        assert "#2" in ws.sent
        await transport.disconnect()

    asyncio.run(scenario())


def test_published_messages_dispatched_by_prefix():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        received = []
        transport.on_channel("icecandidate", lambda channel, data: received.append((channel, data)))
        await transport.connect()

        ws.push({"event": "#publish", "data": {"channel": "icecandidate:ALPHA", "data": {"candidate": 1}}})
        ws.push({"event": "#publish", "data": {"channel": "answer:ALPHA", "data": {}}})
        await settle()

        assert received == [("icecandidate:ALPHA", {"candidate": 1})]
        await transport.disconnect()

    asyncio.run(scenario())


def test_subscriptions_are_idempotent_and_replayed():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        await transport.subscribe("icecandidate:ALPHA")
        await transport.connect()

        await transport.subscribe("icecandidate:ALPHA")
        await transport.unsubscribe("icecandidate:ALPHA")
        await transport.unsubscribe("icecandidate:ALPHA")

        events = [frame["event"] for frame in ws.sent_frames()]
        assert events == ["#handshake", "#subscribe", "#unsubscribe"]
        assert transport.subscriptions == set()
        await transport.disconnect()

    asyncio.run(scenario())


def test_auth_token_events():
    async def scenario():
        ws = FakeWebSocket()
        transport = make_transport(ws)
        events = record_listeners(transport)
        await transport.connect()

        ws.push({"event": "#setAuthToken", "data": {"token": "abc"}})
        await settle()
        assert transport.auth_token == "abc"
        assert ("token", "abc") in events

        ws.push({"event": "#removeAuthToken", "data": None})
        await settle()
        assert transport.auth_token is None
        await transport.disconnect()

    asyncio.run(scenario())
