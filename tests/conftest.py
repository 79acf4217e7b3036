"""Shared in-memory stand-ins for the pub/sub client, peer connection and socket."""

import asyncio
import json

import pytest

from presence.core.config import PresenceConfig
from presence.core.exceptions import NegotiationError, TransportError
from presence.signaling.identity import SessionIdentityManager
from presence.signaling.messages import OfferRecord, channel_prefix
from presence.signaling.negotiation import NegotiationStateMachine

REMOTE_SDP = "v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
LOCAL_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\n"


class FakeTransport:
    """Records pub/sub calls and answers emit_ack with a scripted reply."""

    def __init__(self):
        self.connected = False
        self.subscriptions = set()
        self.subscribe_calls = []
        self.unsubscribe_calls = []
        self.published = []
        self.emitted = []
        self.handlers = {}
        self.ack_reply = (None, {"offer": {"sdp": REMOTE_SDP, "type": "offer"}})
        self.ack_future = None
        self.connect_failures = 0
        self.listeners = {}

    def set_basic_listener(self, on_connect, on_connect_error, on_disconnect):
        self.listeners.update(on_connect=on_connect, on_connect_error=on_connect_error,
                              on_disconnect=on_disconnect)

    def set_authentication_listener(self, on_set_authentication, on_authentication):
        self.listeners.update(on_set_authentication=on_set_authentication,
                              on_authentication=on_authentication)

    def on_channel(self, prefix, handler):
        self.handlers[prefix] = handler

    def off_channel(self, prefix):
        self.handlers.pop(prefix, None)

    async def connect(self):
        if self.connect_failures:
            self.connect_failures -= 1
            error = TransportError("Failed to connect to signaling server")
            self.listeners["on_connect_error"](self, error)
            raise error
        self.connected = True
        self.listeners["on_connect"](self)
        self.listeners["on_authentication"](self, True)

    async def disconnect(self):
        if self.connected:
            self.connected = False
            self.listeners["on_disconnect"](self, None)

    async def subscribe(self, channel):
        self.subscribe_calls.append(channel)
        self.subscriptions.add(channel)

    async def unsubscribe(self, channel):
        self.unsubscribe_calls.append(channel)
        self.subscriptions.discard(channel)

    async def publish(self, channel, payload):
        self.published.append((channel, payload))

    async def emit_ack(self, event, payload):
        self.emitted.append((event, payload))
        if self.ack_future is not None:
            return await self.ack_future
        return self.ack_reply

    async def deliver(self, channel, data):
        await self.handlers[channel_prefix(channel)](channel, data)

    def get_status(self):
        return {"connected": self.connected, "subscriptions": sorted(self.subscriptions)}


class FakePeer:
    """Peer connection double recording every call."""

    def __init__(self, local_candidates=(), reject_remote=False):
        self.remote = None
        self.applied = []
        self.sent = []
        self.closed = False
        self.open = True
        self.local_candidates = list(local_candidates)
        self.reject_remote = reject_remote
        self.state_callback = None
        self.candidate_callback = None

    def on_connection_state(self, callback):
        self.state_callback = callback

    def on_local_candidate(self, callback):
        self.candidate_callback = callback

    async def set_remote_description(self, offer):
        if self.reject_remote:
            raise NegotiationError("Remote description rejected")
        self.remote = offer

    async def create_answer(self):
        for record in self.local_candidates:
            await self.candidate_callback(record)
        return OfferRecord(sdp=LOCAL_SDP, kind="answer")

    async def add_ice_candidate(self, record):
        self.applied.append(record)

    def fire_state(self, state):
        self.state_callback(state)

    def send(self, data):
        if not self.open:
            return False
        self.sent.append(data)
        return True

    async def close(self):
        self.closed = True


class PeerFactory:
    def __init__(self, **peer_kwargs):
        self.peer_kwargs = peer_kwargs
        self.peers = []

    def __call__(self):
        peer = FakePeer(**self.peer_kwargs)
        self.peers.append(peer)
        return peer


class FakeWebSocket:
    """Scripted SocketCluster server on the other end of a socket."""

    def __init__(self, replies=None, authenticated=False):
        self.sent = []
        self.incoming = asyncio.Queue()
        self.replies = replies or {}
        self.authenticated = authenticated
        self.closed = False

    async def send(self, raw):
        self.sent.append(raw)
        if not raw.startswith("{"):
            return
        frame = json.loads(raw)
        event = frame.get("event")
        if event == "#handshake":
            self.push({"rid": frame["cid"], "data": {"id": "socket-1", "isAuthenticated": self.authenticated}})
        elif event in self.replies:
            reply = dict(self.replies[event])
            reply["rid"] = frame["cid"]
            self.push(reply)

    def push(self, message):
        self.incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def sent_frames(self):
        return [json.loads(raw) for raw in self.sent if raw.startswith("{")]

    async def close(self):
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


@pytest.fixture
def config():
    return PresenceConfig(from_env=False, ack_timeout=1.0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def peers():
    return PeerFactory()


@pytest.fixture
def make_machine(transport, peers):
    def build(channel_id="ALPHA", peer_factory=None):
        identity = SessionIdentityManager(transport, channel_id)
        return NegotiationStateMachine(transport, identity, peer_factory or peers)
    return build
