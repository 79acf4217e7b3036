"""
Negotiation state machine: offer retrieval, answer publication, candidate
exchange and connection-state tracking for one signaling session.

All session mutation happens on the asyncio loop that called ``start`` or
``connect``. Callbacks from other threads go through ``post_event``.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Set, Union

from presence.core.exceptions import NegotiationError, SignalingProtocolError, TransportError
from presence.core.logging import LoggerMixin, debug_log
from presence.pose.codec import RawPose
from presence.pose.streamer import PoseStreamer
from presence.signaling.candidates import CandidateExchange
from presence.signaling.identity import SessionIdentityManager
from presence.signaling.messages import (
    SIGNAL_EVENT,
    answer_channel,
    answer_message,
    parse_offer_response,
)
from presence.signaling.session import (
    CONNECTABLE_STATES,
    IN_FLIGHT_STATES,
    NegotiationState,
    SignalingSession,
)

State = NegotiationState

_TRANSITIONS = {
    State.IDLE: {State.AUTHENTICATING},
    State.AUTHENTICATING: set(),
    State.READY_TO_CONNECT: {State.REQUESTING_OFFER},
    State.REQUESTING_OFFER: {State.SETTING_REMOTE_OFFER},
    State.SETTING_REMOTE_OFFER: {State.CREATING_ANSWER},
    State.CREATING_ANSWER: {State.PUBLISHING_ANSWER},
    State.PUBLISHING_ANSWER: {State.EXCHANGING_CANDIDATES, State.CONNECTED},
    State.EXCHANGING_CANDIDATES: {State.CONNECTED},
    State.CONNECTED: set(),
    State.DISCONNECTED: {State.REQUESTING_OFFER, State.CONNECTED, State.AUTHENTICATING},
    State.FAILED: {State.REQUESTING_OFFER, State.AUTHENTICATING},
}

# Reachable from every state: transport loss, reset, peer disconnect, failure
_ANY_SOURCE = {State.IDLE, State.READY_TO_CONNECT, State.DISCONNECTED, State.FAILED}


@dataclass(frozen=True)
class TransportConnected:
    pass


@dataclass(frozen=True)
class TransportConnectError:
    error: Exception


@dataclass(frozen=True)
class TransportDisconnected:
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Authenticated:
    is_authenticated: bool


@dataclass(frozen=True)
class PeerStateChanged:
    state: str
    generation: int


class NegotiationStateMachine(LoggerMixin):
    """Drives one signaling session from authentication to a connected data channel."""

    def __init__(self, transport, identity: SessionIdentityManager, peer_factory: Callable[[], Any]):
        super().__init__()
        self.transport = transport
        self.identity = identity
        self.peer_factory = peer_factory

        self.session = SignalingSession()
        self.candidates = CandidateExchange(transport, identity, self.session)
        self.pose_streamer = PoseStreamer(send=self._send_data, is_ready=lambda: self.session.channel_ready)
        self.peer = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state_listeners: List[Callable[[NegotiationState, NegotiationState], None]] = []
        self._error_listeners: List[Callable[[Exception], None]] = []
        self._closing: Set[asyncio.Task] = set()

        transport.set_basic_listener(
            on_connect=lambda _t: self.post_event(TransportConnected()),
            on_connect_error=lambda _t, error: self.post_event(TransportConnectError(error)),
            on_disconnect=lambda _t, error: self.post_event(TransportDisconnected(error))
        )
        transport.set_authentication_listener(
            on_set_authentication=self._on_set_authentication,
            on_authentication=lambda _t, ok: self.post_event(Authenticated(bool(ok)))
        )

    # Listeners

    def add_state_listener(self, callback: Callable[[NegotiationState, NegotiationState], None]):
        """callback(old_state, new_state) on every transition."""
        self._state_listeners.append(callback)

    def add_error_listener(self, callback: Callable[[Exception], None]):
        """User-visible error surface."""
        self._error_listeners.append(callback)

    @property
    def state(self) -> NegotiationState:
        return self.session.state

    @property
    def can_connect(self) -> bool:
        """Whether the connect affordance is enabled."""
        return (not self.session.fatal
                and self.session.authenticated
                and self.session.state in CONNECTABLE_STATES)

    @property
    def can_start(self) -> bool:
        """Whether the signaling transport may be (re)connected."""
        return (not self.session.fatal
                and not self.session.authenticated
                and self.session.state in (State.IDLE, State.FAILED, State.DISCONNECTED))

    # Lifecycle

    async def start(self) -> bool:
        """Connect the signaling transport. Authentication unlocks ``connect``."""
        self._loop = asyncio.get_running_loop()
        if not self.can_start:
            return False
        self._transition(State.AUTHENTICATING)
        try:
            await self.transport.connect()
        except TransportError:
            # Already surfaced through the connect-error listener
            return False
        return True

    async def connect(self) -> bool:
        """Run one negotiation attempt. Returns True once candidates are trickling.

        Raises:
            SignalingProtocolError: the server acknowledged with no pending
                offer. The session is marked fatal and refuses new attempts.
        """
        self._loop = asyncio.get_running_loop()
        if not self.can_connect:
            self.log_warning("🤝 [Negotiation] Connect ignored, affordance disabled", {
                "state": self.session.state.value,
                "authenticated": self.session.authenticated,
                "fatal": self.session.fatal
            })
            return False

        channel_id = self.identity.channel_id
        generation = self.session.begin_attempt(channel_id)
        await self._rearm_peer(generation)
        self._transition(State.REQUESTING_OFFER)
        await self.candidates.open(self.peer, generation)

        debug_log("🤝 [Negotiation] Requesting offer", {
            "channel_id": channel_id,
            "generation": generation
        })
        try:
            error, response = await self.transport.emit_ack(SIGNAL_EVENT, {"channelId": channel_id})
        except TransportError as e:
            if self._is_running(generation):
                self._fail(e)
            return False
        if not self._is_running(generation):
            self.log_debug("Discarding ack of superseded attempt", {"generation": generation})
            return False

        if error is not None:
            self._fail(SignalingProtocolError("Signaling server rejected offer request", {
                "channel_id": channel_id,
                "error": error
            }))
            return False

        if response is None:
            fatal = SignalingProtocolError("No existing offer for channel", {"channel_id": channel_id}, fatal=True)
            self.session.fatal = True
            self._fail(fatal)
            raise fatal

        try:
            offer = parse_offer_response(response)
        except SignalingProtocolError as e:
            self._fail(e)
            return False

        self._transition(State.SETTING_REMOTE_OFFER)
        try:
            await self.peer.set_remote_description(offer)
        except NegotiationError as e:
            if self._is_running(generation):
                self._fail(e)
            return False
        if not self._is_running(generation):
            return False

        self._transition(State.CREATING_ANSWER)
        try:
            answer = await self.peer.create_answer()
        except NegotiationError as e:
            if self._is_running(generation):
                self._fail(e)
            return False
        if not self._is_running(generation):
            return False

        self._transition(State.PUBLISHING_ANSWER)
        try:
            await self.transport.publish(answer_channel(channel_id), answer_message(answer))
        except TransportError as e:
            if self._is_running(generation):
                self._fail(e)
            return False
        if not self._is_running(generation):
            return False

        debug_log("🤝 [Negotiation] Answer published", {
            "channel": answer_channel(channel_id),
            "sdp_length": len(answer.sdp)
        })

        if self.session.state == State.PUBLISHING_ANSWER:
            self._transition(State.EXCHANGING_CANDIDATES)
        await self.candidates.activate(generation)
        return True

    async def reset(self) -> bool:
        """Cancel the current attempt and re-arm for a new one."""
        if self.session.fatal:
            self.log_warning("🤝 [Negotiation] Reset refused, session is fatal")
            return False

        self.session.generation += 1
        self.session.channel_ready = False
        self.candidates.close()
        await self._close_peer()
        self._transition(State.READY_TO_CONNECT if self.session.authenticated else State.IDLE)
        return True

    async def cleanup(self):
        self.session.generation += 1
        self.session.channel_ready = False
        self.candidates.close()
        await self._close_peer()
        await self.transport.disconnect()

    def send_pose(self, raw: Union[RawPose, Mapping[str, Any]]) -> bool:
        """Ship one pose sample if the data channel is ready; drop it otherwise."""
        return self.pose_streamer.offer(raw)

    # Events

    def post_event(self, event):
        """Marshal an event onto the control loop."""
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is None or running is loop:
            self.handle_event(event)
        else:
            loop.call_soon_threadsafe(self.handle_event, event)

    def handle_event(self, event):
        """Single transition function for transport and peer notifications."""
        session = self.session

        if isinstance(event, TransportConnected):
            self.log_info("🔌 [Negotiation] Connected to signalling server")

        elif isinstance(event, Authenticated):
            session.authenticated = True
            self.log_info("🔐 [Negotiation] Authenticated", {"is_authenticated": event.is_authenticated})
            if session.state in (State.IDLE, State.AUTHENTICATING):
                self._transition(State.READY_TO_CONNECT)

        elif isinstance(event, TransportConnectError):
            session.authenticated = False
            self._fail(event.error)

        elif isinstance(event, TransportDisconnected):
            session.authenticated = False
            self.log_warning("🔌 [Negotiation] Disconnected from signalling server", {
                "error": str(event.error) if event.error else None
            })
            if session.state in IN_FLIGHT_STATES:
                session.generation += 1
                self.candidates.close()
                self._discard_peer()
                self._fail(TransportError("Signaling connection lost during negotiation"))
            elif session.state != State.CONNECTED:
                self._transition(State.IDLE)

        elif isinstance(event, PeerStateChanged):
            self._handle_peer_state(event)

        else:
            self.log_warning("Unknown negotiation event", {"event": type(event).__name__})

    def _handle_peer_state(self, event: PeerStateChanged):
        session = self.session
        if event.generation != session.generation:
            self.log_debug("Ignoring peer state of superseded attempt", {
                "state": event.state,
                "generation": event.generation
            })
            return

        debug_log("🔗 [Negotiation] WebRTC connection state", {"state": event.state})

        if event.state == "connected":
            if session.state in IN_FLIGHT_STATES or session.state == State.DISCONNECTED:
                self._transition(State.CONNECTED)
                session.channel_ready = True
        elif event.state == "disconnected":
            session.channel_ready = False
            self._transition(State.DISCONNECTED)
        elif event.state == "failed":
            self._fail(NegotiationError("ICE connection failed", {"generation": event.generation}))
        elif event.state == "closed":
            session.channel_ready = False
            if session.state == State.CONNECTED:
                self._transition(State.DISCONNECTED)

    # Internals

    def _is_running(self, generation: int) -> bool:
        return (generation == self.session.generation
                and (self.session.state in IN_FLIGHT_STATES or self.session.state == State.CONNECTED))

    def _transition(self, new_state: NegotiationState) -> bool:
        old_state = self.session.state
        if old_state == new_state:
            return True
        if new_state not in _ANY_SOURCE and new_state not in _TRANSITIONS[old_state]:
            self.log_warning("🤝 [Negotiation] Illegal transition ignored", {
                "from": old_state.value,
                "to": new_state.value
            })
            return False

        self.session.state = new_state
        self.log_info("🤝 [Negotiation] State changed", {"from": old_state.value, "to": new_state.value})
        for callback in self._state_listeners:
            try:
                callback(old_state, new_state)
            except Exception as e:
                self.log_error("Error in state listener", {
                    "error": str(e),
                    "error_type": type(e).__name__
                })
        return True

    def _fail(self, error: Exception):
        self.session.last_error = error
        self.session.channel_ready = False
        self._transition(State.FAILED)
        self.log_error("❌ [Negotiation] Session failed", {
            "error": str(error),
            "error_type": type(error).__name__,
            "fatal": self.session.fatal
        })
        for callback in self._error_listeners:
            try:
                callback(error)
            except Exception as e:
                self.log_error("Error in error listener", {
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    async def _rearm_peer(self, generation: int):
        """Replace the peer connection; nothing from a previous attempt survives."""
        await self._close_peer()
        peer = self.peer_factory()
        peer.on_connection_state(lambda state: self.post_event(PeerStateChanged(state, generation)))
        peer.on_local_candidate(lambda record: self.candidates.on_local_candidate(record, generation))
        self.peer = peer

    async def _close_peer(self):
        peer, self.peer = self.peer, None
        if peer is not None:
            await peer.close()

    def _discard_peer(self):
        """Detach the peer now and close it in the background."""
        peer, self.peer = self.peer, None
        if peer is not None:
            self._closing.add(self._loop.create_task(peer.close()))
            self._closing = {task for task in self._closing if not task.done()}

    def _on_set_authentication(self, _transport, token: Optional[str]):
        self.log_debug("🔐 [Negotiation] Authentication token issued", {"has_token": token is not None})

    def _send_data(self, data: bytes) -> bool:
        if self.peer is None:
            return False
        return self.peer.send(data)

    def get_status(self) -> dict:
        status = self.session.to_dict()
        status["can_connect"] = self.can_connect
        status["pose"] = self.pose_streamer.get_stats()
        status["malformed_candidates"] = self.candidates.malformed
        return status
