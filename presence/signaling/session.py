"""
Negotiation states and the per-process signaling session record.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class NegotiationState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    READY_TO_CONNECT = "ready_to_connect"
    REQUESTING_OFFER = "requesting_offer"
    SETTING_REMOTE_OFFER = "setting_remote_offer"
    CREATING_ANSWER = "creating_answer"
    PUBLISHING_ANSWER = "publishing_answer"
    EXCHANGING_CANDIDATES = "exchanging_candidates"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


# States in which an attempt is running and a new one must not start
IN_FLIGHT_STATES = frozenset({
    NegotiationState.REQUESTING_OFFER,
    NegotiationState.SETTING_REMOTE_OFFER,
    NegotiationState.CREATING_ANSWER,
    NegotiationState.PUBLISHING_ANSWER,
    NegotiationState.EXCHANGING_CANDIDATES,
})

CONNECTABLE_STATES = frozenset({
    NegotiationState.READY_TO_CONNECT,
    NegotiationState.DISCONNECTED,
    NegotiationState.FAILED,
})


@dataclass
class SignalingSession:
    """Mutable session state. Only the negotiation control loop writes to it."""

    state: NegotiationState = NegotiationState.IDLE
    channel_id: Optional[str] = None
    generation: int = 0
    remote_candidates: int = 0
    channel_ready: bool = False
    authenticated: bool = False
    fatal: bool = False
    last_error: Optional[Exception] = None

    def begin_attempt(self, channel_id: str) -> int:
        """Start a new generation; previous attempt state is discarded."""
        self.generation += 1
        self.channel_id = channel_id
        self.remote_candidates = 0
        self.channel_ready = False
        self.last_error = None
        return self.generation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "channel_id": self.channel_id,
            "generation": self.generation,
            "remote_candidates": self.remote_candidates,
            "channel_ready": self.channel_ready,
            "authenticated": self.authenticated,
            "fatal": self.fatal,
            "last_error": str(self.last_error) if self.last_error else None
        }
