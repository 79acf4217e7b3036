"""
Signaling module for the Presence client.
Handles the pub/sub transport, session identity, offer/answer exchange and
trickled ICE candidates.
"""

from .transport import SignalingTransport
from .identity import SessionIdentityManager
from .candidates import CandidateExchange
from .negotiation import NegotiationStateMachine
from .session import NegotiationState, SignalingSession
from .messages import (
    OfferRecord,
    IceCandidateRecord,
    CandidateParse,
    parse_candidate_message,
    answer_channel,
    candidate_channel,
)

__all__ = [
    'SignalingTransport',
    'SessionIdentityManager',
    'CandidateExchange',
    'NegotiationStateMachine',
    'NegotiationState',
    'SignalingSession',
    'OfferRecord',
    'IceCandidateRecord',
    'CandidateParse',
    'parse_candidate_message',
    'answer_channel',
    'candidate_channel'
]
