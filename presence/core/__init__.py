"""
Core module for the Presence client.
Contains configuration, logging, and common utilities.
"""

from .config import PresenceConfig
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import (
    PresenceError,
    TransportError,
    SignalingProtocolError,
    MalformedCandidate,
    NegotiationError,
    RoundingFault,
)

__all__ = [
    'PresenceConfig',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'PresenceError',
    'TransportError',
    'SignalingProtocolError',
    'MalformedCandidate',
    'NegotiationError',
    'RoundingFault'
]
