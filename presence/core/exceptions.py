"""
Custom exception classes for the Presence signaling client.
"""


class PresenceError(Exception):
    """Base exception for the Presence client."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class TransportError(PresenceError):
    """Raised when the signaling socket cannot connect, authenticate or deliver an ack."""
    pass


class SignalingProtocolError(PresenceError):
    """Raised when the signaling peer answers with an error or breaks its contract.

    ``fatal`` marks a broken server guarantee (no pending offer); such an
    error ends the session for good.
    """

    def __init__(self, message: str, details: dict = None, fatal: bool = False):
        super().__init__(message, details)
        self.fatal = fatal


class MalformedCandidate(PresenceError):
    """Raised when an ICE candidate payload is missing fields or has wrong types."""
    pass


class NegotiationError(PresenceError):
    """Raised when the peer connection rejects a description or the ICE session fails."""
    pass


class RoundingFault(PresenceError):
    """Raised when a pose component cannot be rounded exactly."""
    pass
