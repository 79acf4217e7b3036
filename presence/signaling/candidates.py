"""
Trickle ICE candidate exchange over ``icecandidate:<channelId>``.
"""
from typing import Any, List, Optional, Set

from presence.core.exceptions import MalformedCandidate, NegotiationError, TransportError
from presence.core.logging import LoggerMixin
from presence.signaling.identity import SessionIdentityManager
from presence.signaling.messages import (
    CANDIDATE_PREFIX,
    IceCandidateRecord,
    candidate_message,
    parse_candidate_message,
)
from presence.signaling.session import SignalingSession


class CandidateExchange(LoggerMixin):
    """Applies remote candidates and publishes local ones for the current attempt.

    Until ``activate`` is called, parsed remote candidates are held (the peer has
    no remote description yet). Local candidates are published as soon as the
    candidate channel is known and buffered only before that.
    """

    def __init__(self, transport, identity: SessionIdentityManager, session: SignalingSession):
        super().__init__()
        self.transport = transport
        self.identity = identity
        self.session = session

        self._peer = None
        self._generation: Optional[int] = None
        self._channel: Optional[str] = None
        self._active = False
        self._held_remote: List[IceCandidateRecord] = []
        self._pending_local: List[IceCandidateRecord] = []
        self._local_keys: Set[tuple] = set()
        self.malformed = 0

    @property
    def channel(self) -> Optional[str]:
        return self._channel

    @property
    def active(self) -> bool:
        return self._active

    async def open(self, peer, generation: int):
        """Bind to a fresh peer connection and subscribe the candidate channel."""
        self.close()
        self._peer = peer
        self._generation = generation
        self.transport.on_channel(CANDIDATE_PREFIX, self.handle_message)
        self._channel = await self.identity.subscribe_candidates()

        pending, self._pending_local = self._pending_local, []
        for record in pending:
            await self._publish(record, generation)

    async def activate(self, generation: int):
        """Apply held remote candidates; later ones go straight to the peer."""
        if generation != self._generation:
            return
        self._active = True

        held, self._held_remote = self._held_remote, []
        for record in held:
            await self._apply(record, generation)

        self.log_info("🧊 [CandidateExchange] Trickling candidates", {
            "channel": self._channel,
            "applied_held": len(held)
        })

    def close(self):
        self.transport.off_channel(CANDIDATE_PREFIX)
        self._peer = None
        self._generation = None
        self._channel = None
        self._active = False
        self._held_remote = []
        self._pending_local = []
        self._local_keys = set()

    async def handle_message(self, channel: str, data: Any):
        """Handler for inbound ``icecandidate:*`` messages."""
        if self._peer is None or channel != self._channel:
            self.log_debug("Ignoring candidate for inactive channel", {"channel": channel})
            return

        result = parse_candidate_message(data)
        if not result.ok:
            self.malformed += 1
            self.log_warning("🧊 [CandidateExchange] Dropped malformed candidate", {
                "channel": channel,
                "error": str(result.error),
                "malformed": self.malformed
            })
            return

        record = result.record
        if record.key in self._local_keys:
            # Channel echoes our own publications back
            return

        self.session.remote_candidates += 1
        self.log_debug("🧊 [CandidateExchange] Received ICE candidate", {
            "remote_candidates": self.session.remote_candidates,
            "sdp_mid": record.sdp_mid
        })

        if not self._active:
            self._held_remote.append(record)
            return
        await self._apply(record, self._generation)

    async def on_local_candidate(self, record: IceCandidateRecord, generation: int):
        """Publish a locally discovered candidate, buffering until the channel is known."""
        if generation != self._generation:
            return
        self._local_keys.add(record.key)
        if self._channel is None:
            self._pending_local.append(record)
            return
        await self._publish(record, generation)

    async def _apply(self, record: IceCandidateRecord, generation: int):
        if generation != self._generation or self._peer is None:
            return
        try:
            await self._peer.add_ice_candidate(record)
        except (MalformedCandidate, NegotiationError) as e:
            self.log_warning("🧊 [CandidateExchange] Candidate rejected by peer connection", {
                "candidate": record.candidate,
                "error": str(e)
            })

    async def _publish(self, record: IceCandidateRecord, generation: int):
        if generation != self._generation or self._channel is None:
            return
        try:
            await self.transport.publish(self._channel, candidate_message(record))
        except TransportError as e:
            self.log_warning("🧊 [CandidateExchange] Failed to publish local candidate", {
                "channel": self._channel,
                "error": str(e)
            })
