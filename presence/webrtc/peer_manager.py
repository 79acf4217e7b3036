"""
WebRTC peer connection adapter over aiortc.
"""
import asyncio
import datetime
from typing import Callable, List, Optional, Set

from aiortc import RTCDataChannel, RTCPeerConnection
from aiortc.exceptions import InternalError, InvalidAccessError, InvalidStateError
from aiortc.sdp import SessionDescription

from presence.core.config import PresenceConfig
from presence.core.exceptions import NegotiationError
from presence.core.logging import LoggerMixin, debug_log
from presence.signaling.messages import IceCandidateRecord, OfferRecord
from presence.webrtc.data_channel import DataChannelManager

# aiortc connectionState -> ICE connection states the negotiation layer understands
CONNECTION_STATE_MAP = {
    "new": "new",
    "connecting": "checking",
    "connected": "connected",
    "disconnected": "disconnected",
    "failed": "failed",
    "closed": "closed",
}

_SDP_ERRORS = (ValueError, IndexError, KeyError, InvalidAccessError, InvalidStateError, InternalError)


def local_candidates(sdp: str) -> List[IceCandidateRecord]:
    """Extract the candidates embedded in a gathered local description."""
    description = SessionDescription.parse(sdp)
    records = []
    for index, media in enumerate(description.media):
        for candidate in media.ice_candidates:
            candidate.sdpMid = media.rtp.muxId
            candidate.sdpMLineIndex = index
            records.append(IceCandidateRecord.from_rtc(candidate))
    return records


class PeerConnectionAdapter(LoggerMixin):
    """One RTCPeerConnection for one negotiation attempt (answerer side)."""

    def __init__(self, config: PresenceConfig):
        super().__init__()
        self.config = config
        self.pc = RTCPeerConnection(configuration=config.rtc_config)
        self.data_channel_manager = DataChannelManager()

        self._state_callback: Optional[Callable[[str], None]] = None
        self._candidate_callback: Optional[Callable] = None
        self._applied: Set[tuple] = set()
        self._closed = False

        self._setup_peer_connection_handlers()

    def on_connection_state(self, callback: Callable[[str], None]):
        self._state_callback = callback

    def on_local_candidate(self, callback: Callable):
        """callback(record); may return an awaitable."""
        self._candidate_callback = callback

    def _setup_peer_connection_handlers(self):
        pc = self.pc

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            state = CONNECTION_STATE_MAP.get(pc.connectionState, pc.connectionState)
            debug_log("🔗 [PeerConnection] Connection state changed", {
                "connection_state": pc.connectionState,
                "mapped_state": state,
                "timestamp": datetime.datetime.now().isoformat()
            })
            if self._state_callback:
                self._state_callback(state)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            debug_log("🧊 [PeerConnection] ICE connection state changed", {
                "ice_state": pc.iceConnectionState
            }, "DEBUG")

        @pc.on("icegatheringstatechange")
        async def on_ice_gathering_state_change():
            debug_log("🧊 [PeerConnection] ICE gathering state changed", {
                "gathering_state": pc.iceGatheringState
            }, "DEBUG")

        @pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel):
            self.data_channel_manager.add_channel(channel)

    async def set_remote_description(self, offer: OfferRecord):
        try:
            await self.pc.setRemoteDescription(offer.to_rtc())
        except _SDP_ERRORS as e:
            raise NegotiationError("Remote description rejected", {
                "error": str(e),
                "error_type": type(e).__name__,
                "sdp_length": len(offer.sdp)
            }) from e

    async def create_answer(self) -> OfferRecord:
        """Create and apply the local answer, then report its gathered candidates."""
        try:
            answer = await self.pc.createAnswer()
            await self.pc.setLocalDescription(answer)
        except _SDP_ERRORS as e:
            raise NegotiationError("Failed to create answer", {
                "error": str(e),
                "error_type": type(e).__name__
            }) from e

        local = self.pc.localDescription
        debug_log("🔗 [PeerConnection] Local answer ready", {
            "type": local.type,
            "sdp_length": len(local.sdp)
        })

        # aiortc gathers before setLocalDescription returns instead of trickling
        for record in local_candidates(local.sdp):
            if self._candidate_callback:
                result = self._candidate_callback(record)
                if asyncio.iscoroutine(result):
                    await result

        return OfferRecord.from_rtc(local)

    async def add_ice_candidate(self, record: IceCandidateRecord):
        """Apply a remote candidate. Repeats and any arrival order are fine."""
        if record.key in self._applied or self._closed:
            return
        if record.is_end_of_candidates:
            self.log_debug("Remote end of candidates")
            return

        candidate = record.to_rtc()
        try:
            await self.pc.addIceCandidate(candidate)
        except (ValueError, InvalidStateError) as e:
            raise NegotiationError("Remote candidate rejected", {
                "candidate": record.candidate,
                "error": str(e)
            }) from e
        self._applied.add(record.key)

    def send(self, data: bytes) -> bool:
        return self.data_channel_manager.send(data)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await self.pc.close()
        debug_log("🔌 [PeerConnection] Peer connection closed")
