"""
Signaling wire records: session descriptions, ICE candidates and channel names.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from presence.core.exceptions import MalformedCandidate, SignalingProtocolError
from presence.core.validation_utils import ValidationUtils

SIGNAL_EVENT = "signal"
ANSWER_PREFIX = "answer"
CANDIDATE_PREFIX = "icecandidate"

_CANDIDATE_ATTR = "candidate:"


def answer_channel(channel_id: str) -> str:
    return f"{ANSWER_PREFIX}:{channel_id}"


def candidate_channel(channel_id: str) -> str:
    return f"{CANDIDATE_PREFIX}:{channel_id}"


def channel_prefix(channel_name: str) -> str:
    """Return the part of a channel name before the first ``:``."""
    return channel_name.split(":", 1)[0]


@dataclass(frozen=True)
class OfferRecord:
    """An SDP offer or answer."""

    sdp: str
    kind: str = "offer"

    def __post_init__(self):
        if self.kind not in ("offer", "answer"):
            raise ValueError(f"Unknown description kind: {self.kind}")

    @classmethod
    def from_payload(cls, payload: Any, expected_kind: str = "offer") -> "OfferRecord":
        """Validate a remote ``{sdp, type}`` payload."""
        if not isinstance(payload, Mapping):
            raise SignalingProtocolError("Session description is not an object", {
                "payload_type": type(payload).__name__
            })

        error = (ValidationUtils.validate_required_fields(payload, ["sdp"])
                 or ValidationUtils.validate_field_types(payload, {"sdp": str, "type": str}))
        if error:
            raise SignalingProtocolError(error, {"payload_keys": list(payload.keys())})

        kind = payload.get("type", expected_kind)
        if kind != expected_kind:
            raise SignalingProtocolError("Invalid session description type", {
                "expected": expected_kind,
                "received": kind
            })
        return cls(sdp=payload["sdp"], kind=kind)

    @classmethod
    def from_rtc(cls, description: RTCSessionDescription) -> "OfferRecord":
        return cls(sdp=description.sdp, kind=description.type)

    def to_rtc(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=self.sdp, type=self.kind)

    def to_payload(self) -> Dict[str, str]:
        return {"sdp": self.sdp, "type": self.kind}


@dataclass(frozen=True)
class IceCandidateRecord:
    """A single ICE candidate as exchanged on ``icecandidate:<id>``."""

    candidate: str
    sdp_mline_index: int
    sdp_mid: Optional[str] = None

    @property
    def key(self):
        return (self.candidate, self.sdp_mid, self.sdp_mline_index)

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate

    @classmethod
    def from_payload(cls, payload: Any) -> "IceCandidateRecord":
        """Build from the inner ``{candidate, sdpMLineIndex, sdpMid}`` object."""
        if not isinstance(payload, Mapping):
            raise MalformedCandidate("Candidate is not an object", {
                "payload_type": type(payload).__name__
            })

        error = (ValidationUtils.validate_required_fields(payload, ["candidate", "sdpMLineIndex"])
                 or ValidationUtils.validate_field_types(payload, {
                     "candidate": str,
                     "sdpMLineIndex": int,
                     "sdpMid": str
                 })
                 or ValidationUtils.validate_int32(payload["sdpMLineIndex"], "sdpMLineIndex"))
        if error:
            raise MalformedCandidate(error, {"payload_keys": list(payload.keys())})

        return cls(
            candidate=payload["candidate"],
            sdp_mline_index=payload["sdpMLineIndex"],
            sdp_mid=payload.get("sdpMid")
        )

    @classmethod
    def from_rtc(cls, candidate: RTCIceCandidate) -> "IceCandidateRecord":
        return cls(
            candidate=_CANDIDATE_ATTR + candidate_to_sdp(candidate),
            sdp_mline_index=candidate.sdpMLineIndex or 0,
            sdp_mid=candidate.sdpMid
        )

    def to_rtc(self) -> RTCIceCandidate:
        text = self.candidate
        if text.startswith(_CANDIDATE_ATTR):
            text = text[len(_CANDIDATE_ATTR):]
        try:
            candidate = candidate_from_sdp(text)
        except (AssertionError, ValueError, IndexError) as e:
            raise MalformedCandidate("Candidate line could not be parsed", {
                "candidate": self.candidate,
                "error": str(e)
            }) from e
        candidate.sdpMid = self.sdp_mid
        candidate.sdpMLineIndex = self.sdp_mline_index
        return candidate

    def to_payload(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMLineIndex": self.sdp_mline_index,
            "sdpMid": self.sdp_mid
        }


@dataclass(frozen=True)
class CandidateParse:
    """Tagged result of parsing an inbound candidate message."""

    record: Optional[IceCandidateRecord] = None
    error: Optional[MalformedCandidate] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


def parse_candidate_message(message: Any) -> CandidateParse:
    """Parse ``{"candidate": {...}}`` without raising."""
    if not isinstance(message, Mapping) or "candidate" not in message:
        return CandidateParse(error=MalformedCandidate("Message has no candidate field"))
    try:
        return CandidateParse(record=IceCandidateRecord.from_payload(message["candidate"]))
    except MalformedCandidate as e:
        return CandidateParse(error=e)


def parse_offer_response(response: Any) -> OfferRecord:
    """Extract the offer from a ``signal`` ack response ``{offer: {sdp, type}}``."""
    if not isinstance(response, Mapping) or "offer" not in response:
        raise SignalingProtocolError("Signal response carries no offer", {
            "response_type": type(response).__name__
        })
    return OfferRecord.from_payload(response["offer"], expected_kind="offer")


def answer_message(answer: OfferRecord) -> Dict[str, Any]:
    return {"answer": answer.to_payload()}


def candidate_message(record: IceCandidateRecord) -> Dict[str, Any]:
    return {"candidate": record.to_payload()}
