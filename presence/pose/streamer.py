"""
Best-effort pose streaming over the data channel.
"""
from typing import Any, Callable, Dict, Mapping, Union

from presence.core.exceptions import RoundingFault
from presence.core.logging import LoggerMixin
from presence.pose.codec import RawPose, encode, serialize


class PoseStreamer(LoggerMixin):
    """Encodes pose updates and ships them while the channel is ready.

    Samples produced while not ready are discarded; there is no replay buffer,
    the newest sample always wins.
    """

    def __init__(self, send: Callable[[bytes], bool], is_ready: Callable[[], bool]):
        super().__init__()
        self._send = send
        self._is_ready = is_ready
        self.sent = 0
        self.dropped_not_ready = 0
        self.dropped_faults = 0

    def offer(self, raw: Union[RawPose, Mapping[str, Any]]) -> bool:
        """Encode and send one sample. Returns True when it went out."""
        if not self._is_ready():
            self.dropped_not_ready += 1
            return False

        try:
            sample = encode(raw)
        except RoundingFault as e:
            self.dropped_faults += 1
            self.log_warning("📐 [PoseStreamer] Dropped sample after rounding fault", {
                "error": str(e),
                "dropped_faults": self.dropped_faults
            })
            return False

        if not self._send(serialize(sample)):
            self.dropped_not_ready += 1
            return False

        self.sent += 1
        # Every 100th sample only, pose updates arrive at frame rate
        if self.sent % 100 == 0:
            self.log_debug("📐 [PoseStreamer] Pose samples sent", {"sent": self.sent})
        return True

    def get_stats(self) -> Dict[str, int]:
        return {
            "sent": self.sent,
            "dropped_not_ready": self.dropped_not_ready,
            "dropped_faults": self.dropped_faults
        }
