"""
Data channel management for the pose stream.
"""
import datetime
from typing import Dict, Optional

from aiortc import RTCDataChannel
from aiortc.exceptions import InvalidStateError

from presence.core.logging import LoggerMixin, debug_log


class DataChannelManager(LoggerMixin):
    """Tracks the data channels announced by the remote peer."""

    def __init__(self):
        super().__init__()
        self.data_channels: Dict[str, RTCDataChannel] = {}
        self.received = 0

    def add_channel(self, channel: RTCDataChannel):
        """Adopt a new data channel."""
        self.log_info("Adding data channel", {
            "channel_label": channel.label,
            "total_channels": len(self.data_channels)
        })
        self.data_channels[channel.label] = channel
        self._setup_channel_handlers(channel)

    def remove_channel(self, label: str):
        if label in self.data_channels:
            del self.data_channels[label]
            self.log_info("Removing data channel", {
                "channel_label": label,
                "total_channels": len(self.data_channels)
            })

    def _setup_channel_handlers(self, channel: RTCDataChannel):

        @channel.on("message")
        def on_message(message):
            # Pose stream is one-way; inbound data is only counted
            self.received += 1
            debug_log("📥 [DataChannel] Data received", {
                "channel_label": channel.label,
                "message_length": len(message),
                "timestamp": datetime.datetime.now().isoformat()
            }, "DEBUG")

        @channel.on("close")
        def on_close():
            self.log_info("Data channel closed", {"channel_label": channel.label})
            self.remove_channel(channel.label)

    def get_open_channel(self) -> Optional[RTCDataChannel]:
        for channel in self.data_channels.values():
            if channel.readyState == "open":
                return channel
        return None

    def send(self, data: bytes) -> bool:
        """Send on the first open channel. Returns False when none is open."""
        channel = self.get_open_channel()
        if channel is None:
            return False
        try:
            channel.send(data)
        except InvalidStateError as e:
            self.log_warning("Data channel rejected send", {
                "channel_label": channel.label,
                "error": str(e)
            })
            return False
        return True
