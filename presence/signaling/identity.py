"""
Session identity and its derived signaling channel names.
"""
from typing import Callable, List, Optional, Set

from presence.core.logging import LoggerMixin
from presence.signaling.messages import answer_channel, candidate_channel


class SessionIdentityManager(LoggerMixin):
    """Tracks the channel id and keeps transport subscriptions consistent with it."""

    def __init__(self, transport, channel_id: str):
        super().__init__()
        if not channel_id:
            raise ValueError("channel_id must be a non-empty string")
        self.transport = transport
        self._channel_id = channel_id
        self._subscribed: Set[str] = set()
        self._change_listeners: List[Callable[[str, str], None]] = []

    @property
    def channel_id(self) -> str:
        return self._channel_id

    @property
    def answer_channel(self) -> str:
        return answer_channel(self._channel_id)

    @property
    def candidate_channel(self) -> str:
        return candidate_channel(self._channel_id)

    def add_change_listener(self, callback: Callable[[str, str], None]):
        """callback(old_id, new_id) after the identity changed."""
        self._change_listeners.append(callback)

    async def set_channel_id(self, new_id: Optional[str]) -> bool:
        """Adopt a new identity. Returns False when nothing changed."""
        if not new_id:
            raise ValueError("channel_id must be a non-empty string")
        if new_id == self._channel_id:
            return False

        old_id = self._channel_id
        for channel in (answer_channel(old_id), candidate_channel(old_id)):
            await self.transport.unsubscribe(channel)
            self._subscribed.discard(channel)

        self._channel_id = new_id
        self.log_info("🪪 [Identity] Channel id changed", {"old": old_id, "new": new_id})

        for callback in self._change_listeners:
            try:
                callback(old_id, new_id)
            except Exception as e:
                self.log_error("Error in identity change listener", {
                    "error": str(e),
                    "error_type": type(e).__name__
                })
        return True

    async def subscribe_candidates(self) -> str:
        """Subscribe the candidate channel of the current identity once."""
        channel = self.candidate_channel
        if channel not in self._subscribed:
            await self.transport.subscribe(channel)
            self._subscribed.add(channel)
        return channel
