"""
WebRTC module for the Presence client.
Wraps the aiortc peer connection and the pose data channel.
"""

from .peer_manager import PeerConnectionAdapter, local_candidates
from .data_channel import DataChannelManager

__all__ = [
    'PeerConnectionAdapter',
    'DataChannelManager',
    'local_candidates'
]
