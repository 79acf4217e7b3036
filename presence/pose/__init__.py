"""
Pose module for the Presence client.
Rounds, serializes and streams 6-DOF pose samples.
"""

from .codec import PoseSample, RawPose, encode, serialize, parse, round_component, quaternion_to_euler
from .streamer import PoseStreamer

__all__ = [
    'PoseSample',
    'RawPose',
    'encode',
    'serialize',
    'parse',
    'round_component',
    'quaternion_to_euler',
    'PoseStreamer'
]
