"""
Presence: signaling handshake and pose streaming for the AR face-tracking client.
"""

__version__ = "0.1.0"
