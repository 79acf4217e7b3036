"""
Configuration management for the Presence client.
"""
import os
from dataclasses import dataclass, field
from typing import List, Optional

from aiortc import RTCConfiguration, RTCIceServer


@dataclass
class PresenceConfig:
    """Client configuration settings."""

    # Signaling server (SocketCluster endpoint)
    signaling_url: str = "ws://localhost:8000/socketcluster/"
    channel_id: str = "RAVEN"
    ack_timeout: float = 10.0

    # ICE servers
    stun_urls: List[str] = field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    turn_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_password: Optional[str] = None

    # Control surface
    control_host: str = "127.0.0.1"
    control_port: int = 8770

    log_level: str = "INFO"

    # WebRTC configuration
    rtc_config: Optional[RTCConfiguration] = None

    # Set to False to use the constructor values only
    from_env: bool = True

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        if self.from_env:
            self.signaling_url = os.environ.get('PRESENCE_SIGNALING_URL', self.signaling_url)
            self.channel_id = os.environ.get('PRESENCE_CHANNEL_ID', self.channel_id)
            self.ack_timeout = float(os.environ.get('PRESENCE_ACK_TIMEOUT', self.ack_timeout))

            stun = os.environ.get('PRESENCE_STUN_URLS')
            if stun is not None:
                self.stun_urls = [url.strip() for url in stun.split(',') if url.strip()]

            self.turn_url = os.environ.get('PRESENCE_TURN_URL', self.turn_url)
            self.turn_username = os.environ.get('PRESENCE_TURN_USERNAME', self.turn_username)
            self.turn_password = os.environ.get('PRESENCE_TURN_PASSWORD', self.turn_password)

            self.control_host = os.environ.get('PRESENCE_CONTROL_HOST', self.control_host)
            self.control_port = int(os.environ.get('PRESENCE_CONTROL_PORT', self.control_port))
            self.log_level = os.environ.get('PRESENCE_LOG_LEVEL', self.log_level)

        self._build_rtc_config()

    def _build_rtc_config(self):
        """Build WebRTC configuration from the ICE server settings."""
        ice_servers = [RTCIceServer(urls=url) for url in self.stun_urls]

        if self.turn_url:
            ice_servers.append(
                RTCIceServer(
                    urls=self.turn_url,
                    username=self.turn_username,
                    credential=self.turn_password
                )
            )

        self.rtc_config = RTCConfiguration(iceServers=ice_servers)

    def __str__(self) -> str:
        """String representation of configuration."""
        return (f"PresenceConfig(signaling_url={self.signaling_url}, channel_id={self.channel_id}, "
                f"ice_servers={len(self.rtc_config.iceServers) if self.rtc_config else 0})")
