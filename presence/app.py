"""
Presence client orchestrator and its HTTP control surface.

The control routes expose the operator affordances: (re)starting signaling,
editing the channel id, the connect and reset actions, and the pose feed
from the tracker.
"""
import asyncio
import datetime
from collections import deque
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from presence.core.config import PresenceConfig
from presence.core.exceptions import SignalingProtocolError
from presence.core.logging import LoggerMixin, debug_log
from presence.pose.codec import RawPose
from presence.signaling.identity import SessionIdentityManager
from presence.signaling.negotiation import NegotiationStateMachine
from presence.signaling.transport import SignalingTransport
from presence.webrtc.peer_manager import PeerConnectionAdapter


class PresenceClient(LoggerMixin):
    """Wires transport, identity, peer connection and negotiation together."""

    def __init__(self, config: Optional[PresenceConfig] = None, transport=None,
                 peer_factory: Optional[Callable[[], Any]] = None):
        super().__init__()
        self.config = config or PresenceConfig()
        self.transport = transport or SignalingTransport(self.config)
        self.identity = SessionIdentityManager(self.transport, self.config.channel_id)
        self.negotiation = NegotiationStateMachine(
            self.transport,
            self.identity,
            peer_factory or (lambda: PeerConnectionAdapter(self.config))
        )

        self.errors = deque(maxlen=20)
        self.fatal_event = asyncio.Event()
        self.negotiation.add_error_listener(self._on_error)
        self.identity.add_change_listener(self._on_channel_change)

        debug_log("🚀 [Client] Presence client initialized", {"config": str(self.config)})

    async def start(self) -> bool:
        return await self.negotiation.start()

    async def connect(self) -> bool:
        """Run one negotiation attempt; a fatal protocol error trips ``fatal_event``."""
        try:
            return await self.negotiation.connect()
        except SignalingProtocolError as e:
            if e.fatal:
                self.fatal_event.set()
            raise

    async def cleanup(self):
        await self.negotiation.cleanup()
        debug_log("🧹 [Client] Cleanup completed")

    def _on_error(self, error: Exception):
        self.errors.append({
            "error": str(error),
            "error_type": type(error).__name__,
            "timestamp": datetime.datetime.now().isoformat()
        })

    def _on_channel_change(self, old_id: str, new_id: str):
        debug_log("🪪 [Client] Channel id updated", {"old": old_id, "new": new_id})

    def get_status(self) -> Dict[str, Any]:
        return {
            "channel_id": self.identity.channel_id,
            "session": self.negotiation.get_status(),
            "transport": self.transport.get_status(),
            "errors": list(self.errors)
        }

    def build_app(self) -> web.Application:
        app = web.Application()
        app[CLIENT_KEY] = self
        app.router.add_get("/status", handle_status)
        app.router.add_post("/start", handle_start)
        app.router.add_post("/channel", handle_channel)
        app.router.add_post("/connect", handle_connect)
        app.router.add_post("/reset", handle_reset)
        app.router.add_post("/pose", handle_pose)
        return app

    async def start_control_server(self) -> web.AppRunner:
        runner = web.AppRunner(self.build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.config.control_host, self.config.control_port)
        await site.start()
        debug_log("🌐 [Client] Control server started", {
            "host": self.config.control_host,
            "port": self.config.control_port
        })
        return runner


CLIENT_KEY = web.AppKey("client", PresenceClient)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as e:
        raise web.HTTPBadRequest(text=f"Invalid JSON: {e}")
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="Body must be a JSON object")
    return body


async def handle_status(request: web.Request) -> web.Response:
    client: PresenceClient = request.app[CLIENT_KEY]
    return web.json_response(client.get_status())


async def handle_start(request: web.Request) -> web.Response:
    """(Re)connect the signaling transport after startup failed or the socket dropped."""
    client: PresenceClient = request.app[CLIENT_KEY]
    if not client.negotiation.can_start:
        return web.json_response({"error": "Signaling already started",
                                  "state": client.negotiation.state.value}, status=409)

    ok = await client.start()
    return web.json_response({"ok": ok, "state": client.negotiation.state.value}, status=200 if ok else 502)


async def handle_channel(request: web.Request) -> web.Response:
    client: PresenceClient = request.app[CLIENT_KEY]
    body = await _read_json(request)
    channel_id = body.get("channelId")
    if not isinstance(channel_id, str) or not channel_id:
        return web.json_response({"error": "channelId must be a non-empty string"}, status=400)
    if not client.negotiation.can_connect:
        return web.json_response({"error": "Channel cannot change now",
                                  "state": client.negotiation.state.value}, status=409)

    changed = await client.identity.set_channel_id(channel_id)
    return web.json_response({"channel_id": client.identity.channel_id, "changed": changed})


async def handle_connect(request: web.Request) -> web.Response:
    client: PresenceClient = request.app[CLIENT_KEY]
    if not client.negotiation.can_connect:
        return web.json_response({"error": "Connect not available",
                                  "state": client.negotiation.state.value}, status=409)
    try:
        ok = await client.connect()
    except SignalingProtocolError as e:
        return web.json_response({"error": str(e), "fatal": e.fatal}, status=500)

    status = 200 if ok else 502
    return web.json_response({"ok": ok, "session": client.negotiation.get_status()}, status=status)


async def handle_reset(request: web.Request) -> web.Response:
    client: PresenceClient = request.app[CLIENT_KEY]
    ok = await client.negotiation.reset()
    return web.json_response({"ok": ok, "state": client.negotiation.state.value}, status=200 if ok else 409)


async def handle_pose(request: web.Request) -> web.Response:
    client: PresenceClient = request.app[CLIENT_KEY]
    body = await _read_json(request)
    try:
        if "position" in body and "quaternion" in body:
            raw = RawPose.from_transform(body["position"], body["quaternion"])
        else:
            raw = RawPose.from_mapping(body)
    except (TypeError, ValueError) as e:
        return web.json_response({"error": str(e)}, status=400)

    sent = client.negotiation.send_pose(raw)
    return web.json_response({"sent": sent})
