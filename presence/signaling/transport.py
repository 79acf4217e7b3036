"""
Signaling transport adapter over a SocketCluster-style pub/sub socket.

Frames are JSON objects:
- emit:          {"event": name, "data": payload, "cid": n}
- ack reply:     {"rid": n, "error": ..., "data": ...}
- channel data:  {"event": "#publish", "data": {"channel": name, "data": payload}}
- ping / pong:   "#1" / "#2"
"""

import asyncio
import json
from typing import Any, Callable, Dict, Optional, Set, Tuple

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from presence.core.config import PresenceConfig
from presence.core.exceptions import TransportError
from presence.core.logging import LoggerMixin, debug_log
from presence.signaling.messages import channel_prefix

PING = "#1"
PONG = "#2"


async def _invoke(callback: Optional[Callable], *args) -> None:
    """Call a sync or async listener."""
    if callback is None:
        return
    result = callback(*args)
    if asyncio.iscoroutine(result):
        await result


class SignalingTransport(LoggerMixin):
    """Owns the signaling socket, channel subscriptions and pending acks."""

    def __init__(self, config: PresenceConfig, connector: Callable = connect):
        super().__init__()
        self.config = config
        self._connector = connector

        self._ws = None
        self._listener_task: Optional[asyncio.Task] = None
        self.connected = False
        self.socket_id: Optional[str] = None
        self.auth_token: Optional[str] = None

        self._cid = 0
        self._pending: Dict[int, asyncio.Future] = {}
        self.subscriptions: Set[str] = set()
        self._channel_handlers: Dict[str, Callable] = {}

        # Listener callbacks (set by the negotiation layer)
        self._on_connect: Optional[Callable] = None
        self._on_connect_error: Optional[Callable] = None
        self._on_disconnect: Optional[Callable] = None
        self._on_set_authentication: Optional[Callable] = None
        self._on_authentication: Optional[Callable] = None

    def set_basic_listener(self, on_connect: Callable, on_connect_error: Callable, on_disconnect: Callable):
        self._on_connect = on_connect
        self._on_connect_error = on_connect_error
        self._on_disconnect = on_disconnect

    def set_authentication_listener(self, on_set_authentication: Callable, on_authentication: Callable):
        self._on_set_authentication = on_set_authentication
        self._on_authentication = on_authentication

    def on_channel(self, prefix: str, handler: Callable):
        """Route inbound messages for channels named ``<prefix>:...`` to handler(channel, data)."""
        self._channel_handlers[prefix] = handler

    def off_channel(self, prefix: str):
        self._channel_handlers.pop(prefix, None)

    async def connect(self):
        """Open the socket and perform the handshake. No-op when already connected."""
        if self.connected:
            return

        url = self.config.signaling_url
        debug_log("🔌 [SignalingTransport] Connecting to signaling server", {"url": url})

        try:
            self._ws = await self._connector(url, ping_interval=None, open_timeout=self.config.ack_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            error = TransportError("Failed to connect to signaling server", {
                "url": url,
                "error": str(e),
                "error_type": type(e).__name__
            })
            await _invoke(self._on_connect_error, self, error)
            raise error from e

        self._listener_task = asyncio.create_task(self._listen(self._ws))

        try:
            error, response = await self.emit_ack("#handshake", {"authToken": self.auth_token})
        except TransportError as e:
            await _invoke(self._on_connect_error, self, e)
            await self.disconnect()
            raise
        if error:
            handshake_error = TransportError("Signaling handshake rejected", {"error": error})
            await _invoke(self._on_connect_error, self, handshake_error)
            await self.disconnect()
            raise handshake_error

        response = response or {}
        self.connected = True
        self.socket_id = response.get("id")
        debug_log("✅ [SignalingTransport] Connected to signaling server", {
            "socket_id": self.socket_id,
            "is_authenticated": bool(response.get("isAuthenticated"))
        })

        # Server-side subscriptions do not survive a reconnect
        for channel in sorted(self.subscriptions):
            await self._send_event("#subscribe", {"channel": channel})

        await _invoke(self._on_connect, self)
        await _invoke(self._on_authentication, self, bool(response.get("isAuthenticated")))

    async def disconnect(self):
        """Close the socket. Safe to call repeatedly."""
        ws = self._ws
        if ws is None:
            return

        try:
            await ws.close()
        except WebSocketException as e:
            self.log_warning("Error while closing signaling socket", {"error": str(e)})

        task = self._listener_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._handle_closed(ws, None)

    async def subscribe(self, channel: str):
        if channel in self.subscriptions:
            return
        self.subscriptions.add(channel)
        if self._ws is not None:
            await self._send_event("#subscribe", {"channel": channel})
        self.log_info("📡 [SignalingTransport] Subscribed", {"channel": channel})

    async def unsubscribe(self, channel: str):
        if channel not in self.subscriptions:
            return
        self.subscriptions.discard(channel)
        if self._ws is not None:
            await self._send_event("#unsubscribe", channel)
        self.log_info("📡 [SignalingTransport] Unsubscribed", {"channel": channel})

    async def publish(self, channel: str, payload: Any):
        """Fire-and-forget publish to a channel."""
        self._require_socket("publish")
        await self._send_event("#publish", {"channel": channel, "data": payload})
        self.log_debug("📤 [SignalingTransport] Published", {"channel": channel})

    async def emit_ack(self, event: str, payload: Any) -> Tuple[Any, Any]:
        """Emit and wait for the correlated ack. Returns (error, response).

        Raises:
            TransportError: the socket is gone, closed while waiting, or the
                ack did not arrive within ``ack_timeout``.
        """
        self._require_socket(event)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        cid = await self._send_event(event, payload, future)

        try:
            return await asyncio.wait_for(future, timeout=self.config.ack_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError("Timed out waiting for ack", {"event": event, "cid": cid}) from e
        finally:
            self._pending.pop(cid, None)

    def _require_socket(self, action: str):
        if self._ws is None:
            raise TransportError("Signaling socket is not connected", {"action": action})

    async def _send_event(self, event: str, data: Any, future: Optional[asyncio.Future] = None) -> int:
        self._cid += 1
        cid = self._cid
        if future is not None:
            self._pending[cid] = future

        frame = {"event": event, "data": data, "cid": cid}
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            self._pending.pop(cid, None)
            raise TransportError("Signaling socket closed while sending", {
                "event": event,
                "error": str(e)
            }) from e
        return cid

    async def _listen(self, ws):
        error = None
        try:
            async for raw in ws:
                await self._handle_raw(ws, raw)
        except ConnectionClosed as e:
            error = e
        finally:
            await self._handle_closed(ws, error)

    async def _handle_raw(self, ws, raw):
        if raw == PING:
            await ws.send(PONG)
            return
        if raw == "":
            await ws.send("")
            return

        try:
            message = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            self.log_warning("Failed to parse signaling frame", {
                "error": str(e),
                "frame": str(raw)[:200]
            })
            return

        if not isinstance(message, dict):
            return

        if "rid" in message:
            future = self._pending.get(message["rid"])
            if future is not None and not future.done():
                future.set_result((message.get("error"), message.get("data")))
            return

        event = message.get("event")
        data = message.get("data")
        if event == "#publish" and isinstance(data, dict):
            await self._dispatch_channel(data.get("channel"), data.get("data"))
        elif event == "#setAuthToken" and isinstance(data, dict):
            self.auth_token = data.get("token")
            await _invoke(self._on_set_authentication, self, self.auth_token)
        elif event == "#removeAuthToken":
            self.auth_token = None
        else:
            self.log_debug("Unhandled signaling event", {"event": event})

    async def _dispatch_channel(self, channel: Optional[str], data: Any):
        if not channel:
            return
        handler = self._channel_handlers.get(channel_prefix(channel))
        if handler is None:
            self.log_debug("No handler for channel", {"channel": channel})
            return
        try:
            await _invoke(handler, channel, data)
        except Exception as e:
            self.log_error("Error in channel handler", {
                "channel": channel,
                "error": str(e),
                "error_type": type(e).__name__
            })

    async def _handle_closed(self, ws, error: Optional[BaseException]):
        if ws is not self._ws:
            return
        was_connected = self.connected
        self._ws = None
        self._listener_task = None
        self.connected = False

        for cid, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(TransportError("Signaling socket closed", {"cid": cid}))
        self._pending.clear()

        debug_log("🔌 [SignalingTransport] Disconnected from signaling server", {
            "error": str(error) if error else None
        })
        if was_connected:
            await _invoke(self._on_disconnect, self, error)

    def get_status(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "socket_id": self.socket_id,
            "subscriptions": sorted(self.subscriptions),
            "pending_acks": len(self._pending),
            "authenticated": self.auth_token is not None
        }
