"""
Socket.IO control channel between the player and the chat room.

Player commands and state updates travel as the "msg" event.  Its single
argument is the {"cmd": ..., "args": [...]} envelope encoded as a JSON
string; inbound payloads that arrive as an already-decoded object are
accepted too.

Usage:
    channel = ControlChannel("ws://chat.local:8080")
    channel.set_connected_handler(resync)
    await channel.start()
    envelope = await channel.receive()
    await channel.send_event("msg", {"cmd": "player.pause", "args": [...]})
    await channel.stop()

The first connection is retried forever with exponential backoff; after
that the Socket.IO client reconnects on its own.  A disconnect ordered by
the server goes back through the same retry loop.  Inbound envelopes are
queued in arrival order.
"""

import asyncio
import json
import logging
from urllib.parse import urlsplit, urlunsplit

import socketio

from .commands import CHAT_EVENT_MESSAGE

logger = logging.getLogger(__name__)

SOCKETIO_PATH = "socket.io"
SERVER_DISCONNECT = "io server disconnect"


def server_url(url: str) -> str:
    """Strip a legacy "/socket.io/?EIO=..." suffix down to the server root."""
    parts = urlsplit(url)
    if parts.path.strip("/").startswith(SOCKETIO_PATH):
        return urlunsplit((parts.scheme, parts.netloc, "", "", ""))
    return url


class ControlChannel:

    def __init__(self, url: str, max_backoff: float = 30):
        self.url = server_url(url)
        self.max_backoff = max_backoff
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._running = False
        self._connected_handler = None
        self._handler_tasks: set[asyncio.Task] = set()

        self._sio = socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=1,
            reconnection_delay_max=max_backoff,
        )
        self._sio.on("connect", self._on_connect)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on(CHAT_EVENT_MESSAGE, self._on_message)

    @property
    def connected(self) -> bool:
        # Namespace membership is set before the client flips its own flag.
        return bool(self._sio.namespaces)

    def set_connected_handler(self, callback):
        """Register an async callback run after every (re)connect.

        Callback signature: async def handler() -> None
        """
        self._connected_handler = callback

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._connect_loop())
        logger.info("Control channel starting -> %s", self.url)

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._handler_tasks):
            task.cancel()
        await self._sio.disconnect()
        logger.info("Control channel stopped")

    async def receive(self):
        """Next inbound envelope, in arrival order."""
        return await self._queue.get()

    async def send_event(self, event: str, data) -> bool:
        if not self.connected:
            logger.debug("Control channel not connected, dropping %s", event)
            return False
        try:
            await self._sio.emit(event, json.dumps(data))
            return True
        except socketio.exceptions.SocketIOError as e:
            logger.warning("Control channel send failed: %s", e)
            return False

    # --- connection ---------------------------------------------------------

    async def _connect_loop(self, delay: float = 0):
        backoff = 1
        if delay:
            await asyncio.sleep(delay)
        while self._running and not self._sio.connected:
            try:
                await self._sio.connect(
                    self.url, transports=["websocket"], socketio_path=SOCKETIO_PATH,
                )
                return
            except (socketio.exceptions.ConnectionError, ValueError) as e:
                logger.warning("Control channel connect failed (%s)", e)
            logger.info("Reconnecting control channel in %ds", backoff)
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff)

    async def _on_connect(self):
        logger.info("Control channel connected")
        if self._connected_handler:
            # Off the read loop so a slow resync cannot stall the handshake.
            task = asyncio.create_task(self._run_connected_handler())
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

    async def _run_connected_handler(self):
        try:
            await self._connected_handler()
        except Exception:
            logger.exception("Control channel connect handler failed")

    async def _on_disconnect(self, *args):
        reason = args[0] if args else None
        logger.warning("Control channel disconnected (%s)", reason or "unknown reason")
        # The client only reconnects by itself after transport failures.
        if self._running and reason == SERVER_DISCONNECT:
            self._task = asyncio.create_task(self._connect_loop(delay=1))

    async def _on_message(self, payload):
        self.feed(payload)

    def feed(self, payload):
        """Queue one "msg" payload's envelope. Undecodable payloads are dropped."""
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                logger.warning("Control channel: invalid JSON payload: %.200s", payload)
                return
        logger.debug("Got chat message: %s", payload)
        self._queue.put_nowait(payload)
