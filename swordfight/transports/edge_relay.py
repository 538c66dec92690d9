# swordfight/transports/edge_relay.py
import asyncio
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from ..engine.errors import ConnectionLost, RoomFull, TransportError
from .base import Transport

logger = logging.getLogger(__name__)


def _default_client():
    # reconnection is handled here so the backoff stays bounded and observable
    return socketio.AsyncClient(reconnection=False)


class EdgeRelayTransport(Transport):
    """
    Client for a room-scoped relay: the room is chosen by the connection URL and
    the relay keeps state per room. Unexpected drops are retried with a linear
    backoff capped at `max_reconnect_delay`; after `max_reconnect_attempts`
    failures a `connection_lost` notification is raised.
    """

    def __init__(self, server_url: str, connect_timeout: float = 10.0,
                 max_reconnect_attempts: int = 5, reconnect_delay: float = 1.0,
                 max_reconnect_delay: float = 10.0,
                 client_factory: Callable[[], Any] = _default_client):
        super().__init__()
        self.server_url = server_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.reconnect_attempts = 0
        self._client_factory = client_factory
        self.gave_up = False
        self._sio = None
        self._peers = 0
        self._opened: Optional[asyncio.Future] = None
        self._closing = False
        self._room_full = False
        self._reconnect_task: Optional[asyncio.Task] = None

    def url_for(self, room_id: str) -> str:
        return f"{self.server_url}?{urlencode({'room': room_id})}"

    def backoff(self, attempt: int) -> float:
        return min(self.reconnect_delay * attempt, self.max_reconnect_delay)

    async def connect(self, room_id: str) -> None:
        self.room_id = room_id
        self.gave_up = False
        self._closing = False
        self._room_full = False
        await self._open_socket()
        logger.info("Connected to room %s (%s peer(s))", room_id, self._peers)

    async def _open_socket(self) -> None:
        sio = self._client_factory()
        sio.on("message", self._on_message)
        sio.on("disconnect", self._on_disconnect)
        self._sio = sio
        self._opened = asyncio.get_running_loop().create_future()
        try:
            await asyncio.wait_for(self._handshake(sio), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._drop(sio)
            raise TransportError(f"Timed out connecting to {self.url_for(self.room_id)}") from None
        except TransportError:
            await self._drop(sio)
            raise
        self.connected = True
        self.reconnect_attempts = 0
        await self._announce()

    async def _handshake(self, sio) -> None:
        try:
            await sio.connect(self.url_for(self.room_id), transports=["websocket"])
        except SocketConnectionError as exc:
            raise TransportError(f"Unable to reach relay {self.server_url}: {exc}") from exc
        await self._opened

    async def _drop(self, sio) -> None:
        self._closing = True
        try:
            await sio.disconnect()
        finally:
            self._closing = False

    async def _on_message(self, msg: Dict[str, Any]) -> None:
        if not isinstance(msg, dict) or "type" not in msg:
            logger.warning("Relay sent an envelope without a type: %r", msg)
            return
        kind = msg["type"]
        if kind == "joined":
            self._peers = int(msg.get("peers", 1))
            self._resolve_open()
        elif kind == "peer-joined":
            self._peers = 2
            await self._dispatch("start")
        elif kind == "peer-left":
            self._peers = max(1, self._peers - 1)
            await self._dispatch("peer_left")
        elif kind == "room-full":
            self._room_full = True
            self._closing = True
            logger.warning("Room %s is full", self.room_id)
            self._resolve_open(RoomFull(f"Room {self.room_id} is full"))
            await self._dispatch("room_full")
        elif kind == "error":
            message = msg.get("message", "relay error")
            if self._opened is not None and not self._opened.done():
                self._resolve_open(TransportError(message))
            else:
                logger.warning("Relay error: %s", message)
        elif kind == "history":
            for item in msg.get("messages") or []:
                await self._on_message(item)
        elif kind == "move":
            await self._dispatch("move", {"move": msg.get("move"), "round": msg.get("round"), "hint": msg.get("hint")})
        elif kind == "name":
            await self._dispatch("name", msg.get("name"))
        elif kind == "character":
            await self._dispatch("character", msg.get("characterSlug"))
        else:
            logger.debug("Ignoring relay message of type %s", kind)

    def _resolve_open(self, exc: Optional[Exception] = None) -> None:
        if self._opened is None or self._opened.done():
            return
        if exc is None:
            self._opened.set_result(True)
        else:
            self._opened.set_exception(exc)

    async def _on_disconnect(self, *args) -> None:
        was_connected = self.connected
        self.connected = False
        if self._closing or not was_connected:
            return
        logger.warning("Lost connection to room %s, reconnecting", self.room_id)
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self) -> None:
        while self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            delay = self.backoff(self.reconnect_attempts)
            logger.info("Reconnect attempt %s/%s in %.1fs",
                        self.reconnect_attempts, self.max_reconnect_attempts, delay)
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self._open_socket()
                return
            except RoomFull:
                return
            except TransportError as exc:
                logger.warning("Reconnect attempt %s failed: %s", self.reconnect_attempts, exc)
        logger.error("Giving up on room %s after %s attempts", self.room_id, self.reconnect_attempts)
        self.gave_up = True
        await self._dispatch("connection_lost", {"attempts": self.reconnect_attempts})

    async def _send(self, envelope: Dict[str, Any]) -> None:
        if self.gave_up:
            raise ConnectionLost(f"Connection to room {self.room_id} was lost")
        if self._sio is None or not self.connected:
            raise TransportError("Not connected")
        await self._sio.send(envelope)

    async def send_move(self, payload: Dict[str, Any]) -> None:
        await self._send({"type": "move", **payload})

    async def send_name(self, name: str) -> None:
        await self._send({"type": "name", "name": name})

    async def send_character(self, slug: str) -> None:
        await self._send({"type": "character", "characterSlug": slug})

    async def disconnect(self) -> None:
        self._closing = True
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        if self._sio is not None:
            await self._sio.disconnect()
        self._sio = None
        self.connected = False
        self._peers = 0
        self.clear_callbacks()

    def peer_count(self) -> int:
        return self._peers

    def is_room_full(self) -> bool:
        return self._room_full or super().is_room_full()
