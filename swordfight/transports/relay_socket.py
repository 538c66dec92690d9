# swordfight/transports/relay_socket.py
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from ..engine.errors import RoomFull, TransportError
from .base import Transport

logger = logging.getLogger(__name__)


def _default_client():
    return socketio.AsyncClient(reconnection=False)


class RelaySocketTransport(Transport):
    """
    Client for the relay server: one socket, explicit `join`/`leave` envelopes.
    Room membership is assigned by the server after the socket is open.
    """

    def __init__(self, server_url: str, connect_timeout: float = 10.0,
                 client_factory: Callable[[], Any] = _default_client):
        super().__init__()
        self.server_url = server_url
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._sio = None
        self._peers = 0
        self._joined: Optional[asyncio.Future] = None
        self._room_full = False

    async def connect(self, room_id: str) -> None:
        self.room_id = room_id
        self._room_full = False
        self._sio = self._client_factory()
        self._sio.on("message", self._on_message)
        self._sio.on("disconnect", self._on_disconnect)

        loop = asyncio.get_running_loop()
        self._joined = loop.create_future()
        try:
            await asyncio.wait_for(self._open(room_id), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._close_socket()
            raise TransportError(f"Timed out joining room {room_id} on {self.server_url}") from None
        except TransportError:
            await self._close_socket()
            raise
        self.connected = True
        logger.info("Joined room %s with %s peer(s)", room_id, self._peers)

    async def _open(self, room_id: str) -> None:
        try:
            await self._sio.connect(self.server_url, transports=["websocket"])
        except SocketConnectionError as exc:
            raise TransportError(f"Unable to reach relay {self.server_url}: {exc}") from exc
        await self._sio.send({"type": "join", "roomId": room_id})
        await self._joined

    async def _on_message(self, msg: Dict[str, Any]) -> None:
        if not isinstance(msg, dict) or "type" not in msg:
            logger.warning("Relay sent an envelope without a type: %r", msg)
            return
        kind = msg["type"]
        if kind == "joined":
            self._peers = int(msg.get("peers", 1))
            self._settle()
        elif kind == "peer-joined":
            self._peers = 2
            await self._announce()
            await self._dispatch("start")
        elif kind == "peer-left":
            self._peers = max(1, self._peers - 1)
            await self._dispatch("peer_left")
        elif kind == "room-full":
            self._room_full = True
            logger.warning("Room %s is full", self.room_id)
            self._settle(RoomFull(f"Room {self.room_id} is full"))
            await self._dispatch("room_full")
        elif kind == "error":
            message = msg.get("message", "relay error")
            if self._joined is not None and not self._joined.done():
                self._settle(TransportError(message))
            else:
                logger.warning("Relay error: %s", message)
        elif kind == "history":
            for item in msg.get("messages") or []:
                await self._on_message(item)
        else:
            await self._deliver(kind, msg)

    async def _deliver(self, kind: str, msg: Dict[str, Any]) -> None:
        if kind == "move":
            await self._dispatch("move", {"move": msg.get("move"), "round": msg.get("round"), "hint": msg.get("hint")})
        elif kind == "name":
            await self._dispatch("name", msg.get("name"))
        elif kind == "character":
            await self._dispatch("character", msg.get("characterSlug"))
        else:
            logger.debug("Ignoring relay message of type %s", kind)

    def _settle(self, exc: Optional[Exception] = None) -> None:
        if self._joined is None or self._joined.done():
            return
        if exc is None:
            self._joined.set_result(True)
        else:
            self._joined.set_exception(exc)

    async def _on_disconnect(self, *args) -> None:
        if self.connected:
            logger.info("Relay socket closed for room %s", self.room_id)
        self.connected = False
        self._peers = 0

    async def _send(self, envelope: Dict[str, Any]) -> None:
        if self._sio is None or not self.connected:
            raise TransportError("Not connected")
        await self._sio.send(envelope)

    async def send_move(self, payload: Dict[str, Any]) -> None:
        await self._send({"type": "move", **payload})

    async def send_name(self, name: str) -> None:
        await self._send({"type": "name", "name": name})

    async def send_character(self, slug: str) -> None:
        await self._send({"type": "character", "characterSlug": slug})

    async def _announce(self) -> None:
        # peer-joined can land before connect() finished awaiting
        self.connected = True
        await super()._announce()

    async def leave(self) -> None:
        if self._sio is not None and self.connected:
            await self._sio.send({"type": "leave"})
        self._peers = 0

    async def _close_socket(self) -> None:
        if self._sio is not None:
            await self._sio.disconnect()

    async def disconnect(self) -> None:
        if self._sio is not None and self.connected:
            await self.leave()
        self.connected = False
        await self._close_socket()
        self._sio = None
        self.clear_callbacks()

    def peer_count(self) -> int:
        return self._peers

    def is_room_full(self) -> bool:
        return self._room_full or super().is_room_full()
