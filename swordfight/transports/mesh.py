# swordfight/transports/mesh.py
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import socketio
from aiortc import RTCPeerConnection, RTCSessionDescription
from socketio.exceptions import ConnectionError as SocketConnectionError

from ..engine.errors import RoomFull, TransportError
from .base import Transport

logger = logging.getLogger(__name__)

CHANNEL_LABEL = "swordfight"


def _default_client():
    return socketio.AsyncClient(reconnection=False)


class PeerMeshTransport(Transport):
    """
    Direct peer-to-peer data channel. The relay is only used as a signalling
    broker: whoever was alone in the room makes the offer once the second peer
    shows up, the other side answers, and from then on every envelope travels
    over the WebRTC data channel.
    """

    def __init__(self, signalling_url: str, connect_timeout: float = 10.0, app_id: str = "swordfight",
                 client_factory: Callable[[], Any] = _default_client,
                 peer_factory: Callable[[], Any] = RTCPeerConnection):
        super().__init__()
        self.signalling_url = signalling_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.app_id = app_id
        self._client_factory = client_factory
        self._peer_factory = peer_factory
        self._sio = None
        self._pc = None
        self._channel = None
        self._initiator = False
        self._peers = 0
        self._joined: Optional[asyncio.Future] = None
        self._closing = False

    def url_for(self, room_id: str) -> str:
        return f"{self.signalling_url}?{urlencode({'room': f'{self.app_id}-{room_id}'})}"

    async def connect(self, room_id: str) -> None:
        self.room_id = room_id
        self._closing = False
        self._sio = self._client_factory()
        self._sio.on("message", self._on_signal)
        self._sio.on("disconnect", self._on_signalling_closed)
        self._joined = asyncio.get_running_loop().create_future()
        try:
            await asyncio.wait_for(self._join(room_id), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._close_signalling()
            raise TransportError(f"Timed out joining mesh room {room_id}") from None
        except TransportError:
            await self._close_signalling()
            raise
        self.connected = True
        logger.info("Joined mesh room %s as %s", room_id, "initiator" if self._initiator else "responder")

    async def _join(self, room_id: str) -> None:
        try:
            await self._sio.connect(self.url_for(room_id), transports=["websocket"])
        except SocketConnectionError as exc:
            raise TransportError(f"Unable to reach signalling broker: {exc}") from exc
        await self._joined

    # ---- signalling ---------------------------------------------------------

    async def _on_signal(self, msg: Dict[str, Any]) -> None:
        if not isinstance(msg, dict):
            return
        kind = msg.get("type")
        if kind == "joined":
            self._peers = int(msg.get("peers", 1))
            if self._peers > 2:
                self._settle(RoomFull(f"Room {self.room_id} is full"))
                return
            self._initiator = self._peers == 1
            self._settle()
        elif kind == "room-full":
            self._closing = True
            self._settle(RoomFull(f"Room {self.room_id} is full"))
            await self._dispatch("room_full")
        elif kind == "peer-joined":
            self._peers = 2
            if self._initiator:
                await self._offer()
        elif kind == "peer-left":
            self._peers = 1
            await self._close_peer()
            await self._dispatch("peer_left")
        elif kind == "signal":
            await self._on_description(msg)
        elif kind == "error":
            if self._joined is not None and not self._joined.done():
                self._settle(TransportError(msg.get("message", "signalling error")))
            else:
                logger.warning("Signalling error: %s", msg.get("message"))

    def _settle(self, exc: Optional[Exception] = None) -> None:
        if self._joined is None or self._joined.done():
            return
        if exc is None:
            self._joined.set_result(True)
        else:
            self._joined.set_exception(exc)

    async def _signal(self, description) -> None:
        await self._sio.send({"type": "signal", "sdp": description.sdp, "kind": description.type})

    def _new_peer(self):
        pc = self._peer_factory()

        @pc.on("datachannel")
        def on_datachannel(channel):
            self._bind_channel(channel)

        @pc.on("connectionstatechange")
        async def on_state():
            if pc.connectionState == "failed" and not self._closing:
                logger.warning("Peer connection failed in room %s", self.room_id)
                await self._dispatch("peer_left")

        self._pc = pc
        return pc

    async def _offer(self) -> None:
        pc = self._new_peer()
        self._bind_channel(pc.createDataChannel(CHANNEL_LABEL))
        await pc.setLocalDescription(await pc.createOffer())
        await self._signal(pc.localDescription)

    async def _on_description(self, msg: Dict[str, Any]) -> None:
        kind = msg.get("kind")
        if kind not in ("offer", "answer"):
            logger.warning("Unexpected signal of kind %r", kind)
            return
        description = RTCSessionDescription(sdp=msg.get("sdp", ""), type=kind)
        if description.type == "offer":
            pc = self._new_peer()
            await pc.setRemoteDescription(description)
            await pc.setLocalDescription(await pc.createAnswer())
            await self._signal(pc.localDescription)
        elif self._pc is not None:
            await self._pc.setRemoteDescription(description)
        else:
            logger.warning("Answer arrived before any offer in room %s", self.room_id)

    async def _on_signalling_closed(self, *args) -> None:
        if not self._closing:
            logger.info("Signalling closed for room %s", self.room_id)

    # ---- data channel -------------------------------------------------------

    def _bind_channel(self, channel) -> None:
        self._channel = channel

        @channel.on("open")
        async def on_open():
            await self._channel_opened()

        @channel.on("message")
        async def on_message(raw):
            await self._on_channel_message(raw)

        if getattr(channel, "readyState", None) == "open":
            asyncio.ensure_future(self._channel_opened())

    async def _channel_opened(self) -> None:
        await self._announce()
        await self._dispatch("start")

    async def _on_channel_message(self, raw) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable data channel message")
            return
        kind = msg.get("type") if isinstance(msg, dict) else None
        if kind == "move":
            await self._dispatch("move", {"move": msg.get("move"), "round": msg.get("round"), "hint": msg.get("hint")})
        elif kind == "name":
            await self._dispatch("name", msg.get("name"))
        elif kind == "character":
            await self._dispatch("character", msg.get("characterSlug"))
        else:
            logger.warning("Data channel message without a known type: %r", kind)

    async def _send(self, envelope: Dict[str, Any]) -> None:
        if self._channel is None or getattr(self._channel, "readyState", "open") != "open":
            raise TransportError("Data channel is not open")
        self._channel.send(json.dumps(envelope))

    async def send_move(self, payload: Dict[str, Any]) -> None:
        await self._send({"type": "move", **payload})

    async def send_name(self, name: str) -> None:
        await self._send({"type": "name", "name": name})

    async def send_character(self, slug: str) -> None:
        await self._send({"type": "character", "characterSlug": slug})

    # ---- teardown -----------------------------------------------------------

    async def _close_peer(self) -> None:
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        if self._pc is not None:
            await self._pc.close()
            self._pc = None

    async def _close_signalling(self) -> None:
        if self._sio is not None:
            await self._sio.disconnect()

    async def disconnect(self) -> None:
        self._closing = True
        await self._close_peer()
        await self._close_signalling()
        self._sio = None
        self.connected = False
        self._peers = 0
        self.clear_callbacks()

    def peer_count(self) -> int:
        return self._peers
