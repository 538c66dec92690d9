# swordfight/state.py
import logging
import re
import threading
from typing import Any, Callable, Dict, List, Optional

from .engine.errors import InvalidRoomId, MalformedMessage

logger = logging.getLogger(__name__)

ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
REPLAYABLE_TYPES = ("move", "name", "character", "ready")

Envelope = Dict[str, Any]
Sender = Callable[[str, Envelope], None]


def validate_room_id(room_id: Any, max_length: int = 100) -> str:
    if not isinstance(room_id, str) or not room_id:
        raise InvalidRoomId("Room id is required")
    if len(room_id) > max_length:
        raise InvalidRoomId(f"Room id longer than {max_length} characters")
    if not ROOM_ID_PATTERN.match(room_id):
        raise InvalidRoomId("Room id may only contain letters, digits, '-' and '_'")
    return room_id


class RelayRoom:
    """
    One room, at most `capacity` sockets. Every message is forwarded verbatim to
    the other side; while a socket is alone, replayable messages are buffered and
    handed to the next socket that joins as a single `history` envelope.
    """

    def __init__(self, room_id: str, send: Sender, capacity: int = 2, buffer_limit: int = 64):
        self.room_id = room_id
        self.sessions: List[str] = []
        self.buffer: List[Envelope] = []
        self.capacity = capacity
        self.buffer_limit = buffer_limit
        self._send = send
        self._lock = threading.RLock()

    @property
    def is_empty(self) -> bool:
        return not self.sessions

    def connect(self, sid: str) -> bool:
        with self._lock:
            if sid in self.sessions:
                self._send(sid, {"type": "joined", "roomId": self.room_id, "peers": len(self.sessions)})
                return True
            if len(self.sessions) >= self.capacity:
                logger.info("Room %s full, rejecting %s", self.room_id, sid)
                self._send(sid, {"type": "room-full"})
                return False

            self.sessions.append(sid)
            self._send(sid, {"type": "joined", "roomId": self.room_id, "peers": len(self.sessions)})
            if len(self.sessions) == self.capacity:
                if self.buffer:
                    history, self.buffer = self.buffer, []
                    self._send(sid, {"type": "history", "messages": history})
                for member in self.sessions:
                    self._send(member, {"type": "peer-joined", "peers": len(self.sessions)})
            return True

    def handle_message(self, sid: str, msg: Any) -> int:
        """Forward `msg` from `sid`; returns how many sockets it reached."""
        if not isinstance(msg, dict) or not msg.get("type"):
            raise MalformedMessage("Message type is required")
        with self._lock:
            if sid not in self.sessions:
                raise MalformedMessage(f"{sid} is not in room {self.room_id}")
            others = [member for member in self.sessions if member != sid]
            if not others:
                if msg["type"] in REPLAYABLE_TYPES:
                    self.buffer.append(msg)
                    if len(self.buffer) > self.buffer_limit:
                        del self.buffer[0]
                return 0
            for member in others:
                self._send(member, msg)
            return len(others)

    def disconnect(self, sid: str) -> None:
        with self._lock:
            if sid not in self.sessions:
                return
            self.sessions.remove(sid)
            for member in self.sessions:
                self._send(member, {"type": "peer-left"})
            if not self.sessions:
                self.buffer.clear()


rooms: Dict[str, RelayRoom] = {}
sid_to_room: Dict[str, str] = {}
# guards rooms and sid_to_room together; joins and leaves hold it end to end
_registry_lock = threading.RLock()


def get_or_create_room(room_id: str, send: Sender, capacity: int = 2, buffer_limit: int = 64) -> RelayRoom:
    with _registry_lock:
        room = rooms.get(room_id)
        if room is None:
            room = RelayRoom(room_id, send, capacity=capacity, buffer_limit=buffer_limit)
            rooms[room_id] = room
        return room


def get_room_by_sid(sid: str) -> Optional[RelayRoom]:
    room_id = sid_to_room.get(sid)
    if not room_id:
        return None
    return rooms.get(room_id)


def attach(sid: str, room_id: str, send: Sender, capacity: int = 2, buffer_limit: int = 64) -> bool:
    with _registry_lock:
        room = get_or_create_room(room_id, send, capacity=capacity, buffer_limit=buffer_limit)
        if not room.connect(sid):
            cleanup_room(room_id)
            return False
        sid_to_room[sid] = room_id
        return True


def detach(sid: str) -> Optional[str]:
    with _registry_lock:
        room_id = sid_to_room.pop(sid, None)
        if not room_id:
            return None
        room = rooms.get(room_id)
        if room is not None:
            room.disconnect(sid)
            cleanup_room(room_id)
        return room_id


def cleanup_room(room_id: str) -> bool:
    """Drop `room_id` from the registry if nobody is left in it."""
    with _registry_lock:
        room = rooms.get(room_id)
        if room is None or not room.is_empty:
            return False
        del rooms[room_id]
        return True
