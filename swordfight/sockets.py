# swordfight/sockets.py
import logging

from flask import request
from flask_socketio import disconnect

from . import state
from .engine.errors import InvalidRoomId, MalformedMessage

logger = logging.getLogger(__name__)


def register_relay_socket_handlers(socketio, config):
    capacity = config["room_capacity"]
    buffer_limit = config["buffer_limit"]
    max_length = config["room_id_max_length"]

    def deliver(sid, envelope):
        socketio.send(envelope, to=sid)

    def join(sid, room_id):
        """True when joined, False when the room is full, None for a bad id."""
        try:
            state.validate_room_id(room_id, max_length)
        except InvalidRoomId as exc:
            deliver(sid, {"type": "error", "message": str(exc)})
            return None
        current = state.get_room_by_sid(sid)
        if current is not None:
            if current.room_id == room_id:
                return current.connect(sid)
            state.detach(sid)
        joined = state.attach(sid, room_id, deliver, capacity=capacity, buffer_limit=buffer_limit)
        if joined:
            logger.info("%s joined room %s", sid, room_id)
        return joined

    @socketio.on("connect")
    def relay_connect(auth=None):
        sid = request.sid
        room_id = request.args.get("room")
        if room_id is None and isinstance(auth, dict):
            room_id = auth.get("room")
        if room_id is None:
            # plain socket, the room comes later with a join envelope
            return None
        if not join(sid, room_id):
            return False
        return None

    @socketio.on("message")
    def relay_message(msg):
        sid = request.sid
        if not isinstance(msg, dict) or not msg.get("type"):
            deliver(sid, {"type": "error", "message": "Message type is required"})
            return
        kind = msg["type"]
        if kind == "join":
            if join(sid, msg.get("roomId")) is False:
                disconnect()
            return
        if kind == "leave":
            state.detach(sid)
            return

        room = state.get_room_by_sid(sid)
        if room is None:
            deliver(sid, {"type": "error", "message": "Join a room first"})
            return
        try:
            room.handle_message(sid, msg)
        except MalformedMessage as exc:
            deliver(sid, {"type": "error", "message": str(exc)})

    @socketio.on("disconnect")
    def relay_disconnect(*args):
        sid = request.sid
        room_id = state.detach(sid)
        if room_id:
            logger.info("%s left room %s", sid, room_id)
