# swordfight/transports/base.py
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

NOTIFICATIONS = ("start", "room_full", "peer_left", "connection_lost")


class Transport(ABC):
    """
    Duplex channel between two players.

    Receive-side calls (`get_move`, `get_name`, `get_character`, `on`) only
    register callbacks; data shows up whenever the peer sends it and the three
    channels are not ordered relative to each other.
    """

    def __init__(self):
        self.player_name: Optional[str] = None
        self.character_slug: Optional[str] = None
        self.room_id: Optional[str] = None
        self.connected = False
        self._callbacks: Dict[str, List[Callable[[Any], Any]]] = {}

    def set_identity(self, name: Optional[str], character_slug: Optional[str]) -> None:
        self.player_name = name
        self.character_slug = character_slug

    @abstractmethod
    async def connect(self, room_id: str) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def send_move(self, payload: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def send_name(self, name: str) -> None:
        ...

    @abstractmethod
    async def send_character(self, slug: str) -> None:
        ...

    @abstractmethod
    def peer_count(self) -> int:
        ...

    def is_room_full(self) -> bool:
        return self.peer_count() >= 2

    def get_move(self, callback: Callable[[Any], Any]) -> None:
        self._register("move", callback)

    def get_name(self, callback: Callable[[Any], Any]) -> None:
        self._register("name", callback)

    def get_character(self, callback: Callable[[Any], Any]) -> None:
        self._register("character", callback)

    def on(self, notification: str, callback: Callable[[Any], Any]) -> None:
        if notification not in NOTIFICATIONS:
            raise ValueError(f"Unknown notification '{notification}'")
        self._register(notification, callback)

    def _register(self, channel: str, callback: Callable[[Any], Any]) -> None:
        self._callbacks.setdefault(channel, []).append(callback)

    def clear_callbacks(self) -> None:
        self._callbacks.clear()

    async def _dispatch(self, channel: str, data: Any = None) -> None:
        for callback in list(self._callbacks.get(channel, [])):
            try:
                outcome = callback(data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("%s callback for '%s' failed", type(self).__name__, channel)

    async def _announce(self) -> None:
        if self.player_name:
            await self.send_name(self.player_name)
        if self.character_slug:
            await self.send_character(self.character_slug)
