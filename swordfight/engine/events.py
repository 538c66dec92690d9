# swordfight/engine/events.py
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

EVENTS = (
    "setup",
    "round",
    "my_move",
    "opponent_move",
    "name",
    "character",
    "start",
    "victory",
    "defeat",
    "desync",
    "room_full",
    "peer_left",
    "connection_lost",
)


class Notifier:
    """Explicit subscriber lists owned by a single game."""

    def __init__(self, events=EVENTS):
        self._subscribers: Dict[str, List[Callable[[Any], Any]]] = {name: [] for name in events}
        self._tasks: Set["asyncio.Future"] = set()

    def subscribe(self, event: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        if event not in self._subscribers:
            raise ValueError(f"Unknown event '{event}'")
        self._subscribers[event].append(callback)
        return lambda: self.unsubscribe(event, callback)

    def unsubscribe(self, event: str, callback: Callable[[Any], Any]) -> bool:
        try:
            self._subscribers.get(event, []).remove(callback)
            return True
        except ValueError:
            return False

    def emit(self, event: str, detail: Any = None) -> None:
        for callback in list(self._subscribers.get(event, [])):
            try:
                outcome = callback(detail)
                if inspect.isawaitable(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                    task.add_done_callback(_log_task_failure)
            except Exception:
                logger.exception("Subscriber for '%s' failed", event)


def _log_task_failure(task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Async subscriber failed", exc_info=exc)
