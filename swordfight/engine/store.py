# swordfight/engine/store.py
import copy
import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import SaveLoadError

_SAFE_ID = re.compile(r"[^A-Za-z0-9_-]")


class MemoryStore:
    """Snapshots kept in a dict for the lifetime of the process."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def save(self, game_id: str, snapshot: Dict[str, Any]) -> None:
        self._data[game_id] = copy.deepcopy(snapshot)

    def load(self, game_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._data.get(game_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    def delete(self, game_id: str) -> None:
        self._data.pop(game_id, None)


class JsonFileStore:
    """One JSON file per game id under `directory`."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, game_id: str) -> Path:
        return self.directory / f"{_SAFE_ID.sub('_', game_id)}.json"

    def save(self, game_id: str, snapshot: Dict[str, Any]) -> None:
        path = self._path(game_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            raise SaveLoadError(f"Unable to save game {game_id} to {path}: {exc}") from exc

    def load(self, game_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(game_id)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise SaveLoadError(f"Unable to read saved game: {path}") from exc
        except json.JSONDecodeError as exc:
            raise SaveLoadError(f"Invalid JSON in {path}: {exc}") from exc

    def delete(self, game_id: str) -> None:
        path = self._path(game_id)
        if path.exists():
            path.unlink()
