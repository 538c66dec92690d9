# swordfight/config.py
import os
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "SWORDFIGHT_"

DEFAULTS = {
    # relay server
    "host": "0.0.0.0",
    "port": 8080,
    "allowed_origins": [
        "https://swordfight.me",
        "https://www.swordfight.me",
        "http://localhost:8080",
    ],
    "room_capacity": 2,
    "room_id_max_length": 100,
    "buffer_limit": 64,
    "log_level": "INFO",
    # clients
    "connect_timeout": 10.0,
    "max_reconnect_attempts": 5,
    "reconnect_delay": 1.0,
    "max_reconnect_delay": 10.0,
    "catalog_url": "http://localhost:8080",
}

COMPUTER = {
    "start_delay": 3.0,
    "thinking_delay": (0.5, 2.0),
    "retrieve_weapon_chance": 0.25,
    "bonus_move_chance": 0.33,
}


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, (list, tuple)):
        items = [part.strip() for part in raw.split(",") if part.strip()]
        if isinstance(default, tuple):
            return tuple(type(default[0])(item) for item in items)
        return items
    return raw


def load_config(env: Optional[Mapping[str, str]] = None, **overrides) -> Dict[str, Any]:
    """DEFAULTS + COMPUTER, then SWORDFIGHT_* environment values, then keyword overrides."""
    env = os.environ if env is None else env
    config: Dict[str, Any] = {**DEFAULTS, **COMPUTER}
    for key, default in list(config.items()):
        raw = env.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            config[key] = _coerce(raw, default)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Bad value for {ENV_PREFIX}{key.upper()}: {raw!r}") from exc
    config.update(overrides)
    return config
