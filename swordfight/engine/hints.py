# swordfight/engine/hints.py
from typing import List, Optional

from .models import Character, Move, Result


def must_hint(previous_result: Optional[Result]) -> bool:
    """
    `previous_result` is what the *opponent* suffered last round; if it carries
    provide-hint, the side that caused it has to reveal part of its next move.
    """
    return previous_result is not None and previous_result.provide_hint


def _numeric_key(move_id: str):
    try:
        return (0, int(move_id), move_id)
    except ValueError:
        return (1, 0, move_id)


def build_hint(chosen: Move, character: Character) -> Optional[List[str]]:
    ids = sorted(character.move_ids, key=_numeric_key)
    if len(ids) < 2 or chosen.id not in ids:
        return None
    pos = ids.index(chosen.id)
    return ids[max(0, pos - 1):pos + 2]


def format_hint(hint: Optional[List[str]], character: Character) -> str:
    if not hint:
        return ""
    names = []
    for move_id in hint:
        names.append(character.move(move_id).name if character.has_move(move_id) else move_id)
    return "Move is one of: " + ", ".join(names)
