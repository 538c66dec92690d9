# swordfight/engine/bonus.py
from typing import Dict, Iterable, Optional, Tuple

from .models import Move, Result


def accumulate(move: Move, grants: Optional[Iterable[Dict[str, int]]]) -> int:
    """Sum every carried grant keyed by the move's type, tag or name."""
    if not grants:
        return 0
    keys = {move.type, move.tag, move.name}
    bonus = 0
    for grant in grants:
        for key, amount in grant.items():
            if key in keys:
                bonus += int(amount)
    return bonus


def total_score(base: Optional[int], modifier: int, bonus: int) -> int:
    # an absent or non-numeric base counts as zero
    if isinstance(base, (int, float)) and not isinstance(base, bool):
        base_value = base
    else:
        try:
            base_value = int(base)
        except (TypeError, ValueError):
            base_value = 0
    return max(0, base_value + modifier + bonus)


def next_round_bonus(experienced: Result) -> Tuple[Dict[str, int], ...]:
    # grants only ever come from what a character suffered itself
    return tuple(dict(grant) for grant in experienced.bonus)
