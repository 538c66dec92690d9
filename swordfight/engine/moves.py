# swordfight/engine/moves.py
from typing import List, Optional

from .errors import NoLegalMoves
from .models import CharacterState, Move, MoveConstraint, Result

RETRIEVE_WEAPON = "Retrieve Weapon"


def constraint_from_result(result: Optional[Result], default_range: str = "close") -> MoveConstraint:
    """Constraint imposed on the character that suffered `result`."""
    if result is None:
        return MoveConstraint(range=default_range)
    return MoveConstraint(
        range=result.range,
        restrict=tuple(result.restrict),
        allow_only=tuple(result.allow_only) if result.allow_only else None,
    )


def _allowed_by_list(move: Move, constraint: MoveConstraint) -> bool:
    if constraint.allow_only:
        # allow-only replaces the restriction list entirely
        return move.tag in constraint.allow_only or move.name in constraint.allow_only
    blocked = set(constraint.restrict)
    return not ({move.type, move.tag, move.name} & blocked)


def _allowed_by_equipment(move: Move, state: CharacterState) -> bool:
    if move.requires_weapon and not state.weapon:
        return False
    if move.requires_shield and not state.shield:
        return False
    if move.name == RETRIEVE_WEAPON:
        return not state.weapon and not state.weapon_destroyed
    return True


def legal_moves(state: CharacterState, constraint: MoveConstraint) -> List[Move]:
    moves = [
        mv for mv in state.template.moves
        if _allowed_by_list(mv, constraint)
        and _allowed_by_equipment(mv, state)
        and mv.range == constraint.range
    ]
    if not moves:
        raise NoLegalMoves(
            f"{state.slug} has no legal move at {constraint.range} "
            f"(restrict={list(constraint.restrict)}, allow_only={constraint.allow_only})"
        )
    return moves
