# swordfight/engine/resolver.py
import logging

from .errors import ResolutionMissing
from .models import Character, Move, Result, IMPOSSIBLE

logger = logging.getLogger(__name__)

NEUTRAL_RESULT_ID = "neutral"


def resolve(defender: Character, attacker_move: Move, defender_move: Move) -> Result:
    """
    Look up what `defender` experiences when hit by `attacker_move` while playing
    `defender_move`. The defender is always explicit: the same pair of moves is
    resolved once against each character's own table.
    """
    row = defender.tables.get(attacker_move.id)
    if row is None:
        raise ResolutionMissing(defender.slug, attacker_move.id, defender_move.id, "no table row")
    outcome = row.get(defender_move.id)
    if outcome is None:
        raise ResolutionMissing(defender.slug, attacker_move.id, defender_move.id, "no table entry")
    if outcome == IMPOSSIBLE:
        raise ResolutionMissing(defender.slug, attacker_move.id, defender_move.id, "impossible pairing")
    result = defender.results.get(outcome)
    if result is None:
        raise ResolutionMissing(defender.slug, attacker_move.id, defender_move.id, f"unknown result '{outcome}'")
    return result


def neutral_result(range_: str) -> Result:
    # no score, no flags, keeps the fight at the range it was in
    return Result(id=NEUTRAL_RESULT_ID, name="Nothing happens", range=range_)


def resolve_or_fallback(defender: Character, attacker_move: Move, defender_move: Move) -> Result:
    try:
        return resolve(defender, attacker_move, defender_move)
    except ResolutionMissing as exc:
        logger.error("Corrupt character data, substituting neutral result: %s", exc)
        return neutral_result(defender_move.range)
