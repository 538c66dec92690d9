# swordfight/engine/rules.py
from typing import Dict

from .models import CharacterState, RoundSide


def clamp(x: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, x))


def damage_taken(other: RoundSide) -> int:
    # unscored results never hurt, whatever the modifiers add up to
    if other.score is None or other.total_score <= 0:
        return 0
    return other.total_score


def apply_round(state: CharacterState, own: RoundSide, other: RoundSide) -> Dict[str, int]:
    """
    Apply one resolved round to `state`.

    `own` is this character's acting side, `other` the opponent's; what this
    character suffered is `other.result`. Health is written exactly once.
    Returns the deltas for logging.
    """
    suffered = other.result
    damage = damage_taken(other)

    health = state.health - damage - suffered.self_damage
    healed = 0
    if suffered.heal and damage == 0 and health < state.starting_health:
        healed = min(health + suffered.heal, state.starting_health) - health
        health += healed
    state.health = health

    if suffered.weapon_dislodged or own.result.opponent_weapon_dislodged:
        state.weapon = False
    if suffered.retrieve_weapon and not state.weapon and not state.weapon_destroyed:
        state.weapon = True
    if suffered.weapon_destroyed:
        state.weapon = False
        state.weapon_destroyed = True
    if suffered.shield_destroyed:
        state.shield = False
        state.shield_destroyed = True

    stamina_lost = 0
    if state.stamina is not None:
        stamina_lost = own.move.stamina_cost
        if damage > 0:
            stamina_lost += suffered.stamina_damage
        if own.score is not None and own.total_score > 0:
            stamina_lost += own.result.self_stamina
        cap = state.starting_stamina if state.starting_stamina is not None else state.stamina
        state.stamina = clamp(state.stamina - stamina_lost, 0, max(cap, 0))

    return {
        "damage": damage,
        "self_damage": suffered.self_damage,
        "healed": healed,
        "stamina_lost": stamina_lost,
    }


def is_defeated(state: CharacterState) -> bool:
    if state.health <= 0:
        return True
    return state.stamina is not None and state.stamina <= 0
