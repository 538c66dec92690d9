# swordfight/engine/dice.py
import random


def rng_for(seed: int, round_number: int) -> random.Random:
    # deterministic per game seed + round
    return random.Random(f"{seed}:{round_number}")


def chance(probability: float, r: random.Random) -> bool:
    return r.random() < probability
