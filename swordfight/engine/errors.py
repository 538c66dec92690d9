# swordfight/engine/errors.py
"""Exceptions raised by the engine, the catalog and the transports."""


class SwordfightError(Exception):
    """Base exception for the game."""


class CharacterDataError(SwordfightError):
    """Raised when character content is malformed or inconsistent."""


class ResolutionMissing(CharacterDataError):
    """Raised when a resolution table has no usable entry for a move pair."""

    def __init__(self, defender: str, attacker_move: str, defender_move: str, reason: str):
        super().__init__(
            f"{defender}: no resolution for {attacker_move} vs {defender_move} ({reason})"
        )
        self.defender = defender
        self.attacker_move = attacker_move
        self.defender_move = defender_move


class NoLegalMoves(CharacterDataError):
    """Raised when a constraint leaves a character with nothing to play."""


class UnknownCharacter(SwordfightError):
    """Raised when a slug is not in the catalog."""


class IllegalMove(SwordfightError):
    """Raised when a move is not legal for the current round."""


class RoundDesync(SwordfightError):
    """Raised when both sides disagree on the current round."""


class MalformedMessage(SwordfightError):
    """Raised when an inbound envelope is missing required fields."""


class SaveLoadError(SwordfightError):
    """Raised when save or load operations fail."""


class TransportError(SwordfightError):
    """Base exception for transport failures."""


class RoomFull(TransportError):
    """Raised when a room already holds two participants."""


class ConnectionLost(TransportError):
    """Raised when a transport gives up reconnecting."""


class InvalidRoomId(TransportError):
    """Raised when a room id fails validation."""
