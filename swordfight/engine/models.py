# swordfight/engine/models.py
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple

from .errors import CharacterDataError

IMPOSSIBLE = "00"   # table marker for move pairs that cannot co-occur


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any, default: int = 0) -> int:
    parsed = _int_or_none(value)
    return default if parsed is None else parsed


@dataclass(frozen=True)
class Move:
    id: str
    name: str
    tag: str = ""
    range: str = "close"                  # "close" | "medium" | "far"
    type: str = ""                        # strong/high/low/defense/...
    mod: int = 0
    requires_weapon: bool = False
    requires_shield: bool = False
    stamina_cost: int = 0                 # negative restores

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Move":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            tag=data.get("tag", ""),
            range=data.get("range", "close"),
            type=data.get("type", ""),
            mod=_int(data.get("mod")),
            requires_weapon=bool(data.get("requiresWeapon", False)),
            requires_shield=bool(data.get("requiresShield", False)),
            stamina_cost=_int(data.get("staminaCost")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "tag": self.tag,
            "range": self.range,
            "type": self.type,
            "mod": self.mod,
        }
        if self.requires_weapon:
            out["requiresWeapon"] = True
        if self.requires_shield:
            out["requiresShield"] = True
        if self.stamina_cost:
            out["staminaCost"] = self.stamina_cost
        return out


@dataclass(frozen=True)
class Result:
    id: str
    name: str
    range: str = "close"
    score: Optional[int] = None           # None = no score
    restrict: Tuple[str, ...] = ()
    allow_only: Optional[Tuple[str, ...]] = None
    bonus: Tuple[Dict[str, int], ...] = ()
    weapon_dislodged: bool = False
    opponent_weapon_dislodged: bool = False
    weapon_destroyed: bool = False
    shield_destroyed: bool = False
    retrieve_weapon: bool = False
    self_damage: int = 0
    heal: int = 0
    provide_hint: bool = False
    stamina_damage: int = 0
    self_stamina: int = 0

    @property
    def scored(self) -> bool:
        return self.score is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Result":
        allow_only = data.get("allowOnly")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            range=data.get("range", "close"),
            score=_int_or_none(data.get("score")),
            restrict=tuple(data.get("restrict") or ()),
            allow_only=tuple(allow_only) if allow_only else None,
            bonus=tuple(
                {str(k): _int(v) for k, v in grant.items()}
                for grant in (data.get("bonus") or ())
            ),
            weapon_dislodged=bool(data.get("weaponDislodged", False)),
            opponent_weapon_dislodged=bool(data.get("opponentWeaponDislodged", False)),
            weapon_destroyed=bool(data.get("weaponDestroyed", False)),
            shield_destroyed=bool(data.get("shieldDestroyed", False)),
            retrieve_weapon=bool(data.get("retrieveWeapon", False)),
            self_damage=_int(data.get("selfDamage")),
            heal=_int(data.get("heal")),
            provide_hint=data.get("provideHint") is True,
            stamina_damage=_int(data.get("staminaDamage")),
            self_stamina=_int(data.get("selfStamina")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "range": self.range,
            "score": "" if self.score is None else self.score,
            "restrict": list(self.restrict),
        }
        if self.allow_only:
            out["allowOnly"] = list(self.allow_only)
        if self.bonus:
            out["bonus"] = [dict(grant) for grant in self.bonus]
        flags = {
            "weaponDislodged": self.weapon_dislodged,
            "opponentWeaponDislodged": self.opponent_weapon_dislodged,
            "weaponDestroyed": self.weapon_destroyed,
            "shieldDestroyed": self.shield_destroyed,
            "retrieveWeapon": self.retrieve_weapon,
            "provideHint": self.provide_hint,
        }
        out.update({key: True for key, on in flags.items() if on})
        amounts = {
            "selfDamage": self.self_damage,
            "heal": self.heal,
            "staminaDamage": self.stamina_damage,
            "selfStamina": self.self_stamina,
        }
        out.update({key: value for key, value in amounts.items() if value})
        return out


@dataclass(frozen=True)
class Character:
    """
    Immutable character template as shipped in the catalog.

    `tables` maps an attacking move id to a row of {defending move id: result id}.
    Sessions never touch a template directly; they work on a CharacterState.
    """
    slug: str
    name: str
    health: int
    weapon: bool
    shield: bool
    moves: Tuple[Move, ...]
    tables: Dict[str, Dict[str, str]]
    results: Dict[str, Result]
    first_move: str
    stamina: Optional[int] = None

    def move(self, move_id: str) -> Move:
        for mv in self.moves:
            if mv.id == str(move_id):
                return mv
        raise KeyError(f"{self.slug} has no move '{move_id}'")

    def has_move(self, move_id: str) -> bool:
        return any(mv.id == str(move_id) for mv in self.moves)

    @property
    def move_ids(self) -> List[str]:
        return [mv.id for mv in self.moves]

    @property
    def opening_move(self) -> Move:
        return self.move(self.first_move)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Character":
        try:
            moves = tuple(Move.from_dict(m) for m in data["moves"])
            tables: Dict[str, Dict[str, str]] = {}
            for row in data["tables"]:
                outcomes = row.get("outcomes") or [{}]
                tables[str(row["id"])] = {str(k): str(v) for k, v in outcomes[0].items()}
            results = {}
            for raw in data["results"]:
                res = Result.from_dict(raw)
                results[res.id] = res
            first_move = str(data.get("firstMove") or moves[0].id)
            return cls(
                slug=data["slug"],
                name=data.get("name", data["slug"]),
                health=int(data["health"]),
                weapon=bool(data.get("weapon", False)),
                shield=bool(data.get("shield", False)),
                moves=moves,
                tables=tables,
                results=results,
                first_move=first_move,
                stamina=_int_or_none(data.get("stamina")),
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise CharacterDataError(
                f"Malformed character data for '{data.get('slug', '?')}': {exc}"
            ) from exc

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "slug": self.slug,
            "name": self.name,
            "health": self.health,
            "weapon": self.weapon,
            "shield": self.shield,
            "firstMove": self.first_move,
            "moves": [mv.to_dict() for mv in self.moves],
            "tables": [{"id": key, "outcomes": [dict(row)]} for key, row in self.tables.items()],
            "results": [res.to_dict() for res in self.results.values()],
        }
        if self.stamina is not None:
            out["stamina"] = self.stamina
        return out


@dataclass
class CharacterState:
    """Live, session-owned copy of a character."""
    template: Character
    health: int
    starting_health: int
    weapon: bool
    shield: bool
    weapon_destroyed: bool = False
    shield_destroyed: bool = False
    stamina: Optional[int] = None
    starting_stamina: Optional[int] = None

    @property
    def slug(self) -> str:
        return self.template.slug

    @property
    def name(self) -> str:
        return self.template.name

    @classmethod
    def from_template(cls, template: Character) -> "CharacterState":
        return cls(
            template=template,
            health=template.health,
            starting_health=template.health,
            weapon=template.weapon,
            shield=template.shield,
            stamina=template.stamina,
            starting_stamina=template.stamina,
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "health": self.health,
            "startingHealth": self.starting_health,
            "weapon": self.weapon,
            "shield": self.shield,
            "weaponDestroyed": self.weapon_destroyed,
            "shieldDestroyed": self.shield_destroyed,
            "stamina": self.stamina,
            "startingStamina": self.starting_stamina,
        }

    @classmethod
    def restore(cls, template: Character, data: Dict[str, Any]) -> "CharacterState":
        return cls(
            template=template,
            health=int(data["health"]),
            starting_health=int(data.get("startingHealth", template.health)),
            weapon=bool(data.get("weapon", template.weapon)),
            shield=bool(data.get("shield", template.shield)),
            weapon_destroyed=bool(data.get("weaponDestroyed", False)),
            shield_destroyed=bool(data.get("shieldDestroyed", False)),
            stamina=_int_or_none(data.get("stamina")),
            starting_stamina=_int_or_none(data.get("startingStamina")),
        )


@dataclass(frozen=True)
class MoveConstraint:
    range: str = "close"
    restrict: Tuple[str, ...] = ()
    allow_only: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class RoundSide:
    """
    One character's half of a resolved round, seen from the acting side:
    `result` is what the acting move did to the other character, while
    `restrictions`/`next_round_bonus` come from what the actor suffered.
    """
    character: str
    move: Move
    outcome: str
    result: Result
    range: str
    score: Optional[int]
    modifier: int
    bonus: int
    total_score: int
    next_round_bonus: Tuple[Dict[str, int], ...] = ()
    restrictions: Tuple[str, ...] = ()
    allow_only: Optional[Tuple[str, ...]] = None
    hint_required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character": self.character,
            "move": self.move.to_dict(),
            "outcome": self.outcome,
            "result": self.result.to_dict(),
            "range": self.range,
            "score": "" if self.score is None else self.score,
            "totalScore": self.total_score,
            "modifier": self.modifier,
            "bonus": self.bonus,
            "nextRoundBonus": [dict(grant) for grant in self.next_round_bonus],
            "restrictions": list(self.restrictions),
            "allowOnly": list(self.allow_only) if self.allow_only else None,
            "hintRequired": self.hint_required,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoundSide":
        allow_only = data.get("allowOnly")
        return cls(
            character=data["character"],
            move=Move.from_dict(data["move"]),
            outcome=str(data["outcome"]),
            result=Result.from_dict(data["result"]),
            range=data.get("range", "close"),
            score=_int_or_none(data.get("score")),
            modifier=_int(data.get("modifier")),
            bonus=_int(data.get("bonus")),
            total_score=_int(data.get("totalScore")),
            next_round_bonus=tuple(dict(g) for g in (data.get("nextRoundBonus") or ())),
            restrictions=tuple(data.get("restrictions") or ()),
            allow_only=tuple(allow_only) if allow_only else None,
            hint_required=bool(data.get("hintRequired", False)),
        )


@dataclass
class RoundRecord:
    index: int
    my_move: Optional[Move] = None
    opponents_move: Optional[Move] = None
    my_hint: Optional[List[str]] = None
    opponents_hint: Optional[List[str]] = None
    mine: Optional[RoundSide] = None       # my move against the opponent
    theirs: Optional[RoundSide] = None     # opponent's move against me

    @property
    def resolved(self) -> bool:
        return self.mine is not None

    def complete(self, mine: RoundSide, theirs: RoundSide) -> None:
        if self.resolved:
            raise RuntimeError(f"Round {self.index} is already resolved")
        self.mine = mine
        self.theirs = theirs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "myMove": self.my_move.to_dict() if self.my_move else None,
            "opponentsMove": self.opponents_move.to_dict() if self.opponents_move else None,
            "myHint": self.my_hint,
            "opponentsHint": self.opponents_hint,
            "myRoundData": self.mine.to_dict() if self.mine else None,
            "opponentsRoundData": self.theirs.to_dict() if self.theirs else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoundRecord":
        def move_or_none(raw):
            return Move.from_dict(raw) if raw else None

        def side_or_none(raw):
            return RoundSide.from_dict(raw) if raw else None

        return cls(
            index=int(data["index"]),
            my_move=move_or_none(data.get("myMove")),
            opponents_move=move_or_none(data.get("opponentsMove")),
            my_hint=data.get("myHint"),
            opponents_hint=data.get("opponentsHint"),
            mine=side_or_none(data.get("myRoundData")),
            theirs=side_or_none(data.get("opponentsRoundData")),
        )


@dataclass
class Session:
    game_id: str
    me: Optional[CharacterState] = None
    opponent: Optional[CharacterState] = None
    rounds: List[RoundRecord] = field(default_factory=list)
    round_number: int = 0                  # local pointer
    opponents_round: int = 0               # last round the opponent reported
    phase: str = "setup"                   # "setup" | "combat" | "ended"
    winner: Optional[str] = None           # "me" | "opponent"
    player_name: Optional[str] = None
    opponent_name: Optional[str] = None

    def current(self) -> RoundRecord:
        while len(self.rounds) <= self.round_number:
            self.rounds.append(RoundRecord(index=len(self.rounds)))
        return self.rounds[self.round_number]

    def previous(self) -> Optional[RoundRecord]:
        for record in reversed(self.rounds):
            if record.resolved:
                return record
        return None
