"""Automated regression suite for swordfight round resolution.

Uses stdlib only on top of the package and drives whole fights through Game
with bundled and hand-built characters.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

from swordfight.content.catalog import BundledCatalog, validate_character
from swordfight.engine.game import Game
from swordfight.engine.models import Character
from swordfight.engine.store import MemoryStore
from swordfight.transports.base import Transport


HUMAN = "human-fighter"
GOBLIN = "goblin-fighter"


class DictCatalog:
    """Synchronous catalog over Character objects built in the test."""

    def __init__(self, *characters: Character):
        self.characters = {c.slug: c for c in characters}

    def get_character(self, slug: str) -> Character:
        return self.characters[slug]

    def available_characters(self) -> List[str]:
        return sorted(self.characters)


class ScriptedTransport(Transport):
    """Records outbound traffic; the test pushes inbound traffic by hand."""

    def __init__(self):
        super().__init__()
        self.sent: List[Tuple[str, Any]] = []

    async def connect(self, room_id: str) -> None:
        self.room_id = room_id
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.clear_callbacks()

    async def send_move(self, payload: Dict[str, Any]) -> None:
        self.sent.append(("move", payload))

    async def send_name(self, name: str) -> None:
        self.sent.append(("name", name))

    async def send_character(self, slug: str) -> None:
        self.sent.append(("character", slug))

    def peer_count(self) -> int:
        return 2 if self.connected else 0

    async def push_move(self, move_id: str, round_number: int, hint=None) -> None:
        await self._dispatch("move", {"move": {"id": move_id}, "round": round_number, "hint": hint})

    async def push_character(self, slug: str) -> None:
        await self._dispatch("character", slug)

    async def push_name(self, name: str) -> None:
        await self._dispatch("name", name)


def simple_character(slug: str, score: Any = 0, health: int = 10, **extra) -> Character:
    """One close-range move that always produces result '1' with `score`."""
    result = {"id": "1", "name": "Trade blows", "range": "close", "score": score, "restrict": []}
    result.update(extra.pop("result", {}))
    data = {
        "slug": slug,
        "name": slug.title(),
        "health": health,
        "weapon": True,
        "shield": False,
        "firstMove": "1",
        "moves": [{"id": "1", "name": "Poke", "tag": "Poke", "range": "close", "type": "low", "mod": "0"}],
        "tables": [{"id": "1", "outcomes": [{"1": "1"}]}],
        "results": [result],
    }
    data.update(extra)
    return Character.from_dict(data)


def run(coro):
    return asyncio.run(coro)


async def start_game(my_slug: str = HUMAN, their_slug: str = GOBLIN, catalog=None, store=None,
                     game_id: str = "regression") -> Tuple[Game, ScriptedTransport]:
    game = Game(game_id, my_slug, catalog or BundledCatalog(), store=store or MemoryStore(), player_name="Tester")
    transport = ScriptedTransport()
    await game.connect(transport)
    await transport.push_character(their_slug)
    return game, transport


async def play(game: Game, transport: ScriptedTransport, pairs: Iterable[Tuple[str, str]]) -> None:
    for mine, theirs in pairs:
        round_number = game.round_number
        await game.input_move(mine)
        await transport.push_move(theirs, round_number)


def _assert_invariants(game: Game) -> None:
    for state in (game.me, game.opponent):
        assert state.health <= state.starting_health, f"{state.slug} healed past its starting health"
        if state.stamina is not None:
            assert 0 <= state.stamina <= state.starting_stamina, f"{state.slug} stamina out of range"
    for record in game.session.rounds:
        if record.resolved:
            assert record.mine.total_score >= 0 and record.theirs.total_score >= 0, "negative total score"


def scenario_bundled_characters_validate() -> bool:
    catalog = BundledCatalog()
    for slug in catalog.available_characters():
        problems = validate_character(catalog.get_character(slug))
        assert not problems, f"{slug}: {problems}"
    return True


def scenario_opening_round_resolves_on_character() -> bool:
    async def body():
        game, _ = await start_game()
        assert game.round_number == 1, "Opening round should resolve as soon as the opponent is known"
        assert game.phase == "combat"
        assert [mv.id for mv in game.legal_moves("me")] == ["30", "32"], "Opening leaves both sides at range"
        _assert_invariants(game)
    run(body())
    return True


def scenario_charge_into_bonus_bash() -> bool:
    async def body():
        game, transport = await start_game()
        await play(game, transport, [("30", "32")])
        assert game.me.health == 10, f"Caught off guard should cost 2, health={game.me.health}"
        assert [mv.name for mv in game.legal_moves("me")] == ["Shield Block", "Jump Back"], "allow-only must win"
        assert game.carried_grants("opponent") == ({"risky": 2},)

        await play(game, transport, [("16", "22")])
        last = game.session.previous()
        assert last.theirs.bonus == 2 and last.theirs.total_score == 5, "Bash should carry the +2 risky grant"
        assert game.me.health == 5
        assert not game.me.shield and game.me.shield_destroyed, "Shield smashed is permanent"
        assert game.opponent.stamina == 10, f"Bash costs 2 stamina, got {game.opponent.stamina}"
        _assert_invariants(game)
    run(body())
    return True


def scenario_overextension_forces_hints() -> bool:
    async def body():
        game, transport = await start_game()
        await play(game, transport, [("30", "30"), ("14", "22")])
        assert game.hint_required("me") and game.hint_required("opponent"), "Overextended on both sides"
        await game.input_move("12")
        kind, payload = transport.sent[-1]
        assert kind == "move" and payload["hint"] == ["10", "12", "14"], payload
        _assert_invariants(game)
    run(body())
    return True


def scenario_zero_score_trade() -> bool:
    async def body():
        catalog = DictCatalog(simple_character("left"), simple_character("right"))
        game, _ = await start_game("left", "right", catalog=catalog)
        last = game.session.previous()
        assert (game.me.health, game.opponent.health) == (10, 10), "Score 0 must not hurt"
        assert last.mine.next_round_bonus == () and last.theirs.next_round_bonus == ()
        assert not game.hint_required("me") and not game.hint_required("opponent")
    run(body())
    return True


def scenario_double_knockout_is_defeat() -> bool:
    async def body():
        catalog = DictCatalog(simple_character("left", score=20), simple_character("right", score=20))
        outcomes: List[str] = []
        game = Game("ko", "left", catalog)
        game.subscribe("victory", lambda detail: outcomes.append("victory"))
        game.subscribe("defeat", lambda detail: outcomes.append("defeat"))
        transport = ScriptedTransport()
        await game.connect(transport)
        await transport.push_character("right")
        assert outcomes == ["defeat"], outcomes
        assert game.phase == "ended" and game.session.winner == "opponent"
    run(body())
    return True


def scenario_desync_blocks_round() -> bool:
    async def body():
        game, transport = await start_game()
        desyncs: List[Dict[str, int]] = []
        game.subscribe("desync", desyncs.append)
        await game.input_move("30")
        await transport.push_move("32", game.round_number + 2)
        assert desyncs and desyncs[0]["opponentsRound"] == 3, desyncs
        assert game.round_number == 1 and game.me.health == 12, "Desync must not resolve anything"
    run(body())
    return True


def scenario_resume_does_not_reapply() -> bool:
    async def body():
        store = MemoryStore()
        game, transport = await start_game(store=store, game_id="resume")
        await play(game, transport, [("30", "32")])
        before = (game.me.health, game.opponent.health, game.round_number)

        restored = Game("resume", HUMAN, BundledCatalog(), store=store)
        rounds: List[Dict[str, Any]] = []
        restored.subscribe("round", rounds.append)
        await restored.initialize()
        assert restored.loaded
        restored.resume()
        after = (restored.me.health, restored.opponent.health, restored.round_number)
        assert after == before, f"{after} != {before}"
        assert rounds and rounds[0]["round"] == 1 and not restored.loaded
    run(body())
    return True


SCENARIOS = [
    scenario_bundled_characters_validate,
    scenario_opening_round_resolves_on_character,
    scenario_charge_into_bonus_bash,
    scenario_overextension_forces_hints,
    scenario_zero_score_trade,
    scenario_double_knockout_is_defeat,
    scenario_desync_blocks_round,
    scenario_resume_does_not_reapply,
]


def run_all(scenarios=None) -> List[Tuple[str, bool, str]]:
    results: List[Tuple[str, bool, str]] = []
    for scenario in scenarios or SCENARIOS:
        try:
            scenario()
            results.append((scenario.__name__, True, ""))
        except AssertionError as exc:
            results.append((scenario.__name__, False, str(exc)))
    return results
