# swordfight/transports/synthetic.py
import asyncio
import inspect
import logging
import random
import time
from typing import Any, Dict, List, Optional, Tuple

from ..engine import bonus, dice, hints
from ..engine.errors import NoLegalMoves
from ..engine.models import Move
from ..engine.moves import RETRIEVE_WEAPON
from .base import Transport

logger = logging.getLogger(__name__)


class SyntheticOpponentTransport(Transport):
    """
    In-process computer opponent behind the ordinary transport interface.

    With `eager=False` a move is picked after the player's move is sent; with
    `eager=True` it is picked as soon as a round opens, ahead of the player.
    """

    def __init__(self, game, opponent_slug: Optional[str] = None, eager: bool = False,
                 thinking_delay: Tuple[float, float] = (0.5, 2.0), start_delay: float = 3.0,
                 retrieve_weapon_chance: float = 0.25, bonus_move_chance: float = 0.33,
                 seed: Optional[int] = None, name: str = "Computer"):
        super().__init__()
        self.game = game
        self.opponent_slug = opponent_slug
        self.eager = eager
        self.thinking_delay = thinking_delay
        self.start_delay = start_delay
        self.retrieve_weapon_chance = retrieve_weapon_chance
        self.bonus_move_chance = bonus_move_chance
        self.seed = seed if seed is not None else int(time.time() * 1000) & 0xFFFFFFFF
        self.name = name
        self._tasks: List[asyncio.Task] = []
        self._unsubscribe = None
        self._delivered: set = set()
        self._rng = random.Random(self.seed)

    async def connect(self, room_id: str) -> None:
        self.room_id = room_id
        self.connected = True
        if self.eager:
            self._unsubscribe = self.game.subscribe("setup", self._on_setup)
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if not self.connected:
            return
        slug = await self._pick_character()
        self.opponent_slug = slug
        logger.info("Computer opponent plays %s", slug)
        await self._dispatch("name", self.name)
        await self._dispatch("character", slug)
        await self._dispatch("start")

    async def _pick_character(self) -> str:
        if self.opponent_slug:
            return self.opponent_slug
        available = self.game.catalog.available_characters()
        if inspect.isawaitable(available):
            available = await available
        mine = self.character_slug
        choices = [slug for slug in available if slug != mine] or list(available)
        return self._rng.choice(choices)

    # ---- move selection -----------------------------------------------------

    def choose_move(self, round_number: int) -> Move:
        r = dice.rng_for(self.seed, round_number)
        state = self.game.opponent
        try:
            legal = self.game.legal_moves("opponent")
        except NoLegalMoves as exc:
            logger.warning("%s; falling back to first move", exc)
            return state.template.moves[0]

        if not state.weapon and not state.weapon_destroyed:
            retrieve = [mv for mv in legal if mv.name == RETRIEVE_WEAPON]
            if retrieve and dice.chance(self.retrieve_weapon_chance, r):
                return retrieve[0]

        grants = self.game.carried_grants("opponent")
        if grants:
            boosted = [mv for mv in legal if bonus.accumulate(mv, grants) > 0]
            if boosted and dice.chance(self.bonus_move_chance, r):
                return r.choice(boosted)

        return r.choice(legal)

    def _payload(self, round_number: int, move: Move) -> Dict[str, Any]:
        hint = None
        if self.game.hint_required("opponent"):
            hint = hints.build_hint(move, self.game.opponent.template)
        return {"move": move.to_dict(), "round": round_number, "hint": hint}

    def _schedule(self, round_number: int, move: Optional[Move] = None) -> None:
        if round_number in self._delivered:
            return
        self._delivered.add(round_number)
        task = asyncio.ensure_future(self._deliver(round_number, move))
        self._tasks.append(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Computer move delivery failed", exc_info=task.exception())

    async def _deliver(self, round_number: int, move: Optional[Move]) -> None:
        lo, hi = self.thinking_delay
        delay = self._rng.uniform(lo, hi) if hi > 0 else 0
        if delay:
            await asyncio.sleep(delay)
        if not self.connected or self.game.round_number != round_number:
            return
        if move is None:
            move = self.choose_move(round_number)
        await self._dispatch("move", self._payload(round_number, move))

    def _on_setup(self, detail) -> None:
        round_number = detail["round"] if detail else self.game.round_number
        # picked now, delivered after the thinking delay
        self._schedule(round_number, self.choose_move(round_number))

    # ---- outbound -----------------------------------------------------------

    async def send_move(self, payload: Dict[str, Any]) -> None:
        if not self.eager:
            self._schedule(int(payload.get("round", self.game.round_number)))

    async def send_name(self, name: str) -> None:
        self.player_name = name

    async def send_character(self, slug: str) -> None:
        self.character_slug = slug

    async def disconnect(self) -> None:
        self.connected = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        tasks, self._tasks = list(self._tasks), []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.clear_callbacks()

    def peer_count(self) -> int:
        return 2 if self.connected else 0
