# swordfight/engine/game.py
"""
Round orchestration for one side of a two-player fight.

A Game owns the local Session: both live character copies, the round list and
the two round pointers. Moves arrive from the local player (`input_move`) and
from whatever transport is connected; once both moves for the current round
are present the round is resolved exactly once, persisted, and announced to
subscribers.
"""
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from . import bonus, hints, moves, rules
from .errors import IllegalMove, MalformedMessage, RoundDesync
from .events import Notifier
from .models import (
    Character,
    CharacterState,
    Move,
    RoundRecord,
    RoundSide,
    Session,
)
from .resolver import resolve_or_fallback
from .store import MemoryStore

logger = logging.getLogger(__name__)

SIDES = ("me", "opponent")


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class Game:
    def __init__(self, game_id: str, my_character: str, catalog, store=None, player_name: Optional[str] = None):
        self.game_id = game_id
        self.catalog = catalog
        self.store = store if store is not None else MemoryStore()
        self.session = Session(game_id=game_id, player_name=player_name)
        self.transport = None
        self.loaded = False                 # set by load(), cleared by resume() or the next round
        self._my_slug = my_character
        self._notifier = Notifier()
        self._pending_moves: List[Dict[str, Any]] = []
        self._sending = False
        self.held_moves: List[Dict[str, Any]] = []   # future-round moves, kept for diagnosis only

    # ---- wiring -----------------------------------------------------------

    def subscribe(self, event: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        return self._notifier.subscribe(event, callback)

    def unsubscribe(self, event: str, callback: Callable[[Any], Any]) -> bool:
        return self._notifier.unsubscribe(event, callback)

    @property
    def me(self) -> Optional[CharacterState]:
        return self.session.me

    @property
    def opponent(self) -> Optional[CharacterState]:
        return self.session.opponent

    @property
    def round_number(self) -> int:
        return self.session.round_number

    @property
    def phase(self) -> str:
        return self.session.phase

    async def initialize(self) -> "Game":
        """Load the local character, restoring a saved session when one exists."""
        if await self.load():
            return self
        template = await _maybe_await(self.catalog.get_character(self._my_slug))
        self.session.me = CharacterState.from_template(template)
        return self

    async def connect(self, transport, room_id: Optional[str] = None) -> None:
        if self.session.me is None:
            await self.initialize()
        self.transport = transport
        transport.set_identity(self.session.player_name, self.session.me.slug)
        transport.get_move(self._on_opponent_move)
        transport.get_name(self._on_name)
        transport.get_character(self._on_character)
        transport.on("start", self._on_start)
        for notification in ("room_full", "peer_left", "connection_lost"):
            transport.on(notification, self._forwarder(notification))
        await transport.connect(room_id or self.game_id)

    def _forwarder(self, event: str):
        def forward(detail=None):
            self._notifier.emit(event, detail)
        return forward

    async def _on_start(self, detail=None) -> None:
        self._notifier.emit("start", detail)
        if self.session.phase != "combat" or self.transport is None:
            return
        record = self.session.current()
        if record.my_move is not None and record.opponents_move is None:
            # the peer may have missed it while the link was down; duplicates are ignored
            logger.info("Re-sending move for round %s", record.index)
            await self.transport.send_move(
                {"move": record.my_move.to_dict(), "round": record.index, "hint": record.my_hint}
            )

    async def disconnect(self) -> None:
        if self.transport is not None:
            await self.transport.disconnect()
            self.transport = None

    # ---- opponent setup ---------------------------------------------------

    async def set_opponent_character(self, slug: str) -> None:
        current = self.session.opponent
        if current is not None:
            if current.slug != slug:
                logger.warning("Opponent tried to switch character %s -> %s mid-game", current.slug, slug)
            return
        template: Character = await _maybe_await(self.catalog.get_character(slug))
        self.session.opponent = CharacterState.from_template(template)
        self._notifier.emit("character", {"slug": slug, "name": template.name})
        self._open()

    def _open(self) -> None:
        """Round 0 is both opening moves, resolved as soon as both characters are known."""
        if self.session.me is None or self.session.opponent is None:
            return
        record = self.session.current()
        if self.session.round_number == 0 and not record.resolved:
            record.my_move = self.session.me.template.opening_move
            record.opponents_move = self.session.opponent.template.opening_move
            self.session.opponents_round = 0
            self.session.phase = "combat"
            self._resolve_current()
        pending, self._pending_moves = self._pending_moves, []
        accepted = [self._accept_opponent_move(payload) for payload in pending]
        if any(accepted):
            self._resolve_current()

    async def _on_name(self, name) -> None:
        self.session.opponent_name = str(name) if name is not None else None
        self._notifier.emit("name", self.session.opponent_name)

    async def _on_character(self, slug) -> None:
        await self.set_opponent_character(str(slug))

    # ---- per-side queries -------------------------------------------------

    def _state(self, side: str) -> CharacterState:
        if side not in SIDES:
            raise ValueError(f"side must be one of {SIDES}")
        state = self.session.me if side == "me" else self.session.opponent
        if state is None:
            raise IllegalMove(f"No character chosen for '{side}' yet")
        return state

    def _last_side(self, side: str) -> Optional[RoundSide]:
        prev = self.session.previous()
        if prev is None:
            return None
        return prev.mine if side == "me" else prev.theirs

    def legal_moves(self, side: str = "me") -> List[Move]:
        state = self._state(side)
        last = self._last_side(side)
        if last is None:
            constraint = moves.constraint_from_result(None, state.template.opening_move.range)
        else:
            other = self._last_side("opponent" if side == "me" else "me")
            constraint = moves.constraint_from_result(other.result)
        return moves.legal_moves(state, constraint)

    def carried_grants(self, side: str = "me"):
        last = self._last_side(side)
        return last.next_round_bonus if last is not None else ()

    def hint_required(self, side: str = "me") -> bool:
        last = self._last_side(side)
        return bool(last and last.hint_required)

    # ---- moves ------------------------------------------------------------

    async def input_move(self, move_id) -> RoundRecord:
        session = self.session
        if session.phase == "ended":
            raise IllegalMove("The fight is over")
        if session.phase != "combat":
            raise IllegalMove("The fight has not started")
        record = session.current()
        if record.my_move is not None:
            raise IllegalMove(f"Move for round {record.index} already chosen")
        if self._sending:
            raise IllegalMove(f"Move for round {record.index} is still being sent")
        if session.opponents_round != session.round_number:
            self._report_desync()
            raise RoundDesync(
                f"Opponent reported round {session.opponents_round}, local round is {session.round_number}"
            )

        me = self._state("me")
        try:
            move = me.template.move(str(move_id))
        except KeyError:
            raise IllegalMove(f"Unknown move '{move_id}'") from None
        if move.id not in {mv.id for mv in self.legal_moves("me")}:
            raise IllegalMove(f"{move.name} is not allowed this round")

        hint = hints.build_hint(move, me.template) if self.hint_required("me") else None
        payload = {"move": move.to_dict(), "round": record.index, "hint": hint}
        if self.transport is not None:
            # recorded only once it left, so a failed send can be retried
            self._sending = True
            try:
                await self.transport.send_move(payload)
            finally:
                self._sending = False

        record.my_move = move
        record.my_hint = hint
        self._notifier.emit("my_move", payload)
        await self.resolve()
        return record

    async def _on_opponent_move(self, payload) -> None:
        if self.session.opponent is None:
            # character selection can trail the first move on some channels
            self._pending_moves.append(payload)
            return
        self._accept_opponent_move(payload)
        await self.resolve()

    def _accept_opponent_move(self, payload) -> bool:
        session = self.session
        try:
            move, round_number, hint = self._parse_move(payload)
        except MalformedMessage as exc:
            logger.warning("Dropping opponent move: %s", exc)
            return False

        if session.phase == "ended":
            return False
        if round_number < session.round_number:
            logger.debug("Ignoring stale move for round %s (at %s)", round_number, session.round_number)
            return False
        if round_number > session.round_number:
            session.opponents_round = round_number
            self.held_moves.append(payload)
            self._report_desync()
            return False

        record = session.current()
        if record.opponents_move is not None:
            logger.debug("Duplicate opponent move for round %s ignored", round_number)
            return False
        if move.id not in {mv.id for mv in self.legal_moves("opponent")}:
            logger.warning("Opponent played %s, which should not be legal in round %s", move.name, round_number)

        record.opponents_move = move
        record.opponents_hint = hint
        session.opponents_round = round_number
        self._notifier.emit("opponent_move", {
            "round": round_number,
            "hint": hint,
            "hintText": hints.format_hint(hint, session.opponent.template),
        })
        return True

    def _parse_move(self, payload):
        if not isinstance(payload, dict):
            raise MalformedMessage(f"expected an object, got {type(payload).__name__}")
        raw = payload.get("move")
        move_id = raw.get("id") if isinstance(raw, dict) else raw
        if move_id is None:
            raise MalformedMessage("move id missing")
        try:
            move = self.session.opponent.template.move(str(move_id))
        except KeyError:
            raise MalformedMessage(f"unknown move '{move_id}'") from None
        try:
            round_number = int(payload.get("round", self.session.round_number))
        except (TypeError, ValueError):
            raise MalformedMessage(f"bad round '{payload.get('round')}'") from None
        hint = payload.get("hint")
        if hint is not None and not isinstance(hint, list):
            hint = None
        return move, round_number, hint

    def _report_desync(self) -> None:
        detail = {"round": self.session.round_number, "opponentsRound": self.session.opponents_round}
        logger.warning("Round pointers disagree: local %(round)s, opponent %(opponentsRound)s", detail)
        self._notifier.emit("desync", detail)

    # ---- resolution -------------------------------------------------------

    async def resolve(self) -> Optional[RoundRecord]:
        """Resolve the current round if, and only if, it is ready. Safe to call repeatedly."""
        return self._resolve_current()

    def _resolve_current(self) -> Optional[RoundRecord]:
        session = self.session
        if session.phase != "combat":
            return None
        record = session.current()
        if record.resolved or record.my_move is None or record.opponents_move is None:
            return None
        if session.round_number != session.opponents_round:
            self._report_desync()
            return None

        me, opp = session.me, session.opponent
        mine, theirs = self._sides(record)

        mine_delta = rules.apply_round(me, mine, theirs)
        theirs_delta = rules.apply_round(opp, theirs, mine)
        logger.debug("Round %s: me %s, opponent %s", record.index, mine_delta, theirs_delta)
        record.complete(mine, theirs)
        # the restored round is behind us now, nothing left to replay
        self.loaded = False

        session.round_number += 1
        session.opponents_round = session.round_number

        my_defeat = rules.is_defeated(me)
        their_defeat = rules.is_defeated(opp)
        if my_defeat or their_defeat:
            session.phase = "ended"
            # a double knockout counts against the local side
            session.winner = "opponent" if my_defeat else "me"

        self.save()
        self._notifier.emit("round", self._round_event(record))

        if session.phase == "ended":
            self._notifier.emit("defeat" if session.winner == "opponent" else "victory", self._terminal_event())
        else:
            self._notifier.emit("setup", self._setup_event())
        return record

    def _sides(self, record: RoundRecord):
        me, opp = self.session.me, self.session.opponent
        my_move, their_move = record.my_move, record.opponents_move

        # what the opponent suffers from my move, and what I suffer from theirs
        dealt = resolve_or_fallback(opp.template, my_move, their_move)
        taken = resolve_or_fallback(me.template, their_move, my_move)

        def side(state, move, result, suffered, grants):
            applied = bonus.accumulate(move, grants)
            return RoundSide(
                character=state.slug,
                move=move,
                outcome=result.id,
                result=result,
                range=result.range,
                score=result.score,
                modifier=move.mod,
                bonus=applied,
                total_score=bonus.total_score(result.score, move.mod, applied),
                next_round_bonus=bonus.next_round_bonus(suffered),
                restrictions=tuple(suffered.restrict),
                allow_only=suffered.allow_only,
                hint_required=hints.must_hint(result),
            )

        mine = side(me, my_move, dealt, taken, self.carried_grants("me"))
        theirs = side(opp, their_move, taken, dealt, self.carried_grants("opponent"))
        return mine, theirs

    def _round_event(self, record: RoundRecord) -> Dict[str, Any]:
        return {
            "round": record.index,
            "myRoundData": record.mine.to_dict(),
            "opponentsRoundData": record.theirs.to_dict(),
            "me": self.session.me.snapshot(),
            "opponent": self.session.opponent.snapshot(),
        }

    def _setup_event(self) -> Dict[str, Any]:
        legal = self.legal_moves("me")
        return {
            "round": self.session.round_number,
            "range": legal[0].range,
            "moves": [mv.to_dict() for mv in legal],
            "hintRequired": self.hint_required("me"),
        }

    def _terminal_event(self) -> Dict[str, Any]:
        loser = self.session.me if self.session.winner == "opponent" else self.session.opponent
        reason = "health depleted" if loser.health <= 0 else "exhausted"
        return {"round": self.session.round_number - 1, "winner": self.session.winner, "reason": reason}

    # ---- persistence ------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        session = self.session
        last = session.previous()
        return {
            "gameId": session.game_id,
            "phase": session.phase,
            "winner": session.winner,
            "roundNumber": session.round_number,
            "opponentsRound": session.opponents_round,
            "rounds": [r.to_dict() for r in session.rounds if r.resolved],
            "myCharacter": session.me.snapshot() if session.me else None,
            "opponentsCharacter": session.opponent.snapshot() if session.opponent else None,
            "myMove": last.my_move.to_dict() if last and last.my_move else None,
            "opponentsMove": last.opponents_move.to_dict() if last and last.opponents_move else None,
            "playerName": session.player_name,
            "opponentName": session.opponent_name,
        }

    def save(self) -> None:
        snapshot = self.snapshot()
        self.store.save(self.game_id, snapshot)

    async def load(self) -> bool:
        data = self.store.load(self.game_id)
        if not data or not data.get("myCharacter"):
            return False

        session = Session(game_id=self.game_id)
        my_template = await _maybe_await(self.catalog.get_character(data["myCharacter"]["slug"]))
        session.me = CharacterState.restore(my_template, data["myCharacter"])
        if data.get("opponentsCharacter"):
            their_template = await _maybe_await(
                self.catalog.get_character(data["opponentsCharacter"]["slug"])
            )
            session.opponent = CharacterState.restore(their_template, data["opponentsCharacter"])
        session.rounds = [RoundRecord.from_dict(raw) for raw in data.get("rounds", [])]
        session.round_number = int(data.get("roundNumber", len(session.rounds)))
        session.opponents_round = int(data.get("opponentsRound", session.round_number))
        session.phase = data.get("phase", "combat")
        session.winner = data.get("winner")
        session.player_name = data.get("playerName") or self.session.player_name
        session.opponent_name = data.get("opponentName")

        self.session = session
        self._my_slug = my_template.slug
        self.loaded = True
        logger.info("Restored game %s at round %s", self.game_id, session.round_number)
        return True

    def resume(self) -> None:
        """Replay the last known state to subscribers without touching health or gear."""
        if not self.loaded:
            return
        last = self.session.previous()
        if last is not None and self.session.opponent is not None:
            self._notifier.emit("round", self._round_event(last))
        if self.session.phase == "ended":
            self._notifier.emit("defeat" if self.session.winner == "opponent" else "victory", self._terminal_event())
        elif self.session.opponent is not None:
            self._notifier.emit("setup", self._setup_event())
        self.loaded = False
