import asyncio
import json
from types import SimpleNamespace

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from swordfight.content.catalog import BundledCatalog
from swordfight.engine.errors import ConnectionLost, NoLegalMoves, RoomFull, TransportError
from swordfight.engine.game import Game
from swordfight.transports import (
    EdgeRelayTransport,
    PeerMeshTransport,
    RelaySocketTransport,
    SyntheticOpponentTransport,
)

from regression_suite import GOBLIN, HUMAN, play, start_game


class FakeSocketClient:
    """Stands in for socketio.AsyncClient; replies are fed straight to the handlers."""

    def __init__(self, on_connect=(), on_send=None, fail=False):
        self.on_connect = list(on_connect)
        self.on_send = on_send or {}
        self.fail = fail
        self.handlers = {}
        self.sent = []
        self.url = None
        self.disconnected = False

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, transports=None):
        if self.fail:
            raise SocketConnectionError("connection refused")
        self.url = url
        for msg in self.on_connect:
            await self.feed(msg)

    async def send(self, data):
        self.sent.append(data)
        for msg in self.on_send.get(data.get("type"), ()):
            await self.feed(msg)

    async def disconnect(self):
        self.disconnected = True

    async def feed(self, msg):
        await self.handlers["message"](msg)


def _collect(transport, *channels):
    seen = {name: [] for name in channels}
    for name in channels:
        if name in ("move", "name", "character"):
            getattr(transport, f"get_{name}")(seen[name].append)
        else:
            transport.on(name, seen[name].append)
    return seen


# ---- relay socket -----------------------------------------------------------

@pytest.mark.asyncio
async def test_relay_join_and_announce():
    client = FakeSocketClient(on_send={"join": [{"type": "joined", "roomId": "r1", "peers": 1}]})
    transport = RelaySocketTransport("http://relay.test", client_factory=lambda: client)
    transport.set_identity("Ann", HUMAN)
    seen = _collect(transport, "start")

    await transport.connect("r1")
    assert client.sent == [{"type": "join", "roomId": "r1"}]
    assert transport.connected and transport.peer_count() == 1
    assert not transport.is_room_full()

    await client.feed({"type": "peer-joined", "peers": 2})
    assert client.sent[1:] == [
        {"type": "name", "name": "Ann"},
        {"type": "character", "characterSlug": HUMAN},
    ]
    assert seen["start"] == [None]
    assert transport.is_room_full()


@pytest.mark.asyncio
async def test_relay_room_full():
    client = FakeSocketClient(on_send={"join": [{"type": "room-full", "roomId": "r1"}]})
    transport = RelaySocketTransport("http://relay.test", client_factory=lambda: client)
    seen = _collect(transport, "room_full")

    with pytest.raises(RoomFull):
        await transport.connect("r1")
    assert seen["room_full"] == [None]
    assert transport.is_room_full()
    assert client.disconnected and not transport.connected


@pytest.mark.asyncio
async def test_relay_history_is_dispatched_in_order():
    history = {
        "type": "history",
        "messages": [
            {"type": "name", "name": "Grob"},
            {"type": "character", "characterSlug": GOBLIN},
            {"type": "move", "move": {"id": "32"}, "round": 1, "hint": None},
        ],
    }
    client = FakeSocketClient(on_send={"join": [{"type": "joined", "peers": 2}, history]})
    transport = RelaySocketTransport("http://relay.test", client_factory=lambda: client)
    seen = _collect(transport, "name", "character", "move")

    await transport.connect("r1")
    assert seen["name"] == ["Grob"]
    assert seen["character"] == [GOBLIN]
    assert seen["move"] == [{"move": {"id": "32"}, "round": 1, "hint": None}]


@pytest.mark.asyncio
async def test_relay_join_timeout():
    client = FakeSocketClient()
    transport = RelaySocketTransport("http://relay.test", connect_timeout=0.01, client_factory=lambda: client)
    with pytest.raises(TransportError):
        await transport.connect("r1")
    assert client.disconnected


@pytest.mark.asyncio
async def test_relay_error_during_join():
    client = FakeSocketClient(on_send={"join": [{"type": "error", "message": "Invalid room id"}]})
    transport = RelaySocketTransport("http://relay.test", client_factory=lambda: client)
    with pytest.raises(TransportError, match="Invalid room id"):
        await transport.connect("r1")


@pytest.mark.asyncio
async def test_relay_send_requires_connection_and_disconnect_leaves():
    client = FakeSocketClient(on_send={"join": [{"type": "joined", "peers": 1}]})
    transport = RelaySocketTransport("http://relay.test", client_factory=lambda: client)
    with pytest.raises(TransportError):
        await transport.send_name("Ann")

    await transport.connect("r1")
    await transport.send_move({"move": {"id": "30"}, "round": 1, "hint": None})
    await transport.disconnect()
    assert client.sent[-2] == {"type": "move", "move": {"id": "30"}, "round": 1, "hint": None}
    assert client.sent[-1] == {"type": "leave"}
    assert client.disconnected and transport.peer_count() == 0


# ---- edge relay -------------------------------------------------------------

def test_edge_url_and_backoff():
    transport = EdgeRelayTransport("http://edge.test/", reconnect_delay=1.0, max_reconnect_delay=3.0)
    assert transport.url_for("bout 1") == "http://edge.test?room=bout+1"
    assert [transport.backoff(n) for n in (1, 2, 3, 5)] == [1.0, 2.0, 3.0, 3.0]


def _edge_client(**kwargs):
    return FakeSocketClient(on_connect=[{"type": "joined", "roomId": "r1", "peers": 1}], **kwargs)


@pytest.mark.asyncio
async def test_edge_connect_announces_identity():
    client = _edge_client()
    transport = EdgeRelayTransport("http://edge.test", client_factory=lambda: client)
    transport.set_identity("Ann", HUMAN)
    await transport.connect("r1")
    assert client.url == "http://edge.test?room=r1"
    assert client.sent == [
        {"type": "name", "name": "Ann"},
        {"type": "character", "characterSlug": HUMAN},
    ]


@pytest.mark.asyncio
async def test_edge_room_full():
    client = FakeSocketClient(on_connect=[{"type": "room-full", "roomId": "r1"}])
    transport = EdgeRelayTransport("http://edge.test", client_factory=lambda: client)
    with pytest.raises(RoomFull):
        await transport.connect("r1")
    assert transport.is_room_full() and client.disconnected


@pytest.mark.asyncio
async def test_edge_gives_up_after_max_attempts():
    clients = iter([_edge_client(), FakeSocketClient(fail=True), FakeSocketClient(fail=True)])
    transport = EdgeRelayTransport(
        "http://edge.test", max_reconnect_attempts=2, reconnect_delay=0.0,
        client_factory=lambda: next(clients),
    )
    seen = _collect(transport, "connection_lost")
    await transport.connect("r1")

    await transport._sio.handlers["disconnect"]()
    await transport._reconnect_task
    assert seen["connection_lost"] == [{"attempts": 2}]
    assert not transport.connected
    with pytest.raises(ConnectionLost):
        await transport.send_name("Ann")


@pytest.mark.asyncio
async def test_edge_reconnects_and_reannounces():
    second = _edge_client()
    clients = iter([_edge_client(), second])
    transport = EdgeRelayTransport("http://edge.test", reconnect_delay=0.0, client_factory=lambda: next(clients))
    transport.set_identity("Ann", HUMAN)
    await transport.connect("r1")

    await transport._sio.handlers["disconnect"]()
    await transport._reconnect_task
    assert transport.connected and transport.reconnect_attempts == 0
    assert {"type": "character", "characterSlug": HUMAN} in second.sent


@pytest.mark.asyncio
async def test_edge_disconnect_cancels_reconnect():
    client = _edge_client()
    transport = EdgeRelayTransport("http://edge.test", reconnect_delay=10.0, client_factory=lambda: client)
    seen = _collect(transport, "connection_lost")
    await transport.connect("r1")

    await client.handlers["disconnect"]()
    task = transport._reconnect_task
    await asyncio.sleep(0)
    await transport.disconnect()
    assert task.cancelled()
    assert seen["connection_lost"] == []


# ---- peer mesh --------------------------------------------------------------

class FakeEmitter:
    def __init__(self):
        self.handlers = {}

    def on(self, event, f=None):
        def register(handler):
            self.handlers[event] = handler
            return handler
        return register(f) if f is not None else register


class FakeChannel(FakeEmitter):
    def __init__(self, label, ready_state="connecting"):
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent = []
        self.closed = False

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self):
        self.closed = True


class FakePeer(FakeEmitter):
    def __init__(self):
        super().__init__()
        self.connectionState = "new"
        self.localDescription = None
        self.remote = None
        self.channel = None
        self.closed = False

    def createDataChannel(self, label):
        self.channel = FakeChannel(label)
        return self.channel

    async def createOffer(self):
        return SimpleNamespace(sdp="offer-sdp", type="offer")

    async def createAnswer(self):
        return SimpleNamespace(sdp="answer-sdp", type="answer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remote = description

    async def close(self):
        self.closed = True


def _mesh(client, peers):
    def new_peer():
        peer = FakePeer()
        peers.append(peer)
        return peer

    return PeerMeshTransport("http://signal.test", app_id="sf", client_factory=lambda: client, peer_factory=new_peer)


@pytest.mark.asyncio
async def test_mesh_initiator_offers_and_opens_channel():
    client = FakeSocketClient(on_connect=[{"type": "joined", "peers": 1}])
    peers = []
    transport = _mesh(client, peers)
    transport.set_identity("Ann", HUMAN)
    seen = _collect(transport, "start", "move")

    await transport.connect("r1")
    assert client.url == "http://signal.test?room=sf-r1"

    await client.feed({"type": "peer-joined", "peers": 2})
    assert client.sent == [{"type": "signal", "sdp": "offer-sdp", "kind": "offer"}]
    channel = peers[0].channel
    assert channel.label == "swordfight"

    await client.feed({"type": "signal", "sdp": "answer-sdp", "kind": "answer"})
    assert peers[0].remote.sdp == "answer-sdp"

    channel.readyState = "open"
    await channel.handlers["open"]()
    assert channel.sent == [
        {"type": "name", "name": "Ann"},
        {"type": "character", "characterSlug": HUMAN},
    ]
    assert seen["start"] == [None]

    await channel.handlers["message"](json.dumps({"type": "move", "move": {"id": "30"}, "round": 1}))
    assert seen["move"] == [{"move": {"id": "30"}, "round": 1, "hint": None}]


@pytest.mark.asyncio
async def test_mesh_responder_answers_offer():
    client = FakeSocketClient(on_connect=[{"type": "joined", "peers": 2}])
    peers = []
    transport = _mesh(client, peers)
    seen = _collect(transport, "start")
    await transport.connect("r1")

    await client.feed({"type": "signal", "sdp": "offer-sdp", "kind": "offer"})
    assert peers[0].remote.type == "offer"
    assert client.sent == [{"type": "signal", "sdp": "answer-sdp", "kind": "answer"}]

    peers[0].handlers["datachannel"](FakeChannel("swordfight", ready_state="open"))
    await asyncio.sleep(0)
    assert seen["start"] == [None]


@pytest.mark.asyncio
async def test_mesh_third_peer_is_refused():
    client = FakeSocketClient(on_connect=[{"type": "joined", "peers": 3}])
    transport = _mesh(client, [])
    with pytest.raises(RoomFull):
        await transport.connect("r1")
    assert client.disconnected


@pytest.mark.asyncio
async def test_mesh_peer_left_closes_connection():
    client = FakeSocketClient(on_connect=[{"type": "joined", "peers": 1}])
    peers = []
    transport = _mesh(client, peers)
    seen = _collect(transport, "peer_left")
    await transport.connect("r1")
    await client.feed({"type": "peer-joined", "peers": 2})

    await client.feed({"type": "peer-left", "peers": 1})
    assert peers[0].closed and peers[0].channel.closed
    assert seen["peer_left"] == [None]
    with pytest.raises(TransportError):
        await transport.send_name("Ann")


# ---- synthetic opponent -----------------------------------------------------

async def _drain(transport):
    while transport._tasks:
        await asyncio.gather(*transport._tasks, return_exceptions=True)
        await asyncio.sleep(0)


def _computer(game, **kwargs):
    options = dict(opponent_slug=GOBLIN, start_delay=0, thinking_delay=(0, 0), seed=7)
    options.update(kwargs)
    return SyntheticOpponentTransport(game, **options)


@pytest.mark.asyncio
async def test_synthetic_reactive_answers_each_move():
    game = Game("cpu", HUMAN, BundledCatalog(), player_name="Ann")
    transport = _computer(game)
    await game.connect(transport)
    assert game.opponent.slug == GOBLIN and game.session.opponent_name == "Computer"
    assert game.round_number == 1

    await game.input_move("30")
    await _drain(transport)
    assert game.round_number == 2
    assert game.session.previous().opponents_move.id in {"30", "32"}
    await transport.disconnect()


@pytest.mark.asyncio
async def test_synthetic_eager_moves_ahead_of_player():
    game = Game("cpu", HUMAN, BundledCatalog())
    transport = _computer(game, eager=True)
    await game.connect(transport)
    await _drain(transport)
    assert game.session.current().opponents_move is not None
    assert game.round_number == 1

    await game.input_move("30")
    assert game.round_number == 2
    await _drain(transport)
    assert game.session.current().opponents_move is not None
    await transport.disconnect()


@pytest.mark.asyncio
async def test_synthetic_picks_own_character_when_unset():
    game = Game("cpu", HUMAN, BundledCatalog())
    transport = _computer(game, opponent_slug=None)
    await game.connect(transport)
    assert game.opponent.slug == GOBLIN
    await transport.disconnect()


@pytest.mark.asyncio
async def test_synthetic_is_deterministic_per_seed():
    game, _ = await start_game()
    first = _computer(game, seed=11)
    second = _computer(game, seed=11)
    assert first.choose_move(1) == second.choose_move(1)


@pytest.mark.asyncio
async def test_synthetic_attaches_hint_when_required():
    game, scripted = await start_game()
    await play(game, scripted, [("30", "30"), ("14", "22")])
    assert game.hint_required("opponent")
    computer = _computer(game)
    payload = computer._payload(game.round_number, game.opponent.template.move("12"))
    assert payload["hint"] == ["10", "12", "14"]


@pytest.mark.asyncio
async def test_synthetic_prefers_retrieval_when_disarmed(monkeypatch):
    game, _ = await start_game()
    goblin = game.opponent.template
    game.opponent.weapon = False
    monkeypatch.setattr(game, "legal_moves", lambda side="me": [goblin.move("18"), goblin.move("20")])
    computer = _computer(game, retrieve_weapon_chance=1.0)
    assert computer.choose_move(game.round_number).name == "Retrieve Weapon"


@pytest.mark.asyncio
async def test_synthetic_falls_back_when_nothing_is_legal(monkeypatch):
    game, _ = await start_game()

    def nothing(side="me"):
        raise NoLegalMoves("cornered")

    monkeypatch.setattr(game, "legal_moves", nothing)
    computer = _computer(game)
    assert computer.choose_move(game.round_number) == game.opponent.template.moves[0]


@pytest.mark.asyncio
async def test_synthetic_disconnect_cancels_pending_delivery():
    game = Game("cpu", HUMAN, BundledCatalog())
    transport = _computer(game, thinking_delay=(5, 5))
    await game.connect(transport)
    await game.input_move("30")
    assert len(transport._tasks) == 1

    await transport.disconnect()
    assert transport._tasks == [] and not transport.connected
    assert game.round_number == 1
