"""
Test the GameServer dispatch: decoding, rate limiting, routing and
disconnect handling, driven with raw JSON frames
"""

import asyncio
import json

import pytest

from awale.config import Settings
from awale.enums import LobbyStatus, Role, SessionPhase
from awale.services.coordinator import GameServer, route_of
from awale.services.telemetry import NullTelemetry, TelemetrySink


class RecordingTelemetry(TelemetrySink):
    def __init__(self):
        self.events = []

    def track(self, event, properties):
        self.events.append((event, properties))


@pytest.fixture
def server(settings, host_first, clock):
    return GameServer(settings, telemetry=NullTelemetry(), rng=host_first, clock=clock, rate_clock=clock)


def send(server, conn, **message):
    server.handle_message(conn, json.dumps(message))


def error_codes(conn):
    return [frame["code"] for frame in conn.of_type("error")]


def last_invitation(conn):
    return [frame for frame in conn.of_type("lobby") if frame.get("action") == "invitation"][-1]


def create_and_join(server, connections):
    host_conn, guest_conn = connections("host"), connections("guest")
    send(server, host_conn, type="create", name="Alice", playerId="alice")
    game_id = host_conn.frames[0]["gameId"]
    send(server, guest_conn, type="join", gameId=game_id, name="Bob", playerId="bob")
    return game_id, host_conn, guest_conn


# ============================================================================
# DECODING & ROUTING
# ============================================================================

def test_bad_json(server, connections):
    conn = connections("c")
    server.handle_message(conn, "{not json")
    server.handle_message(conn, "[1, 2]")
    server.handle_message(conn, "")
    server.handle_message(conn, b"\xff\xfe")
    server.handle_message(conn, None)
    assert error_codes(conn) == ["BAD_JSON"] * 5


def test_binary_frame_is_decoded(server, connections):
    conn = connections("c")
    server.handle_message(conn, b'{"type": "ping"}')
    assert conn.frames == [{"type": "pong", "latency": None}]


def test_unknown_message_type(server, connections):
    conn = connections("c")
    send(server, conn, type="dance")
    send(server, conn, type=5)
    send(server, conn, type="lobby", action="dance")
    send(server, conn, foo="bar")
    assert error_codes(conn) == ["UNKNOWN"] * 4


@pytest.mark.parametrize("message, kind", [
    ({"type": "move"}, "move"),
    ({"type": "lobby", "action": "join"}, "lobby.join"),
    ({"type": "lobby", "action": "accept-invite"}, "lobby.acceptInvite"),
    ({"type": "lobby", "action": "acceptInvite"}, "lobby.acceptInvite"),
    ({"type": "lobby.declineInvite"}, "lobby.declineInvite"),
    ({"type": "lobby.decline-invite"}, "lobby.declineInvite"),
    ({"type": "lobby"}, None),
    ({"type": "lobby.dance"}, None),
    ({"type": None}, None),
])
def test_route_of(message, kind):
    assert route_of(message) == kind


def test_create(server, connections):
    conn = connections("c")
    send(server, conn, type="create", name="Alice")

    assert conn.types() == ["created", "state"]
    created, state = conn.frames
    assert "playerToken" in created
    assert state["gameId"] == created["gameId"]
    assert state["version"] == 0
    assert server.games.get_game(created["gameId"]).host.name == "Alice"


def test_create_join_move(server, connections):
    game_id, host_conn, guest_conn = create_and_join(server, connections)

    assert guest_conn.types() == ["joined", "gameStarting", "state"]
    host_conn.clear()
    guest_conn.clear()

    send(server, host_conn, type="move", gameId=game_id, pit=2)
    assert host_conn.types() == ["moveApplied", "state"]
    assert guest_conn.last("state")["version"] == 1

    send(server, host_conn, type="move", gameId=game_id, pit=3)
    assert error_codes(host_conn) == ["NOT_YOUR_TURN"]
    assert guest_conn.types() == ["moveApplied", "state"]


def test_game_not_found(server, connections):
    conn = connections("c")
    send(server, conn, type="join", gameId="nope")
    send(server, conn, type="move", pit=0)
    send(server, conn, type="resign", gameId=7)
    assert error_codes(conn) == ["GAME_NOT_FOUND"] * 3


def test_error_goes_only_to_sender(server, connections):
    game_id, host_conn, guest_conn = create_and_join(server, connections)
    host_conn.clear()
    guest_conn.clear()

    send(server, guest_conn, type="move", gameId=game_id, pit=7)
    assert error_codes(guest_conn) == ["NOT_YOUR_TURN"]
    assert host_conn.frames == []


# ============================================================================
# RATE LIMITING
# ============================================================================

def test_rate_limit_rejects_only_excess(host_first, clock, connections):
    server = GameServer(Settings(RATE_LIMIT_BURST=3), telemetry=NullTelemetry(),
                        rng=host_first, clock=clock, rate_clock=clock)
    conn = connections("c")
    for _ in range(5):
        send(server, conn, type="create")

    assert len(server.games.games) == 3
    assert error_codes(conn) == ["RATE_LIMIT", "RATE_LIMIT"]

    clock.advance(1.0)
    send(server, conn, type="create")
    assert len(server.games.games) == 4


def test_ping_is_not_rate_limited(host_first, clock, connections):
    server = GameServer(Settings(RATE_LIMIT_BURST=1), telemetry=NullTelemetry(),
                        rng=host_first, clock=clock, rate_clock=clock)
    conn = connections("c")
    send(server, conn, type="create")
    send(server, conn, type="create")
    send(server, conn, type="ping", ts=clock.now * 1000 - 25)
    send(server, conn, type="ping")

    pongs = conn.of_type("pong")
    assert pongs == [{"type": "pong", "latency": 25.0}, {"type": "pong", "latency": None}]
    assert error_codes(conn) == ["RATE_LIMIT"]


def test_rate_buckets_are_per_connection(host_first, clock, connections):
    server = GameServer(Settings(RATE_LIMIT_BURST=1), telemetry=NullTelemetry(),
                        rng=host_first, clock=clock, rate_clock=clock)
    first, second = connections("a"), connections("b")
    send(server, first, type="create")
    send(server, first, type="create")
    send(server, second, type="create")
    assert error_codes(first) == ["RATE_LIMIT"]
    assert error_codes(second) == []


# ============================================================================
# LOBBY ROUTING
# ============================================================================

def test_both_lobby_message_forms(server, connections):
    alice, bob = connections("a"), connections("b")
    send(server, alice, type="lobby", action="join", playerId="alice", playerName="Alice")
    send(server, bob, type="lobby.join", playerId="bob", playerName="Bob")
    assert set(server.lobby.entries) == {"alice", "bob"}

    send(server, alice, type="lobby.invite", targetPlayerId="bob")
    invite = last_invitation(bob)
    assert invite["action"] == "invitation"

    send(server, bob, type="lobby", action="accept-invite", inviteId=invite["inviteId"])
    game = server.games.get_game(invite["gameId"])
    assert game.phase is SessionPhase.ACTIVE
    assert server.lobby.entries["bob"].status is LobbyStatus.IN_GAME


def test_lobby_chat_and_status(server, connections):
    alice = connections("a")
    send(server, alice, type="lobby.join", playerId="alice")
    send(server, alice, type="lobby", action="chat", message="hello")
    send(server, alice, type="lobby.status", status="away")

    assert alice.last("lobby")["status"] == "away"
    assert server.lobby.messages[-1]["message"] == "hello"


def test_lobby_errors_are_reported(server, connections):
    conn = connections("c")
    send(server, conn, type="lobby.chat", message="hi")
    send(server, conn, type="lobby.join")
    assert error_codes(conn) == ["NOT_IN_LOBBY", "BAD_JSON"]


def test_game_over_returns_players_to_lobby(server, connections):
    alice, bob = connections("a"), connections("b")
    send(server, alice, type="lobby.join", playerId="alice")
    send(server, bob, type="lobby.join", playerId="bob")
    send(server, alice, type="lobby.invite", targetPlayerId="bob")
    invite = last_invitation(bob)
    send(server, bob, type="lobby.acceptInvite", inviteId=invite["inviteId"])

    send(server, bob, type="resign", gameId=invite["gameId"])

    assert alice.last("gameEnded")["reason"] == "resign"
    for player_id in ("alice", "bob"):
        entry = server.lobby.entries[player_id]
        assert entry.status is LobbyStatus.AVAILABLE
        assert entry.game_id is None


def test_handler_crash_is_contained(server, connections, monkeypatch):
    conn = connections("c")
    send(server, conn, type="lobby.join", playerId="alice")

    def boom(*args):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(server.lobby, "chat", boom)
    send(server, conn, type="lobby.chat", message="hi")
    assert conn.last("error") == {"type": "error", "code": "UNKNOWN", "message": "Internal error"}

    send(server, conn, type="ping")
    assert conn.last()["type"] == "pong"


# ============================================================================
# DISCONNECT & RECONNECT
# ============================================================================

def test_disconnect_then_reconnect_by_player_id(server, connections, clock):
    game_id, host_conn, guest_conn = create_and_join(server, connections)
    send(server, host_conn, type="move", gameId=game_id, pit=0)
    host_conn.clear()

    server.handle_disconnect(guest_conn)
    assert host_conn.types() == ["opponentLeft"]

    clock.advance(30)
    again = connections("guest_again")
    send(server, again, type="join", gameId=game_id, playerId="bob")

    assert again.types() == ["joined", "state"]
    assert again.frames[0]["role"] == "guest"
    assert again.frames[1]["version"] == 1
    assert host_conn.types() == ["opponentLeft", "opponentReconnected"]

    game = server.games.get_game(game_id)
    assert game.guest.is_connection(again)
    assert game.starting_player is Role.HOST

    send(server, again, type="move", gameId=game_id, pit=6)
    assert game.state.version == 2


def test_join_without_player_id_cannot_take_seat(server, connections):
    game_id, _, guest_conn = create_and_join(server, connections)
    server.handle_disconnect(guest_conn)

    stranger = connections("stranger")
    send(server, stranger, type="join", gameId=game_id)
    assert error_codes(stranger) == ["FULL"]


def test_disconnect_cleans_up_lobby_and_bucket(server, connections):
    conn = connections("c")
    send(server, conn, type="lobby.join", playerId="alice")
    assert conn.conn_id in server.rate_limiter.buckets

    server.handle_disconnect(conn)
    assert server.lobby.entries == {}
    assert conn.conn_id not in server.rate_limiter.buckets


def test_game_disconnect_marks_lobby_entry_offline(server, connections):
    lobby_conn, game_conn = connections("lobby"), connections("game")
    send(server, lobby_conn, type="lobby.join", playerId="alice")
    send(server, game_conn, type="create", playerId="alice")

    server.handle_disconnect(game_conn)

    assert server.lobby.entries["alice"].status is LobbyStatus.OFFLINE
    assert lobby_conn.last("lobby")["status"] == "offline"


# ============================================================================
# SWEEPS
# ============================================================================

def test_messages_keep_lobby_entry_alive(server, connections, clock):
    alice, bob = connections("a"), connections("b")
    send(server, alice, type="lobby.join", playerId="alice")
    send(server, bob, type="lobby.join", playerId="bob")

    clock.advance(200)
    send(server, alice, type="ping")
    clock.advance(200)
    server.sweep_lobby()

    assert "alice" in server.lobby.entries
    assert "bob" not in server.lobby.entries


def test_sweep_games(server, connections, clock):
    game_id, host_conn, guest_conn = create_and_join(server, connections)
    server.handle_disconnect(host_conn)
    server.handle_disconnect(guest_conn)

    clock.advance(299)
    assert server.sweep_games() == []
    clock.advance(2)
    assert server.sweep_games() == [game_id]
    assert server.get_stats()["total_games"] == 0


def test_sweep_tasks_start_and_stop(server):
    async def run():
        await server.start_sweeps()
        tasks = list(server._sweep_tasks)
        assert len(tasks) == 2
        server.stop_sweeps()
        await asyncio.sleep(0)
        return tasks

    tasks = asyncio.run(run())
    assert all(task.cancelled() for task in tasks)
    assert server._sweep_tasks == []


# ============================================================================
# TELEMETRY & STATS
# ============================================================================

def test_game_telemetry(settings, host_first, clock, connections):
    telemetry = RecordingTelemetry()
    server = GameServer(settings, telemetry=telemetry, rng=host_first, clock=clock, rate_clock=clock)
    game_id, host_conn, _ = create_and_join(server, connections)
    send(server, host_conn, type="resign", gameId=game_id)

    events = [event for event, _ in telemetry.events]
    assert events == ["game_created", "player_joined", "game_started", "game_ended"]
    ended = telemetry.events[-1][1]
    assert ended["reason"] == "resign"
    assert ended["winner"] == "B"
    assert ended["moves_played"] == 0


def test_get_stats(server, connections):
    create_and_join(server, connections)
    send(server, connections("x"), type="lobby.join", playerId="xavier")
    stats = server.get_stats()
    assert stats["total_games"] == 1
    assert stats["active_games"] == 1
    assert stats["connected_players"] == 1
