"""
GameServer - one coordinating instance that owns the session registry, the
lobby and the rate limiter.

Every inbound frame is handled synchronously to completion, including all
the broadcasts it triggers, before the next frame is looked at. Outbound
frames are only queued on connections, so no handler ever waits on I/O.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncio
import json
import logging
import random
import time

from awale.config import Settings
from awale.enums import ErrorCode, SessionPhase
from awale.player import Connection
from awale.services.errors import ProtocolError
from awale.services.game_manager import GameManager
from awale.services.game_session import GameSession
from awale.services.lobby import LobbyRegistry
from awale.services.rate_limiter import RateLimiter
from awale.services.telemetry import LoggingTelemetry, TelemetrySink, emit

logger = logging.getLogger(__name__)

# Kinds that change server state; everything else is exempt from rate limiting
RATE_LIMITED = {
    "create", "join", "move", "resign",
    "lobby.join", "lobby.leave", "lobby.chat", "lobby.invite",
    "lobby.acceptInvite", "lobby.declineInvite", "lobby.status",
}

LOBBY_ACTIONS = {
    "join": "join",
    "leave": "leave",
    "chat": "chat",
    "invite": "invite",
    "status": "status",
    "accept-invite": "acceptInvite",
    "acceptInvite": "acceptInvite",
    "decline-invite": "declineInvite",
    "declineInvite": "declineInvite",
}

Handler = Callable[[Connection, dict, float], None]


def route_of(message: dict) -> Optional[str]:
    """
    Canonical kind of a decoded message. Lobby traffic may arrive as
    {"type": "lobby", "action": "accept-invite"} or {"type": "lobby.acceptInvite"}.
    """
    kind = message.get("type")
    if not isinstance(kind, str):
        return None
    if kind == "lobby":
        action = message.get("action")
        if not isinstance(action, str):
            return None
        kind = f"lobby.{action}"
    if kind.startswith("lobby."):
        action = LOBBY_ACTIONS.get(kind[len("lobby."):])
        return f"lobby.{action}" if action else None
    return kind


class GameServer:
    def __init__(self,
                 settings: Optional[Settings] = None,
                 games: Optional[GameManager] = None,
                 lobby: Optional[LobbyRegistry] = None,
                 telemetry: Optional[TelemetrySink] = None,
                 rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.time,
                 rate_clock: Callable[[], float] = time.monotonic):
        self.settings = settings or Settings()
        self.telemetry = telemetry if telemetry is not None else LoggingTelemetry()
        self.games = games or GameManager(rng=rng)
        self.lobby = lobby or LobbyRegistry(self.settings, self.games, self.telemetry)
        self.rate_limiter = RateLimiter(
            self.settings.RATE_LIMIT_BURST, self.settings.rate_refill_sec, clock=rate_clock
        )
        self.clock = clock
        self._sweep_tasks: List[asyncio.Task] = []

        self._handlers: Dict[str, Handler] = {
            "create": self._create,
            "join": self._join,
            "move": self._move,
            "resign": self._resign,
            "ping": self._ping,
            "lobby.join": self._lobby_join,
            "lobby.leave": self._lobby_leave,
            "lobby.chat": self._lobby_chat,
            "lobby.invite": self._lobby_invite,
            "lobby.acceptInvite": self._lobby_accept,
            "lobby.declineInvite": self._lobby_decline,
            "lobby.status": self._lobby_status,
        }

    # ============================================================================
    # DISPATCH
    # ============================================================================

    def handle_message(self, conn: Connection, raw: Any) -> None:
        """Decode, rate-limit and dispatch one frame. Never raises."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Bad JSON from {conn.conn_id}")
            conn.send(ProtocolError(ErrorCode.BAD_JSON, "Invalid JSON").to_message())
            return
        if not isinstance(message, dict):
            conn.send(ProtocolError(ErrorCode.BAD_JSON, "Message must be a JSON object").to_message())
            return

        kind = route_of(message)
        now = self.clock()
        self.lobby.touch(conn, now)
        logger.debug(f"Message from {conn.conn_id}: {kind}")

        handler = self._handlers.get(kind) if kind else None
        if handler is None:
            logger.warning(f"Unknown message type from {conn.conn_id}: {message.get('type')}")
            conn.send(ProtocolError(ErrorCode.UNKNOWN, "Unknown message type").to_message())
            return

        if kind in RATE_LIMITED and not self.rate_limiter.allow(conn.conn_id):
            logger.warning(f"Rate limit hit by {conn.conn_id} on {kind}")
            conn.send(ProtocolError(ErrorCode.RATE_LIMIT, "Too many messages").to_message())
            return

        try:
            handler(conn, message, now)
        except ProtocolError as e:
            logger.warning(f"{kind} from {conn.conn_id} refused: {e.code.value} {e.message}")
            conn.send(e.to_message())
        except Exception as e:
            logger.error(f"Error handling {kind} from {conn.conn_id}: {e}", exc_info=True)
            conn.send(ProtocolError(ErrorCode.UNKNOWN, "Internal error").to_message())

    def handle_disconnect(self, conn: Connection) -> None:
        """
        Socket closed. Seats go Disconnected (state is kept for reconnection),
        the lobby entry is removed and the rate bucket forgotten.
        """
        now = self.clock()
        for game in self.games.find_games_for_connection(conn):
            participant = game.disconnect(conn, now)
            if participant is None or not participant.player_id:
                continue
            entry = self.lobby.entries.get(participant.player_id)
            if entry is not None and entry.conn is not conn:
                self.lobby.mark_offline(participant.player_id)
        self.lobby.leave(conn)
        self.rate_limiter.forget(conn.conn_id)
        logger.info(f"Client disconnected: {conn.conn_id}")

    # ============================================================================
    # GAME MESSAGES
    # ============================================================================

    def _require_game(self, message: dict) -> GameSession:
        game = self.games.get_game(message.get("gameId"))
        if game is None:
            raise ProtocolError(ErrorCode.GAME_NOT_FOUND, "Game not found")
        return game

    @staticmethod
    def _player_fields(message: dict, default_name: str) -> Tuple[str, Optional[str]]:
        name = message.get("name")
        player_id = message.get("playerId")
        return (
            name if isinstance(name, str) and name else default_name,
            player_id if isinstance(player_id, str) and player_id else None,
        )

    def _create(self, conn: Connection, message: dict, now: float) -> None:
        name, player_id = self._player_fields(message, "Host")
        game = self.games.create_game(name, player_id, conn, now)
        emit(self.telemetry, "game_created", game_id=game.game_id, game_type="create",
             host_id=player_id or conn.conn_id)
        conn.send(game.created_message())
        conn.send(game.state_message())

    def _join(self, conn: Connection, message: dict, now: float) -> None:
        game = self._require_game(message)
        name, player_id = self._player_fields(message, "Guest")
        started = game.starting_player is not None

        seat = game.participant_for(conn) or game.seat_for_player_id(player_id)
        if seat is not None:
            game.reconnect(seat, conn, now)
        else:
            guest = game.attach_guest(name, player_id, conn, now)
            emit(self.telemetry, "player_joined", game_id=game.game_id,
                 player_id=guest.player_id or conn.conn_id, role=guest.role.value)

        if not started and game.starting_player is not None:
            emit(self.telemetry, "game_started", game_id=game.game_id,
                 starting_player=game.starting_player.value)

    def _move(self, conn: Connection, message: dict, now: float) -> None:
        game = self._require_game(message)
        game.apply_move(conn, message.get("pit"), now)
        if game.phase is SessionPhase.ENDED:
            self._game_over(game, now)

    def _resign(self, conn: Connection, message: dict, now: float) -> None:
        game = self._require_game(message)
        game.resign(conn, now)
        self._game_over(game, now)

    def _game_over(self, game: GameSession, now: float) -> None:
        """Report the result and send both players back to the lobby"""
        emit(self.telemetry, "game_ended", game_id=game.game_id,
             reason=game.end_reason.value if game.end_reason else None,
             winner=game.state.winner, moves_played=game.move_seq,
             duration=now - game.created_at)
        for participant in game.participants:
            self.lobby.mark_available(participant.player_id)

    def _ping(self, conn: Connection, message: dict, now: float) -> None:
        ts = message.get("ts")
        latency = None
        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            latency = now * 1000 - ts
        conn.send({"type": "pong", "latency": latency})

    # ============================================================================
    # LOBBY MESSAGES
    # ============================================================================

    def _lobby_join(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.join(conn, message.get("playerId"), message.get("playerName"), message.get("avatar"), now)

    def _lobby_leave(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.leave(conn)

    def _lobby_chat(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.chat(conn, message.get("message"), now)

    def _lobby_invite(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.invite(conn, message.get("targetPlayerId"), now)

    def _lobby_accept(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.accept_invite(conn, message.get("inviteId"), now)

    def _lobby_decline(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.decline_invite(conn, message.get("inviteId"), now)

    def _lobby_status(self, conn: Connection, message: dict, now: float) -> None:
        self.lobby.set_status(conn, message.get("status"), now)

    # ============================================================================
    # SWEEPS
    # ============================================================================

    def sweep_lobby(self) -> None:
        self.lobby.sweep(self.clock())

    def sweep_games(self) -> List[str]:
        return self.games.reap_stale_games(
            self.clock(), self.settings.STALE_DISCONNECT_SEC, self.settings.MAX_GAME_AGE_SEC
        )

    async def start_sweeps(self):
        """Start the periodic lobby and session sweeps on the running loop"""
        async def run_every(interval: float, sweep: Callable[[], Any]):
            while True:
                await asyncio.sleep(interval)
                try:
                    sweep()
                except Exception as e:
                    logger.error(f"Sweep {sweep.__name__} failed: {e}", exc_info=True)

        self._sweep_tasks = [
            asyncio.create_task(run_every(self.settings.LOBBY_SWEEP_SEC, self.sweep_lobby)),
            asyncio.create_task(run_every(self.settings.GAME_SWEEP_SEC, self.sweep_games)),
        ]
        logger.info("Sweep tasks started")

    def stop_sweeps(self):
        for task in self._sweep_tasks:
            task.cancel()
        self._sweep_tasks = []
        logger.info("Sweep tasks stopped")

    # ============================================================================
    # STATISTICS & INFO
    # ============================================================================

    def get_stats(self) -> dict:
        return {**self.games.get_stats(), **self.lobby.get_stats()}
