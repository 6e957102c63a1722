"""
GameManager - Session registry
- Game creation (explicit create or lobby invitation)
- Lookup by id and by connection
- Eviction of abandoned and over-age sessions
"""

from typing import Any, Dict, List, Optional
import logging
import random
import secrets

from awale.enums import Role, SessionPhase
from awale.player import Connection, Participant
from awale.services.game_session import GameSession

logger = logging.getLogger(__name__)


def new_game_id() -> str:
    return secrets.token_hex(6)


class GameManager:
    """Owns every live GameSession in this process"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.games: Dict[str, GameSession] = {}
        self.rng = rng or random.Random()

    # ============================================================================
    # GAME CREATION
    # ============================================================================

    def create_game(self, name: str, player_id: Optional[str], conn: Connection, now: float,
                    game_id: Optional[str] = None) -> GameSession:
        """Create a session with `conn` seated as host, awaiting a guest"""
        requested = game_id
        game_id = game_id or new_game_id()
        while game_id in self.games:
            game_id = new_game_id()
        if requested and requested != game_id:
            logger.warning(f"Game id {requested} already in use, created {game_id} instead")

        host = Participant(Role.HOST, name, player_id, conn, now)
        game = GameSession(game_id, host, now, rng=self.rng)
        self.games[game_id] = game

        logger.info(f"Game {game_id} created by {name} ({player_id or conn.conn_id})")
        return game

    # ============================================================================
    # GAME RETRIEVAL
    # ============================================================================

    def get_game(self, game_id: Any) -> Optional[GameSession]:
        if not isinstance(game_id, str):
            return None
        return self.games.get(game_id)

    def find_games_for_connection(self, conn: Any) -> List[GameSession]:
        """Every session with a seat currently bound to this connection"""
        return [game for game in self.games.values() if game.participant_for(conn) is not None]

    def get_active_games(self) -> List[GameSession]:
        return [game for game in self.games.values() if game.phase is SessionPhase.ACTIVE]

    # ============================================================================
    # GAME LIFECYCLE
    # ============================================================================

    def remove_game(self, game_id: str) -> bool:
        game = self.games.pop(game_id, None)
        if game is None:
            return False
        game.phase = SessionPhase.REAPED
        logger.info(f"Game {game_id} removed")
        return True

    def reap_stale_games(self, now: float, disconnect_timeout: float, max_age: float) -> List[str]:
        """
        Remove sessions whose seats have all been disconnected for longer
        than `disconnect_timeout`, and any session older than `max_age`.
        Returns the removed ids.
        """
        stale = [
            game_id for game_id, game in self.games.items()
            if game.is_stale(now, disconnect_timeout, max_age)
        ]
        for game_id in stale:
            self.remove_game(game_id)
        if stale:
            logger.info(f"Reaped {len(stale)} stale game(s)")
        return stale

    # ============================================================================
    # STATISTICS & INFO
    # ============================================================================

    def get_stats(self) -> dict:
        phases = [game.phase for game in self.games.values()]
        return {
            "total_games": len(self.games),
            "awaiting_guest": phases.count(SessionPhase.AWAITING_GUEST),
            "active_games": phases.count(SessionPhase.ACTIVE),
            "finished_games": phases.count(SessionPhase.ENDED),
        }

    def __repr__(self):
        stats = self.get_stats()
        return f"<GameManager: {stats['active_games']} active, {stats['total_games']} total>"
