"""
GameSession - the authoritative state of one paired game.

Phases: AWAITING_GUEST -> ACTIVE -> ENDED -> REAPED

The session validates every move against turn order, seat and the rules
engine before storing the new position, then broadcasts `moveApplied`
followed by the full `state`. Sockets may come and go; the seats and the
game state stay put until the session is reaped.
"""

from typing import Any, Dict, List, Optional
import logging
import random

from awale.enums import EndReason, ErrorCode, Role, SessionPhase, Side
from awale.engine.board import GameState, MoveResult
from awale.engine.rules import IllegalMoveError, apply_move, create_initial_state, get_legal_moves
from awale.player import Connection, Participant
from awale.services.errors import ProtocolError

logger = logging.getLogger(__name__)


class GameSession:
    def __init__(self, game_id: str, host: Participant, now: float, rng: Optional[random.Random] = None):
        self.game_id: str = game_id
        self.host: Participant = host
        self.guest: Optional[Participant] = None
        self.state: GameState = create_initial_state()
        self.phase: SessionPhase = SessionPhase.AWAITING_GUEST

        self.created_at: float = now
        self.updated_at: float = now

        # Broadcast ordering counter, independent of state.version
        self.move_seq: int = 0
        self.starting_player: Optional[Role] = None
        self.end_reason: Optional[EndReason] = None

        self.rng = rng or random.Random()

    # --- Helper Methods ---
    @property
    def participants(self) -> List[Participant]:
        return [p for p in (self.host, self.guest) if p is not None]

    @property
    def is_ended(self) -> bool:
        return self.phase in (SessionPhase.ENDED, SessionPhase.REAPED)

    def participant_for(self, conn: Any) -> Optional[Participant]:
        """Find the seat currently bound to this connection"""
        for participant in self.participants:
            if participant.is_connection(conn):
                return participant
        return None

    def seat_for_player_id(self, player_id: Optional[str]) -> Optional[Participant]:
        """Find the seat a returning player may reclaim"""
        for participant in self.participants:
            if participant.can_reclaim(player_id):
                return participant
        return None

    def opponent_of(self, participant: Participant) -> Optional[Participant]:
        return self.guest if participant.role is Role.HOST else self.host

    def broadcast(self, message: dict) -> None:
        """Send message to every connected seat"""
        for participant in self.participants:
            participant.send(message)

    # --- Messages ---
    def state_message(self) -> dict:
        return {
            "type": "state",
            "gameId": self.game_id,
            "version": self.state.version,
            "state": self.state.to_dict(),
        }

    def joined_message(self, participant: Participant) -> dict:
        opponent = self.opponent_of(participant)
        return {
            "type": "joined",
            "gameId": self.game_id,
            "role": participant.role.value,
            "opponent": opponent.name if opponent else None,
        }

    def created_message(self) -> dict:
        return {"type": "created", "gameId": self.game_id, "playerToken": self.host.token}

    # --- Pairing ---
    def attach_guest(self, name: str, player_id: Optional[str], conn: Connection, now: float) -> Participant:
        """Seat a new guest and start the game if both sides are present"""
        if self.is_ended:
            raise ProtocolError(ErrorCode.ENDED, "Game ended")
        if self.guest is not None:
            raise ProtocolError(ErrorCode.FULL, "Game full")

        self.guest = Participant(Role.GUEST, name, player_id, conn, now)
        self.phase = SessionPhase.ACTIVE
        self.updated_at = now
        logger.info(f"Guest {name} joined game {self.game_id}")

        self.guest.send(self.joined_message(self.guest))
        self.host.send(self.joined_message(self.host))
        if not self.maybe_start():
            self.guest.send(self.state_message())
        return self.guest

    def reconnect(self, participant: Participant, conn: Connection, now: float) -> None:
        """
        Bind a returning player's new socket to their existing seat.
        Never replays a move or creates a second seat.
        """
        participant.mark_reconnected(conn, now)
        logger.info(f"{participant.role.value} reconnected to game {self.game_id}")

        participant.send(self.joined_message(participant))
        participant.send(self.state_message())
        opponent = self.opponent_of(participant)
        if opponent is not None:
            opponent.send({"type": "opponentReconnected", "gameId": self.game_id})
        self.maybe_start()

    def maybe_start(self) -> bool:
        """
        Flip for the first player once both seats are connected.
        Runs at most once per session.
        """
        if self.starting_player is not None or self.is_ended:
            return False
        if self.guest is None or not (self.host.connected and self.guest.connected):
            return False

        self.starting_player = Role.HOST if self.rng.random() < 0.5 else Role.GUEST
        if self.starting_player is Role.GUEST:
            # Seat change on the fresh position, not a move: version stays 0
            self.state = self.state.with_changes(current_player=Side.B)

        starter = self.host if self.starting_player is Role.HOST else self.guest
        logger.info(f"Game {self.game_id}: {self.starting_player.value} ({starter.name}) starts first")

        self.broadcast({
            "type": "gameStarting",
            "gameId": self.game_id,
            "startingPlayer": self.starting_player.value,
            "message": f"Random selection: {starter.name} starts first!",
        })
        self.broadcast(self.state_message())
        return True

    # --- Moves ---
    def apply_move(self, conn: Any, pit: Any, now: float) -> MoveResult:
        """
        Validate and play one move for the seat bound to `conn`.
        Raises ProtocolError without touching the session on any rejection.
        """
        if self.is_ended or self.state.ended:
            raise ProtocolError(ErrorCode.ENDED, "Game ended")
        if self.guest is None or not self.guest.connected or self.starting_player is None:
            raise ProtocolError(ErrorCode.WAITING_FOR_OPPONENT, "Waiting for opponent to join")

        participant = self.participant_for(conn)
        if participant is None:
            raise ProtocolError(ErrorCode.NOT_IN_GAME, "Not part of this game")

        side = participant.role.side
        if side is not self.state.current_player:
            raise ProtocolError(ErrorCode.NOT_YOUR_TURN, "Not your turn")
        if isinstance(pit, bool) or not isinstance(pit, int) or not 0 <= pit <= 11:
            raise ProtocolError(ErrorCode.BAD_PIT, "Invalid pit index")
        if (side is Side.A and pit > 5) or (side is Side.B and pit < 6):
            raise ProtocolError(ErrorCode.BAD_SIDE, "Wrong side")
        if pit not in get_legal_moves(self.state):
            raise ProtocolError(ErrorCode.ILLEGAL, "Illegal move")

        try:
            result = apply_move(self.state, pit)
        except IllegalMoveError as e:
            raise ProtocolError(ErrorCode.ILLEGAL, str(e))
        except Exception as e:
            logger.error(f"Engine failure in game {self.game_id} on pit {pit}: {e}", exc_info=True)
            raise ProtocolError(ErrorCode.ENGINE_ERR, str(e))

        self.state = result.state
        self.move_seq += 1
        self.updated_at = now

        self.broadcast({
            "type": "moveApplied",
            "gameId": self.game_id,
            "seq": self.move_seq,
            "pit": pit,
            "player": participant.role.value,
            "version": self.state.version,
            "captured": result.captured_this_move,
        })
        self.broadcast(self.state_message())

        if self.state.ended:
            self._end(EndReason.END, now)
        return result

    # --- Game Lifecycle ---
    def resign(self, conn: Any, now: float) -> Participant:
        """Concede the game to the other seat"""
        if self.is_ended or self.state.ended:
            raise ProtocolError(ErrorCode.ENDED, "Game ended")
        participant = self.participant_for(conn)
        if participant is None:
            raise ProtocolError(ErrorCode.NOT_IN_GAME, "Not part of this game")

        winner = participant.role.other.side
        self.state = self.state.with_changes(ended=True, winner=winner.value)
        logger.info(f"Game {self.game_id} resigned by {participant.role.value}")
        self._end(EndReason.RESIGN, now)
        return participant

    def _end(self, reason: EndReason, now: float) -> None:
        self.phase = SessionPhase.ENDED
        self.end_reason = reason
        self.updated_at = now
        logger.info(f"GAME OVER: {self.game_id} | reason={reason.value} winner={self.state.winner}")
        self.broadcast({
            "type": "gameEnded",
            "gameId": self.game_id,
            "reason": reason.value,
            "final": self.state.to_dict(),
        })

    def disconnect(self, conn: Any, now: float) -> Optional[Participant]:
        """Mark the seat bound to `conn` as disconnected; the game state is kept"""
        participant = self.participant_for(conn)
        if participant is None:
            return None
        participant.mark_disconnected(now)
        self.updated_at = now
        logger.info(f"{participant.role.value} disconnected from game {self.game_id}")

        opponent = self.opponent_of(participant)
        if opponent is not None and not self.is_ended:
            opponent.send({"type": "opponentLeft", "gameId": self.game_id, "temporary": True})
        return participant

    def is_stale(self, now: float, disconnect_timeout: float, max_age: float) -> bool:
        both_disconnected = not self.host.connected and (self.guest is None or not self.guest.connected)
        if both_disconnected and now - self.updated_at > disconnect_timeout:
            return True
        return now - self.created_at > max_age

    # --- Serialization ---
    def to_dict(self) -> Dict[str, Any]:
        return {
            "gameId": self.game_id,
            "phase": self.phase.value,
            "host": self.host.to_dict(),
            "guest": self.guest.to_dict() if self.guest else None,
            "startingPlayer": self.starting_player.value if self.starting_player else None,
            "moveSeq": self.move_seq,
            "endReason": self.end_reason.value if self.end_reason else None,
            "state": self.state.to_dict(),
        }

    def __repr__(self):
        return f"<GameSession {self.game_id}: {self.phase.value}, move {self.move_seq}>"
