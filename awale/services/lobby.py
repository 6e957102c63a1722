"""
Lobby - presence, chat and invitations for connected players who are not
yet paired.

Every player id has at most one entry. Accepting an invitation hands both
players straight into an Active GameSession owned by the GameManager.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional
import logging
import secrets

from awale.config import Settings
from awale.enums import ErrorCode, LobbyStatus
from awale.player import Connection
from awale.services.errors import ProtocolError
from awale.services.game_manager import GameManager, new_game_id
from awale.services.game_session import GameSession
from awale.services.telemetry import TelemetrySink, emit

logger = logging.getLogger(__name__)

RECENT_CHAT = 50
CLIENT_STATUSES = (LobbyStatus.AVAILABLE, LobbyStatus.AWAY)


def new_id() -> str:
    return secrets.token_hex(6)


class LobbyEntry:
    def __init__(self, player_id: str, name: str, avatar: Optional[str], conn: Connection, now: float):
        self.player_id = player_id
        self.name = name
        self.avatar = avatar
        self.status: LobbyStatus = LobbyStatus.AVAILABLE
        self.joined_at: float = now
        self.last_seen: float = now
        self.game_id: Optional[str] = None
        self.conn = conn

    def to_dict(self) -> dict:
        return {
            "id": self.player_id,
            "name": self.name,
            "avatar": self.avatar,
            "status": self.status.value,
            "joinedAt": self.joined_at,
            "gameId": self.game_id,
        }

    def __repr__(self):
        return f"<LobbyEntry {self.name} ({self.status.value})>"


@dataclass
class Invitation:
    invite_id: str
    from_id: str
    to_id: str
    game_id: str
    created_at: float


class LobbyRegistry:
    def __init__(self, settings: Settings, games: GameManager, telemetry: Optional[TelemetrySink] = None):
        self.settings = settings
        self.games = games
        self.telemetry = telemetry
        self.entries: Dict[str, LobbyEntry] = {}
        self.invitations: Dict[str, Invitation] = {}
        self.messages: Deque[dict] = deque(maxlen=settings.CHAT_HISTORY)

    # ============================================================================
    # LOOKUP & BROADCAST
    # ============================================================================

    def entry_for_connection(self, conn: Any) -> Optional[LobbyEntry]:
        for entry in self.entries.values():
            if entry.conn is conn:
                return entry
        return None

    def _require_entry(self, conn: Any) -> LobbyEntry:
        entry = self.entry_for_connection(conn)
        if entry is None:
            raise ProtocolError(ErrorCode.NOT_IN_LOBBY, "Not in lobby")
        return entry

    def broadcast(self, message: dict) -> None:
        for entry in list(self.entries.values()):
            entry.conn.send(message)

    def roster(self) -> List[dict]:
        return [entry.to_dict() for entry in self.entries.values()]

    def touch(self, conn: Any, now: float) -> None:
        entry = self.entry_for_connection(conn)
        if entry is not None:
            entry.last_seen = now

    def _set_status(self, entry: LobbyEntry, status: LobbyStatus) -> None:
        entry.status = status
        self.broadcast({
            "type": "lobby",
            "action": "player-status",
            "playerId": entry.player_id,
            "status": status.value,
        })

    # ============================================================================
    # PRESENCE
    # ============================================================================

    def join(self, conn: Connection, player_id: Any, name: Any, avatar: Any, now: float) -> LobbyEntry:
        if not isinstance(player_id, str) or not player_id:
            raise ProtocolError(ErrorCode.BAD_JSON, "playerId is required")
        name = name if isinstance(name, str) and name else player_id
        avatar = avatar if isinstance(avatar, str) else None

        # One entry per connection and per player id
        previous = self.entry_for_connection(conn)
        if previous is not None and previous.player_id != player_id:
            self._remove(previous)
        existing = self.entries.get(player_id)
        if existing is not None:
            logger.info(f"Replacing lobby entry for {player_id}")
            self.entries.pop(player_id)
            self.broadcast({"type": "lobby", "action": "player-left", "playerId": player_id})

        entry = LobbyEntry(player_id, name, avatar, conn, now)
        self.entries[player_id] = entry
        logger.info(f"Lobby join: {name} ({player_id}) | {len(self.entries)} in lobby")
        emit(self.telemetry, "lobby_connection", player_id=player_id, action="connect")

        conn.send({"type": "lobby", "players": self.roster(), "messages": list(self.messages)[-RECENT_CHAT:]})
        self.broadcast({"type": "lobby", "action": "player-joined", "player": entry.to_dict()})
        return entry

    def leave(self, conn: Any) -> Optional[LobbyEntry]:
        """Remove the entry bound to this connection, if any"""
        entry = self.entry_for_connection(conn)
        if entry is not None:
            self._remove(entry)
            emit(self.telemetry, "lobby_connection", player_id=entry.player_id, action="disconnect")
        return entry

    def _remove(self, entry: LobbyEntry) -> None:
        self.entries.pop(entry.player_id, None)
        logger.info(f"Lobby leave: {entry.name} ({entry.player_id})")
        self.broadcast({"type": "lobby", "action": "player-left", "playerId": entry.player_id})
        self._drop_invitations_for(entry.player_id)

    def _drop_invitations_for(self, player_id: str, notify: bool = False) -> None:
        """
        Cancel every invitation sent by or to `player_id`. With `notify`,
        other inviters are told their invitation was turned down.
        """
        for invite_id, invite in list(self.invitations.items()):
            if player_id not in (invite.from_id, invite.to_id):
                continue
            del self.invitations[invite_id]
            inviter = self.entries.get(invite.from_id)
            if inviter is None:
                continue
            self._release_inviter(inviter)
            if notify and inviter.player_id != player_id:
                inviter.conn.send(self._response_message(invite, accepted=False))

    def _release_inviter(self, inviter: LobbyEntry) -> None:
        if inviter.status is LobbyStatus.AWAY:
            self._set_status(inviter, LobbyStatus.AVAILABLE)

    def set_status(self, conn: Any, status: Any, now: float) -> LobbyEntry:
        entry = self._require_entry(conn)
        try:
            new_status = LobbyStatus(status)
        except ValueError:
            raise ProtocolError(ErrorCode.BAD_JSON, f"Invalid status: {status}")
        if new_status not in CLIENT_STATUSES:
            raise ProtocolError(ErrorCode.BAD_JSON, f"Status {new_status.value} cannot be set by clients")
        entry.last_seen = now
        self._set_status(entry, new_status)
        return entry

    def mark_available(self, player_id: Optional[str]) -> None:
        """Return a player to the lobby after their game ends"""
        entry = self.entries.get(player_id) if player_id else None
        if entry is not None:
            entry.game_id = None
            self._set_status(entry, LobbyStatus.AVAILABLE)

    def mark_offline(self, player_id: Optional[str]) -> None:
        entry = self.entries.get(player_id) if player_id else None
        if entry is not None:
            self._set_status(entry, LobbyStatus.OFFLINE)

    # ============================================================================
    # CHAT
    # ============================================================================

    def chat(self, conn: Any, text: Any, now: float) -> dict:
        entry = self._require_entry(conn)
        if not isinstance(text, str):
            raise ProtocolError(ErrorCode.BAD_JSON, "message must be a string")
        entry.last_seen = now
        message = {
            "id": new_id(),
            "playerId": entry.player_id,
            "playerName": entry.name,
            "message": text[:self.settings.CHAT_MAX_LENGTH],
            "timestamp": now,
            "type": "message",
        }
        self.messages.append(message)
        self.broadcast({"type": "lobby", "action": "chat-message", "message": message})
        return message

    # ============================================================================
    # INVITATIONS
    # ============================================================================

    def invite(self, conn: Any, target_id: Any, now: float) -> Invitation:
        inviter = self._require_entry(conn)
        if inviter.status is LobbyStatus.IN_GAME:
            raise ProtocolError(ErrorCode.PLAYER_BUSY, "You are already in a game")
        target = self.entries.get(target_id) if isinstance(target_id, str) else None
        if target is None:
            raise ProtocolError(ErrorCode.PLAYER_NOT_FOUND, "Player not in lobby")
        if target is inviter:
            raise ProtocolError(ErrorCode.PLAYER_BUSY, "Cannot invite yourself")
        if target.status is not LobbyStatus.AVAILABLE:
            raise ProtocolError(ErrorCode.PLAYER_BUSY, "Player is not available")
        if any(invite.from_id == inviter.player_id for invite in self.invitations.values()):
            raise ProtocolError(ErrorCode.PLAYER_BUSY, "You already have a pending invitation")

        reserved = {invite.game_id for invite in self.invitations.values()}
        game_id = new_game_id()
        while game_id in self.games.games or game_id in reserved:
            game_id = new_game_id()
        invitation = Invitation(new_id(), inviter.player_id, target.player_id, game_id, now)
        self.invitations[invitation.invite_id] = invitation
        inviter.last_seen = now
        logger.info(f"Invitation {invitation.invite_id}: {inviter.player_id} -> {target.player_id}")
        emit(self.telemetry, "invitation", from_id=inviter.player_id, to_id=target.player_id, action="sent")

        target.conn.send({
            "type": "lobby",
            "action": "invitation",
            "from": inviter.to_dict(),
            "gameId": game_id,
            "inviteId": invitation.invite_id,
        })
        self._set_status(inviter, LobbyStatus.AWAY)
        return invitation

    def _take_invitation(self, conn: Any, invite_id: Any, now: float) -> Invitation:
        """Look up an invitation addressed to `conn` and remove it"""
        invitation = self.invitations.get(invite_id) if isinstance(invite_id, str) else None
        if invitation is None or self._expired(invitation, now):
            raise ProtocolError(ErrorCode.INVITATION_NOT_FOUND, "Invitation expired or not found")
        entry = self.entry_for_connection(conn)
        if entry is None or entry.player_id != invitation.to_id:
            raise ProtocolError(ErrorCode.NOT_INVITED, "You were not invited")
        del self.invitations[invite_id]
        entry.last_seen = now
        return invitation

    def accept_invite(self, conn: Any, invite_id: Any, now: float) -> GameSession:
        invitation = self._take_invitation(conn, invite_id, now)
        guest = self.entries[invitation.to_id]
        host = self.entries.get(invitation.from_id)
        if host is None:
            raise ProtocolError(ErrorCode.PLAYER_NOT_FOUND, "Inviter has left the lobby")
        if LobbyStatus.IN_GAME in (host.status, guest.status):
            self._release_inviter(host)
            raise ProtocolError(ErrorCode.PLAYER_BUSY, "Player is already in a game")

        # Both players leave the invitation pool: one seat per player
        for entry in (host, guest):
            self._drop_invitations_for(entry.player_id, notify=True)

        emit(self.telemetry, "invitation", from_id=host.player_id, to_id=guest.player_id, action="accepted")
        game = self.games.create_game(host.name, host.player_id, host.conn, now, game_id=invitation.game_id)
        emit(self.telemetry, "game_created", game_id=game.game_id, game_type="lobby-invitation",
             host_id=host.player_id)
        logger.info(f"INVITATION GAME CREATED: {game.game_id} | {host.name} vs {guest.name}")

        for entry in (host, guest):
            entry.game_id = game.game_id
            self._set_status(entry, LobbyStatus.IN_GAME)

        host.conn.send(game.created_message())
        game.attach_guest(guest.name, guest.player_id, guest.conn, now)
        if game.starting_player is not None:
            emit(self.telemetry, "game_started", game_id=game.game_id, host_id=host.player_id,
                 guest_id=guest.player_id, starting_player=game.starting_player.value)

        host.conn.send(self._response_message(invitation, accepted=True, game_id=game.game_id))
        return game

    def decline_invite(self, conn: Any, invite_id: Any, now: float) -> Invitation:
        invitation = self._take_invitation(conn, invite_id, now)
        emit(self.telemetry, "invitation", from_id=invitation.from_id, to_id=invitation.to_id, action="declined")
        logger.info(f"Invitation {invitation.invite_id} declined by {invitation.to_id}")

        inviter = self.entries.get(invitation.from_id)
        if inviter is not None:
            self._release_inviter(inviter)
            inviter.conn.send(self._response_message(invitation, accepted=False))
        return invitation

    @staticmethod
    def _response_message(invitation: Invitation, accepted: bool, game_id: Optional[str] = None) -> dict:
        return {
            "type": "lobby",
            "action": "invitation-response",
            "accepted": accepted,
            "gameId": game_id or invitation.game_id,
            "inviteId": invitation.invite_id,
        }

    def _expired(self, invitation: Invitation, now: float) -> bool:
        return now - invitation.created_at > self.settings.INVITATION_TIMEOUT_SEC

    # ============================================================================
    # SWEEPS
    # ============================================================================

    def sweep(self, now: float) -> None:
        """Expire old invitations and drop entries that have gone quiet"""
        for invite_id, invitation in list(self.invitations.items()):
            if not self._expired(invitation, now):
                continue
            del self.invitations[invite_id]
            logger.info(f"Invitation {invite_id} expired")
            inviter = self.entries.get(invitation.from_id)
            if inviter is not None:
                self._release_inviter(inviter)

        for entry in list(self.entries.values()):
            if now - entry.last_seen > self.settings.LOBBY_TIMEOUT_SEC:
                logger.info(f"Lobby entry {entry.player_id} timed out")
                self._remove(entry)

    def get_stats(self) -> dict:
        statuses = [entry.status for entry in self.entries.values()]
        return {
            "connected_players": len(self.entries),
            "available_players": statuses.count(LobbyStatus.AVAILABLE),
            "in_game_players": statuses.count(LobbyStatus.IN_GAME),
            "pending_invitations": len(self.invitations),
        }
