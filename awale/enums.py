from enum import Enum


class Side(Enum):
    """Engine seat. A owns pits 0-5, B owns pits 6-11."""
    A = "A"
    B = "B"

    @property
    def opponent(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class Role(Enum):
    HOST = "host"
    GUEST = "guest"

    @property
    def side(self) -> Side:
        return Side.A if self is Role.HOST else Side.B

    @property
    def other(self) -> "Role":
        return Role.GUEST if self is Role.HOST else Role.HOST


class SessionPhase(Enum):
    AWAITING_GUEST = "AWAITING_GUEST"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    REAPED = "REAPED"


class EndReason(Enum):
    END = "end"
    RESIGN = "resign"


class LobbyStatus(Enum):
    AVAILABLE = "available"
    IN_GAME = "in-game"
    AWAY = "away"
    OFFLINE = "offline"


class ErrorCode(Enum):
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    FULL = "FULL"
    NOT_IN_GAME = "NOT_IN_GAME"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    BAD_PIT = "BAD_PIT"
    BAD_SIDE = "BAD_SIDE"
    ILLEGAL = "ILLEGAL"
    ENDED = "ENDED"
    WAITING_FOR_OPPONENT = "WAITING_FOR_OPPONENT"
    RATE_LIMIT = "RATE_LIMIT"
    BAD_JSON = "BAD_JSON"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    PLAYER_BUSY = "PLAYER_BUSY"
    NOT_IN_LOBBY = "NOT_IN_LOBBY"
    INVITATION_NOT_FOUND = "INVITATION_NOT_FOUND"
    NOT_INVITED = "NOT_INVITED"
    ENGINE_ERR = "ENGINE_ERR"
    UNKNOWN = "UNKNOWN"
