from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union
import secrets

from awale.enums import Role


class Connection(Protocol):
    """Outbound side of one client socket"""
    conn_id: str

    def send(self, message: dict) -> None: ...


@dataclass(frozen=True)
class Connected:
    handle: Connection
    last_seen: float


@dataclass(frozen=True)
class Disconnected:
    last_seen: float


Link = Union[Connected, Disconnected]


def new_token() -> str:
    return secrets.token_urlsafe(24)


class Participant:
    """
    One seat (host or guest) in a game session.

    The seat outlives the socket: on disconnect the link becomes
    Disconnected and a later join with the same player_id takes the seat back.
    """

    def __init__(self, role: Role, name: str, player_id: Optional[str], conn: Connection, now: float):
        self.role = role
        self.name = name
        self.player_id = player_id
        self.token: str = new_token()
        self.link: Link = Connected(conn, now)

    @property
    def connected(self) -> bool:
        return isinstance(self.link, Connected)

    @property
    def last_seen(self) -> float:
        return self.link.last_seen

    def is_connection(self, conn: Any) -> bool:
        return isinstance(self.link, Connected) and self.link.handle is conn

    def can_reclaim(self, player_id: Optional[str]) -> bool:
        """True if a join presenting this player_id should take over the seat"""
        return player_id is not None and player_id == self.player_id

    def mark_disconnected(self, now: float) -> None:
        self.link = Disconnected(now)

    def mark_reconnected(self, conn: Connection, now: float) -> None:
        self.link = Connected(conn, now)

    def send(self, message: dict) -> None:
        if isinstance(self.link, Connected):
            self.link.handle.send(message)

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<Participant {self.name} ({self.role.value}, {state})>"

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "name": self.name,
            "playerId": self.player_id,
            "connected": self.connected,
        }
