from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from awale.enums import Side

PIT_COUNT = 12
SEEDS_PER_PIT = 4
TOTAL_SEEDS = PIT_COUNT * SEEDS_PER_PIT
DRAW = "Draw"


def pit_range(side: Side) -> range:
    """Pit indices owned by a side"""
    return range(0, 6) if side is Side.A else range(6, 12)


def owner_of(pit: int) -> Side:
    return Side.A if pit <= 5 else Side.B


@dataclass(frozen=True)
class Captured:
    """Seeds taken off the board by each side"""
    a: int = 0
    b: int = 0

    def of(self, side: Side) -> int:
        return self.a if side is Side.A else self.b

    def plus(self, side: Side, seeds: int) -> Captured:
        if side is Side.A:
            return replace(self, a=self.a + seeds)
        return replace(self, b=self.b + seeds)

    @property
    def total(self) -> int:
        return self.a + self.b

    def to_dict(self) -> Dict[str, int]:
        return {"A": self.a, "B": self.b}


@dataclass(frozen=True)
class GameState:
    """
    One immutable position of an Awale game.

    Every applied move yields a new GameState with version + 1; the version
    doubles as the token clients use to spot a stale local copy.
    """
    pits: Tuple[int, ...]
    current_player: Side = Side.A
    captured: Captured = Captured()
    ended: bool = False
    winner: Optional[str] = None  # "A", "B", "Draw" or None
    turn_count: int = 0
    version: int = 0
    last_move: Optional[int] = None

    def __post_init__(self):
        if len(self.pits) != PIT_COUNT:
            raise ValueError(f"Board must have {PIT_COUNT} pits (got {len(self.pits)})")
        if any(seeds < 0 for seeds in self.pits):
            raise ValueError("Pit counts must be nonnegative")

    @property
    def seeds_on_board(self) -> int:
        return sum(self.pits)

    def row(self, side: Side) -> Tuple[int, ...]:
        r = pit_range(side)
        return self.pits[r.start:r.stop]

    def with_changes(self, **changes: Any) -> GameState:
        """Return a copy with some fields replaced"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Public snapshot sent to clients"""
        return {
            "pits": list(self.pits),
            "currentPlayer": self.current_player.value,
            "captured": self.captured.to_dict(),
            "ended": self.ended,
            "winner": self.winner,
            "turn": self.turn_count,
            "version": self.version,
            "lastMove": self.last_move,
        }


@dataclass(frozen=True)
class MoveResult:
    state: GameState
    captured_this_move: int
