"""
Move-selection policies for single-player mode.

A policy looks at a GameState and returns the pit to play. Policies are
stateless evaluators over the rules engine and never touch a live session.
"""

from abc import ABC, abstractmethod
import random
from typing import Dict, Optional, Type

from awale.engine.board import GameState
from awale.engine.rules import IllegalMoveError, apply_move, get_legal_moves


class MovePolicy(ABC):
    name: str = "policy"

    @abstractmethod
    def choose_move(self, state: GameState) -> int:
        """Return a legal pit index for the side to move"""


class GreedyCapturePolicy(MovePolicy):
    """
    Simulates every legal move and keeps the one with the biggest immediate
    capture. Ties go to the first pit in board order, so the choice is
    deterministic.
    """
    name = "greedy"

    def choose_move(self, state: GameState) -> int:
        legal = get_legal_moves(state)
        if not legal:
            raise IllegalMoveError("No legal moves")
        best = legal[0]
        best_capture = -1
        for pit in legal:
            captured = apply_move(state, pit).captured_this_move
            if captured > best_capture:
                best_capture = captured
                best = pit
        return best


class RandomPolicy(MovePolicy):
    name = "random"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def choose_move(self, state: GameState) -> int:
        legal = get_legal_moves(state)
        if not legal:
            raise IllegalMoveError("No legal moves")
        return self.rng.choice(legal)


POLICIES: Dict[str, Type[MovePolicy]] = {
    GreedyCapturePolicy.name: GreedyCapturePolicy,
    RandomPolicy.name: RandomPolicy,
}


def create_policy(name: str, seed: Optional[int] = None) -> MovePolicy:
    """Build a policy by name"""
    if name not in POLICIES:
        raise ValueError(f"Unknown policy: {name}")
    if name == RandomPolicy.name:
        return RandomPolicy(random.Random(seed))
    return POLICIES[name]()
