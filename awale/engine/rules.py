"""
Awale (Oware) rules engine.

- Pure functions: the caller's GameState is never mutated
- Deterministic, so policies can simulate moves freely
- Sowing, capture and endgame detection are separate steps
"""

from typing import List, Tuple

from awale.enums import Side
from awale.engine.board import (
    DRAW,
    PIT_COUNT,
    SEEDS_PER_PIT,
    Captured,
    GameState,
    MoveResult,
    owner_of,
    pit_range,
)

CAPTURE_TO_WIN = 25
LOW_SEED_THRESHOLD = 6


class IllegalMoveError(ValueError):
    """Raised when a move is not allowed in the given state"""


def create_initial_state() -> GameState:
    return GameState(pits=(SEEDS_PER_PIT,) * PIT_COUNT)


def _feeds_opponent(state: GameState, pit: int) -> bool:
    idx = pit
    for _ in range(state.pits[pit]):
        idx = (idx + 1) % PIT_COUNT
        if owner_of(idx) is not state.current_player:
            return True
    return False


def get_legal_moves(state: GameState) -> List[int]:
    """
    Nonempty pits of the side to move, in board order.

    When the opponent's row is empty only moves that sow into it are legal
    (starvation rule). An empty list on a live state means the game is over.
    """
    if state.ended:
        return []
    candidates = [i for i in pit_range(state.current_player) if state.pits[i] > 0]
    opponent = state.current_player.opponent
    if any(state.row(opponent)):
        return candidates
    return [i for i in candidates if _feeds_opponent(state, i)]


def sow(pits: Tuple[int, ...], origin: int) -> Tuple[Tuple[int, ...], int]:
    """
    Empty `origin` and drop its seeds one by one into the following pits,
    skipping the origin pit on every lap.

    Returns the new pits and the index where the last seed landed.
    """
    board = list(pits)
    seeds = board[origin]
    board[origin] = 0
    idx = origin
    while seeds > 0:
        idx = (idx + 1) % PIT_COUNT
        if idx == origin:
            continue
        board[idx] += 1
        seeds -= 1
    return tuple(board), idx


def capture_chain(pits: Tuple[int, ...], last: int, mover: Side) -> Tuple[Tuple[int, ...], int]:
    """
    Take every opponent pit holding 2 or 3 seeds, starting at `last` and
    walking backwards until a pit does not qualify or the row ends.

    Returns the new pits and the number of seeds captured.
    """
    board = list(pits)
    captured = 0
    idx = last
    while owner_of(idx) is not mover and board[idx] in (2, 3):
        captured += board[idx]
        board[idx] = 0
        idx = (idx - 1) % PIT_COUNT
    return tuple(board), captured


def _finish(state: GameState) -> GameState:
    """Sweep board seeds to their row owners and settle the winner"""
    captured = Captured(
        a=state.captured.a + sum(state.row(Side.A)),
        b=state.captured.b + sum(state.row(Side.B)),
    )
    if captured.a > captured.b:
        winner = Side.A.value
    elif captured.b > captured.a:
        winner = Side.B.value
    else:
        winner = DRAW
    return state.with_changes(
        pits=(0,) * PIT_COUNT,
        captured=captured,
        ended=True,
        winner=winner,
    )


def apply_move(state: GameState, pit: int) -> MoveResult:
    """Play `pit` for the side to move and return the resulting position"""
    if state.ended:
        raise IllegalMoveError("Game already ended")
    if pit not in get_legal_moves(state):
        raise IllegalMoveError(f"Illegal move: pit {pit}")

    mover = state.current_player
    pits, last = sow(state.pits, pit)
    pits, taken = capture_chain(pits, last, mover)

    after = state.with_changes(
        pits=pits,
        captured=state.captured.plus(mover, taken),
        turn_count=state.turn_count + 1,
        version=state.version + 1,
        last_move=pit,
    )

    if after.captured.of(mover) >= CAPTURE_TO_WIN or after.seeds_on_board <= LOW_SEED_THRESHOLD:
        return MoveResult(state=_finish(after), captured_this_move=taken)

    after = after.with_changes(current_player=mover.opponent)
    if not get_legal_moves(after):
        after = _finish(after)
    return MoveResult(state=after, captured_this_move=taken)


def format_board(state: GameState) -> str:
    """
    Three-line text board: B's row right-to-left on top, the captured
    totals (B left, A right) in the middle, A's row on the bottom.
    """
    top = " ".join(f"{n:>2}" for n in reversed(state.row(Side.B)))
    bottom = " ".join(f"{n:>2}" for n in state.row(Side.A))
    middle = f"{state.captured.b:>2}{' ' * 18}{state.captured.a:>2}"
    return f"    {top}\n{middle}\n    {bottom}"
