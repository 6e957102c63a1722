"""
Awale CLI - play a local game against a move-selection policy.

Usage:
    awale-play [--policy greedy|random] [--seed N] [--policy-first]

The human plays side A (pits 0-5, bottom row) unless --policy-first is
given, in which case the policy moves first as A.
"""

import argparse
import sys
from typing import Callable, Optional

from awale.enums import Side
from awale.engine.board import DRAW, GameState
from awale.engine.policy import POLICIES, MovePolicy, create_policy
from awale.engine.rules import apply_move, create_initial_state, format_board, get_legal_moves


def play_local(policy: MovePolicy,
               human_side: Side = Side.A,
               input_fn: Callable[[str], str] = input,
               output_fn: Callable[[str], None] = print) -> GameState:
    """Run a game to the end and return the final state"""
    state = create_initial_state()
    output_fn(format_board(state))

    while not state.ended:
        legal = get_legal_moves(state)
        if state.current_player is human_side:
            raw = input_fn(f"Your move {legal}: ").strip()
            if raw in ("q", "quit"):
                output_fn("Game abandoned")
                return state
            try:
                pit = int(raw)
            except ValueError:
                output_fn(f"Not a pit number: {raw}")
                continue
            if pit not in legal:
                output_fn(f"Illegal move: {pit}")
                continue
        else:
            pit = policy.choose_move(state)
            output_fn(f"{policy.name} plays pit {pit}")

        result = apply_move(state, pit)
        state = result.state
        if result.captured_this_move:
            output_fn(f"Captured {result.captured_this_move}")
        output_fn(format_board(state))

    if state.winner == DRAW:
        output_fn("Draw!")
    elif state.winner == human_side.value:
        output_fn("You win!")
    else:
        output_fn(f"{policy.name} wins!")
    return state


def main(argv: Optional[list] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Awale - play against the computer",
        prog="awale-play",
    )
    parser.add_argument("--policy", choices=sorted(POLICIES), default="greedy", help="Opponent policy")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the random policy")
    parser.add_argument("--policy-first", action="store_true", help="Let the policy move first")
    args = parser.parse_args(argv)

    policy = create_policy(args.policy, seed=args.seed)
    human_side = Side.B if args.policy_first else Side.A
    try:
        play_local(policy, human_side)
    except (KeyboardInterrupt, EOFError):
        print("\nBye")
        sys.exit(0)


if __name__ == "__main__":
    main()
