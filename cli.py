"""CLI for playing Octi against the search agent."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from octi_engine import (
    Color,
    State,
    format_action,
    initial_state,
    parse_action,
    pretty_print,
)
from octi_search import (
    DEFAULT_BUFFER_MS,
    DEFAULT_MAX_DEPTH,
    SearchConfig,
    SearchResult,
    solve_best_move,
)
from octi_telemetry import JsonlFileSink, TelemetrySink

EXIT_NO_DECISION = 2


def print_help() -> None:
    print("Enter an action as '<prong|move|jump> <cell> <direction>', e.g. 'move b6 N'.")
    print("Directions: N NE E SE S SW W NW. Commands: l=list legal actions, u=undo, q=quit, h=help.")


def read_command(prompt: str) -> str:
    while True:
        try:
            raw = input(prompt).strip()
        except EOFError:
            print()
            return "q"
        if raw:
            return raw
        print("Please enter an action, or a command.")


def describe_result(result: SearchResult) -> str:
    move = format_action(result.best_move) if result.best_move is not None else "none"
    return (
        f"Search: move={move} score={result.score:+d} depth={result.depth} "
        f"reason={result.reason} elapsed_ms={result.elapsed_ms} nodes={result.nodes}"
    )


def agent_turn(
    state: State,
    time_ms: int,
    config: SearchConfig,
    explain: bool,
    sink: Optional[TelemetrySink],
) -> Optional[State]:
    result = solve_best_move(state, state.to_move, time_ms, config=config, telemetry_sink=sink)
    if explain:
        print(describe_result(result))
    if result.best_move is None:
        print(
            f"No decision within {time_ms} ms (buffer {config.buffer_ms} ms); "
            "raise --time-ms or lower --buffer-ms.",
            file=sys.stderr,
        )
        return None
    print(f"{state.to_move.value.capitalize()} plays: {format_action(result.best_move)}")
    return state.apply(result.best_move)


def run_self_play(state: State, args: argparse.Namespace, config: SearchConfig, sink: Optional[TelemetrySink]) -> int:
    for _ in range(args.max_plies):
        if state.is_terminal():
            break
        next_state = agent_turn(state, args.time_ms, config, args.explain, sink)
        if next_state is None:
            return EXIT_NO_DECISION
        state = next_state
        if args.show_board:
            print()
            print(pretty_print(state))
    print()
    print(pretty_print(state))
    report_outcome(state)
    return 0


def report_outcome(state: State) -> None:
    winner = state.winner()
    if winner is not None:
        print(f"Game over. {winner.value.capitalize()} wins.")
    elif state.is_terminal():
        print(f"Game over. {state.to_move.value.capitalize()} has no legal actions.")
    else:
        print("Stopped before the game finished.")


def run_interactive(state: State, args: argparse.Namespace, config: SearchConfig, sink: Optional[TelemetrySink]) -> int:
    agent_color = Color(args.agent_color)
    history: list[State] = []

    while True:
        print()
        print(pretty_print(state))

        if state.is_terminal():
            print()
            report_outcome(state)
            return 0

        if state.to_move is agent_color:
            next_state = agent_turn(state, args.time_ms, config, args.explain, sink)
            if next_state is None:
                return EXIT_NO_DECISION
            history.append(state)
            state = next_state
            continue

        raw = read_command(f"{state.to_move.value} to move (action, l, u, h, q): ")
        command = raw.lower()
        if command in {"q", "quit"}:
            return 0
        if command in {"h", "help"}:
            print_help()
            continue
        if command in {"l", "list"}:
            print(", ".join(format_action(a) for a in state.legal_actions()))
            continue
        if command in {"u", "undo"}:
            # Undo the agent's reply as well so it is the human's turn again.
            if len(history) >= 2:
                history.pop()
                state = history.pop()
            else:
                print("Nothing to undo.")
            continue

        try:
            action = parse_action(raw)
        except ValueError as exc:
            print(str(exc))
            continue
        if action not in state.legal_actions():
            print("Illegal action.")
            continue
        history.append(state)
        try:
            state = state.apply(action)
        except ValueError as exc:
            history.pop()
            print(str(exc))
            continue


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Octi with an iterative deepening alpha-beta agent")
    parser.add_argument("--time-ms", type=int, default=1000, help="time budget per agent move in ms (default: 1000)")
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"deepest iterative deepening pass (default: {DEFAULT_MAX_DEPTH})",
    )
    parser.add_argument(
        "--buffer-ms",
        type=int,
        default=DEFAULT_BUFFER_MS,
        help=f"safety margin kept free of the time budget (default: {DEFAULT_BUFFER_MS})",
    )
    parser.add_argument("--prongs", type=int, default=12, help="prong reserve per player (default: 12)")
    parser.add_argument("--agent-color", choices=["red", "black"], default="black", help="side played by the agent")
    parser.add_argument("--black-first", action="store_true", help="black makes the first move")
    parser.add_argument("--self-play", action="store_true", help="let the agent play both sides")
    parser.add_argument("--max-plies", type=int, default=200, help="ply cap for --self-play (default: 200)")
    parser.add_argument("--show-board", action="store_true", help="print the board after every self-play ply")
    parser.add_argument("--explain", action="store_true", help="print a search summary for each agent move")
    parser.add_argument("--telemetry-jsonl", type=Path, default=None, help="append search events to this JSONL file")
    args = parser.parse_args(argv)

    if args.time_ms <= 0:
        print("--time-ms must be positive")
        return 2
    if args.prongs < 0:
        print("--prongs must be non-negative")
        return 2
    try:
        config = SearchConfig(max_depth=args.max_depth, buffer_ms=args.buffer_ms)
    except ValueError as exc:
        print(str(exc))
        return 2

    state = initial_state(prongs=args.prongs, red_first=not args.black_first)
    sink: Optional[TelemetrySink] = None
    if args.telemetry_jsonl is not None:
        sink = JsonlFileSink(args.telemetry_jsonl)
    try:
        if args.self_play:
            return run_self_play(state, args, config, sink)
        return run_interactive(state, args, config, sink)
    finally:
        if sink is not None:
            sink.close()


if __name__ == "__main__":
    raise SystemExit(main())
