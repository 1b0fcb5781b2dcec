"""Deterministic benchmark harness for the Octi search agent."""

from __future__ import annotations

import argparse
import math
import platform
import random
import statistics
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from octi_engine import State, format_action, initial_state, key_to_state, state_key
from octi_search import (
    DEFAULT_BUFFER_MS,
    DEFAULT_MAX_DEPTH,
    SearchConfig,
    search_depth,
    solve_best_move,
)


def generate_positions(*, positions: int, max_plies: int, prongs: int, seed: int) -> List[State]:
    rng = random.Random(seed)
    out: List[State] = []
    while len(out) < positions:
        state = initial_state(prongs=prongs, red_first=bool(rng.getrandbits(1)))
        plies = rng.randint(0, max_plies)
        for _ in range(plies):
            if state.is_terminal():
                break
            state = state.apply(rng.choice(state.legal_actions()))
        if not state.is_terminal():
            out.append(state)
    return out


def load_positions(path: Path, limit: int) -> List[State]:
    states: List[State] = []
    with path.open("r", encoding="utf-8") as handle:
        for line_no, raw in enumerate(handle, start=1):
            key = raw.strip()
            if not key:
                continue
            state = key_to_state(key)
            if state is None:
                raise ValueError(f"invalid state key at line {line_no}: {key!r}")
            if state.is_terminal():
                continue
            states.append(state)
            if len(states) >= limit:
                break
    return states


def save_positions(path: Path, positions: Sequence[State]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        for state in positions:
            handle.write(state_key(state) + "\n")


def percentile(values: Sequence[float], fraction: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return float(ordered[0])
    rank = (len(ordered) - 1) * fraction
    lo = math.floor(rank)
    hi = math.ceil(rank)
    if lo == hi:
        return float(ordered[lo])
    frac = rank - lo
    return float(ordered[lo] * (1.0 - frac) + ordered[hi] * frac)


def run_single(state: State, config: SearchConfig, time_limit_ms: int, depth: Optional[int]) -> Dict[str, object]:
    if depth is not None:
        start_ns = time.perf_counter_ns()
        scored, nodes = search_depth(state, state.to_move, depth)
        return {
            "best_move": scored.action,
            "score": scored.score,
            "depth": depth,
            "reason": "fixed",
            "elapsed_ms": (time.perf_counter_ns() - start_ns) // 1_000_000,
            "nodes": nodes,
        }
    result = solve_best_move(state, state.to_move, time_limit_ms, config=config)
    return {
        "best_move": result.best_move,
        "score": result.score,
        "depth": result.depth,
        "reason": result.reason,
        "elapsed_ms": result.elapsed_ms,
        "nodes": result.nodes,
    }


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Deterministic search benchmark")
    parser.add_argument("--positions", type=int, default=10, help="number of positions (default: 10)")
    parser.add_argument("--max-plies", type=int, default=16, help="max random plies from start (default: 16)")
    parser.add_argument("--prongs", type=int, default=12, help="prong reserve per player (default: 12)")
    parser.add_argument("--seed", type=int, default=12345, help="random seed for position generation")
    parser.add_argument("--time-ms", type=int, default=1000, help="budget for each decision (default: 1000)")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH, help="iterative deepening cap")
    parser.add_argument("--buffer-ms", type=int, default=DEFAULT_BUFFER_MS, help="safety margin in ms")
    parser.add_argument("--depth", type=int, default=None, help="fixed untimed search depth (disables --time-ms)")
    parser.add_argument("--save-positions", type=Path, default=None, help="write positions (state keys) to file")
    parser.add_argument("--load-positions", type=Path, default=None, help="load positions (state keys) from file")
    args = parser.parse_args(argv)

    if args.positions <= 0:
        print("--positions must be > 0")
        return 2
    if args.max_plies < 0:
        print("--max-plies must be >= 0")
        return 2
    if args.depth is not None and args.depth <= 0:
        print("--depth must be > 0")
        return 2
    if args.load_positions is not None and not args.load_positions.exists():
        print(f"--load-positions not found: {args.load_positions}")
        return 2
    try:
        config = SearchConfig(max_depth=args.max_depth, buffer_ms=args.buffer_ms)
    except ValueError as exc:
        print(str(exc))
        return 2

    if args.load_positions is not None:
        try:
            positions = load_positions(args.load_positions, args.positions)
        except ValueError as exc:
            print(f"failed to load positions: {exc}")
            return 2
        if not positions:
            print("--load-positions provided no usable non-terminal states")
            return 2
    else:
        positions = generate_positions(
            positions=args.positions,
            max_plies=args.max_plies,
            prongs=args.prongs,
            seed=args.seed,
        )
    if args.save_positions is not None:
        save_positions(args.save_positions, positions)

    mode = "depth" if args.depth is not None else "timed"
    print(f"python={sys.version.split()[0]} platform={platform.platform()} mode={mode}")
    print(f"idx depth reason       nodes  ms best score (positions={len(positions)} seed={args.seed})")

    elapsed: List[float] = []
    total_nodes = 0
    undecided = 0
    for idx, state in enumerate(positions, start=1):
        result = run_single(state, config, args.time_ms, args.depth)
        best = result["best_move"]
        if best is None:
            undecided += 1
        total_nodes += int(result["nodes"])
        elapsed.append(float(result["elapsed_ms"]))
        label = format_action(best) if best is not None else "-"
        print(
            f"{idx:03d} {int(result['depth']):>5d} {str(result['reason']):<10} "
            f"{int(result['nodes']):>7d} {int(result['elapsed_ms']):>5d} {label} {int(result['score']):+d}"
        )

    print(
        "summary "
        f"positions={len(positions)} undecided={undecided} total_nodes={total_nodes} "
        f"p50_ms={percentile(elapsed, 0.50):.1f} p95_ms={percentile(elapsed, 0.95):.1f} "
        f"mean_ms={statistics.fmean(elapsed):.1f}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
