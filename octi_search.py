"""Iterative deepening alpha-beta search for the Octi agent."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple
import time

from octi_engine import Action, Cell, Color, format_action
from octi_telemetry import (
    IterationDoneEvent,
    SearchEndEvent,
    SearchStartEvent,
    TelemetrySink,
    emit_dataclass_event,
)

INF = 10**9
WIN_SCORE = 10**8
LOSS_SCORE = -WIN_SCORE
POD_VALUE = 500
GOAL_DISTANCE_BASE = 10
GOAL_DISTANCE_WEIGHT = 10_000
JUMP_BONUS = 10_000
DEFAULT_MAX_DEPTH = 5
DEFAULT_BUFFER_MS = 30


class GameState(Protocol):
    def is_terminal(self) -> bool:
        ...

    def winner(self) -> Optional[Color]:
        ...

    def legal_actions(self) -> Sequence[Action]:
        ...

    def apply(self, action: Action) -> "GameState":
        ...

    def pieces_of(self, color: Color) -> Sequence[Any]:
        ...

    def position_of(self, piece: Any) -> Cell:
        ...

    def base_cells(self, color: Color) -> Sequence[Cell]:
        ...


@dataclass(frozen=True)
class SearchConfig:
    # Both values are safety margins tuned against move-generation cost.
    max_depth: int = DEFAULT_MAX_DEPTH
    buffer_ms: int = DEFAULT_BUFFER_MS

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        if self.buffer_ms < 0:
            raise ValueError("buffer_ms must be non-negative")


DEFAULT_CONFIG = SearchConfig()


@dataclass(frozen=True)
class SearchNode:
    state: GameState
    action: Optional[Action] = None


@dataclass(frozen=True)
class ScoredResult:
    score: int
    action: Optional[Action]


@dataclass(frozen=True)
class SearchBudget:
    start: float
    time_limit_ms: Optional[float]
    buffer_ms: float
    clock: Callable[[], float] = time.perf_counter

    @classmethod
    def begin(
        cls,
        time_limit_ms: Optional[float],
        buffer_ms: float,
        clock: Callable[[], float] = time.perf_counter,
    ) -> "SearchBudget":
        return cls(clock(), time_limit_ms, buffer_ms, clock)

    def elapsed_ms(self) -> float:
        return (self.clock() - self.start) * 1000.0

    def exhausted(self) -> bool:
        if self.time_limit_ms is None:
            return False
        return self.elapsed_ms() + self.buffer_ms > self.time_limit_ms


@dataclass(frozen=True)
class SearchResult:
    best_move: Optional[Action]
    score: int
    depth: int
    complete: bool
    elapsed_ms: int
    nodes: int
    reason: str

    @property
    def decided(self) -> bool:
        return self.best_move is not None


@dataclass
class _SearchContext:
    player: Color
    budget: SearchBudget
    nodes: int = 0


def _action_label(action: Optional[Action]) -> Optional[str]:
    if action is None:
        return None
    return format_action(action)


def distance_to_goal(position: Cell, goal_cells: Sequence[Cell]) -> int:
    x, y = position
    return min(abs(x - gx) + abs(y - gy) for gx, gy in goal_cells)


def goal_distance_score(state: GameState, color: Color) -> int:
    """Reward pods of ``color`` for closeness to the opposing base."""
    goal = state.base_cells(color.opponent)
    score = 0
    for pod in state.pieces_of(color):
        distance = distance_to_goal(state.position_of(pod), goal)
        score += (GOAL_DISTANCE_BASE - distance) * GOAL_DISTANCE_WEIGHT
    return score


def evaluate(node: SearchNode, maximizing: bool, player: Color) -> int:
    """
    Static score of ``node`` from ``player``'s point of view.

    Decided games return the win/loss extremes. Otherwise the score is the
    pod material balance, plus the goal-distance term of the side selected by
    ``maximizing`` (negated for the opponent), plus a bonus for positions
    reached by a jump.
    """
    state = node.state
    opponent = player.opponent
    winner = state.winner()
    if winner == player:
        return WIN_SCORE
    if winner == opponent:
        return LOSS_SCORE

    score = len(state.pieces_of(player)) * POD_VALUE
    score -= len(state.pieces_of(opponent)) * POD_VALUE

    if maximizing:
        score += goal_distance_score(state, player)
    else:
        score -= goal_distance_score(state, opponent)

    if node.action is not None and node.action.is_jump:
        score += JUMP_BONUS if maximizing else -JUMP_BONUS
    return score


def opponent_piece_count(node: SearchNode, maximizing: bool, player: Color) -> int:
    side = player.opponent if maximizing else player
    return len(node.state.pieces_of(side))


def order_nodes(children: List[SearchNode], maximizing: bool, player: Color) -> List[SearchNode]:
    return sorted(children, key=lambda child: opponent_piece_count(child, maximizing, player))


def generate_children(node: SearchNode) -> List[SearchNode]:
    state = node.state
    return [SearchNode(state.apply(action), action) for action in state.legal_actions()]


def search(
    node: SearchNode,
    depth: int,
    alpha: int,
    beta: int,
    maximizing: bool,
    context: _SearchContext,
) -> ScoredResult:
    context.nodes += 1
    state = node.state
    player = context.player
    opponent = player.opponent

    if state.is_terminal() or depth <= 0 or context.budget.exhausted():
        return ScoredResult(evaluate(node, maximizing, player), None)

    winner = state.winner()
    if maximizing and winner == player:
        return ScoredResult(WIN_SCORE, node.action)
    if not maximizing and winner == opponent:
        return ScoredResult(LOSS_SCORE, node.action)

    children = order_nodes(generate_children(node), maximizing, player)
    best_action: Optional[Action] = None

    if maximizing:
        best = -INF
        for child in children:
            if context.budget.exhausted():
                return ScoredResult(best, best_action)
            if child.state.winner() == player:
                return ScoredResult(WIN_SCORE, child.action)
            scored = search(child, depth - 1, alpha, beta, False, context)
            if scored.score > best:
                best = scored.score
                best_action = child.action
            alpha = max(alpha, best)
            if beta <= alpha:
                break
    else:
        best = INF
        for child in children:
            if context.budget.exhausted():
                return ScoredResult(best, best_action)
            if child.state.winner() == opponent:
                return ScoredResult(LOSS_SCORE, child.action)
            scored = search(child, depth - 1, alpha, beta, True, context)
            if scored.score < best:
                best = scored.score
                best_action = child.action
            beta = min(beta, best)
            if beta <= alpha:
                break

    return ScoredResult(best, best_action)


def search_depth(state: GameState, player: Color, depth: int) -> Tuple[ScoredResult, int]:
    """Run a single untimed search to ``depth``; returns the result and node count."""
    context = _SearchContext(player=player, budget=SearchBudget.begin(None, 0))
    scored = search(SearchNode(state), max(0, depth), -INF, INF, True, context)
    return scored, context.nodes


def solve_best_move(
    state: GameState,
    player: Color,
    time_limit_ms: int,
    config: Optional[SearchConfig] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
    clock: Callable[[], float] = time.perf_counter,
) -> SearchResult:
    if config is None:
        config = DEFAULT_CONFIG

    # Event emission stays outside the budget window.
    if telemetry_sink is not None:
        emit_dataclass_event(
            telemetry_sink,
            "search_start",
            SearchStartEvent(
                player=player.value,
                time_limit_ms=time_limit_ms,
                max_depth=config.max_depth,
                buffer_ms=config.buffer_ms,
                legal_actions=len(state.legal_actions()),
            ),
        )
    budget = SearchBudget.begin(time_limit_ms, config.buffer_ms, clock)
    context = _SearchContext(player=player, budget=budget)

    def _finish(best_move: Optional[Action], score: int, depth: int, reason: str) -> SearchResult:
        result = SearchResult(
            best_move=best_move,
            score=score,
            depth=depth,
            complete=reason != "timeout",
            elapsed_ms=int(budget.elapsed_ms()),
            nodes=context.nodes,
            reason=reason,
        )
        emit_dataclass_event(
            telemetry_sink,
            "search_end",
            SearchEndEvent(
                best_move=_action_label(result.best_move),
                score=result.score,
                depth=result.depth,
                complete=result.complete,
                nodes=result.nodes,
                elapsed_ms=result.elapsed_ms,
                reason=reason,
            ),
        )
        return result

    root = SearchNode(state)
    if state.is_terminal():
        return _finish(None, evaluate(root, True, player), 0, "terminal")

    best_move: Optional[Action] = None
    best_score = 0
    best_depth = 0
    reason = "max_depth"

    for depth in range(1, config.max_depth + 1):
        scored = search(root, depth, -INF, INF, True, context)
        in_budget = not budget.exhausted()
        emit_dataclass_event(
            telemetry_sink,
            "iteration_done",
            IterationDoneEvent(
                depth=depth,
                score=scored.score,
                best_move=_action_label(scored.action),
                in_budget=in_budget,
                nodes=context.nodes,
                elapsed_ms=int(budget.elapsed_ms()),
            ),
        )
        # A truncated iteration is discarded; keep the previous depth's choice.
        if not in_budget:
            reason = "timeout"
            break
        best_move = scored.action
        best_score = scored.score
        best_depth = depth
        if scored.score >= WIN_SCORE:
            reason = "forced_win"
            break

    return _finish(best_move, best_score, best_depth, reason)


def decide_move(
    state: GameState,
    player: Color,
    time_limit_ms: int,
    config: Optional[SearchConfig] = None,
    telemetry_sink: Optional[TelemetrySink] = None,
) -> Optional[Action]:
    """Choose an action for ``player``; ``None`` means no depth finished in time."""
    result = solve_best_move(
        state,
        player,
        time_limit_ms,
        config=config,
        telemetry_sink=telemetry_sink,
    )
    return result.best_move
