import unittest
from unittest.mock import patch

import octi_search as search_mod
from bench_search import generate_positions
from octi_engine import Action, ActionKind, Color, Direction, Pod, State, initial_state
from octi_search import (
    INF,
    JUMP_BONUS,
    LOSS_SCORE,
    WIN_SCORE,
    ScoredResult,
    SearchBudget,
    SearchConfig,
    SearchNode,
    decide_move,
    distance_to_goal,
    evaluate,
    generate_children,
    goal_distance_score,
    opponent_piece_count,
    order_nodes,
    search_depth,
    solve_best_move,
)
from octi_telemetry import CallbackTelemetrySink

RED = Color.RED
BLACK = Color.BLACK


def make_state(to_move, pods, prongs_red=0, prongs_black=0):
    built = []
    for idx, (color, cell, prongs) in enumerate(pods):
        built.append(Pod(idx, color, cell, frozenset(Direction[name] for name in prongs.split())))
    return State(to_move, tuple(built), prongs_red, prongs_black)


def reference_minimax(node, depth, maximizing, player, counter):
    """Same decision rules as the engine search, without any pruning."""
    counter[0] += 1
    state = node.state
    if state.is_terminal() or depth <= 0:
        return ScoredResult(evaluate(node, maximizing, player), None)
    winner = state.winner()
    if maximizing and winner == player:
        return ScoredResult(WIN_SCORE, node.action)
    if not maximizing and winner == player.opponent:
        return ScoredResult(LOSS_SCORE, node.action)

    children = order_nodes(generate_children(node), maximizing, player)
    best_action = None
    if maximizing:
        best = -INF
        for child in children:
            if child.state.winner() == player:
                return ScoredResult(WIN_SCORE, child.action)
            scored = reference_minimax(child, depth - 1, False, player, counter)
            if scored.score > best:
                best, best_action = scored.score, child.action
    else:
        best = INF
        for child in children:
            if child.state.winner() == player.opponent:
                return ScoredResult(LOSS_SCORE, child.action)
            scored = reference_minimax(child, depth - 1, True, player, counter)
            if scored.score < best:
                best, best_action = scored.score, child.action
    return ScoredResult(best, best_action)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# Two red pods racing up the board, two black pods guarding; no prong reserve.
RACE = make_state(
    RED,
    [
        (RED, (1, 4), "N NE"),
        (RED, (3, 5), "N W"),
        (BLACK, (2, 2), "S SE"),
        (BLACK, (4, 1), "S SW"),
    ],
)


class TestEvaluator(unittest.TestCase):
    def setUp(self):
        self.state = make_state(
            RED,
            [(RED, (1, 3), ""), (RED, (0, 6), ""), (BLACK, (2, 4), "")],
        )

    def test_formula_maximizing(self):
        # material 2*500 - 500, red goal terms (10-2)*1e4 + (10-6)*1e4
        self.assertEqual(evaluate(SearchNode(self.state), True, RED), 120_500)

    def test_formula_minimizing(self):
        # material 500, minus black goal term (10-1)*1e4
        self.assertEqual(evaluate(SearchNode(self.state), False, RED), -89_500)

    def test_player_win_is_extreme_for_both_flags(self):
        won = make_state(BLACK, [(RED, (2, 1), ""), (BLACK, (5, 0), "")])
        for maximizing in (True, False):
            with self.subTest(maximizing=maximizing):
                self.assertEqual(evaluate(SearchNode(won), maximizing, RED), WIN_SCORE)
                self.assertEqual(evaluate(SearchNode(won), maximizing, BLACK), LOSS_SCORE)

    def test_opponent_win_is_extreme_loss(self):
        lost = make_state(RED, [(RED, (0, 0), ""), (BLACK, (4, 5), "")])
        for maximizing in (True, False):
            with self.subTest(maximizing=maximizing):
                self.assertEqual(evaluate(SearchNode(lost), maximizing, RED), LOSS_SCORE)

    def test_goal_distance_on_goal_cell(self):
        state = make_state(RED, [(RED, (2, 1), ""), (BLACK, (5, 6), "")])
        self.assertEqual(goal_distance_score(state, RED), 100_000)

    def test_goal_distance_decreases_with_distance(self):
        scores = []
        for y in range(1, 7):
            state = make_state(RED, [(RED, (1, y), ""), (BLACK, (5, 0), "")])
            scores.append(goal_distance_score(state, RED))
        self.assertEqual(scores, [100_000, 90_000, 80_000, 70_000, 60_000, 50_000])

    def test_black_aims_at_red_base(self):
        state = make_state(RED, [(RED, (5, 0), ""), (BLACK, (0, 5), "")])
        self.assertEqual(goal_distance_score(state, BLACK), 90_000)

    def test_distance_to_nearest_goal(self):
        self.assertEqual(distance_to_goal((0, 6), ((1, 1), (4, 1))), 6)
        self.assertEqual(distance_to_goal((5, 0), ((1, 1), (4, 1))), 2)

    def test_jump_bonus(self):
        jump = Action(ActionKind.JUMP, (1, 3), Direction.N)
        step = Action(ActionKind.MOVE, (1, 3), Direction.N)
        for maximizing, delta in ((True, JUMP_BONUS), (False, -JUMP_BONUS)):
            with self.subTest(maximizing=maximizing):
                jumped = evaluate(SearchNode(self.state, jump), maximizing, RED)
                stepped = evaluate(SearchNode(self.state, step), maximizing, RED)
                self.assertEqual(jumped - stepped, delta)

    def test_heuristic_stays_below_win_score(self):
        for state in generate_positions(positions=8, max_plies=20, prongs=4, seed=3):
            for maximizing in (True, False):
                self.assertLess(abs(evaluate(SearchNode(state), maximizing, state.to_move)), 10**6)


class TestMoveOrdering(unittest.TestCase):
    def setUp(self):
        self.state = make_state(
            RED,
            [(RED, (2, 4), "N E"), (BLACK, (2, 3), ""), (BLACK, (5, 0), "")],
        )

    def test_capture_first_when_maximizing(self):
        children = list(reversed(generate_children(SearchNode(self.state))))
        ordered = order_nodes(children, True, RED)
        self.assertEqual(ordered[0].action.kind, ActionKind.JUMP)
        self.assertEqual([opponent_piece_count(c, True, RED) for c in ordered], [1, 2])

    def test_minimizing_counts_player_pods(self):
        children = generate_children(SearchNode(self.state))
        self.assertEqual([opponent_piece_count(c, False, RED) for c in children], [1, 1])
        # stable for ties
        self.assertEqual(order_nodes(children, False, RED), children)


class TestSearch(unittest.TestCase):
    def test_search_on_won_state(self):
        won = make_state(BLACK, [(RED, (2, 1), ""), (BLACK, (5, 0), "S")])
        for depth in (0, 1, 3):
            with self.subTest(depth=depth):
                scored, _ = search_depth(won, RED, depth)
                self.assertEqual(scored.score, WIN_SCORE)
                scored, _ = search_depth(won, BLACK, depth)
                self.assertEqual(scored.score, LOSS_SCORE)

    def test_single_action_depth_one(self):
        state = make_state(RED, [(RED, (0, 6), "N"), (BLACK, (5, 0), "")])
        (only,) = state.legal_actions()
        scored, _ = search_depth(state, RED, 1)
        self.assertEqual(scored.action, only)
        expected = evaluate(SearchNode(state.apply(only), only), False, RED)
        self.assertEqual(scored.score, expected)

    def test_immediate_win_preferred_at_any_depth(self):
        state = make_state(
            RED,
            [(RED, (5, 6), "N"), (RED, (1, 2), "N"), (BLACK, (5, 0), "")],
        )
        winning = Action(ActionKind.MOVE, (1, 2), Direction.N)
        self.assertEqual(len(state.legal_actions()), 2)
        for depth in range(1, 5):
            with self.subTest(depth=depth):
                scored, _ = search_depth(state, RED, depth)
                self.assertEqual(scored.action, winning)
                self.assertEqual(scored.score, WIN_SCORE)

    def test_pruning_matches_unpruned_minimax(self):
        positions = [RACE] + generate_positions(positions=4, max_plies=10, prongs=1, seed=7)
        for idx, state in enumerate(positions):
            player = state.to_move
            for depth in (1, 2, 3):
                with self.subTest(position=idx, depth=depth):
                    counter = [0]
                    expected = reference_minimax(SearchNode(state), depth, True, player, counter)
                    scored, nodes = search_depth(state, player, depth)
                    self.assertEqual(scored.action, expected.action)
                    self.assertEqual(scored.score, expected.score)
                    self.assertLessEqual(nodes, counter[0])

    def test_race_finds_forced_win(self):
        # red (1,4) reaches b2 on ply 5; black has no prong pointing back at the b-file
        scored, _ = search_depth(RACE, RED, 4)
        self.assertLess(scored.score, WIN_SCORE)
        scored, _ = search_depth(RACE, RED, 5)
        self.assertEqual(scored.score, WIN_SCORE)
        result = solve_best_move(RACE, RED, 10_000)
        self.assertEqual(result.reason, "forced_win")
        self.assertEqual(result.depth, 5)
        self.assertEqual(result.score, WIN_SCORE)

    def test_exhausted_budget_returns_static_evaluation(self):
        context = search_mod._SearchContext(player=RED, budget=SearchBudget(0.0, 10, 30, clock=lambda: 0.0))
        scored = search_mod.search(SearchNode(RACE), 3, -INF, INF, True, context)
        self.assertIsNone(scored.action)
        self.assertEqual(scored.score, evaluate(SearchNode(RACE), True, RED))
        self.assertEqual(context.nodes, 1)

    def test_budget_exhausted_between_children_keeps_scored_child(self):
        state = make_state(RED, [(RED, (0, 6), "N"), (RED, (5, 6), "N"), (BLACK, (5, 0), "")])
        clock = FakeClock()
        context = search_mod._SearchContext(player=RED, budget=SearchBudget.begin(1000, 30, clock))
        real_evaluate = search_mod.evaluate

        def slow_evaluate(node, maximizing, player):
            score = real_evaluate(node, maximizing, player)
            clock.now = 10.0
            return score

        with patch.object(search_mod, "evaluate", side_effect=slow_evaluate) as mocked:
            scored = search_mod.search(SearchNode(state), 1, -INF, INF, True, context)

        first = Action(ActionKind.MOVE, (0, 6), Direction.N)
        self.assertEqual(scored.action, first)
        self.assertEqual(scored.score, real_evaluate(SearchNode(state.apply(first), first), False, RED))
        self.assertEqual(mocked.call_count, 1)
        self.assertEqual(context.nodes, 2)

    def test_minimizing_reply_that_wins_scores_loss(self):
        # black (c5) steps S onto the red base unless red blocks c6 first
        opens = Action(ActionKind.MOVE, (0, 6), Direction.N)
        blocks = Action(ActionKind.MOVE, (3, 5), Direction.W)
        black_win = Action(ActionKind.MOVE, (2, 4), Direction.S)
        state = make_state(RED, [(RED, (0, 6), "N"), (RED, (3, 5), "W"), (BLACK, (2, 4), "S")])
        self.assertEqual(state.legal_actions(), [opens, blocks])

        context = search_mod._SearchContext(player=RED, budget=SearchBudget.begin(None, 0))
        after_open = SearchNode(state.apply(opens), opens)
        scored = search_mod.search(after_open, 1, -INF, INF, False, context)
        self.assertEqual(scored, ScoredResult(LOSS_SCORE, black_win))

        scored, _ = search_depth(state, RED, 2)
        self.assertEqual(scored.action, blocks)
        self.assertGreater(scored.score, LOSS_SCORE)

    def test_only_action_allowing_opponent_win_scores_loss(self):
        state = make_state(RED, [(RED, (0, 6), "N"), (BLACK, (2, 4), "S")])
        (only,) = state.legal_actions()
        scored, _ = search_depth(state, RED, 2)
        self.assertEqual(scored, ScoredResult(LOSS_SCORE, only))


class TestBudget(unittest.TestCase):
    def test_exhausted_includes_buffer(self):
        clock = FakeClock()
        budget = SearchBudget.begin(100, 30, clock)
        clock.now = 0.069
        self.assertFalse(budget.exhausted())
        clock.now = 0.071
        self.assertTrue(budget.exhausted())

    def test_unlimited_budget(self):
        budget = SearchBudget.begin(None, 30)
        self.assertFalse(budget.exhausted())

    def test_config_validation(self):
        with self.assertRaises(ValueError):
            SearchConfig(max_depth=0)
        with self.assertRaises(ValueError):
            SearchConfig(buffer_ms=-1)
        self.assertEqual(SearchConfig(), SearchConfig(max_depth=5, buffer_ms=30))


class TestDriver(unittest.TestCase):
    def test_tiny_budget_gives_no_decision(self):
        result = solve_best_move(initial_state(), RED, 1)
        self.assertIsNone(result.best_move)
        self.assertFalse(result.decided)
        self.assertEqual(result.depth, 0)
        self.assertEqual(result.reason, "timeout")
        self.assertIsNone(decide_move(initial_state(), RED, 1))

    def test_tiny_budget_without_buffer_never_goes_deep(self):
        result = solve_best_move(initial_state(), RED, 1, config=SearchConfig(buffer_ms=0))
        self.assertLessEqual(result.depth, 1)

    def test_truncated_iteration_is_discarded(self):
        clock = FakeClock()
        actions = initial_state().legal_actions()

        def fake_search(node, depth, alpha, beta, maximizing, context):
            if depth == 3:
                clock.now = 10.0
            return ScoredResult(depth * 10, actions[depth - 1])

        with patch.object(search_mod, "search", side_effect=fake_search) as mocked:
            result = solve_best_move(initial_state(), RED, 1000, clock=clock)

        self.assertEqual(mocked.call_count, 3)
        self.assertEqual(result.best_move, actions[1])
        self.assertEqual(result.score, 20)
        self.assertEqual(result.depth, 2)
        self.assertFalse(result.complete)
        self.assertEqual(result.reason, "timeout")

    def test_start_event_is_outside_the_budget(self):
        clock = FakeClock()
        state = make_state(RED, [(RED, (0, 6), "N"), (BLACK, (5, 0), "")])

        def slow_sink(envelope):
            if envelope.event == "search_start":
                clock.now += 10.0

        result = solve_best_move(
            state,
            RED,
            1000,
            config=SearchConfig(max_depth=1),
            telemetry_sink=CallbackTelemetrySink(slow_sink),
            clock=clock,
        )
        self.assertEqual(result.depth, 1)
        self.assertEqual(result.best_move, state.legal_actions()[0])
        self.assertEqual(result.reason, "max_depth")
        self.assertEqual(result.elapsed_ms, 0)

    def test_runs_every_depth_up_to_max(self):
        depths = []

        def fake_search(node, depth, alpha, beta, maximizing, context):
            depths.append(depth)
            return ScoredResult(0, node.state.legal_actions()[0])

        with patch.object(search_mod, "search", side_effect=fake_search):
            result = solve_best_move(initial_state(), RED, 1000, config=SearchConfig(max_depth=4), clock=FakeClock())
        self.assertEqual(depths, [1, 2, 3, 4])
        self.assertEqual(result.reason, "max_depth")
        self.assertTrue(result.complete)

    def test_forced_win_stops_deepening(self):
        state = make_state(
            RED,
            [(RED, (5, 6), "N"), (RED, (1, 2), "N"), (BLACK, (5, 0), "")],
        )
        result = solve_best_move(state, RED, 5000)
        self.assertEqual(result.best_move, Action(ActionKind.MOVE, (1, 2), Direction.N))
        self.assertEqual(result.score, WIN_SCORE)
        self.assertEqual(result.depth, 1)
        self.assertEqual(result.reason, "forced_win")

    def test_terminal_root(self):
        won = make_state(BLACK, [(RED, (2, 1), ""), (BLACK, (5, 0), "")])
        result = solve_best_move(won, BLACK, 1000)
        self.assertIsNone(result.best_move)
        self.assertEqual(result.reason, "terminal")
        self.assertEqual(result.score, LOSS_SCORE)

    def test_black_agent_picks_legal_action(self):
        state = initial_state().apply(initial_state().legal_actions()[0])
        move = decide_move(state, BLACK, 2000, config=SearchConfig(max_depth=2))
        self.assertIn(move, state.legal_actions())

    def test_repeated_calls_agree(self):
        config = SearchConfig(max_depth=3)
        first = solve_best_move(RACE, RED, 10_000, config=config)
        second = solve_best_move(RACE, RED, 10_000, config=config)
        self.assertEqual(first.best_move, second.best_move)
        self.assertEqual(first.depth, second.depth)
        self.assertEqual(first.nodes, second.nodes)


if __name__ == "__main__":
    unittest.main()
