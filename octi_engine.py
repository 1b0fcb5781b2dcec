"""Core rules engine for Octi (4-pod game on the 6x7 board)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from functools import cached_property
from typing import Dict, FrozenSet, List, Optional, Tuple

BOARD_WIDTH = 6
BOARD_HEIGHT = 7
PRONG_SUPPLY = 12
FILES = "abcdef"

Cell = Tuple[int, int]


class Color(Enum):
    RED = "red"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self is Color.RED else Color.RED

    @property
    def letter(self) -> str:
        return "R" if self is Color.RED else "B"


class Direction(Enum):
    N = (0, -1)
    NE = (1, -1)
    E = (1, 0)
    SE = (1, 1)
    S = (0, 1)
    SW = (-1, 1)
    W = (-1, 0)
    NW = (-1, -1)

    @property
    def dx(self) -> int:
        return self.value[0]

    @property
    def dy(self) -> int:
        return self.value[1]

    def step(self, cell: Cell, times: int = 1) -> Cell:
        return cell[0] + self.dx * times, cell[1] + self.dy * times


class ActionKind(Enum):
    PRONG = "prong"
    MOVE = "move"
    JUMP = "jump"


RED_BASE: Tuple[Cell, ...] = ((1, 5), (2, 5), (3, 5), (4, 5))
BLACK_BASE: Tuple[Cell, ...] = ((1, 1), (2, 1), (3, 1), (4, 1))


@dataclass(frozen=True)
class Pod:
    pod_id: int
    color: Color
    position: Cell
    prongs: FrozenSet[Direction] = frozenset()


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    origin: Cell
    direction: Direction

    @property
    def is_jump(self) -> bool:
        return self.kind is ActionKind.JUMP

    def __str__(self) -> str:
        return format_action(self)


def base_cells(color: Color) -> Tuple[Cell, ...]:
    return RED_BASE if color is Color.RED else BLACK_BASE


def on_board(cell: Cell) -> bool:
    x, y = cell
    return 0 <= x < BOARD_WIDTH and 0 <= y < BOARD_HEIGHT


@dataclass(frozen=True)
class State:
    to_move: Color
    pods: Tuple[Pod, ...]
    prongs_red: int = PRONG_SUPPLY
    prongs_black: int = PRONG_SUPPLY

    def reserve(self, color: Color) -> int:
        return self.prongs_red if color is Color.RED else self.prongs_black

    def occupancy(self) -> Dict[Cell, Pod]:
        return {pod.position: pod for pod in self.pods}

    def pieces_of(self, color: Color) -> Tuple[Pod, ...]:
        return tuple(pod for pod in self.pods if pod.color is color)

    def position_of(self, pod: Pod) -> Cell:
        for current in self.pods:
            if current.pod_id == pod.pod_id:
                return current.position
        raise ValueError(f"pod {pod.pod_id} is not on the board")

    def base_cells(self, color: Color) -> Tuple[Cell, ...]:
        return base_cells(color)

    def winner(self) -> Optional[Color]:
        for color in (Color.RED, Color.BLACK):
            goal = base_cells(color.opponent)
            if any(pod.position in goal for pod in self.pods if pod.color is color):
                return color
        for color in (Color.RED, Color.BLACK):
            if not self.pieces_of(color.opponent):
                return color
        return None

    def is_terminal(self) -> bool:
        return self.winner() is not None or not self.legal_actions()

    @cached_property
    def _actions(self) -> Tuple[Action, ...]:
        return tuple(legal_actions(self))

    def legal_actions(self) -> List[Action]:
        return list(self._actions)

    def apply(self, action: Action) -> "State":
        return apply_action(self, action)


def initial_state(prongs: int = PRONG_SUPPLY, red_first: bool = True) -> State:
    if prongs < 0:
        raise ValueError("prongs must be non-negative")
    pods: List[Pod] = []
    for cell in RED_BASE:
        pods.append(Pod(len(pods), Color.RED, cell))
    for cell in BLACK_BASE:
        pods.append(Pod(len(pods), Color.BLACK, cell))
    return State(Color.RED if red_first else Color.BLACK, tuple(pods), prongs, prongs)


def legal_actions(state: State) -> List[Action]:
    occupied = state.occupancy()
    has_reserve = state.reserve(state.to_move) > 0
    actions: List[Action] = []
    for pod in state.pieces_of(state.to_move):
        for direction in Direction:
            if direction not in pod.prongs:
                if has_reserve:
                    actions.append(Action(ActionKind.PRONG, pod.position, direction))
                continue
            target = direction.step(pod.position)
            if not on_board(target):
                continue
            if target not in occupied:
                actions.append(Action(ActionKind.MOVE, pod.position, direction))
                continue
            landing = direction.step(pod.position, 2)
            if on_board(landing) and landing not in occupied:
                actions.append(Action(ActionKind.JUMP, pod.position, direction))
    return actions


def apply_action(state: State, action: Action) -> State:
    occupied = state.occupancy()
    pod = occupied.get(action.origin)
    if pod is None or pod.color is not state.to_move:
        raise ValueError(f"illegal action: no {state.to_move.value} pod at {format_cell(action.origin)}")

    prongs_red = state.prongs_red
    prongs_black = state.prongs_black
    captured: Optional[Pod] = None

    if action.kind is ActionKind.PRONG:
        if action.direction in pod.prongs:
            raise ValueError("illegal action: prong already present")
        if state.reserve(pod.color) <= 0:
            raise ValueError("illegal action: no prongs left in reserve")
        moved = replace(pod, prongs=pod.prongs | {action.direction})
        if pod.color is Color.RED:
            prongs_red -= 1
        else:
            prongs_black -= 1
    else:
        if action.direction not in pod.prongs:
            raise ValueError("illegal action: pod has no prong in that direction")
        target = action.direction.step(pod.position)
        if not on_board(target):
            raise ValueError("illegal action: target is off the board")
        if action.kind is ActionKind.MOVE:
            if target in occupied:
                raise ValueError("illegal action: target cell is occupied")
            moved = replace(pod, position=target)
        else:
            jumped = occupied.get(target)
            landing = action.direction.step(pod.position, 2)
            if jumped is None:
                raise ValueError("illegal action: nothing to jump over")
            if not on_board(landing) or landing in occupied:
                raise ValueError("illegal action: landing cell is blocked")
            if jumped.color is not pod.color:
                captured = jumped
            moved = replace(pod, position=landing)

    pods = tuple(
        moved if current.pod_id == pod.pod_id else current
        for current in state.pods
        if captured is None or current.pod_id != captured.pod_id
    )
    return State(state.to_move.opponent, pods, prongs_red, prongs_black)


def format_cell(cell: Cell) -> str:
    x, y = cell
    return f"{FILES[x]}{y + 1}"


def parse_cell(text: str) -> Cell:
    raw = text.strip().lower()
    if len(raw) != 2 or raw[0] not in FILES or not raw[1].isdigit():
        raise ValueError(f"bad cell: {text!r}")
    cell = (FILES.index(raw[0]), int(raw[1]) - 1)
    if not on_board(cell):
        raise ValueError(f"cell off the board: {text!r}")
    return cell


def format_action(action: Action) -> str:
    return f"{action.kind.value} {format_cell(action.origin)} {action.direction.name}"


def parse_action(text: str) -> Action:
    parts = text.split()
    if len(parts) != 3:
        raise ValueError("expected '<prong|move|jump> <cell> <direction>'")
    kind_raw, cell_raw, dir_raw = parts
    try:
        kind = ActionKind(kind_raw.lower())
    except ValueError:
        raise ValueError(f"unknown action kind: {kind_raw!r}") from None
    try:
        direction = Direction[dir_raw.upper()]
    except KeyError:
        raise ValueError(f"unknown direction: {dir_raw!r}") from None
    return Action(kind, parse_cell(cell_raw), direction)


def state_key(state: State) -> str:
    pods = ";".join(
        f"{pod.pod_id},{pod.color.letter},{pod.position[0]},{pod.position[1]},"
        + ".".join(d.name for d in Direction if d in pod.prongs)
        for pod in state.pods
    )
    return f"{state.to_move.letter}|{state.prongs_red}|{state.prongs_black}|{pods}"


def key_to_state(key: str) -> Optional[State]:
    parts = key.strip().split("|")
    if len(parts) != 4:
        return None
    colors = {Color.RED.letter: Color.RED, Color.BLACK.letter: Color.BLACK}
    to_move = colors.get(parts[0])
    if to_move is None:
        return None
    try:
        prongs_red = int(parts[1])
        prongs_black = int(parts[2])
        pods: List[Pod] = []
        for raw in parts[3].split(";") if parts[3] else []:
            pod_id, letter, x, y, dirs = raw.split(",")
            color = colors[letter]
            cell = (int(x), int(y))
            if not on_board(cell):
                return None
            prongs = frozenset(Direction[name] for name in dirs.split(".") if name)
            pods.append(Pod(int(pod_id), color, cell, prongs))
    except (ValueError, KeyError):
        return None
    if prongs_red < 0 or prongs_black < 0:
        return None
    if len({pod.position for pod in pods}) != len(pods):
        return None
    if len({pod.pod_id for pod in pods}) != len(pods):
        return None
    return State(to_move, tuple(pods), prongs_red, prongs_black)


def pretty_print(state: State) -> str:
    """
    Text board, rank 1 at the top.

    Each occupied cell shows the owner letter and its prong count (``R3``);
    empty base cells are marked ``..`` (black base) and ``,,`` (red base).
    """
    occupied = state.occupancy()
    header = "    " + " ".join(f" {f} " for f in FILES)
    border = "   +" + "+".join(["---"] * BOARD_WIDTH) + "+"
    lines = [f"Turn: {state.to_move.value}", "", header, border]
    for y in range(BOARD_HEIGHT):
        cells = []
        for x in range(BOARD_WIDTH):
            pod = occupied.get((x, y))
            if pod is not None:
                cells.append(f"{pod.color.letter}{len(pod.prongs)} ")
            elif (x, y) in BLACK_BASE:
                cells.append(" ..")
            elif (x, y) in RED_BASE:
                cells.append(" ,,")
            else:
                cells.append("   ")
        lines.append(f"{y + 1:>2} |" + "|".join(cells) + "|")
        lines.append(border)
    lines.append("")
    lines.append(f"Reserve: red {state.prongs_red}, black {state.prongs_black}")
    for pod in state.pods:
        prongs = " ".join(d.name for d in Direction if d in pod.prongs) or "-"
        lines.append(f"  {pod.color.letter}{pod.pod_id} @ {format_cell(pod.position)}: {prongs}")
    return "\n".join(lines)
