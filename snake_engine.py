"""
Snake simulation engine.

The interaction loop in snake.py only talks to this module through the
`SimulationEngine` protocol: set a desired direction, advance one tick,
and read a `DisplaySnapshot`. The board is a numpy int8 grid of
`CellKind` values; the body is a deque of (row, col), head first.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass
from typing import Protocol

import numpy as np
from numpy.typing import NDArray


class CellKind(enum.IntEnum):
    EMPTY = 0
    SNAKE = 1
    FOOD = 2
    WALL = 3


class Direction(enum.Enum):
    UP = (-1, 0)
    DOWN = (1, 0)
    LEFT = (0, -1)
    RIGHT = (0, 1)

    @property
    def opposite(self) -> Direction:
        dr, dc = self.value
        return Direction((-dr, -dc))


@dataclass(frozen=True)
class DisplaySnapshot:
    """Read-only view of one tick, valid until the next advance()."""
    rows: int
    cols: int
    board: NDArray[np.int8]           # (rows, cols) of CellKind values
    snake: tuple[tuple[int, int], ...]  # head first
    score: int
    length: int
    ate_food: bool = False
    alive: bool = True
    end_reason: str = ""

    @property
    def head(self) -> tuple[int, int] | None:
        return self.snake[0] if self.snake else None


class SimulationEngine(Protocol):
    def set_direction(self, direction: Direction) -> None: ...
    def advance(self) -> bool: ...
    def snapshot(self) -> DisplaySnapshot: ...


# ═══════════════════════════════════════════════════════════════════════
#  Reference engine
# ═══════════════════════════════════════════════════════════════════════

class SnakeEngine:
    """Single-snake rules: walls kill, self-collision kills, food grows."""

    def __init__(
        self,
        rows: int = 20,
        cols: int = 40,
        starting_length: int = 3,
        points_per_food: int = 10,
        rng: np.random.Generator | None = None,
        walls: list[tuple[int, int]] | None = None,
    ) -> None:
        self.rows = rows
        self.cols = cols
        self.points_per_food = points_per_food
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()

        self.board: NDArray[np.int8] = np.zeros((rows, cols), dtype=np.int8)
        for r, c in walls or ():
            if 0 <= r < rows and 0 <= c < cols:
                self.board[r, c] = CellKind.WALL

        self.score: int = 0
        self.alive: bool = True
        self.end_reason: str = ""
        self.ate_food: bool = False
        self.direction: Direction = Direction.RIGHT
        self._pending: Direction = Direction.RIGHT

        # Middle row, heading right, head at the right end
        length = max(1, min(starting_length, cols))
        mid = rows // 2
        start_c = (cols - length) // 2
        self.body: deque[tuple[int, int]] = deque(
            (mid, start_c + i) for i in reversed(range(length))
        )
        for r, c in self.body:
            self.board[r, c] = CellKind.SNAKE

        self._place_food()

    # ── Control ─────────────────────────────────────────────────────

    def set_direction(self, direction: Direction) -> None:
        if len(self.body) > 1 and direction is self.direction.opposite:
            return
        self._pending = direction

    def advance(self) -> bool:
        """Move one cell. Returns False once the round is over."""
        self.ate_food = False
        if not self.alive:
            return False

        self.direction = self._pending
        dr, dc = self.direction.value
        hr, hc = self.body[0]
        nr, nc = hr + dr, hc + dc

        if not (0 <= nr < self.rows and 0 <= nc < self.cols):
            return self._die("wall")

        target = int(self.board[nr, nc])
        if target == CellKind.WALL:
            return self._die("wall")

        grows = target == CellKind.FOOD
        if not grows:
            tr, tc = self.body.pop()
            self.board[tr, tc] = CellKind.EMPTY
            target = int(self.board[nr, nc])
        if target == CellKind.SNAKE:
            if not grows:
                # put the tail back so the final frame shows the collision
                self.body.append((tr, tc))
                self.board[tr, tc] = CellKind.SNAKE
            return self._die("self")

        self.body.appendleft((nr, nc))
        self.board[nr, nc] = CellKind.SNAKE

        if grows:
            self.ate_food = True
            self.score += self.points_per_food
            if not self._place_food():
                return self._die("board full")
        return True

    def snapshot(self) -> DisplaySnapshot:
        board = self.board.copy()
        board.setflags(write=False)
        return DisplaySnapshot(
            rows=self.rows,
            cols=self.cols,
            board=board,
            snake=tuple(self.body),
            score=self.score,
            length=len(self.body),
            ate_food=self.ate_food,
            alive=self.alive,
            end_reason=self.end_reason,
        )

    # ── Internals ───────────────────────────────────────────────────

    def _die(self, reason: str) -> bool:
        self.alive = False
        self.end_reason = reason
        return False

    def _place_food(self) -> bool:
        empty = np.flatnonzero(self.board == CellKind.EMPTY)
        if empty.size == 0:
            return False
        idx = int(self.rng.choice(empty))
        self.board[idx // self.cols, idx % self.cols] = CellKind.FOOD
        return True
