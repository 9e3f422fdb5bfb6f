"""
Shared fakes for the snake test suite.

Nothing here touches a real TTY: time comes from `FakeClock`, keyboard
bytes from `ScriptedTerminal`, and `VirtualScreen` replays the ANSI output
into a character grid so tests can assert on what a player would see.
"""

from __future__ import annotations

import re
from collections import deque
from io import StringIO

import numpy as np
import pytest

from snake_engine import Direction, DisplaySnapshot
from snake_terminal import AnsiTerminal


class FakeClock:
    """Monotonic clock whose time only moves when told to.

    `step` advances the clock on every read, which keeps busy-poll loops
    bounded without real waiting.
    """

    def __init__(self, start: float = 100.0, step: float = 0.0) -> None:
        self.now = start
        self.step = step
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        t = self.now
        self.now += self.step
        return t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTerminal(AnsiTerminal):
    """ANSI output into a StringIO, input bytes released at scheduled times."""

    def __init__(self, clock: FakeClock, prefixes: frozenset[int] = frozenset()) -> None:
        super().__init__(out=StringIO())
        self.clock = clock
        self.extended_key_prefixes = prefixes
        self._queue: deque[tuple[float, int]] = deque()
        self.raw_enables = 0
        self.raw_disables = 0

    def feed(self, data: bytes | str, at: float | None = None) -> None:
        if isinstance(data, str):
            data = data.encode()
        when = self.clock.now if at is None else at
        for b in data:
            self._queue.append((when, b))

    def pending(self) -> int:
        return len(self._queue)

    def enable_raw_mode(self) -> None:
        self.raw_enables += 1
        super().enable_raw_mode()

    def disable_raw_mode(self) -> None:
        self.raw_disables += 1
        super().disable_raw_mode()

    def has_input_available(self) -> bool:
        return bool(self._queue) and self._queue[0][0] <= self.clock.now

    def read_byte(self) -> int | None:
        if not self.has_input_available():
            return None
        return self._queue.popleft()[1]

    def output(self) -> str:
        return self.out.getvalue()

    def reset_output(self) -> None:
        self.out.seek(0)
        self.out.truncate()


_TOKEN = re.compile(r"\x1b\[(\??)([0-9;]*)([A-Za-z])|(\n)|([^\x1b\n])", re.S)


class VirtualScreen:
    """Tiny ANSI interpreter covering what the game emits."""

    def __init__(self, rows: int = 60, cols: int = 100) -> None:
        self.rows = rows
        self.cols = cols
        self.grid = [[" "] * cols for _ in range(rows)]
        self.row = 0
        self.col = 0
        self.cursor_visible = True

    def feed(self, text: str) -> VirtualScreen:
        for m in _TOKEN.finditer(text):
            private, params, final, newline, char = m.groups()
            if newline:
                self.row += 1
                self.col = 0
            elif char is not None:
                if 0 <= self.row < self.rows and 0 <= self.col < self.cols:
                    self.grid[self.row][self.col] = char
                self.col += 1
            elif private:
                if params == "25":
                    self.cursor_visible = final == "h"
            elif final == "H":
                parts = [int(p) for p in params.split(";") if p] if params else []
                self.row = parts[0] - 1 if parts else 0
                self.col = parts[1] - 1 if len(parts) > 1 else 0
            elif final == "J":
                for c in range(self.col, self.cols):
                    self.grid[self.row][c] = " "
                for r in range(self.row + 1, self.rows):
                    self.grid[r] = [" "] * self.cols
        return self

    def line(self, row: int) -> str:
        return "".join(self.grid[row]).rstrip()

    def text(self) -> str:
        return "\n".join(self.line(r) for r in range(self.rows))


class ScriptedEngine:
    """Engine stand-in that walks through a fixed list of per-tick scores.

    The last advance() returns False; `advance_times` records when each
    tick happened according to the shared clock.
    """

    def __init__(
        self,
        clock: FakeClock,
        scores: list[int],
        rows: int = 4,
        cols: int = 6,
        end_reason: str = "wall",
    ) -> None:
        self.clock = clock
        self.scores = list(scores)
        self.rows = rows
        self.cols = cols
        self.end_reason = end_reason
        self.score = 0
        self.length = 3
        self.ate = False
        self.alive = True
        self.directions: list[Direction] = []
        self.advance_times: list[float] = []

    def set_direction(self, direction: Direction) -> None:
        self.directions.append(direction)

    def advance(self) -> bool:
        self.advance_times.append(self.clock.now)
        if not self.scores:
            self.alive = False
            return False
        new = self.scores.pop(0)
        self.ate = new > self.score
        if self.ate:
            self.length += 1
        self.score = new
        if not self.scores:
            self.alive = False
        return self.alive

    def snapshot(self) -> DisplaySnapshot:
        board = np.zeros((self.rows, self.cols), dtype=np.int8)
        return DisplaySnapshot(
            rows=self.rows,
            cols=self.cols,
            board=board,
            snake=(),
            score=self.score,
            length=self.length,
            ate_food=self.ate,
            alive=self.alive,
            end_reason="" if self.alive else self.end_reason,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def terminal(clock: FakeClock) -> ScriptedTerminal:
    return ScriptedTerminal(clock)
