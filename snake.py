#!/usr/bin/env python3
"""
  S N A K E
  A real-time terminal snake that never blocks on the keyboard.

  Three clocks run side by side: the keyboard is polled every 10 ms, the
  world advances on a fixed tick (150 ms by default), and ESC sequences get
  a 20 ms window to finish arriving before they are given up on. Only the
  score line and the board interior are repainted during play, so the frame
  never flickers.

  Controls:
    w / UP      up               s / DOWN    down
    a / LEFT    left             d / RIGHT   right
    q           quit             ENTER       start
    r           replay (after game over)

  The high score lives in game_highest.txt and every game event is logged
  to snake_stats.csv, both beside this script. Optional overrides are read
  from snake_config.json.
"""

from __future__ import annotations

import enum
import json
import time
import weakref
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import IO, Any, ClassVar, Protocol

import numpy as np
from numpy.typing import NDArray

from snake_engine import CellKind, Direction, DisplaySnapshot, SimulationEngine, SnakeEngine
from snake_terminal import Intent, KeyDecoder, RawMode, TerminalDriver, make_terminal

HERE = Path(__file__).resolve().parent
HIGH_SCORE_PATH = HERE / "game_highest.txt"
LOG_PATH = HERE / "snake_stats.csv"
CONFIG_PATH = HERE / "snake_config.json"

# ── Screen layout ───────────────────────────────────────────────────────
SCORE_ROW = 4      # blank line under the title box
HEADER_ROWS = 6    # first board row (title + score + top border)
FOOTER_ROWS = 2    # bottom border + blank line

INTENT_DIRECTIONS: dict[Intent, Direction] = {
    Intent.UP: Direction.UP,
    Intent.DOWN: Direction.DOWN,
    Intent.LEFT: Direction.LEFT,
    Intent.RIGHT: Direction.RIGHT,
}


# ═══════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SessionConfig:
    rows: int = 20
    cols: int = 40
    starting_length: int = 3
    tick_delay_ms: int = 150
    points_per_food: int = 10

    head_char: str = "O"
    body_char: str = "o"
    food_char: str = "*"
    wall_char: str = "#"
    empty_char: str = " "

    input_poll_ms: int = 10
    prompt_poll_ms: int = 50
    escape_window_ms: int = 20

    GLYPH_FIELDS: ClassVar[tuple[str, ...]] = (
        "head_char", "body_char", "food_char", "wall_char", "empty_char",
    )


def load_config(path: Path = CONFIG_PATH) -> SessionConfig:
    """Defaults overlaid with whatever valid fields `path` provides.

    Bad files and bad values are skipped, never raised.
    """
    base = SessionConfig()
    try:
        raw = json.loads(path.read_text())
    except (OSError, ValueError):
        return base
    if not isinstance(raw, dict):
        return base

    overrides: dict[str, Any] = {}
    for f in fields(SessionConfig):
        if f.name not in raw:
            continue
        value = raw[f.name]
        if f.name in SessionConfig.GLYPH_FIELDS:
            if isinstance(value, str) and len(value) == 1:
                overrides[f.name] = value
        elif isinstance(value, int) and not isinstance(value, bool) and value > 0:
            overrides[f.name] = value
    return replace(base, **overrides)


# ═══════════════════════════════════════════════════════════════════════
#  Events
# ═══════════════════════════════════════════════════════════════════════

class EventKind(enum.Enum):
    FOOD_EATEN = "food_eaten"
    SNAKE_GREW = "snake_grew"
    GAME_OVER = "game_over"
    SCORE_CHANGED = "score_changed"
    HIGH_SCORE_BEATEN = "high_score_beaten"


@dataclass(frozen=True)
class GameEvent:
    kind: EventKind
    value: int = 0
    message: str = ""


class EventListener(Protocol):
    def on_event(self, event: GameEvent) -> None: ...


class EventBus:
    """Synchronous publish/subscribe keyed on `EventKind`.

    The bus keeps weak references, so it never keeps a listener alive.
    Delivery happens on the publisher's stack in subscription order. Each
    publish works from a copy of the subscriber list: subscribing or
    unsubscribing from inside a listener only affects later publishes.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventKind, list[weakref.ref[EventListener]]] = {}

    def subscribe(self, kind: EventKind, listener: EventListener) -> None:
        self._listeners.setdefault(kind, []).append(weakref.ref(listener))

    def unsubscribe(self, kind: EventKind, listener: EventListener) -> None:
        refs = self._listeners.get(kind, [])
        for i, ref in enumerate(refs):
            if ref() is listener:
                del refs[i]
                return

    def publish(self, event: GameEvent) -> None:
        refs = self._listeners.get(event.kind)
        if not refs:
            return
        live = [r for r in refs if r() is not None]
        if len(live) != len(refs):
            self._listeners[event.kind] = live
        for ref in tuple(live):
            listener = ref()
            if listener is not None:
                listener.on_event(event)

    def subscriber_count(self, kind: EventKind) -> int:
        return sum(1 for r in self._listeners.get(kind, []) if r() is not None)


# ═══════════════════════════════════════════════════════════════════════
#  High score
# ═══════════════════════════════════════════════════════════════════════

class HighScoreStore:
    """The best score ever, persisted as a single integer in a text file.

    The file is read once at construction; after that the in-memory value
    is authoritative and the file is only ever overwritten.
    """

    def __init__(self, path: Path = HIGH_SCORE_PATH, bus: EventBus | None = None) -> None:
        self._path = path
        self._bus: EventBus | None = None
        self.value: int = self.load()
        if bus is not None:
            self.attach(bus)

    def attach(self, bus: EventBus) -> None:
        self._bus = bus
        bus.subscribe(EventKind.SCORE_CHANGED, self)

    def load(self) -> int:
        try:
            value = int(self._path.read_text().strip())
        except (OSError, ValueError):
            return 0
        return max(value, 0)

    def save(self) -> None:
        try:
            self._path.write_text(str(self.value))
        except OSError:
            pass

    def is_new_high_score(self, score: int) -> bool:
        return score > self.value

    def record_score(self, score: int) -> None:
        if score <= self.value:
            return
        previous = self.value
        self.value = score
        self.save()
        # a first-ever score beats nothing but the zero baseline
        if previous > 0 and self._bus is not None:
            self._bus.publish(GameEvent(EventKind.HIGH_SCORE_BEATEN, score))

    def on_event(self, event: GameEvent) -> None:
        if event.kind is EventKind.SCORE_CHANGED:
            self.record_score(event.value)


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes every game event to CSV for after-the-fact inspection."""

    HEADER: ClassVar[str] = "time_s,session,kind,value,message\n"
    FLUSH_KINDS: ClassVar[frozenset[str]] = frozenset(
        {EventKind.GAME_OVER.value, EventKind.HIGH_SCORE_BEATEN.value}
    )

    def __init__(self, path: Path, clock: Callable[[], float] = time.monotonic) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._clock = clock
        self._t0: float = clock()
        self._rows: int = 0
        self.session: int = 0

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def attach(self, bus: EventBus) -> None:
        for kind in EventKind:
            bus.subscribe(kind, self)

    def on_event(self, event: GameEvent) -> None:
        self.log(event.kind.value, event.value, event.message)

    def log(self, kind: str, value: int, message: str = "") -> None:
        if self._fh is None:
            return
        t = self._clock() - self._t0
        message = message.replace(",", ";").replace("\n", " ")
        try:
            self._fh.write(f"{t:.2f},{self.session},{kind},{value},{message}\n")
            self._rows += 1
            if self._rows % 50 == 0 or kind in self.FLUSH_KINDS:
                self._fh.flush()
        except OSError:
            pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

TITLE_BOX = (
    "  +===============================+",
    "  |       SNAKE GAME              |",
    "  +===============================+",
)

INSTRUCTIONS = (
    "  +===================================+",
    "  |  CONTROLS:                        |",
    "  |                                   |",
    "  |  W or UP Arrow    - Move UP       |",
    "  |  S or DOWN Arrow  - Move DOWN     |",
    "  |  A or LEFT Arrow  - Move LEFT     |",
    "  |  D or RIGHT Arrow - Move RIGHT    |",
    "  |  Q                - Quit Game     |",
    "  |                                   |",
    "  |  Press ENTER to start...          |",
    "  +===================================+",
)

CONTROL_HINT = "  Controls: Arrow Keys or WASD  |  Q: Quit"


class Renderer:
    """Full-frame draws for transitions, row-by-row repaints during play.

    `update()` touches only the score line and the board interior; the
    border, title and controls are written once by `draw_full()`.
    """

    def __init__(
        self,
        terminal: TerminalDriver,
        config: SessionConfig,
        high_score: Callable[[], int],
    ) -> None:
        self.terminal = terminal
        self.config = config
        self._high_score = high_score
        # Index = CellKind; SNAKE maps to body, the head is patched per frame
        self._glyphs: NDArray[np.str_] = np.array(
            [config.empty_char, config.body_char, config.food_char, config.wall_char]
        )

    def score_line(self, snap: DisplaySnapshot) -> str:
        return (
            f"  Score: {snap.score:4d}  |  Length: {snap.length:3d}"
            f"  |  High Score: {self._high_score():4d}  "
        )

    def board_rows(self, snap: DisplaySnapshot) -> list[str]:
        board = np.asarray(snap.board)
        known = (board >= 0) & (board < len(self._glyphs))
        cells = self._glyphs[np.where(known, board, int(CellKind.EMPTY))]
        head = snap.head
        if head is not None:
            hr, hc = head
            if (
                0 <= hr < cells.shape[0]
                and 0 <= hc < cells.shape[1]
                and board[hr, hc] == CellKind.SNAKE
            ):
                cells[hr, hc] = self.config.head_char
        return ["".join(row) for row in cells.tolist()]

    def draw_full(self, snap: DisplaySnapshot, show_instructions: bool = False) -> None:
        cols = snap.cols
        lines: list[str] = ["", *TITLE_BOX, ""]
        lines.append("+" + "-" * cols + "+")
        lines.extend("|" + " " * cols + "|" for _ in range(snap.rows))
        lines.append("+" + "-" * cols + "+")
        lines.append("")
        if show_instructions:
            lines.extend(INSTRUCTIONS)
        else:
            lines.append(CONTROL_HINT)
        buffer = "\n".join(lines) + "\n"

        term = self.terminal
        term.clear_screen()
        term.hide_cursor()
        term.write(buffer)
        term.set_cursor(SCORE_ROW, 0)
        term.write(self.score_line(snap))
        term.flush()

    def update(self, snap: DisplaySnapshot) -> None:
        term = self.terminal
        term.set_cursor(SCORE_ROW, 0)
        term.write(self.score_line(snap))
        for r, row in enumerate(self.board_rows(snap)):
            term.set_cursor(HEADER_ROWS + r, 1)
            term.write(row)
        term.flush()

    def draw_game_over(self, snap: DisplaySnapshot, new_high: bool) -> None:
        lines = [
            "",
            "  +===============================+",
            "  |         GAME OVER!            |",
            f"  |   Final Score: {snap.score:4d}          |",
            f"  |   High Score:  {self._high_score():4d}          |",
        ]
        if new_high:
            lines += [
                "  |                               |",
                "  |   *** NEW HIGH SCORE! ***     |",
            ]
        lines += [
            "  |                               |",
            "  |   Press R to Replay           |",
            "  |   Press Q to Quit             |",
            "  +===============================+",
        ]
        # below the border, the blank line and the control hint
        top = HEADER_ROWS + snap.rows + FOOTER_ROWS + 1
        term = self.terminal
        for i, line in enumerate(lines):
            term.set_cursor(top + i, 0)
            term.write(line)
        term.flush()


# ═══════════════════════════════════════════════════════════════════════
#  Session loop
# ═══════════════════════════════════════════════════════════════════════

class SessionState(enum.Enum):
    AWAITING_START = "awaiting_start"
    PLAYING = "playing"
    ENDED = "ended"


class GameSession:
    """One play-through: start screen, timed play, game-over prompt.

    `run()` returns True when the player asked for a replay. The session
    borrows the terminal; raw mode belongs to the application.
    """

    def __init__(
        self,
        terminal: TerminalDriver,
        engine: SimulationEngine,
        high_scores: HighScoreStore,
        bus: EventBus,
        config: SessionConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.terminal = terminal
        self.engine = engine
        self.high_scores = high_scores
        self.bus = bus
        self.config = replace(config)
        self.clock = clock
        self.sleep = sleep
        self.state: SessionState = SessionState.AWAITING_START
        self.ticks: int = 0
        self.renderer = Renderer(terminal, self.config, lambda: high_scores.value)
        self.input = KeyDecoder(terminal, self.config.escape_window_ms, clock)
        self._last_score: int = 0
        self._last_length: int = 0
        self._starting_high: int = high_scores.value

    def run(self) -> bool:
        snap = self.engine.snapshot()
        self._last_score = snap.score
        self._last_length = snap.length
        self._starting_high = self.high_scores.value

        self.renderer.draw_full(snap, show_instructions=True)
        if not self._await_start():
            return False

        self.input.drain()
        self.renderer.draw_full(snap, show_instructions=False)
        self.sleep(self.config.prompt_poll_ms / 1000.0)

        self.state = SessionState.PLAYING
        if not self._play():
            return False

        self.state = SessionState.ENDED
        return self._finish()

    # ── States ──────────────────────────────────────────────────────

    def _await_start(self) -> bool:
        """True on ENTER, False on q."""
        while True:
            key = self._read_key()
            if key in (ord("\n"), ord("\r")):
                return True
            if key in (ord("q"), ord("Q")):
                return False
            self.sleep(self.config.prompt_poll_ms / 1000.0)

    def _play(self) -> bool:
        """Run until the engine stops (True) or the player quits (False)."""
        tick = self.config.tick_delay_ms / 1000.0
        poll = self.config.input_poll_ms / 1000.0
        last_tick = self.clock()

        while True:
            now = self.clock()

            intent = self.input.poll()
            if intent is Intent.QUIT:
                return False
            direction = INTENT_DIRECTIONS.get(intent)
            if direction is not None:
                self.engine.set_direction(direction)

            if now - last_tick >= tick:
                running = self.engine.advance()
                self.ticks += 1
                snap = self.engine.snapshot()
                self._publish_changes(snap)
                self.renderer.update(snap)
                last_tick = now
                if not running:
                    return True

            self.sleep(poll)

    def _finish(self) -> bool:
        snap = self.engine.snapshot()
        self.bus.publish(GameEvent(EventKind.GAME_OVER, snap.score, snap.end_reason))
        new_high = snap.score > 0 and snap.score > self._starting_high
        self.high_scores.record_score(snap.score)
        self.renderer.draw_game_over(snap, new_high)

        while True:
            key = self._read_key()
            if key in (ord("r"), ord("R")):
                return True
            if key in (ord("q"), ord("Q")):
                return False
            self.sleep(self.config.prompt_poll_ms / 1000.0)

    # ── Helpers ─────────────────────────────────────────────────────

    def _read_key(self) -> int | None:
        if not self.terminal.has_input_available():
            return None
        return self.terminal.read_byte()

    def _publish_changes(self, snap: DisplaySnapshot) -> None:
        if snap.ate_food:
            self.bus.publish(GameEvent(EventKind.FOOD_EATEN, snap.score))
        if snap.length > self._last_length:
            self.bus.publish(GameEvent(EventKind.SNAKE_GREW, snap.length))
        if snap.score != self._last_score:
            self.bus.publish(GameEvent(EventKind.SCORE_CHANGED, snap.score))
        self._last_score = snap.score
        self._last_length = snap.length


# ═══════════════════════════════════════════════════════════════════════
#  Application
# ═══════════════════════════════════════════════════════════════════════

def default_engine(config: SessionConfig) -> SnakeEngine:
    return SnakeEngine(
        rows=config.rows,
        cols=config.cols,
        starting_length=config.starting_length,
        points_per_food=config.points_per_food,
    )


class SnakeApp:
    """Owns the terminal, high score and event bus for the whole process."""

    def __init__(
        self,
        terminal: TerminalDriver | None = None,
        config: SessionConfig | None = None,
        high_scores: HighScoreStore | None = None,
        stats: StatsLogger | None = None,
        engine_factory: Callable[[SessionConfig], SimulationEngine] = default_engine,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.terminal: TerminalDriver = terminal if terminal is not None else make_terminal()
        self.config = config if config is not None else load_config()
        self.bus = EventBus()
        self.high_scores = high_scores if high_scores is not None else HighScoreStore()
        self.high_scores.attach(self.bus)
        self.stats = stats
        if stats is not None:
            stats.attach(self.bus)
        self.engine_factory = engine_factory
        self.clock = clock
        self.sleep = sleep
        self.sessions: int = 0

    def run(self) -> None:
        with RawMode(self.terminal):
            replay = True
            while replay:
                self.sessions += 1
                if self.stats is not None:
                    self.stats.session = self.sessions
                session = GameSession(
                    self.terminal,
                    self.engine_factory(self.config),
                    self.high_scores,
                    self.bus,
                    self.config,
                    clock=self.clock,
                    sleep=self.sleep,
                )
                replay = session.run()
            self.terminal.clear_screen()

        self.terminal.write("\n  Thanks for playing!\n\n")
        self.terminal.flush()


def main() -> None:
    stats = StatsLogger(LOG_PATH)
    stats.open()
    try:
        SnakeApp(stats=stats).run()
    finally:
        stats.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
