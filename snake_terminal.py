"""
Terminal control and keyboard decoding for the snake game.

The driver puts stdin into a non-canonical, non-echoing, non-blocking mode
so the game loop can poll for keys without ever waiting on a read. Output
uses the ANSI family (ESC[H, ESC[<row>;<col>H, ESC[?25l/h) everywhere;
Windows consoles are switched into VT processing mode first.

Every driver operation is best-effort. If the terminal attributes cannot be
queried or set (piped stdin, dumb terminals) the raw-mode calls become
no-ops and the input predicates report "nothing available".
"""

from __future__ import annotations

import enum
import os
import signal
import sys
import time
from collections.abc import Callable
from types import FrameType, TracebackType
from typing import ClassVar, Protocol, TextIO

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl
    import struct
    import termios

# ── Escape sequences ────────────────────────────────────────────────────
ESC = 0x1B
CSI = "\x1b["
CLEAR = CSI + "H" + CSI + "J"
HIDE_CURSOR = CSI + "?25l"
SHOW_CURSOR = CSI + "?25h"

# Final byte of ESC [ X → intent
ANSI_ARROWS: dict[int, str] = {
    ord("A"): "UP",
    ord("B"): "DOWN",
    ord("C"): "RIGHT",
    ord("D"): "LEFT",
}

# Second byte after a Windows extended-key prefix (0x00 / 0xE0)
CONSOLE_ARROWS: dict[int, str] = {
    72: "UP",
    80: "DOWN",
    75: "LEFT",
    77: "RIGHT",
}


# ═══════════════════════════════════════════════════════════════════════
#  Driver capability
# ═══════════════════════════════════════════════════════════════════════

class TerminalDriver(Protocol):
    """What the rest of the game needs from a terminal."""

    extended_key_prefixes: frozenset[int]

    def enable_raw_mode(self) -> None: ...
    def disable_raw_mode(self) -> None: ...
    def has_input_available(self) -> bool: ...
    def read_byte(self) -> int | None: ...
    def clear_screen(self) -> None: ...
    def set_cursor(self, row: int, col: int) -> None: ...
    def hide_cursor(self) -> None: ...
    def show_cursor(self) -> None: ...
    def write(self, text: str) -> None: ...
    def flush(self) -> None: ...


class AnsiTerminal:
    """Output half of a driver: ANSI sequences written to a text stream.

    Input methods report an empty queue; platform drivers override them.
    """

    extended_key_prefixes: ClassVar[frozenset[int]] = frozenset()

    def __init__(self, out: TextIO | None = None) -> None:
        self.out: TextIO = out if out is not None else sys.stdout
        self.raw: bool = False
        self.cursor_hidden: bool = False

    # ── Raw mode (no-op by default) ─────────────────────────────────

    def enable_raw_mode(self) -> None:
        self.raw = True

    def disable_raw_mode(self) -> None:
        self.raw = False

    # ── Input (nothing queued by default) ───────────────────────────

    def has_input_available(self) -> bool:
        return False

    def read_byte(self) -> int | None:
        return None

    # ── Output ──────────────────────────────────────────────────────

    def write(self, text: str) -> None:
        try:
            self.out.write(text)
        except (OSError, ValueError):
            pass

    def flush(self) -> None:
        try:
            self.out.flush()
        except (OSError, ValueError):
            pass

    def clear_screen(self) -> None:
        self.write(CLEAR)
        self.flush()

    def set_cursor(self, row: int, col: int) -> None:
        """Move to a 0-based (row, col); the terminal counts from 1."""
        self.write(f"{CSI}{row + 1};{col + 1}H")

    def hide_cursor(self) -> None:
        self.write(HIDE_CURSOR)
        self.flush()
        self.cursor_hidden = True

    def show_cursor(self) -> None:
        self.write(SHOW_CURSOR)
        self.flush()
        self.cursor_hidden = False


# ═══════════════════════════════════════════════════════════════════════
#  Platform drivers
# ═══════════════════════════════════════════════════════════════════════

class PosixTerminal(AnsiTerminal):
    """termios/fcntl driver: ICANON and ECHO off, VMIN=VTIME=0, O_NONBLOCK."""

    def __init__(self, fd: int | None = None, out: TextIO | None = None) -> None:
        super().__init__(out)
        self.fd: int = fd if fd is not None else _stdin_fd()
        self._saved_attrs: list | None = None
        self._saved_flags: int = 0

    def enable_raw_mode(self) -> None:
        if self.raw or self.fd < 0:
            return
        try:
            attrs = termios.tcgetattr(self.fd)
            raw = [list(a) if isinstance(a, list) else a for a in attrs]
            raw[3] &= ~(termios.ECHO | termios.ICANON)  # lflag
            raw[6][termios.VMIN] = 0
            raw[6][termios.VTIME] = 0
            termios.tcsetattr(self.fd, termios.TCSAFLUSH, raw)
        except (termios.error, OSError):
            return
        self._saved_attrs = attrs
        try:
            self._saved_flags = fcntl.fcntl(self.fd, fcntl.F_GETFL)
            fcntl.fcntl(self.fd, fcntl.F_SETFL, self._saved_flags | os.O_NONBLOCK)
        except OSError:
            self._saved_flags = -1
        self.raw = True

    def disable_raw_mode(self) -> None:
        if not self.raw or self._saved_attrs is None:
            return
        try:
            termios.tcsetattr(self.fd, termios.TCSAFLUSH, self._saved_attrs)
        except (termios.error, OSError):
            pass
        if self._saved_flags >= 0:
            try:
                fcntl.fcntl(self.fd, fcntl.F_SETFL, self._saved_flags)
            except OSError:
                pass
        self._saved_attrs = None
        self.raw = False

    def has_input_available(self) -> bool:
        if self.fd < 0:
            return False
        try:
            buf = fcntl.ioctl(self.fd, termios.FIONREAD, b"\0\0\0\0")
        except OSError:
            return False
        return struct.unpack("i", buf)[0] > 0

    def read_byte(self) -> int | None:
        if not self.has_input_available():
            return None
        try:
            data = os.read(self.fd, 1)
        except OSError:
            return None
        return data[0] if data else None


class WindowsTerminal(AnsiTerminal):
    """msvcrt console driver. The console is already unbuffered for getch."""

    extended_key_prefixes: ClassVar[frozenset[int]] = frozenset({0x00, 0xE0})

    def enable_raw_mode(self) -> None:
        if self.raw:
            return
        # Turns on VT escape processing in modern Windows consoles
        os.system("")
        self.raw = True

    def has_input_available(self) -> bool:
        return bool(msvcrt.kbhit())

    def read_byte(self) -> int | None:
        if not msvcrt.kbhit():
            return None
        return msvcrt.getch()[0]


def _stdin_fd() -> int:
    try:
        return sys.stdin.fileno()
    except (AttributeError, OSError, ValueError):
        return -1


def make_terminal(out: TextIO | None = None) -> AnsiTerminal:
    """Pick the driver for the running platform."""
    if sys.platform == "win32":
        return WindowsTerminal(out)
    return PosixTerminal(out=out)


# ═══════════════════════════════════════════════════════════════════════
#  Scoped raw mode
# ═══════════════════════════════════════════════════════════════════════

class RawMode:
    """Hold the terminal in raw mode with a hidden cursor for a `with` block.

    Settings and cursor visibility are restored on every way out of the
    block: normal return, exceptions, Ctrl-C, and SIGTERM (which is turned
    into SystemExit while the guard is active).
    """

    def __init__(self, terminal: TerminalDriver) -> None:
        self.terminal = terminal
        self._prev_sigterm: Callable | int | None = None
        self._installed: bool = False

    def __enter__(self) -> TerminalDriver:
        self._install_sigterm()
        self.terminal.enable_raw_mode()
        self.terminal.hide_cursor()
        return self.terminal

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.terminal.disable_raw_mode()
            self.terminal.show_cursor()
        finally:
            self._restore_sigterm()

    def _install_sigterm(self) -> None:
        def _on_sigterm(signum: int, frame: FrameType | None) -> None:
            raise SystemExit(128 + signum)

        try:
            self._prev_sigterm = signal.signal(signal.SIGTERM, _on_sigterm)
        except (ValueError, OSError):
            # not the main thread
            return
        self._installed = True

    def _restore_sigterm(self) -> None:
        if not self._installed:
            return
        prev = self._prev_sigterm if self._prev_sigterm is not None else signal.SIG_DFL
        try:
            signal.signal(signal.SIGTERM, prev)
        except (ValueError, OSError):
            pass
        self._installed = False
        self._prev_sigterm = None


# ═══════════════════════════════════════════════════════════════════════
#  Key decoding
# ═══════════════════════════════════════════════════════════════════════

class Intent(enum.Enum):
    UP = "UP"
    DOWN = "DOWN"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    QUIT = "QUIT"
    NONE = "NONE"


LETTER_INTENTS: dict[int, Intent] = {
    ord("w"): Intent.UP,
    ord("s"): Intent.DOWN,
    ord("a"): Intent.LEFT,
    ord("d"): Intent.RIGHT,
    ord("q"): Intent.QUIT,
}


class KeyDecoder:
    """Turns raw bytes from a driver into one `Intent` per `poll()`.

    A lone ESC and the first byte of ESC [ A..D look the same when they
    arrive, so after ESC the decoder busy-polls for up to `escape_window_ms`
    collecting at most two more bytes. Anything other than a complete arrow
    triplet is dropped and yields NONE. The accumulator is cleared on entry
    and exit of every poll, so partial sequences never carry over.
    """

    SEQUENCE_LEN: ClassVar[int] = 3

    def __init__(
        self,
        terminal: TerminalDriver,
        escape_window_ms: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.terminal = terminal
        self.escape_window: float = escape_window_ms / 1000.0
        self._clock = clock
        self._acc: bytearray = bytearray()
        self._acc_started: float = 0.0

    def poll(self) -> Intent:
        self._reset()
        try:
            return self._decode()
        finally:
            self._reset()

    def drain(self) -> None:
        """Discard everything currently queued on the input."""
        while self.terminal.has_input_available():
            if self.terminal.read_byte() is None:
                break
        self._reset()

    def _reset(self) -> None:
        self._acc.clear()
        self._acc_started = 0.0

    def _decode(self) -> Intent:
        if not self.terminal.has_input_available():
            return Intent.NONE
        byte = self.terminal.read_byte()
        if byte is None:
            return Intent.NONE

        if byte in self.terminal.extended_key_prefixes:
            code = self.terminal.read_byte()
            name = CONSOLE_ARROWS.get(code) if code is not None else None
            return Intent[name] if name else Intent.NONE

        if byte == ESC:
            return self._decode_escape()

        if 0x41 <= byte <= 0x5A:
            byte += 0x20  # fold A-Z to lower case
        return LETTER_INTENTS.get(byte, Intent.NONE)

    def _decode_escape(self) -> Intent:
        self._acc.append(ESC)
        self._acc_started = self._clock()
        while (
            len(self._acc) < self.SEQUENCE_LEN
            and self._clock() - self._acc_started < self.escape_window
        ):
            if self.terminal.has_input_available():
                nxt = self.terminal.read_byte()
                if nxt is not None:
                    self._acc.append(nxt)

        if len(self._acc) == self.SEQUENCE_LEN and self._acc[1] == ord("["):
            name = ANSI_ARROWS.get(self._acc[2])
            if name:
                return Intent[name]
        return Intent.NONE
