# lcd.py
"""
Character display output: screen grid, cell diffing and the serial LCD wire protocol.

The device speaks the Matrix Orbital style command set used by USB LCD backpacks:
every command is PREFIX (0xFE) + opcode + operand bytes. Only cells that changed
since the previous frame are written; contiguous changed cells share a single
cursor-position command because the cursor auto-advances.

Without a device, ConsoleScreen prints both lines with rich instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import typer
from rich.console import Console
from rich.text import Text

from display import BLOCKS
from timeline import AlertState

# -------------------------
# Wire protocol
# -------------------------

PREFIX = 0xFE
CLEAR = 0x58
POS = 0x47  # cursor position: col, row (1-based)
COLOR = 0xD0  # background RGB
CUSTOM_CHAR = 0x4E  # slot + 8 row bitmaps

# parallel to display.BLOCKS: '_' then the eight bar glyphs in CGRAM slots 0-7
DEVICE_GLYPHS: Sequence[int] = (ord("_"), 0, 1, 2, 3, 4, 5, 6, 7)
GLYPH_CODES: Dict[str, int] = dict(zip(BLOCKS, DEVICE_GLYPHS))

ALERT_COLORS: Dict[AlertState, Tuple[int, int, int]] = {
    AlertState.NORMAL: (0x40, 0xFF, 0x40),
    AlertState.DEGRADED: (0xFF, 0xA0, 0x00),
    AlertState.DOWN: (0xFF, 0x00, 0x00),
}


def command(opcode: int, *operands: int) -> bytes:
    return bytes([PREFIX, opcode, *operands])


def clear_screen() -> bytes:
    return command(CLEAR)


def move_cursor(col: int, row: int) -> bytes:
    return command(POS, col + 1, row + 1)


def background(rgb: Tuple[int, int, int]) -> bytes:
    return command(COLOR, *rgb)


def bar_bitmap(height: int) -> bytes:
    """5x8 cell filled from the bottom ``height`` rows up."""
    return bytes(0x1F if row >= 8 - height else 0x00 for row in range(8))


def glyph_bank() -> bytes:
    return b"".join(command(CUSTOM_CHAR, slot, *bar_bitmap(slot + 1)) for slot in range(8))


def setup_commands() -> bytes:
    return clear_screen() + glyph_bank() + background(ALERT_COLORS[AlertState.NORMAL])


def encode_text(text: str) -> bytes:
    out = bytearray()
    for ch in text:
        code = GLYPH_CODES.get(ch)
        if code is None:
            code = ord(ch) if ord(ch) < 0x80 else ord("?")
        out.append(code)
    return bytes(out)


def to_escaped(data: bytes) -> str:
    """Render bytes in the device's \\xHH notation."""
    return "".join(f"\\x{b:02X}" for b in data)


# -------------------------
# Grid & diff
# -------------------------

class CharGrid:
    def __init__(self, rows: int = 2, width: int = 16) -> None:
        self.rows = rows
        self.width = width
        self._lines: List[str] = [" " * width for _ in range(rows)]

    def set_line(self, row: int, text: str) -> None:
        self._lines[row] = text[: self.width].ljust(self.width)

    def line(self, row: int) -> str:
        return self._lines[row]

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self._lines)

    def copy(self) -> "CharGrid":
        grid = CharGrid(self.rows, self.width)
        grid._lines = list(self._lines)
        return grid


@dataclass(frozen=True)
class DiffRun:
    row: int
    start: int
    text: str


def diff_runs(previous: str, current: str, row: int = 0) -> List[DiffRun]:
    if len(previous) != len(current):
        raise ValueError(f"line widths differ: {len(previous)} != {len(current)}")
    runs: List[DiffRun] = []
    start: Optional[int] = None
    for col, (old, new) in enumerate(zip(previous, current)):
        if old != new:
            if start is None:
                start = col
            continue
        if start is not None:
            runs.append(DiffRun(row, start, current[start:col]))
            start = None
    if start is not None:
        runs.append(DiffRun(row, start, current[start:]))
    return runs


def encode_runs(runs: Sequence[DiffRun]) -> bytes:
    return b"".join(move_cursor(run.start, run.row) + encode_text(run.text) for run in runs)


def diff_line(previous: str, current: str, row: int = 0) -> bytes:
    return encode_runs(diff_runs(previous, current, row))


# -------------------------
# Sinks & screens
# -------------------------

class DeviceSink:
    """Best-effort writer to a character device; failures are logged, never raised."""

    def __init__(self, path: str) -> None:
        self.path = path

    def write(self, data: bytes) -> bool:
        try:
            with open(self.path, "wb", buffering=0) as dev:
                dev.write(data)
        except OSError as e:
            typer.secho(f"❌ write to {self.path} failed (errno {e.errno}): {e.strerror}", fg=typer.colors.RED, err=True)
            return False
        return True


class LcdScreen:
    def __init__(self, sink, width: int = 16) -> None:
        self.sink = sink
        self.previous = CharGrid(2, width)

    def setup(self) -> None:
        self.sink.write(setup_commands())

    def set_alert(self, state: AlertState) -> None:
        self.sink.write(background(ALERT_COLORS[state]))

    def update(self, line1: str, line2: str) -> List[bytes]:
        current = self.previous.copy()
        current.set_line(0, line1)
        current.set_line(1, line2)
        written = []
        for row in range(current.rows):
            instr = diff_line(self.previous.line(row), current.line(row), row)
            if instr:
                self.sink.write(instr)
                written.append(instr)
        self.previous = current
        return written


ALERT_STYLES: Dict[AlertState, str] = {
    AlertState.NORMAL: "bold green",
    AlertState.DEGRADED: "bold yellow",
    AlertState.DOWN: "bold white on red",
}


class ConsoleScreen:
    def __init__(self, console: Optional[Console] = None, width: int = 16) -> None:
        self.console = console or Console()
        self.width = width
        self.style = ALERT_STYLES[AlertState.NORMAL]

    def setup(self) -> None:
        self.console.clear()

    def set_alert(self, state: AlertState) -> None:
        self.style = ALERT_STYLES[state]

    def update(self, line1: str, line2: str) -> List[bytes]:
        self.console.print(Text(line1.ljust(self.width), style=self.style))
        self.console.print(Text(line2.ljust(self.width), style=self.style))
        self.console.print()
        return []


class BufferSink:
    """Sink that keeps every write in memory (offline rendering, tests)."""

    def __init__(self) -> None:
        self.writes: List[bytes] = []

    def write(self, data: bytes) -> bool:
        self.writes.append(data)
        return True
