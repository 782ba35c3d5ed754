# display.py
"""
Text side of the two-line status display.

- Logarithmic quantization of latency samples into bar levels
- Compact duration tokens ("1h01m01s") under an 8-character budget
- Fixed-width line composition (right-anchored and split overlays)
- Bounded history of bar levels for the scrolling graph
- Renderer turning timeline + history into the two display lines
"""
from __future__ import annotations

import enum
import math
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from timeline import Timeline

LEVELS = 8
BLOCKS: Sequence[str] = "_▁▂▃▄▅▆▇█"
TIME_BUDGET = 8
LOG_BASE_SPREAD = 99.0


# -------------------------
# Quantization
# -------------------------

def quantize(latency_ms: float, max_ping: float, levels: int = LEVELS) -> int:
    clamped = min(max(latency_ms, 0.0), max_ping)
    speed = 1.0 - clamped / max_ping
    # log compression: the first few ms cover most of the levels
    transformed = levels * math.log1p(LOG_BASE_SPREAD * (1.0 - speed)) / math.log1p(LOG_BASE_SPREAD)
    return abs(int(math.floor(transformed + 0.5)) - levels)


# -------------------------
# Time formatting
# -------------------------

def format_time(total_seconds: float) -> str:
    if total_seconds < 0:
        raise ValueError(f"duration must be non-negative, got {total_seconds}")
    seconds = int(total_seconds)
    units = (
        ("d", seconds // 86400),
        ("h", seconds // 3600 % 24),
        ("m", seconds // 60 % 60),
        ("s", seconds % 60),
    )
    out = ""
    for unit, value in units:
        if not value and unit != "s":
            continue
        token = f"{value:02d}{unit}" if out else f"{value}{unit}"
        if len(out) + len(token) <= TIME_BUDGET:
            out += token
    return out


# -------------------------
# Alignment
# -------------------------

class Align(enum.Enum):
    RIGHT = "right"
    MIDDLE = "middle"


def text_align(direction: Align, base: str, overlay: str, width: int = 16) -> str:
    half = width // 2
    overlay = overlay[: half - 1]
    if direction is Align.RIGHT:
        result = base[: width - len(overlay)] + overlay
    else:
        result = overlay + " " + base[half:width]
    return result.rjust(width)


# -------------------------
# History
# -------------------------

class HistoryBuffer:
    """Fixed-length FIFO of bar levels, oldest first."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._levels = deque([0] * capacity, maxlen=capacity)

    def push(self, level: int) -> None:
        self._levels.append(level)

    def snapshot(self) -> Tuple[int, ...]:
        return tuple(self._levels)

    def __len__(self) -> int:
        return len(self._levels)


def symbols(levels: Iterable[int], blocks: Sequence[str] = BLOCKS) -> str:
    return "".join(blocks[lvl] for lvl in levels)


# -------------------------
# Renderer
# -------------------------

@dataclass(frozen=True)
class Lines:
    status: str
    graph: str


class Renderer:
    def __init__(self, width: int = 16) -> None:
        self.width = width
        self.down_template = "Downtime:".ljust(width)
        half = width // 2
        self.up_template = " " * half + "|" + " " * (width - half - 1)

    def render(self, timeline: Timeline, history: HistoryBuffer, last_latency: float, now: float) -> Lines:
        graph = symbols(history.snapshot())
        if timeline.is_down:
            down = format_time(now - timeline.downtime_start)
            status = text_align(Align.RIGHT, self.down_template, down, self.width)
            return Lines(status, f"[{graph}]")

        up = format_time(now - timeline.uptime_start)
        status = text_align(Align.RIGHT, self.up_template, up, self.width)
        status = text_align(Align.MIDDLE, status, f"{int(last_latency)}ms", self.width)
        prefix = self._previous_down(timeline.prev_down_duration)
        if prefix:
            return Lines(status, f"{prefix}[{graph[len(prefix):]}]")
        return Lines(status, f"[{graph}]")

    @staticmethod
    def _previous_down(duration: Optional[float]) -> str:
        if duration is None:
            return ""
        return format_time(duration)
