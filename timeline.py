# timeline.py
"""
Reachability timeline and alert classification.

The timeline is either UP (uptime_start set) or DOWN (downtime_start set),
never both. Alert state is derived from it plus the latest latency and only
reported when it changes.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


class Transition(enum.Enum):
    WENT_DOWN = "went-down"
    STILL_DOWN = "still-down"
    CAME_UP = "came-up"
    STILL_UP = "still-up"


@dataclass
class Timeline:
    uptime_start: Optional[float] = None
    downtime_start: Optional[float] = None
    prev_down_duration: Optional[float] = None
    prev_uptime_mark: Optional[float] = None

    @classmethod
    def started(cls, now: float) -> "Timeline":
        return cls(uptime_start=now)

    @property
    def is_down(self) -> bool:
        return self.downtime_start is not None

    def observe(self, sample: float, now: float) -> Transition:
        """Apply one sample (negative = failed probe) taken at ``now``."""
        if sample < 0:
            if self.is_down:
                return Transition.STILL_DOWN
            self.downtime_start = now
            self.uptime_start = None
            return Transition.WENT_DOWN

        if self.is_down:
            self.prev_down_duration = now - self.downtime_start
            self.prev_uptime_mark = now
            self.downtime_start = None
            self.uptime_start = now
            return Transition.CAME_UP

        self.prev_uptime_mark = now
        return Transition.STILL_UP


# -------------------------
# Alert state machine
# -------------------------

class AlertState(enum.Enum):
    NORMAL = "normal"
    DEGRADED = "degraded"
    DOWN = "down"


class Signal(enum.Enum):
    LINK_DOWN = "link-down"
    AT_CEILING = "at-ceiling"
    IN_BAND = "in-band"
    CLEAR = "clear"


RECOVERY_RATIO = 0.75

TRANSITIONS: Dict[Tuple[AlertState, Signal], AlertState] = {
    (AlertState.NORMAL, Signal.LINK_DOWN): AlertState.DOWN,
    (AlertState.NORMAL, Signal.AT_CEILING): AlertState.DEGRADED,
    (AlertState.NORMAL, Signal.IN_BAND): AlertState.NORMAL,
    (AlertState.NORMAL, Signal.CLEAR): AlertState.NORMAL,
    (AlertState.DEGRADED, Signal.LINK_DOWN): AlertState.DOWN,
    (AlertState.DEGRADED, Signal.AT_CEILING): AlertState.DEGRADED,
    (AlertState.DEGRADED, Signal.IN_BAND): AlertState.DEGRADED,
    (AlertState.DEGRADED, Signal.CLEAR): AlertState.NORMAL,
    (AlertState.DOWN, Signal.LINK_DOWN): AlertState.DOWN,
    (AlertState.DOWN, Signal.AT_CEILING): AlertState.DEGRADED,
    (AlertState.DOWN, Signal.IN_BAND): AlertState.NORMAL,
    (AlertState.DOWN, Signal.CLEAR): AlertState.NORMAL,
}


def classify(is_down: bool, latency_ms: float, max_ping: float) -> Signal:
    if is_down:
        return Signal.LINK_DOWN
    if latency_ms >= max_ping:
        return Signal.AT_CEILING
    if latency_ms >= RECOVERY_RATIO * max_ping:
        return Signal.IN_BAND
    return Signal.CLEAR


class AlertTracker:
    def __init__(self, max_ping: float, initial: AlertState = AlertState.NORMAL) -> None:
        self.max_ping = max_ping
        self.state = initial

    def update(self, timeline: Timeline, latency_ms: float) -> Optional[AlertState]:
        """Advance the alert state; return it only when it changed."""
        signal = classify(timeline.is_down, latency_ms, self.max_ping)
        nxt = TRANSITIONS[(self.state, signal)]
        if nxt is self.state:
            return None
        self.state = nxt
        return nxt
