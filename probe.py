# probe.py
"""
Pingmatrix probe side: configuration and the ping executor.

Features:
- Loads YAML config into a frozen, validated Config
- Runs one ICMP ping via the system `ping` binary (asyncio subprocess)
- Parses the round-trip time and returns a tagged PingResult
- Bounded timeout: a hung ping is killed and reported as a failure

Requirements (see pyproject.toml):
  PyYAML

Stdlib otherwise (asyncio, contextlib, enum, re, shutil)
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import re
import shutil
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

# -------------------------
# Config model
# -------------------------

MIN_INTERVAL_MS = 1000


@dataclass(frozen=True)
class Config:
    device: Optional[str] = None
    check_domain: str = "1.1.1.1"
    check_local_network: Optional[str] = None
    interval_ms: int = 5000
    max_ping: int = 1000
    history_length: Optional[int] = None
    display_width: int = 16
    ping_timeout_secs: int = 10

    def __post_init__(self) -> None:
        if not self.check_domain:
            raise ValueError("check_domain must not be empty")
        if self.interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {self.interval_ms}")
        if self.max_ping <= 0:
            raise ValueError(f"max_ping must be positive, got {self.max_ping}")
        if self.display_width < 8:
            raise ValueError(f"display_width must be at least 8, got {self.display_width}")
        if self.ping_timeout_secs <= 0:
            raise ValueError(f"ping_timeout_secs must be positive, got {self.ping_timeout_secs}")
        if self.history_length is None:
            # the bracketed graph fills the second line exactly
            object.__setattr__(self, "history_length", self.display_width - 2)
        if not 1 <= self.history_length <= self.display_width - 2:
            raise ValueError(
                f"history_length must be between 1 and {self.display_width - 2}, got {self.history_length}"
            )

    @property
    def interval_secs(self) -> float:
        return max(self.interval_ms, MIN_INTERVAL_MS) / 1000.0


CONFIG_KEYS = (
    "device",
    "check_domain",
    "check_local_network",
    "interval_ms",
    "max_ping",
    "history_length",
    "display_width",
    "ping_timeout_secs",
)
INT_KEYS = ("interval_ms", "max_ping", "history_length", "display_width", "ping_timeout_secs")


def config_from_dict(raw: Dict[str, Any]) -> Config:
    unknown = set(raw) - set(CONFIG_KEYS)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
    values: Dict[str, Any] = {}
    for k in CONFIG_KEYS:
        v = raw.get(k)
        if v is None:
            continue
        values[k] = int(v) if k in INT_KEYS else str(v)
    return Config(**values)


def load_config(path: Optional[str]) -> Config:
    if not path:
        return Config()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return config_from_dict(raw)


# -------------------------
# Ping subprocess wrapper
# -------------------------

PING_RTT_RE = re.compile(r"time=(?P<value>[0-9]+(?:\.[0-9]+)?)\s*(?P<unit>ms|s)\b")

FAILURE = -1.0  # sample sentinel for a failed probe


class ProbeError(enum.Enum):
    TIMEOUT = "timeout"
    EXIT_CODE = "exit-code"
    NO_REPLY = "no-reply"
    NO_BINARY = "no-binary"


@dataclass(frozen=True)
class PingResult:
    ok: bool
    latency_ms: Optional[float] = None
    error: Optional[ProbeError] = None
    detail: str = ""

    @classmethod
    def success(cls, latency_ms: float) -> "PingResult":
        return cls(True, latency_ms)

    @classmethod
    def failure(cls, error: ProbeError, detail: str = "") -> "PingResult":
        return cls(False, None, error, detail)

    def to_sample(self) -> float:
        """Collapse to the sample value the timeline consumes (negative on failure)."""
        if not self.ok or self.latency_ms is None:
            return FAILURE
        return self.latency_ms


def parse_ping_output(text: str, fallback_ms: float) -> Optional[float]:
    """Return the reply latency in ms, ``fallback_ms`` when a reply line does not
    parse, or None when the output has no reply at all."""
    if "time=" not in text:
        return None
    m = PING_RTT_RE.search(text)
    if not m:
        return float(fallback_ms)
    value = float(m.group("value"))
    if m.group("unit") == "s":
        value *= 1000
    return float(int(value))


def ping_command(host: str, timeout: int) -> list:
    return ["ping", "-n", "-c", "1", "-w", str(timeout), host]


async def run_ping(host: str, timeout: int, fallback_ms: float) -> PingResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            *ping_command(host, timeout), stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError:
        return PingResult.failure(ProbeError.NO_BINARY, "ping not found")
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout + 1)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        return PingResult.failure(ProbeError.TIMEOUT, f"no answer within {timeout + 1}s")
    if proc.returncode != 0:
        return PingResult.failure(ProbeError.EXIT_CODE, f"exit code {proc.returncode}")
    latency = parse_ping_output(stdout.decode(errors="ignore"), fallback_ms)
    if latency is None:
        return PingResult.failure(ProbeError.NO_REPLY, "no reply line")
    return PingResult.success(latency)


def ping_available() -> bool:
    return shutil.which("ping") is not None
