# monitor.py
"""
Pingmatrix monitor: probes one target at a fixed interval and keeps a two-line
character display (uptime/downtime + latency bar graph) up to date.

- One probe cycle at a time; ticks that fire while a probe is pending are dropped
- Optional local-network probe gates each cycle
- Serial LCD output (diffed, protocol-encoded) or console fallback

CLI:
  python monitor.py run    --config ./pingmatrix.yaml
  python monitor.py check  --config ./pingmatrix.yaml
  python monitor.py render 50,50,-1,-1,60 --interval-ms 5000
"""
from __future__ import annotations

import asyncio
import dataclasses
import signal
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import typer

from display import HistoryBuffer, Renderer, quantize
from lcd import BufferSink, ConsoleScreen, DeviceSink, LcdScreen, to_escaped
from probe import Config, PingResult, ProbeError, load_config, ping_available, run_ping
from timeline import AlertState, AlertTracker, Timeline, Transition

app = typer.Typer(add_completion=False, help="Network latency monitor for 16x2 character displays")

Probe = Callable[[str, int, float], Awaitable[PingResult]]


@dataclass(frozen=True)
class Frame:
    line1: str
    line2: str
    level: int
    latency_ms: float
    transition: Transition
    alert: Optional[AlertState] = None


# -------------------------
# Monitor
# -------------------------

class Monitor:
    def __init__(
        self,
        cfg: Config,
        screen,
        probe: Probe = run_ping,
        clock: Callable[[], float] = time.monotonic,
        quiet: bool = False,
    ) -> None:
        self.cfg = cfg
        self.screen = screen
        self.probe = probe
        self.clock = clock
        self.quiet = quiet
        self.timeline = Timeline.started(clock())
        self.history = HistoryBuffer(cfg.history_length)
        self.alerts = AlertTracker(cfg.max_ping)
        self.renderer = Renderer(cfg.display_width)
        self._in_flight = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # state update ------------------------------------------------------

    def interpret(self, result: PingResult, now: float) -> Frame:
        sample = result.to_sample()
        latency = float(self.cfg.max_ping) if sample < 0 else sample
        transition = self.timeline.observe(sample, now)
        level = quantize(latency, self.cfg.max_ping)
        self.history.push(level)
        alert = self.alerts.update(self.timeline, latency)
        lines = self.renderer.render(self.timeline, self.history, latency, now)
        return Frame(lines.status, lines.graph, level, latency, transition, alert)

    def present(self, frame: Frame) -> None:
        if frame.alert is not None:
            self.screen.set_alert(frame.alert)
        self.screen.update(frame.line1, frame.line2)

    # cycle -------------------------------------------------------------

    async def cycle(self) -> Optional[Frame]:
        cfg = self.cfg
        try:
            if cfg.check_local_network:
                local = await self.probe(cfg.check_local_network, cfg.ping_timeout_secs, cfg.max_ping)
                if not local.ok:
                    typer.secho(
                        f"⚠️  local network {cfg.check_local_network} unreachable ({local.detail}), skipping cycle",
                        fg=typer.colors.YELLOW, err=True,
                    )
                    return None
                if self._stopped:
                    return None
            result = await self.probe(cfg.check_domain, cfg.ping_timeout_secs, cfg.max_ping)
            if self._stopped:
                return None
            frame = self.interpret(result, self.clock())
            self._report(result, frame)
            self.present(frame)
            return frame
        except Exception as e:
            typer.secho(f"❌ cycle failed: {e!r}", fg=typer.colors.RED, err=True)
            return None
        finally:
            self._in_flight = False

    def tick(self) -> Optional[asyncio.Task]:
        if self._in_flight:
            if not self.quiet:
                typer.secho("⏳ previous probe still running, tick dropped", fg=typer.colors.BLUE, err=True)
            return None
        self._in_flight = True
        self._task = asyncio.create_task(self.cycle())
        return self._task

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        self._stopped = False
        self._stop_event = stop_event or asyncio.Event()
        self.screen.setup()
        typer.secho(
            f"🚀 Monitoring {self.cfg.check_domain} every {self.cfg.interval_secs:g}s", fg=typer.colors.CYAN, bold=True, err=True
        )
        try:
            while not self._stop_event.is_set():
                self.tick()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.cfg.interval_secs)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._stopped = True
            # a pending probe finishes on its own; its result is dropped
            if self._task is not None and not self._task.done():
                await self._task

    def stop(self) -> None:
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()

    def _report(self, result: PingResult, frame: Frame) -> None:
        domain = self.cfg.check_domain
        if frame.transition is Transition.WENT_DOWN:
            typer.secho(f"🔻 {domain} down: {result.detail or result.error}", fg=typer.colors.RED, bold=True, err=True)
        elif frame.transition is Transition.CAME_UP:
            typer.secho(f"🔺 {domain} back up", fg=typer.colors.GREEN, bold=True, err=True)
        if frame.alert is not None:
            typer.secho(f"🚦 alert state -> {frame.alert.value}", fg=typer.colors.MAGENTA, err=True)
        if self.quiet:
            return
        if result.ok:
            typer.secho(f"📡 ping {domain}: {frame.latency_ms:.0f}ms (level {frame.level})", fg=typer.colors.GREEN, err=True)
        else:
            typer.secho(f"❌ ping {domain}: failed ({result.error.value})", fg=typer.colors.RED, err=True)


def build_screen(cfg: Config):
    if cfg.device:
        return LcdScreen(DeviceSink(cfg.device), cfg.display_width)
    return ConsoleScreen(width=cfg.display_width)


def parse_samples(raw: str) -> List[PingResult]:
    results = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        value = float(part)
        if value < 0:
            results.append(PingResult.failure(ProbeError.NO_REPLY, "replayed failure"))
        else:
            results.append(PingResult.success(value))
    return results


def _config_or_exit(config: Optional[str], **overrides) -> Config:
    try:
        cfg = load_config(config)
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(cfg, **overrides) if overrides else cfg
    except (OSError, ValueError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


# -------------------------
# CLI commands
# -------------------------

@app.command()
def run(config: Optional[str] = typer.Option(None, help="Path to pingmatrix YAML config"),
        device: Optional[str] = typer.Option(None, help="Serial LCD device path (console output when omitted)"),
        check_domain: Optional[str] = typer.Option(None, help="Host to ping"),
        interval_ms: Optional[int] = typer.Option(None, help="Probe interval in ms (minimum 1000)"),
        quiet: bool = typer.Option(False, help="Only log state changes")):
    """Run the monitor until interrupted."""
    cfg = _config_or_exit(config, device=device, check_domain=check_domain, interval_ms=interval_ms)
    if not ping_available():
        typer.secho("Warning: ping binary not found, every probe will fail", fg=typer.colors.YELLOW, err=True)
    monitor = Monitor(cfg, build_screen(cfg), quiet=quiet)

    async def _main() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, monitor.stop)
            except NotImplementedError:
                pass
        await monitor.run()

    asyncio.run(_main())


@app.command()
def check(config: Optional[str] = typer.Option(None, help="Path to pingmatrix YAML config")):
    """Check for the ping binary and print a config summary."""
    cfg = _config_or_exit(config)
    typer.echo(f"ping present: {'yes' if ping_available() else 'NO'}")
    typer.echo(f"Target: {cfg.check_domain} | local gate: {cfg.check_local_network or '-'} | interval: {cfg.interval_secs:g}s")
    typer.echo(f"Output: {cfg.device or 'console'} | width: {cfg.display_width} | history: {cfg.history_length} | max ping: {cfg.max_ping}ms")


@app.command()
def render(samples: str = typer.Argument(..., help="Comma-separated latencies in ms, negative for a failed probe"),
           config: Optional[str] = typer.Option(None, help="Path to pingmatrix YAML config"),
           interval_ms: Optional[int] = typer.Option(None, help="Simulated time between samples")):
    """Replay samples offline and print each frame with its device bytes."""
    cfg = _config_or_exit(config, interval_ms=interval_ms)
    try:
        results = parse_samples(samples)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="samples")

    now = [0.0]
    sink = BufferSink()
    screen = LcdScreen(sink, cfg.display_width)
    monitor = Monitor(cfg, screen, clock=lambda: now[0], quiet=True)
    screen.setup()
    typer.echo(f"setup: {to_escaped(sink.writes.pop())}")
    for result in results:
        now[0] += cfg.interval_secs
        frame = monitor.interpret(result, now[0])
        monitor.present(frame)
        typer.secho(f"|{frame.line1}|", bold=True)
        typer.secho(f"|{frame.line2}|", bold=True)
        if frame.alert is not None:
            typer.secho(f"  alert -> {frame.alert.value}", fg=typer.colors.MAGENTA)
        for data in sink.writes:
            typer.echo(f"  {to_escaped(data)}")
        sink.writes.clear()


if __name__ == "__main__":
    app()
