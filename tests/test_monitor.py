import asyncio

from typer.testing import CliRunner

from display import quantize
from lcd import BufferSink, LcdScreen
from monitor import Monitor, app, parse_samples
from probe import Config, PingResult, ProbeError
from timeline import AlertState, Transition


class RecordingScreen:
    def __init__(self):
        self.setups = 0
        self.frames = []
        self.alerts = []

    def setup(self):
        self.setups += 1

    def set_alert(self, state):
        self.alerts.append(state)

    def update(self, line1, line2):
        self.frames.append((line1, line2))
        return []


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _replay(samples, step=5.0):
    clock = Clock()
    screen = RecordingScreen()
    monitor = Monitor(Config(), screen, clock=clock, quiet=True)
    frames = []
    for result in parse_samples(samples):
        clock.now += step
        frame = monitor.interpret(result, clock.now)
        monitor.present(frame)
        frames.append(frame)
    return monitor, screen, frames


def test_end_to_end_outage_and_recovery():
    monitor, screen, frames = _replay("50,50,-1,-1,60")

    assert screen.alerts == [AlertState.DOWN, AlertState.NORMAL]
    assert [f.transition for f in frames] == [
        Transition.STILL_UP, Transition.STILL_UP, Transition.WENT_DOWN, Transition.STILL_DOWN, Transition.CAME_UP,
    ]
    expected = [quantize(ms, 1000) for ms in (50, 50, 1000, 1000, 60)]
    assert monitor.history.snapshot()[-5:] == tuple(expected)

    assert frames[0].line1 == "   50ms |     5s"
    assert frames[2].line1 == "Downtime:     0s"
    assert frames[3].line1 == "Downtime:     5s"
    assert frames[4].line1 == "   60ms |     0s"
    assert "60ms" in screen.frames[-1][0]
    assert monitor.timeline.prev_down_duration == 10.0
    assert frames[4].line2 == "10s[______▅▅__▅]"
    assert len(frames[4].line2) == 16


def test_failure_is_drawn_as_ceiling_latency():
    monitor, _, frames = _replay("-1")
    assert frames[0].latency_ms == 1000.0
    assert frames[0].level == 0
    assert frames[0].line2 == "[______________]"


def _blocking_probe(gate, calls, local_ok=True, local="192.168.1.1"):
    async def probe(host, timeout, fallback):
        calls.append(host)
        if host == local:
            return PingResult.success(1.0) if local_ok else PingResult.failure(ProbeError.TIMEOUT, "local timeout")
        await gate.wait()
        return PingResult.success(20.0)
    return probe


def test_tick_is_dropped_while_probe_in_flight():
    async def scenario():
        gate = asyncio.Event()
        calls = []
        screen = RecordingScreen()
        monitor = Monitor(Config(), screen, probe=_blocking_probe(gate, calls), quiet=True)
        first = monitor.tick()
        await asyncio.sleep(0)
        assert monitor.tick() is None
        gate.set()
        frame = await first
        assert monitor.tick() is not None
        await monitor._task
        return frame, calls, screen

    frame, calls, screen = asyncio.run(scenario())
    assert frame.latency_ms == 20.0
    assert calls == ["1.1.1.1", "1.1.1.1"]
    assert len(screen.frames) == 2


def test_local_network_failure_skips_cycle():
    async def scenario():
        gate = asyncio.Event()
        gate.set()
        calls = []
        screen = RecordingScreen()
        cfg = Config(check_local_network="192.168.1.1")
        monitor = Monitor(cfg, screen, probe=_blocking_probe(gate, calls, local_ok=False), quiet=True)
        before = (monitor.timeline.uptime_start, monitor.history.snapshot())
        result = await monitor.cycle()
        return result, calls, screen, monitor, before

    result, calls, screen, monitor, before = asyncio.run(scenario())
    assert result is None
    assert calls == ["192.168.1.1"]
    assert screen.frames == []
    assert (monitor.timeline.uptime_start, monitor.history.snapshot()) == before


def test_stopped_monitor_discards_in_flight_result():
    async def scenario():
        gate = asyncio.Event()
        screen = RecordingScreen()
        monitor = Monitor(Config(), screen, probe=_blocking_probe(gate, []), quiet=True)
        task = monitor.tick()
        await asyncio.sleep(0)
        monitor.stop()
        gate.set()
        return await task, screen, monitor

    frame, screen, monitor = asyncio.run(scenario())
    assert frame is None
    assert screen.frames == []
    assert monitor.history.snapshot() == (0,) * 14


def test_run_sets_up_screen_and_stops():
    async def scenario():
        stop = asyncio.Event()
        sink = BufferSink()

        async def probe(host, timeout, fallback):
            stop.set()
            return PingResult.success(30.0)

        monitor = Monitor(Config(interval_ms=1000), LcdScreen(sink), probe=probe, quiet=True)
        await asyncio.wait_for(monitor.run(stop), timeout=5)
        return sink

    sink = asyncio.run(scenario())
    assert sink.writes[0].startswith(b"\xfe\x58")


def test_render_command():
    result = CliRunner().invoke(app, ["render", "50,-1,60", "--interval-ms", "5000"])
    assert result.exit_code == 0
    assert "Downtime:" in result.output
    assert "60ms" in result.output
    assert "\\xFE\\x58" in result.output
    assert "alert -> down" in result.output


def test_check_command(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("check_domain: example.org\n")
    result = CliRunner().invoke(app, ["check", "--config", str(path)])
    assert result.exit_code == 0
    assert "Target: example.org" in result.output


def test_invalid_config_exits():
    result = CliRunner().invoke(app, ["check", "--config", "/nonexistent/pingmatrix.yaml"])
    assert result.exit_code == 1


def test_stop_during_local_check_skips_remote_ping():
    async def scenario():
        gate = asyncio.Event()
        calls = []

        async def probe(host, timeout, fallback):
            calls.append(host)
            await gate.wait()
            return PingResult.success(1.0)

        screen = RecordingScreen()
        monitor = Monitor(Config(check_local_network="192.168.1.1"), screen, probe=probe, quiet=True)
        task = monitor.tick()
        await asyncio.sleep(0)
        monitor.stop()
        gate.set()
        return await task, calls, screen

    frame, calls, screen = asyncio.run(scenario())
    assert frame is None
    assert calls == ["192.168.1.1"]
    assert screen.frames == []


def test_run_again_after_stop_still_draws_frames():
    async def scenario():
        screen = RecordingScreen()
        monitor = Monitor(Config(interval_ms=1000), screen, quiet=True)

        for _ in range(2):
            stop = asyncio.Event()

            async def probe(host, timeout, fallback, stop=stop):
                stop.set()
                return PingResult.success(30.0)

            monitor.probe = probe
            monitor.stop()
            await asyncio.wait_for(monitor.run(stop), timeout=5)
        return screen

    screen = asyncio.run(scenario())
    assert screen.setups == 2
    assert len(screen.frames) == 2
