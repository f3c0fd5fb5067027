import asyncio

import pytest

from conftest import drain
from session.liveness import LivenessMonitor


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _monitor(clock, probes, dead, interval=10, timeout=20):
    return LivenessMonitor(interval, timeout, on_probe=probes.append, on_dead=dead.append, clock=clock)


@pytest.mark.parametrize("interval,timeout", [(10, 10), (10, 5), (0, 5)])
def test_timeout_must_exceed_interval(interval, timeout):
    with pytest.raises(ValueError):
        LivenessMonitor(interval, timeout, on_probe=print, on_dead=print)


def test_idle_connection_is_probed_then_declared_dead():
    clock, probes, dead = FakeClock(), [], []
    monitor = _monitor(clock, probes, dead)
    monitor.track("A")

    clock.now = 5
    assert monitor.sweep() == []
    assert probes == []

    clock.now = 10
    monitor.sweep()
    assert probes == ["A"]

    clock.now = 15
    monitor.sweep()
    assert probes == ["A"]

    clock.now = 20
    assert monitor.sweep() == ["A"]
    assert dead == ["A"]
    assert len(monitor) == 0

    clock.now = 40
    assert monitor.sweep() == []
    assert dead == ["A"]


def test_activity_keeps_connection_alive():
    clock, probes, dead = FakeClock(), [], []
    monitor = _monitor(clock, probes, dead)
    monitor.track("A")

    for t in (8, 16, 24, 32):
        clock.now = t
        monitor.touch("A")
        monitor.sweep()

    assert probes == []
    assert dead == []


def test_touch_after_probe_resets_state():
    clock, probes, dead = FakeClock(), [], []
    monitor = _monitor(clock, probes, dead)
    monitor.track("A")

    clock.now = 12
    monitor.sweep()
    monitor.touch("A")
    clock.now = 25
    monitor.sweep()

    assert probes == ["A", "A"]
    assert dead == []


def test_forget_and_untracked_touch():
    clock, probes, dead = FakeClock(), [], []
    monitor = _monitor(clock, probes, dead)
    monitor.track("A")
    monitor.forget("A")
    monitor.touch("B")

    clock.now = 100
    assert monitor.sweep() == []
    assert len(monitor) == 0


def test_failing_cleanup_does_not_stop_sweep():
    clock, probes = FakeClock(), []
    seen = []

    def on_dead(connection_id):
        seen.append(connection_id)
        raise RuntimeError("cleanup failed")

    monitor = LivenessMonitor(1, 2, on_probe=probes.append, on_dead=on_dead, clock=clock)
    monitor.track("A")
    monitor.track("B")
    clock.now = 5

    assert sorted(monitor.sweep()) == ["A", "B"]
    assert sorted(seen) == ["A", "B"]


def test_timeout_runs_the_disconnect_path(manager, connect):
    clock = FakeClock()
    a, b = connect("A"), connect("B")
    manager.request_join("A", "r1", "alice")
    manager.request_join("B", "r1", "bob")
    drain(a), drain(b)

    monitor = LivenessMonitor(
        10, 20,
        on_probe=lambda cid: manager.router.send_to(cid, "ping", {}),
        on_dead=lambda cid: manager.disconnect(cid, reason="ping timeout"),
        clock=clock,
    )
    monitor.track("A")
    monitor.track("B")

    clock.now = 10
    monitor.touch("B")
    monitor.sweep()
    assert [f["event"] for f in drain(a)] == ["ping"]

    clock.now = 21
    monitor.touch("B")
    monitor.sweep()

    assert drain(b) == [{"event": "member-removed", "connectionId": "A", "username": "alice"}]
    assert manager.directory.member_ids("r1") == ["B"]
    assert "A" not in manager.connections


def test_run_loop_sweeps_until_stopped():
    async def scenario():
        dead = []
        monitor = LivenessMonitor(0.01, 0.02, on_probe=lambda cid: None, on_dead=dead.append)
        monitor.track("A")
        monitor.start()
        for _ in range(100):
            if dead:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()
        return dead

    assert asyncio.run(scenario()) == ["A"]
