"""Tests for HealthMonitor."""
from __future__ import annotations

import asyncio

import pytest
from conftest import FakeProbe

from orchestration.dr.health import HealthMonitor
from orchestration.dr.models import PrimaryStatus
from orchestration.dr.probes import ProbeResult
from orchestration.dr.store import default_state


def _monitor(registry, store, probe, interval_s=10.0):
    state = default_state(registry)
    return state, HealthMonitor(state, registry, store, probe, interval_s=interval_s)


@pytest.mark.asyncio
async def test_healthy_check_updates_state_and_metrics(registry, store):
    probe = FakeProbe(ProbeResult(healthy=True, response_time_ms=37, load_delta=4))
    state, monitor = _monitor(registry, store, probe)
    before = state.node_metrics["primary"].requests_per_minute

    record = await monitor.check_health()

    assert record.status == PrimaryStatus.HEALTHY
    assert record.response_time_ms == 37
    assert state.primary_status == PrimaryStatus.HEALTHY
    assert state.last_health_check == record
    assert state.node_metrics["primary"].response_time_ms == 37
    assert state.node_metrics["primary"].requests_per_minute == before + 4
    assert probe.calls == ["primary"]


@pytest.mark.asyncio
async def test_failed_probe_marks_degraded_without_failover(registry, store):
    probe = FakeProbe(ProbeResult(healthy=False, response_time_ms=60, error="no answer"))
    state, monitor = _monitor(registry, store, probe)

    record = await monitor.check_health()

    assert record.status == PrimaryStatus.DEGRADED
    assert record.error == "no answer"
    assert state.primary_status == PrimaryStatus.DEGRADED
    assert state.active_node_id == "primary"
    assert state.failover_active is False
    assert state.failover_history == ()


@pytest.mark.asyncio
async def test_probe_exception_is_degraded_not_raised(registry, store):
    probe = FakeProbe(TimeoutError("probe timed out"), TimeoutError("again"))
    state, monitor = _monitor(registry, store, probe)

    first = await monitor.check_health()
    second = await monitor.check_health()

    assert first.status == PrimaryStatus.DEGRADED
    assert "probe timed out" in first.error
    assert second.consecutive_failures == 2
    assert state.primary_status == PrimaryStatus.DEGRADED


@pytest.mark.asyncio
async def test_success_resets_consecutive_failures(registry, store):
    probe = FakeProbe(ProbeResult(False, 50), ProbeResult(True, 20))
    _, monitor = _monitor(registry, store, probe)
    await monitor.check_health()
    record = await monitor.check_health()
    assert record.consecutive_failures == 0
    assert monitor.consecutive_failures == 0


@pytest.mark.asyncio
async def test_check_persists_state(registry, store):
    probe = FakeProbe(ProbeResult(False, 50))
    state, monitor = _monitor(registry, store, probe)
    await monitor.check_health()
    assert store.load_state(registry) == state


@pytest.mark.asyncio
async def test_run_loop_survives_probe_errors(registry, store):
    probe = FakeProbe(RuntimeError("boom"), RuntimeError("boom"))
    state, monitor = _monitor(registry, store, probe, interval_s=0.01)

    task = asyncio.create_task(monitor.run())
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(probe.calls) >= 3
    assert state.primary_status == PrimaryStatus.HEALTHY


@pytest.mark.asyncio
async def test_consecutive_failures_survive_restart(registry, store):
    probe = FakeProbe(ProbeResult(False, 50), ProbeResult(False, 50), ProbeResult(False, 50))
    _, monitor = _monitor(registry, store, probe)
    await monitor.check_health()
    await monitor.check_health()

    reloaded = store.load_state(registry)
    restarted = HealthMonitor(reloaded, registry, store, probe)
    assert restarted.consecutive_failures == 2

    record = await restarted.check_health()
    assert record.consecutive_failures == 3


@pytest.mark.asyncio
async def test_fractional_latency_is_stored_as_int(registry, store):
    probe = FakeProbe(ProbeResult(healthy=True, response_time_ms=37.8, load_delta=2))
    state, monitor = _monitor(registry, store, probe)

    record = await monitor.check_health()

    assert record.response_time_ms == 37
    assert isinstance(state.node_metrics["primary"].response_time_ms, int)
    assert store.load_state(registry) == state
