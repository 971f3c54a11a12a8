"""Tests for ReplicationScheduler."""
from __future__ import annotations

import asyncio

import pytest
from conftest import FakeTransport

from orchestration.dr.errors import AlreadyInProgressError
from orchestration.dr.models import TransferStatus
from orchestration.dr.probes import TransferResult
from orchestration.dr.replication import ReplicationScheduler
from orchestration.dr.store import default_state


def _scheduler(registry, store, transport, **kwargs):
    state = default_state(registry)
    return state, ReplicationScheduler(state, registry, store, transport, **kwargs)


@pytest.mark.asyncio
async def test_replication_success(registry, store):
    state, sched = _scheduler(registry, store, FakeTransport())

    record = await sched.replicate_now()

    assert record.nodes_total == 2
    assert record.nodes_succeeded == 2
    assert record.bytes_transferred == 2000
    assert [r.node_id for r in record.results] == ["sg-backup", "my-backup"]
    assert state.last_replication is record
    assert state.replication_history[0] is record
    assert record.id.startswith("repl_")


@pytest.mark.asyncio
async def test_backup_latency_updates_metrics(registry, store):
    state, sched = _scheduler(registry, store, FakeTransport())
    await sched.replicate_now()
    assert state.node_metrics["sg-backup"].response_time_ms == 50
    assert state.node_metrics["my-backup"].response_time_ms == 20


@pytest.mark.asyncio
async def test_partial_failure_does_not_abort_batch(registry, store):
    transport = FakeTransport(fail={"sg-backup"}, raise_for={"my-backup"})
    state, sched = _scheduler(registry, store, transport)

    record = await sched.replicate_now()

    assert record.nodes_total == 2
    assert record.nodes_succeeded == 0
    by_node = {r.node_id: r for r in record.results}
    assert by_node["sg-backup"].status == TransferStatus.FAILED
    assert by_node["sg-backup"].error == "checksum mismatch"
    assert by_node["my-backup"].status == TransferStatus.FAILED
    assert "unreachable" in by_node["my-backup"].error
    # failed transfers leave the node's latency metric alone
    assert state.node_metrics["sg-backup"].response_time_ms == 45
    assert state.last_replication is record


@pytest.mark.asyncio
async def test_payload_describes_current_state(registry, store):
    transport = FakeTransport()
    _, sched = _scheduler(registry, store, transport)
    record = await sched.replicate_now()
    node_id, payload = transport.calls[0]
    assert node_id == "sg-backup"
    assert payload["replication_id"] == record.id
    assert payload["active_node_id"] == "primary"


@pytest.mark.asyncio
async def test_history_capped_newest_first(registry, store):
    state, sched = _scheduler(registry, store, FakeTransport())
    ids = [(await sched.replicate_now()).id for _ in range(55)]
    assert len(state.replication_history) == 50
    assert state.replication_history[0].id == ids[-1]
    assert state.replication_history[-1].id == ids[5]


@pytest.mark.asyncio
async def test_concurrent_replication_rejected(registry, store):
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    state, sched = _scheduler(registry, store, transport)

    first = asyncio.create_task(sched.replicate_now())
    await transport.started.wait()
    assert sched.in_flight

    with pytest.raises(AlreadyInProgressError):
        await sched.replicate_now()

    transport.gate.set()
    record = await first

    assert state.replication_history == (record,)
    assert len({r.id for r in state.replication_history}) == 1
    assert not sched.in_flight
    # the guard releases after the run
    second = await sched.replicate_now()
    assert state.replication_history == (second, record)


@pytest.mark.asyncio
async def test_cancelled_run_writes_nothing(registry, store):
    transport = FakeTransport()
    transport.gate = asyncio.Event()
    state, sched = _scheduler(registry, store, transport)

    task = asyncio.create_task(sched.replicate_now())
    await transport.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert state.replication_history == ()
    assert state.last_replication is None
    assert store.get_raw("dr_state") is None
    assert not sched.in_flight


@pytest.mark.asyncio
async def test_run_loop_replicates_immediately(registry, store):
    transport = FakeTransport()
    state, sched = _scheduler(registry, store, transport, interval_s=3600)
    task = asyncio.create_task(sched.run())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(state.replication_history) == 1


@pytest.mark.asyncio
async def test_fractional_transfer_latency_is_stored_as_int(registry, store):
    class FloatTransport(FakeTransport):
        async def transfer(self, node, payload):
            return TransferResult(status=TransferStatus.SUCCESS, latency_ms=12.6, bytes_transferred=10)

    state, sched = _scheduler(registry, store, FloatTransport())
    record = await sched.replicate_now()

    assert [r.latency_ms for r in record.results] == [12, 12]
    assert state.node_metrics["sg-backup"].response_time_ms == 12
    assert store.load_state(registry) == state
