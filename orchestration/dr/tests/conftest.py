"""Shared fixtures for DR tests. The fakes are deterministic and never touch the network."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from orchestration.dr.config import DRConfig, NodeConfig
from orchestration.dr.models import Node, TransferStatus
from orchestration.dr.orchestrator import DisasterRecoveryOrchestrator
from orchestration.dr.probes import ProbeResult, RestoreResult, SnapshotResult, TransferResult
from orchestration.dr.registry import NodeRegistry
from orchestration.dr.store import StateStore


class FakeProbe:
    """Returns queued results (healthy by default); exceptions in the queue are raised."""

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: list[str] = []

    async def probe(self, node: Node) -> ProbeResult:
        self.calls.append(node.id)
        if self.results:
            r = self.results.pop(0)
            if isinstance(r, BaseException):
                raise r
            return r
        return ProbeResult(healthy=True, response_time_ms=20, load_delta=3)


class FakeTransport:
    """Succeeds unless the node id is in ``fail``; can be held open with ``gate``."""

    def __init__(self, fail: set[str] | None = None, raise_for: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.raise_for = raise_for or set()
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def transfer(self, node: Node, payload: dict[str, Any]) -> TransferResult:
        self.calls.append((node.id, payload))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if node.id in self.raise_for:
            raise ConnectionError(f"{node.id} unreachable")
        if node.id in self.fail:
            return TransferResult(status=TransferStatus.FAILED, latency_ms=500, error="checksum mismatch")
        return TransferResult(status=TransferStatus.SUCCESS, latency_ms=node.base_latency_ms + 5, bytes_transferred=1000)


class FakeEngine:
    """Fixed-size snapshots stored under ``vault/<id>.enc``; ``tamper`` corrupts restores."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0
        self.tamper = False
        self.archives: set[str] = set()

    async def snapshot(self, backup_id: str) -> SnapshotResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.archives.add(backup_id)
        return SnapshotResult(
            unit_count=12, total_items=60_000, size_bytes=600 * 1024 * 1024,
            checksum="ab" * 32, storage_path=f"vault/{backup_id}.enc",
        )

    async def restore(self, backup_id: str) -> RestoreResult:
        if backup_id not in self.archives:
            raise FileNotFoundError(f"vault/{backup_id}.enc")
        return RestoreResult(
            backup_id=backup_id, unit_count=12, total_items=60_000,
            checksum="cd" * 32 if self.tamper else "ab" * 32,
        )


def make_config(tmp_path: Path, **overrides: Any) -> DRConfig:
    values: dict[str, Any] = dict(
        primary=NodeConfig(id="primary", url="https://primary.example", region="Sarawak", base_latency_ms=23),
        backups=(
            NodeConfig(id="sg-backup", url="https://sg.example", region="Singapore", base_latency_ms=45),
            NodeConfig(id="my-backup", url="https://my.example", region="Malaysia (KL)", base_latency_ms=15),
        ),
        state_db_path=str(tmp_path / "dr.db"),
        log_dir=str(tmp_path / "logs"),
    )
    values.update(overrides)
    return DRConfig(**values)


@pytest.fixture
def config(tmp_path: Path) -> DRConfig:
    return make_config(tmp_path)


@pytest.fixture
def registry(config: DRConfig) -> NodeRegistry:
    return NodeRegistry.from_config(config)


@pytest.fixture
def store(config: DRConfig):
    s = StateStore(config.state_db_path)
    yield s
    s.close()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def orch(config, store, probe, transport, engine):
    o = DisasterRecoveryOrchestrator(config, probe=probe, transport=transport, engine=engine, store=store)
    yield o
