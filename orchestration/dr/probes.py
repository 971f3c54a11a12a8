"""Pluggable health probe, replication transport and snapshot engine.

The simulated implementations stand in for real infrastructure (random
failures, synthetic latency and payload sizes). Production deployments
inject real implementations; tests inject deterministic fakes.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import random
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from .models import Node, TransferStatus, utc_now


@dataclass(frozen=True)
class ProbeResult:
    healthy: bool
    response_time_ms: int
    load_delta: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    status: TransferStatus
    latency_ms: int
    bytes_transferred: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class SnapshotResult:
    unit_count: int
    total_items: int
    size_bytes: int
    checksum: str
    storage_path: str = ""


@dataclass(frozen=True)
class RestoreResult:
    backup_id: str
    unit_count: int
    total_items: int
    checksum: str
    document: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "unit_count": self.unit_count,
            "total_items": self.total_items,
            "checksum": self.checksum,
            "document": self.document,
        }


class HealthProbe(Protocol):
    async def probe(self, node: Node) -> ProbeResult: ...


class ReplicationTransport(Protocol):
    async def transfer(self, node: Node, payload: dict[str, Any]) -> TransferResult: ...


class SnapshotEngine(Protocol):
    async def snapshot(self, backup_id: str) -> SnapshotResult: ...

    async def restore(self, backup_id: str) -> RestoreResult: ...


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode()


class SimulatedHealthProbe:
    """~2% failures, 10-60 ms latency, small request-rate drift."""

    def __init__(self, failure_rate: float = 0.02, rng: random.Random | None = None) -> None:
        self._failure_rate = failure_rate
        self._rng = rng or random.Random()

    async def probe(self, node: Node) -> ProbeResult:
        response_time_ms = self._rng.randint(10, 60)
        await asyncio.sleep(response_time_ms / 1000)
        healthy = self._rng.random() >= self._failure_rate
        return ProbeResult(
            healthy=healthy,
            response_time_ms=response_time_ms,
            load_delta=self._rng.randint(0, 9),
            error=None if healthy else f"{node.id} did not answer",
        )


class SimulatedTransport:
    """Always succeeds; latency is the node's baseline plus jitter."""

    def __init__(self, jitter_ms: int = 20, rng: random.Random | None = None) -> None:
        self._jitter_ms = jitter_ms
        self._rng = rng or random.Random()

    async def transfer(self, node: Node, payload: dict[str, Any]) -> TransferResult:
        latency_ms = node.base_latency_ms + self._rng.randrange(max(self._jitter_ms, 1))
        await asyncio.sleep(latency_ms / 1000)
        return TransferResult(
            status=TransferStatus.SUCCESS,
            latency_ms=latency_ms,
            bytes_transferred=len(canonical_json(payload)),
        )


class SimulatedSnapshotEngine:
    """Synthesises snapshot documents and checksums their canonical JSON.

    Archives are kept in memory under ``<storage_dir>/<backup_id>.enc`` so a
    restore within the same process can verify the checksum.
    """

    def __init__(self, storage_dir: str = "cold-storage", rng: random.Random | None = None) -> None:
        self._storage_dir = storage_dir.rstrip("/")
        self._rng = rng or random.Random()
        self._archives: dict[str, dict[str, Any]] = {}

    def storage_path(self, backup_id: str) -> str:
        return f"{self._storage_dir}/{backup_id}.enc"

    async def snapshot(self, backup_id: str) -> SnapshotResult:
        unit_count = self._rng.randint(10, 29)
        total_items = self._rng.randint(10_000, 59_999)
        document = {
            "backup_id": backup_id,
            "taken_at": utc_now(),
            "unit_count": unit_count,
            "total_items": total_items,
            "state_root": self._rng.getrandbits(256).to_bytes(32, "big").hex(),
        }
        body = canonical_json(document)
        await asyncio.sleep(0)
        self._archives[backup_id] = document
        return SnapshotResult(
            unit_count=unit_count,
            total_items=total_items,
            # Simulated encrypted archive: ~10 KB per stored item.
            size_bytes=total_items * 10 * 1024,
            checksum=sha256_hex(body),
            storage_path=self.storage_path(backup_id),
        )

    async def restore(self, backup_id: str) -> RestoreResult:
        await asyncio.sleep(0)
        try:
            document = self._archives[backup_id]
        except KeyError:
            raise FileNotFoundError(self.storage_path(backup_id)) from None
        return RestoreResult(
            backup_id=backup_id,
            unit_count=document["unit_count"],
            total_items=document["total_items"],
            checksum=sha256_hex(canonical_json(document)),
            document=dict(document),
        )
