"""Replication scheduler: copies authoritative state to every backup node."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from .errors import AlreadyInProgressError
from .models import (
    REPLICATION_HISTORY_LIMIT,
    DRState,
    Node,
    NodeReplicationResult,
    ReplicationRecord,
    TransferStatus,
    new_id,
    prepend,
    utc_now,
)
from .probes import ReplicationTransport
from .registry import NodeRegistry
from .store import StateStore

logger = logging.getLogger("dr.replication")


class ReplicationScheduler:
    """Runs one replication batch at a time.

    A call to ``replicate_now`` while a batch is in flight is rejected with
    AlreadyInProgressError; the running batch is unaffected.
    """

    def __init__(
        self,
        state: DRState,
        registry: NodeRegistry,
        store: StateStore,
        transport: ReplicationTransport,
        interval_s: float = 300.0,
        history_limit: int = REPLICATION_HISTORY_LIMIT,
    ) -> None:
        self._state = state
        self._registry = registry
        self._store = store
        self._transport = transport
        self._interval_s = interval_s
        self._limit = history_limit
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _payload(self, replication_id: str, timestamp: str) -> dict[str, Any]:
        state = self._state
        return {
            "replication_id": replication_id,
            "timestamp": timestamp,
            "active_node_id": state.active_node_id,
            "primary_status": state.primary_status.value,
            "failover_records": len(state.failover_history),
            "replication_records": len(state.replication_history),
            "last_cold_backup_checksum": state.last_cold_backup.checksum if state.last_cold_backup else None,
        }

    async def _transfer(self, node: Node, payload: dict[str, Any]) -> NodeReplicationResult:
        t0 = time.monotonic()
        try:
            res = await self._transport.transfer(node, payload)
        except Exception as exc:
            logger.warning("Replication to %s failed: %s", node.id, exc)
            return NodeReplicationResult(
                node_id=node.id,
                region=node.region,
                status=TransferStatus.FAILED,
                latency_ms=int((time.monotonic() - t0) * 1000),
                error=f"{type(exc).__name__}: {exc}",
            )
        if res.status != TransferStatus.SUCCESS:
            logger.warning("Replication to %s reported %s: %s", node.id, res.status.value, res.error)
        return NodeReplicationResult(
            node_id=node.id,
            region=node.region,
            status=res.status,
            latency_ms=int(res.latency_ms),
            bytes_transferred=int(res.bytes_transferred),
            error=res.error,
        )

    async def replicate_now(self) -> ReplicationRecord:
        if self._in_flight:
            raise AlreadyInProgressError("replication already in progress")
        self._in_flight = True
        try:
            replication_id = new_id("repl")
            timestamp = utc_now()
            backups = self._registry.backups()
            payload = self._payload(replication_id, timestamp)
            logger.info("Starting replication %s to %d nodes", replication_id, len(backups))

            t0 = time.monotonic()
            results = [await self._transfer(node, payload) for node in backups]
            duration_ms = int((time.monotonic() - t0) * 1000)

            succeeded = [r for r in results if r.status == TransferStatus.SUCCESS]
            record = ReplicationRecord(
                id=replication_id,
                timestamp=timestamp,
                duration_ms=duration_ms,
                nodes_total=len(backups),
                nodes_succeeded=len(succeeded),
                bytes_transferred=sum(r.bytes_transferred for r in results),
                results=tuple(results),
            )

            state = self._state
            for r in succeeded:
                state.node_metrics = state.with_metrics(r.node_id, response_time_ms=r.latency_ms)
            state.replication_history = prepend(state.replication_history, record, self._limit)
            state.last_replication = record
            self._store.save_state(state)
        finally:
            self._in_flight = False

        logger.info(
            "Replication %s completed: %d/%d nodes synced in %dms",
            record.id, record.nodes_succeeded, record.nodes_total, record.duration_ms,
        )
        return record

    async def run(self) -> None:
        """Replicate immediately, then every interval until cancelled."""
        logger.info("Cross-region replication started with interval %.0fs", self._interval_s)
        while True:
            try:
                await self.replicate_now()
            except AlreadyInProgressError:
                logger.info("Scheduled replication skipped: a run is already in flight")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Replication cycle failed")
            await asyncio.sleep(self._interval_s)
