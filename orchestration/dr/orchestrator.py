"""DR orchestrator: owns the DR state and wires the components together."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from .alerts import AlertDispatcher, Subscriber, WebhookNotifier
from .cold_backup import ColdBackupScheduler
from .config import DRConfig
from .controller import FailoverController
from .health import HealthMonitor
from .models import ColdBackupRecord, FailoverRecord, HealthCheckRecord, ReplicationRecord
from .probes import (
    HealthProbe,
    ReplicationTransport,
    RestoreResult,
    SimulatedHealthProbe,
    SimulatedSnapshotEngine,
    SimulatedTransport,
    SnapshotEngine,
)
from .registry import NodeRegistry
from .replication import ReplicationScheduler
from .store import StateStore

logger = logging.getLogger("dr.orchestrator")


class DisasterRecoveryOrchestrator:
    """One per process. Every DRState mutation goes through a component operation."""

    def __init__(
        self,
        config: DRConfig | None = None,
        *,
        probe: HealthProbe | None = None,
        transport: ReplicationTransport | None = None,
        engine: SnapshotEngine | None = None,
        store: StateStore | None = None,
        subscribers: list[Subscriber] | None = None,
    ) -> None:
        self.config = (config or DRConfig()).validate()
        self.registry = NodeRegistry.from_config(self.config)
        self.store = store or StateStore(self.config.state_db_path)
        self.state = self.store.load_state(self.registry)

        subs = list(subscribers or [])
        if self.config.alert_webhook_url:
            subs.append(WebhookNotifier(self.config.alert_webhook_url, self.config.alert_webhook_token))
        self.dispatcher = AlertDispatcher(self.store, subs)

        self.health = HealthMonitor(
            self.state, self.registry, self.store,
            probe or SimulatedHealthProbe(),
            interval_s=self.config.health_check_interval_s,
        )
        self.replication = ReplicationScheduler(
            self.state, self.registry, self.store,
            transport or SimulatedTransport(),
            interval_s=self.config.replication_interval_s,
        )
        self.cold_backup = ColdBackupScheduler(
            self.state, self.store,
            engine or SimulatedSnapshotEngine(storage_dir=self.config.cold_storage_path),
            time_of_day=self.config.cold_backup_time_of_day,
        )
        self.controller = FailoverController(self.state, self.registry, self.store, self.dispatcher)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    # --- lifecycle ---

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def start(self) -> None:
        """Start the health, replication and cold-backup timers (idempotent)."""
        if self.is_running:
            return
        self._tasks = {
            "health": asyncio.create_task(self.health.run(), name="dr-health"),
            "replication": asyncio.create_task(self.replication.run(), name="dr-replication"),
            "cold_backup": asyncio.create_task(self.cold_backup.run(), name="dr-cold-backup"),
        }
        logger.info(
            "DR orchestration started: primary %s, %d backups",
            self.registry.primary.url, len(self.registry.backups()),
        )

    async def stop(self) -> None:
        """Cancel every timer as a unit and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks = {}
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("DR task %s ended with an error", task.get_name())
        await self.dispatcher.drain()
        if tasks:
            logger.info("DR orchestration stopped")

    def close(self) -> None:
        self.store.close()

    # --- operations ---

    async def check_health(self) -> HealthCheckRecord:
        return await self.health.check_health()

    async def replicate_now(self) -> ReplicationRecord:
        return await self.replication.replicate_now()

    async def run_cold_backup(self) -> ColdBackupRecord:
        return await self.cold_backup.run_cold_backup()

    async def restore_backup(self, backup_id: str) -> RestoreResult:
        return await self.cold_backup.restore(backup_id)

    def trigger_failover(self, target_node_id: str | None = None, reason: str = "Manual trigger") -> FailoverRecord:
        return self.controller.trigger_failover(target_node_id, reason)

    def trigger_recovery(self, reason: str = "Primary node restored") -> FailoverRecord:
        return self.controller.trigger_recovery(reason)

    # --- queries ---

    def active_endpoint(self) -> str:
        return self.controller.active_endpoint()

    def calculate_uptime(self) -> float:
        return self.controller.calculate_uptime()

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "mode": self.controller.mode,
            "active_endpoint": self.active_endpoint(),
            "uptime_percent": self.calculate_uptime(),
            "monitoring": self.is_running,
            "nodes": [n.to_dict() for n in self.registry.nodes()],
        }
