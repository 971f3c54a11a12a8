"""Failover controller: the one authority over which node is active.

State machine: NORMAL (primary active) <-> FAILED_OVER (a backup active).
Transitions are operator-invoked; health checks never trigger them.
Every transition validates first, then mutates, persists and finally
publishes its alert, so a rejected request leaves the state untouched.
"""
from __future__ import annotations

import logging

from .alerts import AlertDispatcher
from .errors import InvalidTransitionError
from .models import (
    FAILOVER_HISTORY_LIMIT,
    PRIMARY_NODE_ID,
    Alert,
    AlertCategory,
    DRState,
    FailoverKind,
    FailoverRecord,
    FailoverStatus,
    PrimaryStatus,
    Severity,
    new_id,
    prepend,
    utc_now,
)
from .registry import NodeRegistry
from .store import StateStore

logger = logging.getLogger("dr.controller")

BASELINE_UPTIME = 99.99
UPTIME_FLOOR = 99.0
FAILOVER_UPTIME_PENALTY = 0.01


class FailoverController:
    def __init__(
        self,
        state: DRState,
        registry: NodeRegistry,
        store: StateStore,
        dispatcher: AlertDispatcher,
        history_limit: int = FAILOVER_HISTORY_LIMIT,
    ) -> None:
        self._state = state
        self._registry = registry
        self._store = store
        self._dispatcher = dispatcher
        self._limit = history_limit

    @property
    def mode(self) -> str:
        return "FAILED_OVER" if self._state.is_failed_over else "NORMAL"

    def _commit(self, record: FailoverRecord) -> None:
        state = self._state
        state.failover_history = prepend(state.failover_history, record, self._limit)
        state.check_invariants()
        self._store.save_state(state)
        logger.warning(
            "%s %s -> %s (%s)", record.kind.value, record.from_node_id, record.to_node_id, record.reason,
        )

    def trigger_failover(
        self, target_node_id: str | None = None, reason: str = "Manual trigger",
    ) -> FailoverRecord:
        """Switch traffic to a backup, by default the first configured one."""
        if self._state.is_failed_over:
            raise InvalidTransitionError(
                f"already failed over to {self._state.active_node_id!r}; recover first"
            )
        if target_node_id is None:
            target_node_id = self._registry.backups()[0].id
        target = self._registry.get_backup(target_node_id)

        record = FailoverRecord(
            id=new_id("failover"),
            timestamp=utc_now(),
            kind=FailoverKind.FAILOVER,
            from_node_id=PRIMARY_NODE_ID,
            to_node_id=target.id,
            to_region=target.region,
            reason=reason,
            status=FailoverStatus.ACTIVE,
        )
        state = self._state
        state.active_node_id = target.id
        state.failover_active = True
        state.primary_status = PrimaryStatus.DOWN
        self._commit(record)

        self._dispatcher.publish(Alert(
            category=AlertCategory.FAILOVER_EMERGENCY,
            severity=Severity.CRITICAL,
            title="FAILOVER ACTIVATED",
            message=f"Primary node DOWN. Traffic redirected to {target.region} backup.",
            details=record,
        ))
        return record

    def trigger_recovery(self, reason: str = "Primary node restored") -> FailoverRecord:
        state = self._state
        if not state.is_failed_over:
            raise InvalidTransitionError("primary is already active; nothing to recover")

        record = FailoverRecord(
            id=new_id("recovery"),
            timestamp=utc_now(),
            kind=FailoverKind.RECOVERY,
            from_node_id=state.active_node_id,
            to_node_id=PRIMARY_NODE_ID,
            to_region=self._registry.primary.region,
            reason=reason,
            status=FailoverStatus.COMPLETED,
        )
        state.active_node_id = PRIMARY_NODE_ID
        state.failover_active = False
        state.primary_status = PrimaryStatus.HEALTHY
        self._commit(record)

        self._dispatcher.publish(Alert(
            category=AlertCategory.RECOVERY_COMPLETE,
            severity=Severity.INFO,
            title="RECOVERY COMPLETE",
            message="Primary node restored. All systems operational.",
            details=record,
        ))
        return record

    def active_endpoint(self) -> str:
        active = self._state.active_node_id
        if active in self._registry:
            return self._registry.get(active).url
        return self._registry.primary.url

    def calculate_uptime(self) -> float:
        """Display aggregate: each recorded failover costs 0.01%, floored at 99%."""
        history = self._state.failover_history
        if not history:
            return BASELINE_UPTIME
        failovers = sum(1 for r in history if r.kind == FailoverKind.FAILOVER)
        return round(max(UPTIME_FLOOR, BASELINE_UPTIME - failovers * FAILOVER_UPTIME_PENALTY), 2)
