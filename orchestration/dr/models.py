"""Disaster recovery data models.

Every record is immutable once created. ``DRState`` is the one mutable
record; its histories are tuples that are replaced wholesale (prepend, then
truncate) so a reader never observes a half-applied update.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

PRIMARY_NODE_ID = "primary"

REPLICATION_HISTORY_LIMIT = 50
FAILOVER_HISTORY_LIMIT = 50
COLD_BACKUP_HISTORY_LIMIT = 30
ALERT_HISTORY_LIMIT = 100


class NodeRole(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"


class PrimaryStatus(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"


class TransferStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class FailoverKind(str, Enum):
    FAILOVER = "FAILOVER"
    RECOVERY = "RECOVERY"


class FailoverStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class BackupStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AlertCategory(str, Enum):
    FAILOVER_EMERGENCY = "FAILOVER_EMERGENCY"
    RECOVERY_COMPLETE = "RECOVERY_COMPLETE"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    INFO = "INFO"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def prepend(history: tuple, item: Any, limit: int) -> tuple:
    """Return *history* with *item* at index 0, truncated to *limit*."""
    return ((item,) + tuple(history))[:limit]


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    id: str
    role: NodeRole
    region: str
    url: str
    base_latency_ms: int = 0
    baseline_uptime_percent: float = 99.99
    baseline_requests_per_minute: int = 0

    def baseline_metrics(self) -> NodeMetrics:
        """Metrics a node starts with before any check or replication."""
        return NodeMetrics(
            uptime_percent=self.baseline_uptime_percent,
            response_time_ms=self.base_latency_ms,
            requests_per_minute=self.baseline_requests_per_minute,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "region": self.region,
            "url": self.url,
            "base_latency_ms": self.base_latency_ms,
        }


@dataclass(frozen=True)
class NodeMetrics:
    uptime_percent: float = 99.99
    response_time_ms: int = 0
    requests_per_minute: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "uptime_percent": self.uptime_percent,
            "response_time_ms": self.response_time_ms,
            "requests_per_minute": self.requests_per_minute,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NodeMetrics:
        return cls(
            uptime_percent=float(d["uptime_percent"]),
            response_time_ms=int(d["response_time_ms"]),
            requests_per_minute=int(d["requests_per_minute"]),
        )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HealthCheckRecord:
    timestamp: str
    status: PrimaryStatus
    response_time_ms: int
    consecutive_failures: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status": self.status.value,
            "response_time_ms": self.response_time_ms,
            "consecutive_failures": self.consecutive_failures,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> HealthCheckRecord:
        return cls(
            timestamp=d["timestamp"],
            status=PrimaryStatus(d["status"]),
            response_time_ms=int(d["response_time_ms"]),
            consecutive_failures=int(d.get("consecutive_failures", 0)),
            error=d.get("error"),
        )


@dataclass(frozen=True)
class NodeReplicationResult:
    node_id: str
    region: str
    status: TransferStatus
    latency_ms: int
    bytes_transferred: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "region": self.region,
            "status": self.status.value,
            "latency_ms": self.latency_ms,
            "bytes_transferred": self.bytes_transferred,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NodeReplicationResult:
        return cls(
            node_id=d["node_id"],
            region=d["region"],
            status=TransferStatus(d["status"]),
            latency_ms=int(d["latency_ms"]),
            bytes_transferred=int(d.get("bytes_transferred", 0)),
            error=d.get("error"),
        )


@dataclass(frozen=True)
class ReplicationRecord:
    id: str
    timestamp: str
    duration_ms: int
    nodes_total: int
    nodes_succeeded: int
    bytes_transferred: int
    results: tuple[NodeReplicationResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "nodes_total": self.nodes_total,
            "nodes_succeeded": self.nodes_succeeded,
            "bytes_transferred": self.bytes_transferred,
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ReplicationRecord:
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            duration_ms=int(d["duration_ms"]),
            nodes_total=int(d["nodes_total"]),
            nodes_succeeded=int(d["nodes_succeeded"]),
            bytes_transferred=int(d["bytes_transferred"]),
            results=tuple(NodeReplicationResult.from_dict(r) for r in d.get("results", [])),
        )


@dataclass(frozen=True)
class FailoverRecord:
    id: str
    timestamp: str
    kind: FailoverKind
    from_node_id: str
    to_node_id: str
    reason: str
    status: FailoverStatus
    to_region: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "from_node_id": self.from_node_id,
            "to_node_id": self.to_node_id,
            "to_region": self.to_region,
            "reason": self.reason,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FailoverRecord:
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            kind=FailoverKind(d["kind"]),
            from_node_id=d["from_node_id"],
            to_node_id=d["to_node_id"],
            reason=d.get("reason", ""),
            status=FailoverStatus(d["status"]),
            to_region=d.get("to_region", ""),
        )


@dataclass(frozen=True)
class ColdBackupRecord:
    id: str
    timestamp: str
    status: BackupStatus
    unit_count: int = 0
    total_items: int = 0
    encrypted_size_label: str = ""
    checksum: Optional[str] = None
    encryption: str = "AES-256-GCM"
    storage_path: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "unit_count": self.unit_count,
            "total_items": self.total_items,
            "encrypted_size_label": self.encrypted_size_label,
            "checksum": self.checksum,
            "encryption": self.encryption,
            "storage_path": self.storage_path,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ColdBackupRecord:
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            status=BackupStatus(d["status"]),
            unit_count=int(d.get("unit_count", 0)),
            total_items=int(d.get("total_items", 0)),
            encrypted_size_label=d.get("encrypted_size_label", ""),
            checksum=d.get("checksum"),
            encryption=d.get("encryption", "AES-256-GCM"),
            storage_path=d.get("storage_path"),
            error=d.get("error"),
        )


@dataclass(frozen=True)
class Alert:
    category: AlertCategory
    severity: Severity
    title: str
    message: str
    details: FailoverRecord
    id: str = field(default_factory=lambda: new_id("alert"))
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "title": self.title,
            "message": self.message,
            "details": self.details.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Alert:
        return cls(
            id=d["id"],
            category=AlertCategory(d["category"]),
            severity=Severity(d["severity"]),
            timestamp=d["timestamp"],
            title=d["title"],
            message=d["message"],
            details=FailoverRecord.from_dict(d["details"]),
        )


# ---------------------------------------------------------------------------
# Orchestration state
# ---------------------------------------------------------------------------

def _opt(cls, value):
    return None if value is None else cls.from_dict(value)


@dataclass
class DRState:
    primary_status: PrimaryStatus = PrimaryStatus.HEALTHY
    failover_active: bool = False
    active_node_id: str = PRIMARY_NODE_ID
    last_health_check: Optional[HealthCheckRecord] = None
    last_replication: Optional[ReplicationRecord] = None
    last_cold_backup: Optional[ColdBackupRecord] = None
    replication_history: tuple[ReplicationRecord, ...] = ()
    failover_history: tuple[FailoverRecord, ...] = ()
    cold_backup_history: tuple[ColdBackupRecord, ...] = ()
    node_metrics: dict[str, NodeMetrics] = field(default_factory=dict)

    @property
    def is_failed_over(self) -> bool:
        return self.active_node_id != PRIMARY_NODE_ID

    def check_invariants(self) -> None:
        """Raise ValueError if the one-active-node invariant is broken."""
        if self.failover_active != self.is_failed_over:
            raise ValueError(
                f"failover_active={self.failover_active} disagrees with "
                f"active_node_id={self.active_node_id!r}"
            )

    def with_metrics(self, node_id: str, **changes: Any) -> dict[str, NodeMetrics]:
        """Return a copy of node_metrics with *node_id*'s entry updated."""
        metrics = dict(self.node_metrics)
        metrics[node_id] = replace(metrics[node_id], **changes)
        return metrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_status": self.primary_status.value,
            "failover_active": self.failover_active,
            "active_node_id": self.active_node_id,
            "last_health_check": self.last_health_check.to_dict() if self.last_health_check else None,
            "last_replication": self.last_replication.to_dict() if self.last_replication else None,
            "last_cold_backup": self.last_cold_backup.to_dict() if self.last_cold_backup else None,
            "replication_history": [r.to_dict() for r in self.replication_history],
            "failover_history": [r.to_dict() for r in self.failover_history],
            "cold_backup_history": [r.to_dict() for r in self.cold_backup_history],
            "node_metrics": {k: v.to_dict() for k, v in self.node_metrics.items()},
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> DRState:
        if not isinstance(d, dict):
            raise TypeError(f"expected an object, got {type(d).__name__}")
        failover_active = d["failover_active"]
        if not isinstance(failover_active, bool):
            raise TypeError("failover_active must be a boolean")
        return cls(
            primary_status=PrimaryStatus(d["primary_status"]),
            failover_active=failover_active,
            active_node_id=str(d["active_node_id"]),
            last_health_check=_opt(HealthCheckRecord, d.get("last_health_check")),
            last_replication=_opt(ReplicationRecord, d.get("last_replication")),
            last_cold_backup=_opt(ColdBackupRecord, d.get("last_cold_backup")),
            replication_history=tuple(
                ReplicationRecord.from_dict(r) for r in d.get("replication_history", [])
            )[:REPLICATION_HISTORY_LIMIT],
            failover_history=tuple(
                FailoverRecord.from_dict(r) for r in d.get("failover_history", [])
            )[:FAILOVER_HISTORY_LIMIT],
            cold_backup_history=tuple(
                ColdBackupRecord.from_dict(r) for r in d.get("cold_backup_history", [])
            )[:COLD_BACKUP_HISTORY_LIMIT],
            node_metrics={k: NodeMetrics.from_dict(v) for k, v in d.get("node_metrics", {}).items()},
        )
