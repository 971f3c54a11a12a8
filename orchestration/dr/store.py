"""State store: SQLite key/value persistence for DR state and alert history."""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .models import ALERT_HISTORY_LIMIT, Alert, DRState
from .registry import NodeRegistry

logger = logging.getLogger("dr.store")

DR_STATE_KEY = "dr_state"
ALERT_HISTORY_KEY = "dr_alert_history"


def default_state(registry: NodeRegistry) -> DRState:
    """Fresh state: primary active and healthy, empty histories."""
    return DRState(node_metrics={
        node.id: node.baseline_metrics() for node in registry.nodes()
    })


def reconcile_metrics(state: DRState, registry: NodeRegistry) -> None:
    """Make node_metrics hold exactly one entry per registered node."""
    metrics = {}
    for node in registry.nodes():
        metrics[node.id] = state.node_metrics.get(node.id) or node.baseline_metrics()
    state.node_metrics = metrics


class StateStore:
    """Full-snapshot JSON documents keyed by name, in one SQLite table."""

    def __init__(self, db_path: str = "data/dr_state.db") -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        self._conn.commit()

    # --- raw access ---

    def get_raw(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def put_raw(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?,?,?)",
            (key, value, datetime.now(timezone.utc).isoformat()),
        )
        self._conn.commit()

    def get_json(self, key: str) -> Any | None:
        raw = self.get_raw(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Stored %s is not valid JSON (%s); ignoring it", key, exc)
            return None

    def put_json(self, key: str, value: Any) -> None:
        self.put_raw(key, json.dumps(value, ensure_ascii=False))

    # --- DR state ---

    def load_state(self, registry: NodeRegistry) -> DRState:
        """Load dr_state, falling back to the default on any missing/bad payload."""
        payload = self.get_json(DR_STATE_KEY)
        if payload is None:
            logger.info("No stored DR state; starting from defaults")
            return default_state(registry)
        try:
            state = DRState.from_dict(payload)
            state.check_invariants()
            if state.active_node_id not in registry:
                raise ValueError(f"active node {state.active_node_id!r} is not configured")
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Stored DR state is malformed (%s); using defaults", exc)
            return default_state(registry)
        reconcile_metrics(state, registry)
        logger.info("Loaded DR state: active=%s status=%s", state.active_node_id, state.primary_status.value)
        return state

    def save_state(self, state: DRState) -> None:
        self.put_json(DR_STATE_KEY, state.to_dict())

    # --- alert history ---

    def load_alerts(self) -> list[Alert]:
        payload = self.get_json(ALERT_HISTORY_KEY)
        if payload is None:
            return []
        try:
            if not isinstance(payload, list):
                raise TypeError("alert history must be a list")
            return [Alert.from_dict(a) for a in payload][:ALERT_HISTORY_LIMIT]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Stored alert history is malformed (%s); starting empty", exc)
            return []

    def save_alerts(self, alerts: Iterable[Alert]) -> None:
        self.put_json(ALERT_HISTORY_KEY, [a.to_dict() for a in alerts])

    def close(self) -> None:
        self._conn.close()
