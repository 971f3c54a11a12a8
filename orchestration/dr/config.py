"""DR configuration: defaults, YAML file, or environment variables."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .models import PRIMARY_NODE_ID

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class NodeConfig:
    id: str
    url: str
    region: str
    base_latency_ms: int = 0
    uptime_percent: float = 99.99
    requests_per_minute: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any], default_id: str = "") -> NodeConfig:
        return cls(
            id=str(raw.get("id", default_id)),
            url=str(raw["url"]),
            region=str(raw.get("region", "")),
            base_latency_ms=int(raw.get("base_latency_ms", 0)),
            uptime_percent=float(raw.get("uptime_percent", 99.99)),
            requests_per_minute=int(raw.get("requests_per_minute", 0)),
        )


DEFAULT_PRIMARY = NodeConfig(
    id=PRIMARY_NODE_ID,
    url="https://api.medchain.sarawak.my",
    region="Sarawak",
    base_latency_ms=23,
    uptime_percent=99.97,
    requests_per_minute=1250,
)

DEFAULT_BACKUPS: tuple[NodeConfig, ...] = (
    NodeConfig(id="sg-backup", url="https://sg.backup.medchain.my", region="Singapore", base_latency_ms=45),
    NodeConfig(
        id="my-backup", url="https://my.backup.medchain.my", region="Malaysia (KL)",
        base_latency_ms=15, uptime_percent=99.95,
    ),
)


@dataclass(frozen=True)
class DRConfig:
    """Immutable configuration for the DR orchestrator."""

    primary: NodeConfig = DEFAULT_PRIMARY
    backups: tuple[NodeConfig, ...] = DEFAULT_BACKUPS

    # Timing
    health_check_interval_ms: int = 10_000
    replication_interval_ms: int = 300_000
    cold_backup_time_of_day: str = "02:00"
    # Reserved for an automatic failover policy; failover is operator-invoked.
    failover_threshold_ms: int = 30_000

    # Storage
    state_db_path: str = "data/dr_state.db"
    cold_storage_path: str = "cold-storage"

    # Alert webhook (optional)
    alert_webhook_url: str = ""
    alert_webhook_token: str = ""

    # HTTP API
    api_host: str = "0.0.0.0"
    api_port: int = 8087
    api_token: str = ""

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_retention_days: int = 7

    @property
    def health_check_interval_s(self) -> float:
        return self.health_check_interval_ms / 1000

    @property
    def replication_interval_s(self) -> float:
        return self.replication_interval_ms / 1000

    def validate(self) -> DRConfig:
        """Raise ConfigError on an unusable configuration; return self."""
        if self.primary.id != PRIMARY_NODE_ID:
            raise ConfigError(f"primary node id must be {PRIMARY_NODE_ID!r}, got {self.primary.id!r}")
        if not self.backups:
            raise ConfigError("at least one backup node is required")
        seen: set[str] = set()
        for node in self.backups:
            if not node.id:
                raise ConfigError("backup node id must not be empty")
            if node.id == PRIMARY_NODE_ID:
                raise ConfigError(f"backup node may not use the reserved id {PRIMARY_NODE_ID!r}")
            if node.id in seen:
                raise ConfigError(f"duplicate backup node id {node.id!r}")
            seen.add(node.id)
        for name in ("health_check_interval_ms", "replication_interval_ms", "failover_threshold_ms"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if not _TIME_OF_DAY.match(self.cold_backup_time_of_day):
            raise ConfigError(f"cold_backup_time_of_day must be HH:MM, got {self.cold_backup_time_of_day!r}")
        if not 0 < self.api_port < 65536:
            raise ConfigError(f"api_port out of range: {self.api_port}")
        return self

    @classmethod
    def from_yaml(cls, path: str) -> DRConfig:
        with open(path, "r") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        nodes = raw.get("nodes", {})
        schedule = raw.get("schedule", {})
        storage = raw.get("storage", {})
        alerts = raw.get("alerts", {})
        api = raw.get("api", {})
        log_cfg = raw.get("logging", {})

        try:
            primary = cls.primary
            if "primary" in nodes:
                primary = NodeConfig.from_dict(nodes["primary"], default_id=PRIMARY_NODE_ID)
            backups = cls.backups
            if "backups" in nodes:
                backups = tuple(NodeConfig.from_dict(b) for b in nodes["backups"] or [])
            return cls(
                primary=primary,
                backups=backups,
                health_check_interval_ms=int(schedule.get("health_check_interval_ms", cls.health_check_interval_ms)),
                replication_interval_ms=int(schedule.get("replication_interval_ms", cls.replication_interval_ms)),
                cold_backup_time_of_day=str(schedule.get("cold_backup_time_of_day", cls.cold_backup_time_of_day)),
                failover_threshold_ms=int(schedule.get("failover_threshold_ms", cls.failover_threshold_ms)),
                state_db_path=storage.get("db_path", cls.state_db_path),
                cold_storage_path=storage.get("cold_storage_path", cls.cold_storage_path),
                alert_webhook_url=alerts.get("webhook_url", cls.alert_webhook_url),
                alert_webhook_token=alerts.get("webhook_token", cls.alert_webhook_token),
                api_host=api.get("host", cls.api_host),
                api_port=int(api.get("port", cls.api_port)),
                api_token=api.get("token", cls.api_token),
                log_dir=log_cfg.get("dir", cls.log_dir),
                log_level=log_cfg.get("level", cls.log_level),
                log_retention_days=int(log_cfg.get("retention_days", cls.log_retention_days)),
            ).validate()
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"invalid config file {path}: {exc}") from exc

    @classmethod
    def from_env(cls) -> DRConfig:
        """Build config from DR_* env vars, layered over DR_CONFIG YAML if set."""
        load_dotenv()
        config_path = os.environ.get("DR_CONFIG", "")
        base = cls.from_yaml(config_path) if config_path and Path(config_path).exists() else cls()
        env = os.environ
        try:
            return cls(
                primary=base.primary,
                backups=base.backups,
                health_check_interval_ms=int(env.get("DR_HEALTH_CHECK_INTERVAL_MS", base.health_check_interval_ms)),
                replication_interval_ms=int(env.get("DR_REPLICATION_INTERVAL_MS", base.replication_interval_ms)),
                cold_backup_time_of_day=env.get("DR_COLD_BACKUP_TIME", base.cold_backup_time_of_day),
                failover_threshold_ms=int(env.get("DR_FAILOVER_THRESHOLD_MS", base.failover_threshold_ms)),
                state_db_path=env.get("DR_STATE_DB", base.state_db_path),
                cold_storage_path=env.get("DR_COLD_STORAGE_PATH", base.cold_storage_path),
                alert_webhook_url=env.get("DR_ALERT_WEBHOOK_URL", base.alert_webhook_url),
                alert_webhook_token=env.get("DR_ALERT_WEBHOOK_TOKEN", base.alert_webhook_token),
                api_host=env.get("DR_API_HOST", base.api_host),
                api_port=int(env.get("DR_API_PORT", base.api_port)),
                api_token=env.get("DR_API_TOKEN", base.api_token),
                log_dir=env.get("DR_LOG_DIR", base.log_dir),
                log_level=env.get("DR_LOG_LEVEL", base.log_level),
                log_retention_days=int(env.get("DR_LOG_RETENTION_DAYS", base.log_retention_days)),
            ).validate()
        except ValueError as exc:
            raise ConfigError(f"invalid DR_* environment value: {exc}") from exc
