"""Tests for DRConfig loading/validation and the NodeRegistry."""
from __future__ import annotations

import textwrap

import pytest

from orchestration.dr.config import DRConfig, NodeConfig
from orchestration.dr.errors import ConfigError, InvalidTransitionError, NotFoundError
from orchestration.dr.models import NodeRole
from orchestration.dr.registry import NodeRegistry


def test_defaults_are_valid():
    cfg = DRConfig().validate()
    assert cfg.health_check_interval_ms == 10_000
    assert cfg.replication_interval_ms == 300_000
    assert cfg.cold_backup_time_of_day == "02:00"
    assert cfg.failover_threshold_ms == 30_000
    assert [b.id for b in cfg.backups] == ["sg-backup", "my-backup"]


@pytest.mark.parametrize("overrides", [
    {"health_check_interval_ms": 0},
    {"replication_interval_ms": -5},
    {"cold_backup_time_of_day": "25:00"},
    {"cold_backup_time_of_day": "2am"},
    {"backups": ()},
    {"backups": (NodeConfig("primary", "https://x", "X"),)},
    {"backups": (NodeConfig("a", "https://a", "A"), NodeConfig("a", "https://b", "B"))},
    {"primary": NodeConfig("main", "https://p", "P")},
    {"api_port": 70000},
])
def test_validate_rejects(overrides):
    with pytest.raises(ConfigError):
        DRConfig(**overrides).validate()


def test_from_yaml(tmp_path):
    path = tmp_path / "dr.yaml"
    path.write_text(textwrap.dedent("""
        nodes:
          primary:
            url: https://primary.internal
            region: Kuching
            base_latency_ms: 12
          backups:
            - id: jp-backup
              url: https://jp.internal
              region: Tokyo
              base_latency_ms: 80
              uptime_percent: 99.9
              requests_per_minute: 40
        schedule:
          health_check_interval_ms: 5000
          cold_backup_time_of_day: "03:30"
        storage:
          db_path: /tmp/dr-test.db
          cold_storage_path: /srv/dr/cold
        api:
          port: 9000
          token: s3cret
    """))
    cfg = DRConfig.from_yaml(str(path))
    assert cfg.primary.id == "primary"
    assert cfg.primary.region == "Kuching"
    assert [b.id for b in cfg.backups] == ["jp-backup"]
    assert cfg.health_check_interval_ms == 5000
    assert cfg.replication_interval_ms == 300_000
    assert cfg.cold_backup_time_of_day == "03:30"
    assert cfg.state_db_path == "/tmp/dr-test.db"
    assert cfg.cold_storage_path == "/srv/dr/cold"
    assert cfg.backups[0].uptime_percent == 99.9
    assert cfg.backups[0].requests_per_minute == 40
    assert cfg.primary.requests_per_minute == 0
    assert cfg.api_port == 9000
    assert cfg.api_token == "s3cret"


def test_from_yaml_missing_url_raises(tmp_path):
    path = tmp_path / "dr.yaml"
    path.write_text("nodes:\n  backups:\n    - id: x\n")
    with pytest.raises(ConfigError):
        DRConfig.from_yaml(str(path))


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.delenv("DR_CONFIG", raising=False)
    monkeypatch.setenv("DR_HEALTH_CHECK_INTERVAL_MS", "2500")
    monkeypatch.setenv("DR_STATE_DB", str(tmp_path / "env.db"))
    monkeypatch.setenv("DR_ALERT_WEBHOOK_URL", "https://hooks.example/dr")
    cfg = DRConfig.from_env()
    assert cfg.health_check_interval_ms == 2500
    assert cfg.state_db_path == str(tmp_path / "env.db")
    assert cfg.alert_webhook_url == "https://hooks.example/dr"


def test_from_env_bad_number(monkeypatch, tmp_path):
    monkeypatch.delenv("DR_CONFIG", raising=False)
    monkeypatch.setenv("DR_API_PORT", "eighty")
    with pytest.raises(ConfigError):
        DRConfig.from_env()


# --- registry ---

def test_registry_lookup(registry: NodeRegistry):
    assert registry.primary.role == NodeRole.PRIMARY
    assert registry.node_ids() == ("primary", "sg-backup", "my-backup")
    assert registry.get("sg-backup").region == "Singapore"
    assert "my-backup" in registry
    assert len(registry) == 3


def test_registry_unknown_node(registry: NodeRegistry):
    with pytest.raises(NotFoundError):
        registry.get("mars-backup")


def test_registry_primary_is_not_a_backup(registry: NodeRegistry):
    with pytest.raises(InvalidTransitionError):
        registry.get_backup("primary")
    assert all(n.role == NodeRole.BACKUP for n in registry.backups())
