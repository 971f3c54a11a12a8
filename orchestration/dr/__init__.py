"""Disaster recovery orchestration package."""
from .alerts import EVENT_NAME, AlertDispatcher, WebhookNotifier
from .config import DRConfig, NodeConfig
from .errors import (
    AlreadyInProgressError,
    ConfigError,
    DRError,
    InvalidTransitionError,
    NotFoundError,
    RestoreError,
)
from .models import Alert, DRState, PrimaryStatus
from .orchestrator import DisasterRecoveryOrchestrator
from .registry import NodeRegistry
from .store import StateStore

__all__ = [
    "DisasterRecoveryOrchestrator",
    "DRConfig",
    "NodeConfig",
    "NodeRegistry",
    "StateStore",
    "AlertDispatcher",
    "WebhookNotifier",
    "EVENT_NAME",
    "Alert",
    "DRState",
    "PrimaryStatus",
    "DRError",
    "ConfigError",
    "NotFoundError",
    "InvalidTransitionError",
    "AlreadyInProgressError",
    "RestoreError",
]
