"""Disaster recovery error taxonomy."""
from __future__ import annotations


class DRError(Exception):
    """Base class for disaster recovery errors."""


class ConfigError(DRError):
    """Raised when the DR configuration is invalid."""


class NotFoundError(DRError):
    """Raised when a node or backup id is unknown."""


class InvalidTransitionError(DRError):
    """Raised when a failover/recovery is requested from the wrong state."""


class AlreadyInProgressError(DRError):
    """Raised when a guarded operation is triggered while one is in flight."""


class RestoreError(DRError):
    """Raised when a cold backup cannot be restored or fails verification."""
