"""Cold backup scheduler: daily point-in-time snapshots with integrity metadata."""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable

from .errors import AlreadyInProgressError, NotFoundError, RestoreError
from .models import (
    COLD_BACKUP_HISTORY_LIMIT,
    BackupStatus,
    ColdBackupRecord,
    DRState,
    new_id,
    prepend,
    utc_now,
)
from .probes import RestoreResult, SnapshotEngine
from .store import StateStore

logger = logging.getLogger("dr.cold_backup")


def format_size(size_bytes: int) -> str:
    """Human label for an archive size: '512 KB', '120 MB', '3 GB'."""
    kb = size_bytes / 1024
    if kb < 1024:
        return f"{round(kb)} KB"
    mb = kb / 1024
    if mb < 1024:
        return f"{round(mb)} MB"
    return f"{round(mb / 1024)} GB"


def seconds_until_time_of_day(time_of_day: str, now: datetime) -> float:
    """Seconds from *now* until the next local HH:MM (a full day if it is now)."""
    hour, minute = (int(p) for p in time_of_day.split(":"))
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ColdBackupScheduler:
    def __init__(
        self,
        state: DRState,
        store: StateStore,
        engine: SnapshotEngine,
        time_of_day: str = "02:00",
        history_limit: int = COLD_BACKUP_HISTORY_LIMIT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._state = state
        self._store = store
        self._engine = engine
        self._time_of_day = time_of_day
        self._limit = history_limit
        self._clock = clock
        self._in_flight = False
        self._last_run_date: date | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_cold_backup(self) -> ColdBackupRecord:
        """Snapshot, record and persist. A failed snapshot is recorded as FAILED."""
        if self._in_flight:
            raise AlreadyInProgressError("cold backup already in progress")
        self._in_flight = True
        try:
            backup_id = new_id("backup")
            timestamp = utc_now()
            logger.info("Starting encrypted cold backup %s", backup_id)
            try:
                snap = await self._engine.snapshot(backup_id)
            except Exception as exc:
                logger.error("Cold backup %s failed: %s", backup_id, exc)
                record = ColdBackupRecord(
                    id=backup_id,
                    timestamp=timestamp,
                    status=BackupStatus.FAILED,
                    error=f"{type(exc).__name__}: {exc}",
                )
            else:
                record = ColdBackupRecord(
                    id=backup_id,
                    timestamp=timestamp,
                    status=BackupStatus.SUCCESS,
                    unit_count=snap.unit_count,
                    total_items=snap.total_items,
                    encrypted_size_label=format_size(snap.size_bytes),
                    checksum=snap.checksum,
                    storage_path=snap.storage_path or None,
                )
                logger.info(
                    "Cold backup %s completed: %d units, %d items, %s at %s",
                    backup_id, record.unit_count, record.total_items,
                    record.encrypted_size_label, record.storage_path,
                )

            state = self._state
            state.cold_backup_history = prepend(state.cold_backup_history, record, self._limit)
            state.last_cold_backup = record
            self._store.save_state(state)
            return record
        finally:
            self._in_flight = False

    def find(self, backup_id: str) -> ColdBackupRecord:
        for record in self._state.cold_backup_history:
            if record.id == backup_id:
                return record
        raise NotFoundError(f"unknown cold backup {backup_id!r}")

    async def restore(self, backup_id: str) -> RestoreResult:
        """Read a successful backup back and verify its checksum.

        Restoring does not touch DRState; the caller decides what to do with
        the recovered document.
        """
        record = self.find(backup_id)
        if record.status != BackupStatus.SUCCESS:
            raise RestoreError(f"cold backup {backup_id!r} failed and cannot be restored")
        logger.info("Restoring cold backup %s from %s", backup_id, record.storage_path)
        try:
            result = await self._engine.restore(backup_id)
        except Exception as exc:
            raise RestoreError(f"cold backup {backup_id!r} could not be read: {exc}") from exc
        if result.checksum != record.checksum:
            raise RestoreError(
                f"cold backup {backup_id!r} checksum mismatch: "
                f"expected {record.checksum}, got {result.checksum}"
            )
        logger.info("Cold backup %s restored: %d units, %d items", backup_id, result.unit_count, result.total_items)
        return result

    async def run(self) -> None:
        """Back up daily at the configured local time until cancelled.

        At most one scheduled backup runs per calendar date, even if the wall
        clock is stepped back past the backup time.
        """
        logger.info("Cold storage backup scheduled daily at %s", self._time_of_day)
        while True:
            now = self._clock()
            delay = seconds_until_time_of_day(self._time_of_day, now)
            due = (now + timedelta(seconds=delay)).date()
            logger.debug("Next cold backup in %.0fs", delay)
            await asyncio.sleep(delay)
            if due == self._last_run_date:
                logger.info("Scheduled cold backup for %s already ran; skipping", due.isoformat())
                continue
            self._last_run_date = due
            try:
                await self.run_cold_backup()
            except AlreadyInProgressError:
                logger.info("Scheduled cold backup skipped: a run is already in flight")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cold backup cycle failed")
