"""Health monitor: samples the primary node and records its status."""
from __future__ import annotations

import asyncio
import logging
import time

from .models import DRState, HealthCheckRecord, PrimaryStatus, utc_now
from .probes import HealthProbe
from .registry import NodeRegistry
from .store import StateStore

logger = logging.getLogger("dr.health")


class HealthMonitor:
    """Checks the primary on a fixed cadence and on demand.

    A failed check marks the primary DEGRADED and nothing more: failover is
    always an explicit operator action.
    """

    def __init__(
        self,
        state: DRState,
        registry: NodeRegistry,
        store: StateStore,
        probe: HealthProbe,
        interval_s: float = 10.0,
    ) -> None:
        self._state = state
        self._registry = registry
        self._store = store
        self._probe = probe
        self._interval_s = interval_s
        self._lock = asyncio.Lock()
        last = state.last_health_check
        self._consecutive_failures = last.consecutive_failures if last else 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def check_health(self) -> HealthCheckRecord:
        async with self._lock:
            primary = self._registry.primary
            t0 = time.monotonic()
            try:
                result = await self._probe.probe(primary)
                healthy, response_ms, load_delta, error = (
                    bool(result.healthy), int(result.response_time_ms), int(result.load_delta), result.error,
                )
            except Exception as exc:
                healthy, response_ms, load_delta = False, int((time.monotonic() - t0) * 1000), 0
                error = f"{type(exc).__name__}: {exc}"
                logger.debug("Health probe raised", exc_info=True)

            if healthy:
                self._consecutive_failures = 0
            else:
                self._consecutive_failures += 1
            status = PrimaryStatus.HEALTHY if healthy else PrimaryStatus.DEGRADED
            record = HealthCheckRecord(
                timestamp=utc_now(),
                status=status,
                response_time_ms=response_ms,
                consecutive_failures=self._consecutive_failures,
                error=None if healthy else error,
            )

            state = self._state
            current = state.node_metrics[primary.id]
            state.node_metrics = state.with_metrics(
                primary.id,
                response_time_ms=response_ms,
                requests_per_minute=current.requests_per_minute + load_delta,
            )
            state.primary_status = status
            state.last_health_check = record
            self._store.save_state(state)

        if healthy:
            logger.debug("Primary healthy (%dms)", response_ms)
        else:
            logger.warning("Primary DEGRADED (%d consecutive): %s", self._consecutive_failures, error)
        return record

    async def run(self) -> None:
        """Check immediately, then every interval until cancelled."""
        logger.info("Health monitoring started with interval %.1fs", self._interval_s)
        while True:
            try:
                await self.check_health()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Health check cycle failed")
            await asyncio.sleep(self._interval_s)
