"""Alert dispatcher: publishes DR alerts to subscribers and keeps a bounded log."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

import aiohttp

from .models import ALERT_HISTORY_LIMIT, Alert, Severity
from .store import StateStore

logger = logging.getLogger("dr.alerts")

EVENT_NAME = "dr-alert"

Subscriber = Callable[[Alert], Union[None, Awaitable[None]]]


class AlertDispatcher:
    """Fire-and-forget publisher.

    ``publish`` records and persists the alert synchronously, then hands it
    to every subscriber in registration order. Coroutine subscribers run as
    tasks; plain callables are scheduled on the loop (or called inline when
    no loop is running). A failing subscriber is logged and never affects
    the publisher or the other subscribers.
    """

    def __init__(
        self,
        store: StateStore,
        subscribers: list[Subscriber] | None = None,
        history_limit: int = ALERT_HISTORY_LIMIT,
    ) -> None:
        self._store = store
        self._subscribers: list[Subscriber] = list(subscribers or [])
        self._limit = history_limit
        self._history: list[Alert] = store.load_alerts()[:history_limit]
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def history(self) -> tuple[Alert, ...]:
        return tuple(self._history)

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.remove(subscriber)

    def publish(self, alert: Alert) -> None:
        self._history.insert(0, alert)
        del self._history[self._limit:]
        self._store.save_alerts(self._history)

        level = logging.CRITICAL if alert.severity == Severity.CRITICAL else logging.INFO
        logger.log(level, "Alert [%s] %s: %s", alert.severity.value, alert.title, alert.message)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for subscriber in list(self._subscribers):
            if inspect.iscoroutinefunction(subscriber) or inspect.iscoroutinefunction(
                getattr(subscriber, "__call__", None)
            ):
                if loop is None:
                    logger.warning("No running event loop; dropping async subscriber %r", subscriber)
                    continue
                task = loop.create_task(self._run_async(subscriber, alert))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            elif loop is not None:
                loop.call_soon(self._run_sync, subscriber, alert)
            else:
                self._run_sync(subscriber, alert)

    async def drain(self) -> None:
        """Wait until every scheduled subscriber has finished."""
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    def _run_sync(subscriber: Subscriber, alert: Alert) -> None:
        try:
            subscriber(alert)
        except Exception:
            logger.exception("Alert subscriber %r failed for %s", subscriber, alert.id)

    @staticmethod
    async def _run_async(subscriber: Subscriber, alert: Alert) -> None:
        try:
            await subscriber(alert)  # type: ignore[misc]
        except Exception:
            logger.exception("Alert subscriber %r failed for %s", subscriber, alert.id)


# --- Webhook subscriber ---

def format_alert_text(alert: Alert) -> str:
    prefix = "[DR EMERGENCY]" if alert.severity == Severity.CRITICAL else "[DR RECOVERY]"
    return f"{prefix} {alert.title} at {alert.timestamp}. {alert.message}"


class WebhookNotifier:
    """POSTs each alert as a ``dr-alert`` event to an HTTP endpoint."""

    def __init__(self, url: str, token: str = "", timeout_s: float = 10.0) -> None:
        if not url:
            raise ValueError("webhook url is required")
        self._url = url
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    def payload(self, alert: Alert) -> dict[str, Any]:
        return {"event": EVENT_NAME, "alert": alert.to_dict(), "text": format_alert_text(alert)}

    async def __call__(self, alert: Alert) -> None:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self._url, json=self.payload(alert), headers=headers, timeout=self._timeout,
                ) as resp:
                    if resp.status >= 400:
                        logger.warning("Alert webhook returned HTTP %d for %s", resp.status, alert.id)
        except Exception:
            logger.exception("Failed to deliver alert %s to webhook", alert.id)
