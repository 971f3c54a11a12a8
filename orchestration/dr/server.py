"""DR control API: aiohttp endpoints over the orchestrator.

Usage:
    python -m orchestration.dr.server          # config from DR_* env / .env / DR_CONFIG yaml
"""
from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from aiohttp import web

from .config import DRConfig
from .errors import AlreadyInProgressError, InvalidTransitionError, NotFoundError, RestoreError
from .orchestrator import DisasterRecoveryOrchestrator

logger = logging.getLogger("dr.server")

DEFAULT_LIMIT = 50


def setup_logging(cfg: DRConfig) -> None:
    """Rotating daily file + console logging for the dr.* loggers.

    Safe to call more than once: handlers are only attached the first time.
    """
    root = logging.getLogger("dr")
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))
    if any(isinstance(h, TimedRotatingFileHandler) for h in root.handlers):
        return

    log_dir = Path(cfg.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    fh = TimedRotatingFileHandler(
        log_dir / "dr.log", when="midnight", backupCount=cfg.log_retention_days, utc=True,
    )
    fh.setFormatter(fmt)
    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(fmt)
    root.addHandler(fh)
    root.addHandler(ch)


def _check_auth(request: web.Request) -> bool:
    token = request.app["config"].api_token
    if not token:
        return True
    return request.headers.get("Authorization", "") == f"Bearer {token}"


def _unauthorized() -> web.Response:
    return web.json_response({"success": False, "error": "unauthorized"}, status=401)


def _error(status: int, exc: Exception) -> web.Response:
    return web.json_response({"success": False, "error": str(exc)}, status=status)


def _limit(request: web.Request) -> int:
    try:
        return max(0, int(request.query.get("limit", DEFAULT_LIMIT)))
    except ValueError:
        raise web.HTTPBadRequest(text="limit must be an integer") from None


async def _body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="body must be JSON") from None
    return body if isinstance(body, dict) else {}


# --- handlers ---

async def handle_status(request: web.Request) -> web.Response:
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    return web.json_response({"success": True, **orch.status()})


async def handle_health(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    record = await orch.check_health()
    return web.json_response({"success": True, "health": record.to_dict(), "node": orch.state.active_node_id})


async def handle_failover(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    body = await _body(request)
    target = body.get("target_node")
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    try:
        record = orch.trigger_failover(str(target) if target else None, body.get("reason") or "Manual trigger")
    except NotFoundError as exc:
        return _error(404, exc)
    except InvalidTransitionError as exc:
        return _error(400, exc)
    return web.json_response({
        "success": True,
        "failover": record.to_dict(),
        "alert": orch.dispatcher.history[0].to_dict(),
    })


async def handle_recovery(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    body = await _body(request)
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    try:
        record = orch.trigger_recovery(body.get("reason") or "Primary node restored")
    except InvalidTransitionError as exc:
        return _error(400, exc)
    return web.json_response({
        "success": True,
        "recovery": record.to_dict(),
        "alert": orch.dispatcher.history[0].to_dict(),
    })


async def handle_replicate(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    try:
        record = await orch.replicate_now()
    except AlreadyInProgressError as exc:
        return _error(409, exc)
    return web.json_response({"success": True, "replication": record.to_dict()})


async def handle_backup(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    try:
        record = await orch.run_cold_backup()
    except AlreadyInProgressError as exc:
        return _error(409, exc)
    return web.json_response({"success": True, "backup": record.to_dict()})


async def handle_restore(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    body = await _body(request)
    backup_id = body.get("backup_id")
    if not backup_id:
        return web.json_response({"success": False, "error": "backup_id is required"}, status=400)
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    try:
        result = await orch.restore_backup(str(backup_id))
    except NotFoundError as exc:
        return _error(404, exc)
    except RestoreError as exc:
        return _error(409, exc)
    return web.json_response({"success": True, "restore": result.to_dict()})


async def handle_monitoring(request: web.Request) -> web.Response:
    if not _check_auth(request):
        return _unauthorized()
    body = await _body(request)
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return web.json_response({"success": False, "error": "enabled must be a boolean"}, status=400)
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    if enabled:
        orch.start()
    else:
        await orch.stop()
    return web.json_response({"success": True, "monitoring": orch.is_running})


async def handle_alerts(request: web.Request) -> web.Response:
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    alerts = orch.dispatcher.history
    return web.json_response({
        "success": True,
        "alerts": [a.to_dict() for a in alerts[:_limit(request)]],
        "total": len(alerts),
    })


async def handle_replication_history(request: web.Request) -> web.Response:
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    history = orch.state.replication_history
    return web.json_response({
        "success": True,
        "history": [r.to_dict() for r in history[:_limit(request)]],
        "total": len(history),
    })


async def handle_failover_history(request: web.Request) -> web.Response:
    orch: DisasterRecoveryOrchestrator = request.app["orchestrator"]
    history = orch.state.failover_history
    return web.json_response({
        "success": True,
        "history": [r.to_dict() for r in history[:_limit(request)]],
        "total": len(history),
    })


# --- app ---

async def start_background_tasks(app: web.Application) -> None:
    app["orchestrator"].start()


async def cleanup_background_tasks(app: web.Application) -> None:
    orch: DisasterRecoveryOrchestrator = app["orchestrator"]
    await orch.stop()
    orch.close()


def create_app(config: DRConfig, orchestrator: DisasterRecoveryOrchestrator | None = None) -> web.Application:
    app = web.Application()
    app["config"] = config
    app["orchestrator"] = orchestrator or DisasterRecoveryOrchestrator(config)
    app.router.add_get("/api/dr/status", handle_status)
    app.router.add_post("/api/dr/health", handle_health)
    app.router.add_post("/api/dr/failover", handle_failover)
    app.router.add_post("/api/dr/recovery", handle_recovery)
    app.router.add_post("/api/dr/replicate", handle_replicate)
    app.router.add_post("/api/dr/backup", handle_backup)
    app.router.add_post("/api/dr/restore", handle_restore)
    app.router.add_post("/api/dr/monitoring", handle_monitoring)
    app.router.add_get("/api/dr/alerts", handle_alerts)
    app.router.add_get("/api/dr/replication-history", handle_replication_history)
    app.router.add_get("/api/dr/failover-history", handle_failover_history)
    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(cleanup_background_tasks)
    return app


def main() -> None:
    config = DRConfig.from_env()
    setup_logging(config)
    logger.info("DR control API listening on %s:%d", config.api_host, config.api_port)
    web.run_app(create_app(config), host=config.api_host, port=config.api_port)


if __name__ == "__main__":
    main()
