from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from meshsync.core.config import RUN_HISTORY_PATH, load_config
from meshsync.core.log_tail import build_log_tail_payload
from meshsync.core.run_history import load_latest_run, read_run_history
from meshsync.core.service import run_sync_and_record
from meshsync.sync.coordinator import SyncCoordinator
from meshsync.sync.errors import SyncBusyError

router = APIRouter(prefix="/api")

logger = logging.getLogger("web")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coordinator(request: Request) -> SyncCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="sync_not_configured")
    return coordinator


def _build_readiness_payload(request: Request) -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "remote_configured": False,
        "database_parent_ready": False,
        "log_parent_ready": False,
        "coordinator_ready": getattr(request.app.state, "coordinator", None) is not None,
    }
    warnings: list[str] = []
    errors: list[str] = []

    cfg = None
    try:
        cfg = load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        checks["remote_configured"] = bool(cfg.remote.base_url)
        if not checks["remote_configured"]:
            warnings.append("remote_base_url_missing")

        try:
            Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
            checks["database_parent_ready"] = True
        except OSError as e:
            errors.append(f"database_parent_unavailable: {e}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except OSError as e:
            errors.append(f"log_parent_unavailable: {e}")

    if not checks["coordinator_ready"]:
        errors.append("coordinator_missing")

    ok = checks["config_load"] and checks["database_parent_ready"] and checks["log_parent_ready"] and checks["coordinator_ready"]
    return {
        "ok": ok,
        "checked_at": _now_iso(),
        "checks": checks,
        "warnings": warnings,
        "errors": errors,
    }


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/readyz")
def readyz(request: Request):
    payload = _build_readiness_payload(request)
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


@router.get("/sync/progress")
def sync_progress(request: Request):
    coordinator = _coordinator(request)
    latest, source = load_latest_run()
    return {
        "busy": coordinator.busy,
        "progress": coordinator.progress.snapshot().model_dump(mode="json"),
        "last_run": latest,
        "last_run_source": source,
    }


@router.post("/actions/sync")
async def run_sync_now(request: Request, last_synced: str | None = None):
    """Run one sync now and return its summary."""
    coordinator = _coordinator(request)
    if coordinator.busy:
        raise HTTPException(status_code=409, detail="sync_busy")
    try:
        return await run_sync_and_record(coordinator, "manual_web", last_synced=last_synced)
    except SyncBusyError:
        raise HTTPException(status_code=409, detail="sync_busy")
    except Exception as e:
        logger.error("web_sync_failed error=%s", e)
        raise HTTPException(status_code=502, detail=f"sync_failed: {e}")


@router.get("/logs")
def get_logs(
    n: int = 200,
    level: str | None = None,
    module: str | None = None,
):
    n = min(max(int(n), 1), 2000)
    cfg = load_config()
    return build_log_tail_payload(
        cfg.logging.file,
        n=n,
        level=level,
        module=module,
    )


@router.get("/history")
def get_history(limit: int = 50):
    limit_sanitized = min(max(int(limit), 1), 500)
    items = read_run_history(limit=limit_sanitized)
    return {
        "path": str(RUN_HISTORY_PATH),
        "limit": limit_sanitized,
        "count": len(items),
        "items": items,
    }
