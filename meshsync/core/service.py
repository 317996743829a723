from __future__ import annotations

import logging
from typing import Any

from meshsync.core.config import AppConfig
from meshsync.core.run_history import record_run
from meshsync.providers.http_remote.store import build_remote_stores
from meshsync.providers.sqlite_local.store import SqliteBackend
from meshsync.sync.coordinator import SyncCoordinator
from meshsync.sync.entities import format_timestamp, utc_now
from meshsync.sync.errors import SyncBusyError
from meshsync.sync.progress import ProgressTracker
from meshsync.sync.stores import StoreSet

logger = logging.getLogger("service")


def build_local_backend(cfg: AppConfig) -> SqliteBackend:
    return SqliteBackend(cfg.database.path, cfg.storage.blob_dir)


def build_coordinator(cfg: AppConfig, progress: ProgressTracker | None = None) -> SyncCoordinator:
    local = build_local_backend(cfg)
    return SyncCoordinator(
        local=StoreSet.from_backend(local),
        remote=build_remote_stores(cfg.remote),
        watermark=local,
        progress=progress,
    )


async def run_sync_and_record(coordinator: SyncCoordinator, run_type: str, last_synced: Any = None) -> dict[str, Any]:
    """Run one sync and persist its outcome to the run history.

    A busy rejection is not recorded; any other failure is recorded with
    ok=false and then re-raised.
    """
    try:
        summary = await coordinator.run_sync(last_synced=last_synced)
    except SyncBusyError:
        raise
    except Exception as exc:
        failed = {
            "ok": False,
            "run_type": run_type,
            "finished_at": format_timestamp(utc_now()),
            "error": str(exc),
            "error_type": type(exc).__name__,
        }
        record_run(failed)
        raise

    summary = {"ok": True, "run_type": run_type, **summary}
    record_run(summary)
    logger.info("sync_run_recorded run_type=%s", run_type)
    return summary
