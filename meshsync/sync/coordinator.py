from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

from .entities import DEFAULT_LAST_SYNCED, format_timestamp, parse_timestamp, utc_now
from .errors import SyncBusyError
from .groups_sync import GroupSync
from .labels_sync import LabelSync
from .models_sync import ModelSync
from .progress import ProgressTracker
from .resources_sync import ResourceSync
from .stores import StoreSet, WatermarkStore

logger = logging.getLogger("sync")

# Groups and labels reference models, resources reference groups.
ENTITY_ORDER = (ModelSync, GroupSync, LabelSync, ResourceSync)


class SyncCoordinator:
    """Runs the four entity passes in order and owns the watermark.

    At most one run is active per coordinator; a second caller gets
    `SyncBusyError` instead of queueing. A failed run leaves the watermark
    where it was and resets progress before the error propagates.
    """

    def __init__(
        self,
        local: StoreSet,
        remote: StoreSet,
        watermark: WatermarkStore,
        progress: ProgressTracker | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.local = local
        self.remote = remote
        self.watermark = watermark
        self.progress = progress or ProgressTracker()
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def resolve_last_synced(self, last_synced: Any = None) -> datetime:
        if last_synced is not None:
            return parse_timestamp(last_synced)
        stored = await self.watermark.get_last_synced()
        return parse_timestamp(stored) if stored is not None else DEFAULT_LAST_SYNCED

    async def run_sync(self, last_synced: Any = None) -> dict[str, Any]:
        if self._lock.locked():
            raise SyncBusyError()
        async with self._lock:
            return await self._run(last_synced)

    async def _run(self, last_synced: Any) -> dict[str, Any]:
        started_at = parse_timestamp(self.clock())
        watermark = await self.resolve_last_synced(last_synced)
        logger.info("sync_started last_synced=%s", format_timestamp(watermark))

        summary: dict[str, Any] = {"started_at": format_timestamp(started_at)}
        try:
            for entity_cls in ENTITY_ORDER:
                entity_sync = entity_cls(self.local, self.remote, self.progress)
                summary[entity_sync.stage.value] = await entity_sync.run(watermark)

            finished_at = parse_timestamp(self.clock())
            summary["library_counts"] = await self.local.library_counts()
            # last step: a run that fails anywhere before this keeps the old watermark
            await self.watermark.set_last_synced(finished_at)
        except Exception as exc:
            self.progress.reset()
            logger.error("sync_failed error=%s", exc)
            raise

        self.progress.reset()
        summary["last_synced"] = format_timestamp(finished_at)
        summary["finished_at"] = format_timestamp(finished_at)
        logger.info(
            "sync_completed models=%s groups=%s labels=%s resources=%s",
            summary["library_counts"]["models"],
            summary["library_counts"]["groups"],
            summary["library_counts"]["labels"],
            summary["library_counts"]["resources"],
        )
        return summary
