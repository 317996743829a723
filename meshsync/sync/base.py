from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Iterable, Iterator, Sequence, TypeVar

from .diff import Conflict, SyncPlan, compute_differences
from .limiter import run_bounded
from .progress import ProgressTracker, SyncStage, SyncStep
from .stores import StoreSet

SYNC_FAN_OUT = 4

T = TypeVar("T")


class EntitySync(Generic[T]):
    """Four-stage reconciliation of one entity type between two stores.

    Upload -> Download -> UpdateMetadata -> Delete. A stage whose plan set is
    empty is skipped. Subclasses supply snapshot loading and the per-item
    operations; this class owns ordering, fan-out and progress.
    """

    stage: SyncStage
    transfer_fan_out = SYNC_FAN_OUT
    logger = logging.getLogger("sync")

    def __init__(self, local: StoreSet, remote: StoreSet, progress: ProgressTracker):
        self.local = local
        self.remote = remote
        self.progress = progress
        self.summary: dict[str, int] = {
            "uploaded": 0,
            "downloaded": 0,
            "updated_remote": 0,
            "updated_local": 0,
            "deleted_remote": 0,
            "deleted_local": 0,
            "crossed": 0,
        }

    # -- hooks -------------------------------------------------------------

    async def load_snapshots(self) -> tuple[list[T], list[T]]:
        raise NotImplementedError

    def prepare_plan(self, plan: SyncPlan[T]) -> None:
        """Adjust the plan before transfers run."""

    def order_transfers(self, items: list[T]) -> list[T]:
        return items

    async def transfer(self, item: T, source: StoreSet, target: StoreSet, target_side: str) -> None:
        raise NotImplementedError

    async def overwrite(self, conflict: Conflict[T], authoritative: T, other: T, source: StoreSet, target: StoreSet, target_side: str) -> None:
        raise NotImplementedError

    async def delete(self, item: T, store: StoreSet) -> None:
        raise NotImplementedError

    # -- driver ------------------------------------------------------------

    async def run(self, last_synced: datetime) -> dict[str, int]:
        self.progress.begin_stage(self.stage)
        local_items, remote_items = await self.load_snapshots()
        plan = compute_differences(local_items, remote_items, last_synced)
        self.prepare_plan(plan)
        self.logger.info("sync_plan stage=%s %s", self.stage.value, " ".join(f"{k}={v}" for k, v in plan.counts().items()))

        if plan.to_upload_local_only:
            items = self.order_transfers(list(plan.to_upload_local_only))
            await self._run_step(
                SyncStep.UPLOAD,
                items,
                lambda item: self.transfer(item, self.local, self.remote, "remote"),
                self.transfer_fan_out,
            )
            self.summary["uploaded"] += len(items)

        if plan.to_download_remote_only:
            items = self.order_transfers(list(plan.to_download_remote_only))
            await self._run_step(
                SyncStep.DOWNLOAD,
                items,
                lambda item: self.transfer(item, self.remote, self.local, "local"),
                self.transfer_fan_out,
            )
            self.summary["downloaded"] += len(items)

        if plan.conflict_local_newer:
            await self._run_step(
                SyncStep.UPDATE_METADATA,
                plan.conflict_local_newer,
                lambda c: self.overwrite(c, c.local, c.remote, self.local, self.remote, "remote"),
            )
            self.summary["updated_remote"] += len(plan.conflict_local_newer)

        if plan.conflict_remote_newer:
            await self._run_step(
                SyncStep.UPDATE_METADATA,
                plan.conflict_remote_newer,
                lambda c: self.overwrite(c, c.remote, c.local, self.remote, self.local, "local"),
            )
            self.summary["updated_local"] += len(plan.conflict_remote_newer)

        if plan.to_delete_server:
            await self._run_step(SyncStep.DELETE, plan.to_delete_server, lambda item: self.delete(item, self.remote))
            self.summary["deleted_remote"] += len(plan.to_delete_server)

        if plan.to_delete_local:
            await self._run_step(SyncStep.DELETE, plan.to_delete_local, lambda item: self.delete(item, self.local))
            self.summary["deleted_local"] += len(plan.to_delete_local)

        self.logger.info("sync_stage_completed stage=%s %s", self.stage.value, " ".join(f"{k}={v}" for k, v in self.summary.items()))
        return dict(self.summary)

    async def _run_step(
        self,
        step: SyncStep,
        items: Sequence[Any],
        operation: Callable[[Any], Awaitable[None]],
        fan_out: int = SYNC_FAN_OUT,
    ) -> None:
        token = self.progress.begin_step(step, len(items))

        async def tracked(item: Any) -> None:
            await operation(item)
            # no-op once the step is over, e.g. for operations abandoned after a failure
            self.progress.advance(token)

        def operations() -> Iterator[Awaitable[None]]:
            for item in items:
                yield tracked(item)

        await run_bounded(operations(), fan_out)


def index_by_global_id(items: Iterable[Any]) -> dict[str, Any]:
    return {item.global_id: item for item in items}
