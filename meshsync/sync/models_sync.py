from __future__ import annotations

import logging

from .base import EntitySync
from .diff import Conflict, SyncPlan
from .entities import Model
from .progress import SyncStage
from .stores import StoreSet


class ModelSync(EntitySync[Model]):
    stage = SyncStage.MODELS
    logger = logging.getLogger("sync.models")

    async def load_snapshots(self) -> tuple[list[Model], list[Model]]:
        return await self.local.models.list_models(), await self.remote.models.list_models()

    def prepare_plan(self, plan: SyncPlan[Model]) -> None:
        """Turn upload/download pairs sharing a blob hash into conflicts.

        Such a pair is left behind by a run that stored the content on the
        other side but died before writing the metadata back.
        """
        downloads_by_hash: dict[str, Model] = {}
        for remote_model in plan.to_download_remote_only:
            downloads_by_hash.setdefault(remote_model.blob.sha256, remote_model)

        remaining_uploads: list[Model] = []
        crossed_remote: set[int] = set()
        for local_model in plan.to_upload_local_only:
            remote_model = downloads_by_hash.pop(local_model.blob.sha256, None)
            if remote_model is None:
                remaining_uploads.append(local_model)
                continue

            crossed_remote.add(id(remote_model))
            conflict = Conflict(local=local_model, remote=remote_model, crossed=True)
            # ties go to the remote copy
            if local_model.last_modified > remote_model.last_modified:
                plan.conflict_local_newer.append(conflict)
            else:
                plan.conflict_remote_newer.append(conflict)
            self.summary["crossed"] += 1
            self.logger.info(
                "crossed_transfer_detected sha256=%s local_id=%s remote_id=%s",
                local_model.blob.sha256,
                local_model.id,
                remote_model.id,
            )

        plan.to_upload_local_only = remaining_uploads
        plan.to_download_remote_only = [m for m in plan.to_download_remote_only if id(m) not in crossed_remote]

    async def transfer(self, item: Model, source: StoreSet, target: StoreSet, target_side: str) -> None:
        content = await source.models.get_blob_bytes(item)
        created = await target.models.create_model(item, content)
        await target.models.edit_model(item.remap(created.id), force_timestamp=True, force_global_id=True)
        self.logger.debug("model_transferred to=%s gid=%s id=%s", target_side, item.global_id, created.id)

    async def overwrite(
        self,
        conflict: Conflict[Model],
        authoritative: Model,
        other: Model,
        source: StoreSet,
        target: StoreSet,
        target_side: str,
    ) -> None:
        if conflict.crossed:
            # group set during the interrupted transfer may not match the authoritative copy
            await target.groups.remove_models_from_group([other])
        await target.models.edit_model(
            authoritative.remap(other.id),
            force_timestamp=True,
            force_global_id=authoritative.global_id != other.global_id,
        )

    async def delete(self, item: Model, store: StoreSet) -> None:
        await store.models.delete_model(item)
