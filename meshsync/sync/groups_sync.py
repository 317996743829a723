from __future__ import annotations

import logging

from .base import EntitySync, index_by_global_id
from .diff import Conflict
from .entities import Group, Model
from .errors import MissingReferenceError
from .progress import SyncStage
from .stores import StoreSet


class GroupSync(EntitySync[Group]):
    stage = SyncStage.GROUPS
    logger = logging.getLogger("sync.groups")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._models: dict[str, dict[str, Model]] = {"local": {}, "remote": {}}

    async def load_snapshots(self) -> tuple[list[Group], list[Group]]:
        self._models["local"] = index_by_global_id(await self.local.models.list_models())
        self._models["remote"] = index_by_global_id(await self.remote.models.list_models())
        return await self.local.groups.list_groups(), await self.remote.groups.list_groups()

    def _map_members(self, group: Group, target_side: str) -> list[Model]:
        targets = self._models[target_side]
        mapped: list[Model] = []
        for member in group.models:
            found = targets.get(member.global_id)
            if found is None:
                raise MissingReferenceError("model", member.global_id, owner=f"group:{group.global_id}")
            mapped.append(found)
        return mapped

    async def transfer(self, item: Group, source: StoreSet, target: StoreSet, target_side: str) -> None:
        members = self._map_members(item, target_side)
        created = await target.groups.create_group(item.meta.name)
        meta = item.meta.remap(created.id)
        if members:
            await target.groups.add_models_to_group(meta, members)
        await target.groups.edit_group(meta, force_timestamp=True, force_global_id=True)
        self.logger.debug("group_transferred to=%s gid=%s id=%s members=%s", target_side, item.global_id, created.id, len(members))

    async def overwrite(
        self,
        conflict: Conflict[Group],
        authoritative: Group,
        other: Group,
        source: StoreSet,
        target: StoreSet,
        target_side: str,
    ) -> None:
        members = self._map_members(authoritative, target_side)
        meta = authoritative.meta.remap(other.meta.id)
        if other.models:
            await target.groups.remove_models_from_group(other.models)
        if members:
            await target.groups.add_models_to_group(meta, members)
        await target.groups.edit_group(
            meta,
            force_timestamp=True,
            force_global_id=authoritative.global_id != other.global_id,
        )

    async def delete(self, item: Group, store: StoreSet) -> None:
        await store.groups.delete_group(item.meta)
