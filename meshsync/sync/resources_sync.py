from __future__ import annotations

import logging

from .base import EntitySync, index_by_global_id
from .diff import Conflict
from .entities import Group, GroupMeta, Resource
from .errors import MissingReferenceError
from .progress import SyncStage
from .stores import StoreSet


class ResourceSync(EntitySync[Resource]):
    stage = SyncStage.RESOURCES
    logger = logging.getLogger("sync.resources")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._groups: dict[str, dict[str, Group]] = {"local": {}, "remote": {}}

    async def load_snapshots(self) -> tuple[list[Resource], list[Resource]]:
        self._groups["local"] = index_by_global_id(await self.local.groups.list_groups())
        self._groups["remote"] = index_by_global_id(await self.remote.groups.list_groups())
        return await self.local.resources.list_resources(), await self.remote.resources.list_resources()

    async def _map_groups(self, resource: Resource, source: StoreSet, target_side: str) -> list[GroupMeta]:
        targets = self._groups[target_side]
        mapped: list[GroupMeta] = []
        for group in await source.resources.get_groups_for_resource(resource):
            found = targets.get(group.global_id)
            if found is None:
                raise MissingReferenceError("group", group.global_id, owner=f"resource:{resource.global_id}")
            mapped.append(found.meta)
        return mapped

    async def transfer(self, item: Resource, source: StoreSet, target: StoreSet, target_side: str) -> None:
        groups = await self._map_groups(item, source, target_side)
        created = await target.resources.create_resource(item.name)
        resource = item.remap(created.id)
        for group in groups:
            await target.resources.set_resource_on_group(resource, group.id)
        await target.resources.edit_resource(resource, force_timestamp=True, force_global_id=True)
        self.logger.debug("resource_transferred to=%s gid=%s id=%s groups=%s", target_side, item.global_id, created.id, len(groups))

    async def overwrite(
        self,
        conflict: Conflict[Resource],
        authoritative: Resource,
        other: Resource,
        source: StoreSet,
        target: StoreSet,
        target_side: str,
    ) -> None:
        groups = await self._map_groups(authoritative, source, target_side)
        resource = authoritative.remap(other.id)
        wanted = {group.id for group in groups}

        for current in await target.resources.get_groups_for_resource(other):
            if current.meta.id not in wanted:
                await target.resources.set_resource_on_group(None, current.meta.id)
        for group in groups:
            await target.resources.set_resource_on_group(resource, group.id)

        await target.resources.edit_resource(
            resource,
            force_timestamp=True,
            force_global_id=authoritative.global_id != other.global_id,
        )

    async def delete(self, item: Resource, store: StoreSet) -> None:
        await store.resources.delete_resource(item)
