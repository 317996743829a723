from __future__ import annotations

import asyncio
import hashlib
import itertools
from datetime import datetime
from typing import Callable, Sequence

from meshsync.sync.entities import (
    Blob,
    Group,
    GroupMeta,
    Label,
    LabelMeta,
    Model,
    ModelFlags,
    Resource,
    new_global_id,
    parse_timestamp,
    utc_now,
)


class MemoryBackend:
    """All four entity stores plus a watermark, held in dicts.

    Serves the browser-only demo shape and doubles as a test store. Relations
    live beside the records (model->group, label->models, label->children,
    group->resource) so listings are always derived, never stale.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now, latency: float = 0.0):
        self.clock = clock
        self.latency = latency
        self._ids = itertools.count(1)
        self._models: dict[int, Model] = {}
        self._blobs: dict[str, bytes] = {}
        self._model_group: dict[int, int] = {}
        self._groups: dict[int, GroupMeta] = {}
        self._labels: dict[int, LabelMeta] = {}
        self._label_models: dict[int, set[int]] = {}
        self._label_children: dict[int, dict[int, None]] = {}
        self._keywords: dict[int, list[str]] = {}
        self._resources: dict[int, Resource] = {}
        self._last_synced: datetime | None = None

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    def _now(self) -> datetime:
        return parse_timestamp(self.clock())

    # -- seeding ---------------------------------------------------------------

    def import_model(self, name: str, content: bytes, link: str | None = None, description: str | None = None) -> Model:
        sha256 = hashlib.sha256(content).hexdigest()
        self._blobs[sha256] = content
        model = Model(
            id=next(self._ids),
            name=name,
            blob=Blob(id=next(self._ids), sha256=sha256, size=len(content)),
            link=link,
            description=description,
            last_modified=self._now(),
            unique_global_id=new_global_id(),
        )
        self._models[model.id] = model
        return model.model_copy(deep=True)

    # -- models ----------------------------------------------------------------

    def _model_view(self, model_id: int) -> Model:
        record = self._models[model_id]
        group_id = self._model_group.get(model_id)
        labels = [self._labels[lid] for lid in sorted(self._label_models) if model_id in self._label_models[lid]]
        return record.model_copy(
            update={
                "group": self._groups[group_id] if group_id is not None else None,
                "labels": labels,
            },
            deep=True,
        )

    def _model_record(self, model_id: int) -> Model:
        try:
            return self._models[model_id]
        except KeyError as exc:
            raise RuntimeError(f"model_not_found: {model_id}") from exc

    async def list_models(self) -> list[Model]:
        await self._pause()
        return [self._model_view(model_id) for model_id in sorted(self._models)]

    async def create_model(self, model: Model, content: bytes) -> Model:
        await self._pause()
        sha256 = hashlib.sha256(content).hexdigest()
        self._blobs[sha256] = content
        created = Model(
            id=next(self._ids),
            name=model.name,
            blob=Blob(id=next(self._ids), sha256=sha256, filetype=model.blob.filetype, size=len(content)),
            link=model.link,
            description=model.description,
            flags=model.flags,
            last_modified=self._now(),
            unique_global_id=new_global_id(),
        )
        self._models[created.id] = created
        return created.model_copy(deep=True)

    async def edit_model(self, model: Model, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._pause()
        record = self._model_record(model.id)
        update = {
            "name": model.name,
            "link": model.link,
            "description": model.description,
            "flags": model.flags.model_copy(),
            "last_modified": model.last_modified if force_timestamp else self._now(),
        }
        if force_global_id:
            update["unique_global_id"] = model.unique_global_id
        self._models[model.id] = record.model_copy(update=update)

    async def delete_model(self, model: Model) -> None:
        await self._pause()
        self._model_record(model.id)
        self._models.pop(model.id)
        self._model_group.pop(model.id, None)
        for members in self._label_models.values():
            members.discard(model.id)

    async def get_blob_bytes(self, model: Model) -> bytes:
        await self._pause()
        try:
            return self._blobs[model.blob.sha256]
        except KeyError as exc:
            raise RuntimeError(f"blob_not_found: {model.blob.sha256}") from exc

    # -- groups ----------------------------------------------------------------

    def _group_record(self, group_id: int) -> GroupMeta:
        try:
            return self._groups[group_id]
        except KeyError as exc:
            raise RuntimeError(f"group_not_found: {group_id}") from exc

    def _group_view(self, group_id: int) -> Group:
        members = [self._model_view(mid) for mid in sorted(self._model_group) if self._model_group[mid] == group_id]
        return Group(meta=self._groups[group_id].model_copy(), models=members)

    def _touch_group(self, group_id: int) -> None:
        self._groups[group_id] = self._groups[group_id].model_copy(update={"last_modified": self._now()})

    async def list_groups(self) -> list[Group]:
        await self._pause()
        return [self._group_view(group_id) for group_id in sorted(self._groups)]

    async def create_group(self, name: str) -> GroupMeta:
        await self._pause()
        now = self._now()
        meta = GroupMeta(id=next(self._ids), name=name, created=now.isoformat(), last_modified=now)
        self._groups[meta.id] = meta
        return meta.model_copy()

    async def edit_group(self, meta: GroupMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._pause()
        record = self._group_record(meta.id)
        update = {"name": meta.name, "last_modified": meta.last_modified if force_timestamp else self._now()}
        if force_global_id:
            update["unique_global_id"] = meta.unique_global_id
        self._groups[meta.id] = record.model_copy(update=update)

    async def delete_group(self, meta: GroupMeta) -> None:
        await self._pause()
        self._group_record(meta.id)
        self._groups.pop(meta.id)
        for model_id in [mid for mid, gid in self._model_group.items() if gid == meta.id]:
            self._model_group.pop(model_id)

    async def add_models_to_group(self, meta: GroupMeta, models: Sequence[Model]) -> None:
        await self._pause()
        self._group_record(meta.id)
        for model in models:
            self._model_record(model.id)
            self._model_group[model.id] = meta.id
        self._touch_group(meta.id)

    async def remove_models_from_group(self, models: Sequence[Model]) -> None:
        await self._pause()
        for model in models:
            self._model_group.pop(model.id, None)

    # -- labels ----------------------------------------------------------------

    def _label_record(self, label_id: int) -> LabelMeta:
        try:
            return self._labels[label_id]
        except KeyError as exc:
            raise RuntimeError(f"label_not_found: {label_id}") from exc

    def _touch_label(self, label_id: int) -> None:
        self._labels[label_id] = self._labels[label_id].model_copy(update={"last_modified": self._now()})

    async def list_labels(self) -> list[Label]:
        await self._pause()
        child_ids = {cid for children in self._label_children.values() for cid in children}
        return [
            Label(
                meta=self._labels[label_id].model_copy(),
                children=[self._labels[cid].model_copy() for cid in self._label_children.get(label_id, {})],
                has_parent=label_id in child_ids,
            )
            for label_id in sorted(self._labels)
        ]

    async def create_label(self, name: str, color: int) -> LabelMeta:
        await self._pause()
        meta = LabelMeta(id=next(self._ids), name=name, color=color, last_modified=self._now())
        self._labels[meta.id] = meta
        self._label_models[meta.id] = set()
        return meta.model_copy()

    async def edit_label(self, meta: LabelMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._pause()
        record = self._label_record(meta.id)
        update = {
            "name": meta.name,
            "color": meta.color,
            "last_modified": meta.last_modified if force_timestamp else self._now(),
        }
        if force_global_id:
            update["unique_global_id"] = meta.unique_global_id
        self._labels[meta.id] = record.model_copy(update=update)

    async def delete_label(self, meta: LabelMeta) -> None:
        await self._pause()
        self._label_record(meta.id)
        self._labels.pop(meta.id)
        self._label_models.pop(meta.id, None)
        self._label_children.pop(meta.id, None)
        self._keywords.pop(meta.id, None)
        for children in self._label_children.values():
            children.pop(meta.id, None)

    async def add_label_to_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._pause()
        self._label_record(meta.id)
        for model in models:
            self._model_record(model.id)
            self._label_models.setdefault(meta.id, set()).add(model.id)
        self._touch_label(meta.id)

    async def remove_label_from_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._pause()
        self._label_record(meta.id)
        for model in models:
            self._label_models.setdefault(meta.id, set()).discard(model.id)
        self._touch_label(meta.id)

    async def get_keywords(self, meta: LabelMeta) -> list[str]:
        await self._pause()
        self._label_record(meta.id)
        return list(self._keywords.get(meta.id, []))

    async def set_keywords(self, meta: LabelMeta, keywords: Sequence[str]) -> None:
        await self._pause()
        self._label_record(meta.id)
        self._keywords[meta.id] = list(keywords)

    async def set_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._pause()
        self._label_record(meta.id)
        for child in children:
            self._label_record(child.id)
        self._label_children[meta.id] = {child.id: None for child in children}
        self._touch_label(meta.id)

    async def remove_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._pause()
        self._label_record(meta.id)
        current = self._label_children.get(meta.id, {})
        for child in children:
            current.pop(child.id, None)
        self._touch_label(meta.id)

    # -- resources -------------------------------------------------------------

    def _resource_record(self, resource_id: int) -> Resource:
        try:
            return self._resources[resource_id]
        except KeyError as exc:
            raise RuntimeError(f"resource_not_found: {resource_id}") from exc

    async def list_resources(self) -> list[Resource]:
        await self._pause()
        return [self._resources[rid].model_copy(deep=True) for rid in sorted(self._resources)]

    async def create_resource(self, name: str) -> Resource:
        await self._pause()
        now = self._now()
        resource = Resource(id=next(self._ids), name=name, created=now.isoformat(), last_modified=now)
        self._resources[resource.id] = resource
        return resource.model_copy(deep=True)

    async def edit_resource(self, resource: Resource, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._pause()
        record = self._resource_record(resource.id)
        update = {
            "name": resource.name,
            "flags": resource.flags.model_copy(),
            "last_modified": resource.last_modified if force_timestamp else self._now(),
        }
        if force_global_id:
            update["unique_global_id"] = resource.unique_global_id
        self._resources[resource.id] = record.model_copy(update=update)

    async def delete_resource(self, resource: Resource) -> None:
        await self._pause()
        self._resource_record(resource.id)
        self._resources.pop(resource.id)
        for group_id, meta in list(self._groups.items()):
            if meta.resource_id == resource.id:
                self._groups[group_id] = meta.model_copy(update={"resource_id": None})

    async def get_groups_for_resource(self, resource: Resource) -> list[Group]:
        await self._pause()
        self._resource_record(resource.id)
        return [self._group_view(gid) for gid in sorted(self._groups) if self._groups[gid].resource_id == resource.id]

    async def set_resource_on_group(self, resource: Resource | None, group_id: int) -> None:
        await self._pause()
        meta = self._group_record(group_id)
        if resource is None:
            self._groups[group_id] = meta.model_copy(update={"resource_id": None})
            return
        self._resource_record(resource.id)
        self._groups[group_id] = meta.model_copy(update={"resource_id": resource.id})
        self._resources[resource.id] = self._resources[resource.id].model_copy(update={"last_modified": self._now()})

    # -- watermark -------------------------------------------------------------

    async def get_last_synced(self) -> datetime | None:
        return self._last_synced

    async def set_last_synced(self, value: datetime) -> None:
        self._last_synced = parse_timestamp(value)
