from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence

from .entities import Group, GroupMeta, Label, LabelMeta, Model, Resource


class ModelStore(Protocol):
    async def list_models(self) -> list[Model]: ...

    async def create_model(self, model: Model, content: bytes) -> Model: ...

    async def edit_model(self, model: Model, force_timestamp: bool = False, force_global_id: bool = False) -> None: ...

    async def delete_model(self, model: Model) -> None: ...

    async def get_blob_bytes(self, model: Model) -> bytes: ...


class GroupStore(Protocol):
    async def list_groups(self) -> list[Group]: ...

    async def create_group(self, name: str) -> GroupMeta: ...

    async def edit_group(self, meta: GroupMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None: ...

    async def delete_group(self, meta: GroupMeta) -> None: ...

    async def add_models_to_group(self, meta: GroupMeta, models: Sequence[Model]) -> None: ...

    async def remove_models_from_group(self, models: Sequence[Model]) -> None: ...


class LabelStore(Protocol):
    async def list_labels(self) -> list[Label]: ...

    async def create_label(self, name: str, color: int) -> LabelMeta: ...

    async def edit_label(self, meta: LabelMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None: ...

    async def delete_label(self, meta: LabelMeta) -> None: ...

    async def add_label_to_models(self, meta: LabelMeta, models: Sequence[Model]) -> None: ...

    async def remove_label_from_models(self, meta: LabelMeta, models: Sequence[Model]) -> None: ...

    async def get_keywords(self, meta: LabelMeta) -> list[str]: ...

    async def set_keywords(self, meta: LabelMeta, keywords: Sequence[str]) -> None: ...

    async def set_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None: ...

    async def remove_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None: ...


class ResourceStore(Protocol):
    async def list_resources(self) -> list[Resource]: ...

    async def create_resource(self, name: str) -> Resource: ...

    async def edit_resource(self, resource: Resource, force_timestamp: bool = False, force_global_id: bool = False) -> None: ...

    async def delete_resource(self, resource: Resource) -> None: ...

    async def get_groups_for_resource(self, resource: Resource) -> list[Group]: ...

    async def set_resource_on_group(self, resource: Resource | None, group_id: int) -> None: ...


class WatermarkStore(Protocol):
    async def get_last_synced(self) -> datetime | None: ...

    async def set_last_synced(self, value: datetime) -> None: ...


@dataclass
class StoreSet:
    """One side of a sync: the four entity stores of a single backend."""

    models: ModelStore
    groups: GroupStore
    labels: LabelStore
    resources: ResourceStore

    @classmethod
    def from_backend(cls, backend: Any) -> "StoreSet":
        return cls(models=backend, groups=backend, labels=backend, resources=backend)

    async def library_counts(self) -> dict[str, int]:
        return {
            "models": len(await self.models.list_models()),
            "groups": len(await self.groups.list_groups()),
            "labels": len(await self.labels.list_labels()),
            "resources": len(await self.resources.list_resources()),
        }
