from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from meshsync.providers.http_remote.client import RemoteClient
from meshsync.sync.entities import Group, GroupMeta, Label, LabelMeta, Model, Resource, format_timestamp
from meshsync.sync.errors import RemoteRequestError
from meshsync.sync.stores import StoreSet

logger = logging.getLogger("remote")

PAGE_SIZE = 100


class RemoteBackend:
    """Entity stores backed by the hosted server.

    Payload keys follow the server's REST API. Every call is a blocking
    `requests` round trip pushed onto a worker thread.
    """

    def __init__(self, client: RemoteClient):
        self.client = client

    async def _request(self, method: str, endpoint: str, data: dict[str, Any] | None = None) -> Any:
        return await asyncio.to_thread(self.client.request, method, endpoint, data)

    async def _list(self, endpoint: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.client.list_all, endpoint, PAGE_SIZE)

    @staticmethod
    def _stamp(data: dict[str, Any], prefix: str, item: Any, force_timestamp: bool, force_global_id: bool) -> dict[str, Any]:
        if force_timestamp:
            data[f"{prefix}_timestamp"] = format_timestamp(item.last_modified)
        if force_global_id:
            data[f"{prefix}_global_id"] = item.unique_global_id
        return data

    # -- models ----------------------------------------------------------------

    async def list_models(self) -> list[Model]:
        return [Model.model_validate(raw) for raw in await self._list("/models")]

    async def _get_model(self, model_id: int) -> Model:
        payload = await self._request("GET", "/models", {"model_ids": [model_id], "page": 1, "page_size": 1})
        if not payload:
            raise RemoteRequestError(f"remote_model_missing_after_upload: {model_id}")
        return Model.model_validate(payload[0])

    async def create_model(self, model: Model, content: bytes) -> Model:
        file_name = f"{model.name}.{model.blob.filetype}"
        ids = await asyncio.to_thread(self.client.upload, "/models", file_name, content)
        if not isinstance(ids, list) or not ids:
            raise RemoteRequestError(f"remote_upload_no_model_id: {model.global_id}")
        logger.info("remote_model_uploaded id=%s sha256=%s", ids[0], model.blob.sha256)
        return await self._get_model(int(ids[0]))

    async def edit_model(self, model: Model, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        data = {
            "model_name": model.name,
            "model_url": model.link,
            "model_description": model.description,
            "model_flags": model.flags.to_raw() or None,
        }
        await self._request("PUT", f"/models/{model.id}", self._stamp(data, "model", model, force_timestamp, force_global_id))

    async def delete_model(self, model: Model) -> None:
        await self._request("DELETE", f"/models/{model.id}")

    async def get_blob_bytes(self, model: Model) -> bytes:
        return await asyncio.to_thread(self.client.download, f"/blobs/{model.blob.sha256}/bytes")

    # -- groups ----------------------------------------------------------------

    async def list_groups(self) -> list[Group]:
        return [Group.model_validate(raw) for raw in await self._list("/groups")]

    async def create_group(self, name: str) -> GroupMeta:
        return GroupMeta.model_validate(await self._request("POST", "/groups", {"group_name": name}))

    async def edit_group(self, meta: GroupMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        data = {"group_name": meta.name}
        await self._request("PUT", f"/groups/{meta.id}", self._stamp(data, "group", meta, force_timestamp, force_global_id))

    async def delete_group(self, meta: GroupMeta) -> None:
        await self._request("DELETE", f"/groups/{meta.id}")

    async def add_models_to_group(self, meta: GroupMeta, models: Sequence[Model]) -> None:
        await self._request("POST", f"/groups/{meta.id}/models", {"model_ids": [m.id for m in models]})

    async def remove_models_from_group(self, models: Sequence[Model]) -> None:
        await self._request("DELETE", "/groups/detach_models", {"model_ids": [m.id for m in models]})

    # -- labels ----------------------------------------------------------------

    async def list_labels(self) -> list[Label]:
        return [Label.model_validate(raw) for raw in await self._list("/labels")]

    async def create_label(self, name: str, color: int) -> LabelMeta:
        return LabelMeta.model_validate(await self._request("POST", "/labels", {"label_name": name, "label_color": int(color)}))

    async def edit_label(self, meta: LabelMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        data = {"label_name": meta.name, "label_color": meta.color}
        await self._request("PUT", f"/labels/{meta.id}", self._stamp(data, "label", meta, force_timestamp, force_global_id))

    async def delete_label(self, meta: LabelMeta) -> None:
        await self._request("DELETE", f"/labels/{meta.id}")

    async def add_label_to_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._request("POST", f"/labels/{meta.id}/models", {"model_ids": [m.id for m in models]})

    async def remove_label_from_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._request("DELETE", f"/labels/{meta.id}/models", {"model_ids": [m.id for m in models]})

    async def get_keywords(self, meta: LabelMeta) -> list[str]:
        payload = await self._request("GET", f"/labels/{meta.id}/keywords") or []
        return [str(item["name"]) for item in payload if isinstance(item, dict) and "name" in item]

    async def set_keywords(self, meta: LabelMeta, keywords: Sequence[str]) -> None:
        await self._request("PUT", f"/labels/{meta.id}/keywords", {"keywords": list(keywords)})

    async def set_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._request("PUT", f"/labels/{meta.id}/childs", {"child_label_ids": [c.id for c in children]})

    async def remove_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._request("DELETE", f"/labels/{meta.id}/childs", {"child_label_ids": [c.id for c in children]})

    # -- resources -------------------------------------------------------------

    async def list_resources(self) -> list[Resource]:
        return [Resource.model_validate(raw) for raw in await self._list("/resources")]

    async def create_resource(self, name: str) -> Resource:
        return Resource.model_validate(await self._request("POST", "/resources", {"resource_name": name}))

    async def edit_resource(self, resource: Resource, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        data = {"resource_name": resource.name, "resource_flags": resource.flags.to_raw()}
        await self._request(
            "PUT",
            f"/resources/{resource.id}",
            self._stamp(data, "resource", resource, force_timestamp, force_global_id),
        )

    async def delete_resource(self, resource: Resource) -> None:
        await self._request("DELETE", f"/resources/{resource.id}")

    async def get_groups_for_resource(self, resource: Resource) -> list[Group]:
        payload = await self._request("GET", f"/resources/{resource.id}/groups") or []
        return [Group.model_validate(raw) for raw in payload]

    async def set_resource_on_group(self, resource: Resource | None, group_id: int) -> None:
        data = {"resource_id": resource.id if resource is not None else None}
        await self._request("PUT", f"/groups/{group_id}/resource", data)


def build_remote_stores(remote_cfg) -> StoreSet:
    """Remote side of a sync for the configured server endpoint."""
    client = RemoteClient(remote_cfg.base_url, token=remote_cfg.token, timeout=remote_cfg.timeout_sec)
    return StoreSet.from_backend(RemoteBackend(client))
