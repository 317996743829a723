from __future__ import annotations

import logging

from .base import EntitySync, index_by_global_id
from .diff import Conflict
from .entities import Label, LabelMeta, Model
from .errors import MissingReferenceError
from .progress import SyncStage
from .stores import StoreSet


def compare_child_first(a: Label, b: Label) -> int:
    """Pairwise order: a label sorts after any label it lists as a child."""
    if any(child.id == b.meta.id for child in a.children):
        return 1
    if any(child.id == a.meta.id for child in b.children):
        return -1
    return 0


def order_children_first(labels: list[Label]) -> list[Label]:
    """Stable reorder so every label comes after all of its listed children.

    `compare_child_first` is not transitive, so this is not a sort: each parent
    is moved behind its last listed child until nothing moves. Cycles stop
    after a bounded number of moves.
    """
    ordered = list(labels)
    for _ in range(len(ordered) * len(ordered) + 1):
        moved = False
        for index, label in enumerate(ordered):
            last_child = max(
                (pos for pos in range(index + 1, len(ordered)) if compare_child_first(label, ordered[pos]) == 1),
                default=None,
            )
            if last_child is not None:
                ordered.insert(last_child, ordered.pop(index))
                moved = True
                break
        if not moved:
            break
    return ordered


class LabelSync(EntitySync[Label]):
    stage = SyncStage.LABELS
    logger = logging.getLogger("sync.labels")
    # completion order must match order_children_first
    transfer_fan_out = 1

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._models: dict[str, list[Model]] = {"local": [], "remote": []}

    async def load_snapshots(self) -> tuple[list[Label], list[Label]]:
        self._models["local"] = await self.local.models.list_models()
        self._models["remote"] = await self.remote.models.list_models()
        return await self.local.labels.list_labels(), await self.remote.labels.list_labels()

    def order_transfers(self, items: list[Label]) -> list[Label]:
        return order_children_first(items)

    @staticmethod
    def _other_side(side: str) -> str:
        return "local" if side == "remote" else "remote"

    def _members(self, label_id: int, side: str) -> list[Model]:
        return [m for m in self._models[side] if any(lbl.id == label_id for lbl in m.labels)]

    def _map_members(self, label: Label, target_side: str) -> list[Model]:
        source_members = self._members(label.meta.id, self._other_side(target_side))
        targets = index_by_global_id(self._models[target_side])
        mapped: list[Model] = []
        for member in source_members:
            found = targets.get(member.global_id)
            if found is None:
                raise MissingReferenceError("model", member.global_id, owner=f"label:{label.global_id}")
            mapped.append(found)
        return mapped

    async def _map_children(self, label: Label, target: StoreSet) -> list[LabelMeta]:
        if not label.children:
            return []
        # listed fresh: children may have been created earlier in this step
        targets = {lbl.global_id: lbl.meta for lbl in await target.labels.list_labels()}
        mapped: list[LabelMeta] = []
        for child in label.children:
            found = targets.get(child.global_id)
            if found is None:
                raise MissingReferenceError("label", child.global_id, owner=f"label:{label.global_id}")
            mapped.append(found)
        return mapped

    async def transfer(self, item: Label, source: StoreSet, target: StoreSet, target_side: str) -> None:
        created = await target.labels.create_label(item.meta.name, item.meta.color)
        meta = item.meta.remap(created.id)

        keywords = await source.labels.get_keywords(item.meta)
        await target.labels.set_keywords(meta, keywords)

        members = self._map_members(item, target_side)
        if members:
            await target.labels.add_label_to_models(meta, members)

        children = await self._map_children(item, target)
        if children:
            await target.labels.set_children(meta, children)

        await target.labels.edit_label(meta, force_timestamp=True, force_global_id=True)
        self.logger.debug(
            "label_transferred to=%s gid=%s id=%s members=%s children=%s",
            target_side,
            item.global_id,
            created.id,
            len(members),
            len(children),
        )

    async def overwrite(
        self,
        conflict: Conflict[Label],
        authoritative: Label,
        other: Label,
        source: StoreSet,
        target: StoreSet,
        target_side: str,
    ) -> None:
        meta = authoritative.meta.remap(other.meta.id)

        keywords = await source.labels.get_keywords(authoritative.meta)
        await target.labels.set_keywords(meta, keywords)

        current = self._members(other.meta.id, target_side)
        if current:
            await target.labels.remove_label_from_models(meta, current)
        members = self._map_members(authoritative, target_side)
        if members:
            await target.labels.add_label_to_models(meta, members)

        children = await self._map_children(authoritative, target)
        if children:
            await target.labels.set_children(meta, children)
        elif other.children:
            await target.labels.remove_children(meta, other.children)

        await target.labels.edit_label(
            meta,
            force_timestamp=True,
            force_global_id=authoritative.global_id != other.global_id,
        )

    async def delete(self, item: Label, store: StoreSet) -> None:
        await store.labels.delete_label(item.meta)
