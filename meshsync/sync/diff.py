from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Protocol, Sequence, TypeVar


class DiffableItem(Protocol):
    @property
    def global_id(self) -> str: ...

    @property
    def last_modified(self) -> datetime: ...


T = TypeVar("T", bound=DiffableItem)


@dataclass
class Conflict(Generic[T]):
    """Both copies of one record. `crossed` marks a pair rebuilt from an interrupted transfer."""

    local: T
    remote: T
    crossed: bool = False


@dataclass
class SyncPlan(Generic[T]):
    to_upload_local_only: list[T] = field(default_factory=list)
    to_download_remote_only: list[T] = field(default_factory=list)
    to_delete_local: list[T] = field(default_factory=list)
    to_delete_server: list[T] = field(default_factory=list)
    conflict_local_newer: list[Conflict[T]] = field(default_factory=list)
    conflict_remote_newer: list[Conflict[T]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            (
                self.to_upload_local_only,
                self.to_download_remote_only,
                self.to_delete_local,
                self.to_delete_server,
                self.conflict_local_newer,
                self.conflict_remote_newer,
            )
        )

    def counts(self) -> dict[str, int]:
        return {
            "to_upload": len(self.to_upload_local_only),
            "to_download": len(self.to_download_remote_only),
            "to_delete_local": len(self.to_delete_local),
            "to_delete_server": len(self.to_delete_server),
            "conflict_local_newer": len(self.conflict_local_newer),
            "conflict_remote_newer": len(self.conflict_remote_newer),
        }


def compute_differences(local_items: Sequence[T], remote_items: Sequence[T], last_synced: datetime) -> SyncPlan[T]:
    """Build the reconciliation plan between two snapshots.

    Records are joined on global id only. A record missing on the other side is
    a deletion when it was last touched before the watermark, otherwise it is new.
    Equal timestamps mean in sync; otherwise the later timestamp wins the record.
    """
    plan: SyncPlan[T] = SyncPlan()
    remote_by_id = {item.global_id: item for item in remote_items}
    local_ids = {item.global_id for item in local_items}

    for local_item in local_items:
        remote_item = remote_by_id.get(local_item.global_id)

        if remote_item is None:
            if local_item.last_modified < last_synced:
                plan.to_delete_local.append(local_item)
            else:
                plan.to_upload_local_only.append(local_item)
        elif remote_item.last_modified == local_item.last_modified:
            continue
        elif remote_item.last_modified < local_item.last_modified:
            plan.conflict_local_newer.append(Conflict(local=local_item, remote=remote_item))
        else:
            plan.conflict_remote_newer.append(Conflict(local=local_item, remote=remote_item))

    for remote_item in remote_items:
        if remote_item.global_id in local_ids:
            continue
        if remote_item.last_modified < last_synced:
            plan.to_delete_server.append(remote_item)
        else:
            plan.to_download_remote_only.append(remote_item)

    return plan
