from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from hypothesis import given, strategies as st

from meshsync.sync.diff import compute_differences

EPOCH = datetime(2031, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Item:
    global_id: str
    last_modified: datetime


def _at(seconds: int) -> datetime:
    return EPOCH + timedelta(seconds=seconds)


def _item(gid: str, t: int) -> Item:
    return Item(gid, _at(t))


def test_local_only_newer_than_watermark_is_uploaded():
    plan = compute_differences([_item("A", 10)], [], _at(5))
    assert plan.to_upload_local_only == [_item("A", 10)]
    assert plan.counts()["to_upload"] == 1
    assert not plan.to_delete_local


def test_local_only_older_than_watermark_is_deleted_locally():
    plan = compute_differences([_item("A", 3)], [], _at(5))
    assert plan.to_delete_local == [_item("A", 3)]
    assert not plan.to_upload_local_only


def test_local_only_at_exact_watermark_is_uploaded():
    plan = compute_differences([_item("A", 5)], [], _at(5))
    assert plan.to_upload_local_only == [_item("A", 5)]


def test_equal_timestamps_are_in_sync():
    plan = compute_differences([_item("A", 7)], [_item("A", 7)], _at(5))
    assert plan.is_empty()


def test_local_newer_conflict():
    plan = compute_differences([_item("A", 9)], [_item("A", 4)], _at(5))
    assert len(plan.conflict_local_newer) == 1
    conflict = plan.conflict_local_newer[0]
    assert conflict.local == _item("A", 9)
    assert conflict.remote == _item("A", 4)
    assert conflict.crossed is False
    assert not plan.conflict_remote_newer


def test_remote_newer_conflict():
    plan = compute_differences([_item("A", 2)], [_item("A", 8)], _at(5))
    assert [c.remote for c in plan.conflict_remote_newer] == [_item("A", 8)]


def test_remote_only_items_split_on_watermark():
    plan = compute_differences([], [_item("old", 1), _item("new", 9)], _at(5))
    assert plan.to_delete_server == [_item("old", 1)]
    assert plan.to_download_remote_only == [_item("new", 9)]


def _snapshot(entries):
    return [_item(gid, t) for gid, t in entries.items()]


snapshots = st.dictionaries(
    st.text(alphabet="abcdef", min_size=1, max_size=3),
    st.integers(min_value=0, max_value=20),
    max_size=12,
)


@given(snapshots, snapshots, st.integers(min_value=0, max_value=20))
def test_plan_sets_are_disjoint_and_cover_every_divergent_item(local_entries, remote_entries, watermark):
    plan = compute_differences(_snapshot(local_entries), _snapshot(remote_entries), _at(watermark))

    buckets = [
        {i.global_id for i in plan.to_upload_local_only},
        {i.global_id for i in plan.to_download_remote_only},
        {i.global_id for i in plan.to_delete_local},
        {i.global_id for i in plan.to_delete_server},
        {c.local.global_id for c in plan.conflict_local_newer},
        {c.local.global_id for c in plan.conflict_remote_newer},
    ]
    seen: set[str] = set()
    for bucket in buckets:
        assert not (bucket & seen)
        seen |= bucket

    in_sync = {gid for gid, t in local_entries.items() if remote_entries.get(gid) == t}
    assert seen | in_sync == set(local_entries) | set(remote_entries)
    assert not (seen & in_sync)


@given(snapshots, snapshots, st.integers(min_value=0, max_value=20))
def test_applying_plan_then_rediffing_yields_empty_plan(local_entries, remote_entries, watermark):
    local = dict(local_entries)
    remote = dict(remote_entries)
    plan = compute_differences(_snapshot(local), _snapshot(remote), _at(watermark))

    for item in plan.to_upload_local_only:
        remote[item.global_id] = local[item.global_id]
    for item in plan.to_download_remote_only:
        local[item.global_id] = remote[item.global_id]
    for conflict in plan.conflict_local_newer:
        remote[conflict.local.global_id] = local[conflict.local.global_id]
    for conflict in plan.conflict_remote_newer:
        local[conflict.remote.global_id] = remote[conflict.remote.global_id]
    for item in plan.to_delete_local:
        del local[item.global_id]
    for item in plan.to_delete_server:
        del remote[item.global_id]

    assert compute_differences(_snapshot(local), _snapshot(remote), _at(watermark)).is_empty()
