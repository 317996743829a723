import asyncio

import pytest

from meshsync.providers.memory import MemoryBackend
from meshsync.sync.coordinator import SyncCoordinator
from meshsync.sync.diff import compute_differences
from meshsync.sync.entities import DEFAULT_LAST_SYNCED
from meshsync.sync.errors import MissingReferenceError, SyncBusyError
from meshsync.sync.groups_sync import GroupSync
from meshsync.sync.progress import ProgressTracker, SyncProgress, SyncStage, SyncStep
from meshsync.sync.stores import StoreSet


class _RecordingBackend(MemoryBackend):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.created_labels: list[str] = []
        self.fail_groups = False

    async def create_label(self, name, color):
        self.created_labels.append(name)
        return await super().create_label(name, color)

    async def create_group(self, name):
        if self.fail_groups:
            raise RuntimeError("remote_down")
        return await super().create_group(name)


def _pair(clock, **remote_kwargs):
    local = MemoryBackend(clock=clock)
    remote = _RecordingBackend(clock=clock, **remote_kwargs)
    coordinator = SyncCoordinator(
        StoreSet.from_backend(local),
        StoreSet.from_backend(remote),
        watermark=local,
        clock=clock,
    )
    return local, remote, coordinator


async def _assert_converged(local, remote):
    for lister in ("list_models", "list_groups", "list_labels", "list_resources"):
        local_items = await getattr(local, lister)()
        remote_items = await getattr(remote, lister)()
        assert compute_differences(local_items, remote_items, DEFAULT_LAST_SYNCED).is_empty(), lister


async def _seed_library(local, remote):
    cube = local.import_model("cube", b"cube-bytes")
    sphere = local.import_model("sphere", b"sphere-bytes")
    remote.import_model("cone", b"cone-bytes")
    shelf = await local.create_group("shelf")
    await local.add_models_to_group(shelf, [cube])
    parent = await local.create_label("parts", 255)
    child = await local.create_label("screws", 65280)
    await local.set_children(parent, [child])
    await local.add_label_to_models(child, [sphere])
    await local.set_keywords(child, ["m3", "m4"])
    kit = await local.create_resource("kit")
    await local.set_resource_on_group(kit, shelf.id)
    return cube, sphere


def test_full_sync_copies_library_both_ways(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        cube, sphere = await _seed_library(local, remote)
        clock.tick()
        summary = await coordinator.run_sync()

        remote_models = {m.global_id: m for m in await remote.list_models()}
        remote_groups = await remote.list_groups()
        remote_labels = {lbl.meta.name: lbl for lbl in await remote.list_labels()}
        remote_kit = (await remote.list_resources())[0]
        kit_groups = await remote.get_groups_for_resource(remote_kit)
        keywords = await remote.get_keywords(remote_labels["screws"].meta)

        assert summary["models"]["uploaded"] == 2
        assert summary["models"]["downloaded"] == 1
        assert summary["groups"]["uploaded"] == 1
        assert summary["labels"]["uploaded"] == 2
        assert summary["resources"]["uploaded"] == 1
        assert summary["library_counts"] == {"models": 3, "groups": 1, "labels": 2, "resources": 1}

        assert sorted(m.name for m in remote_models.values()) == ["cone", "cube", "sphere"]
        assert [m.global_id for m in remote_groups[0].models] == [cube.global_id]
        assert [c.global_id for c in remote_labels["parts"].children] == [remote_labels["screws"].global_id]
        assert remote_labels["screws"].has_parent is True
        assert [lbl.name for lbl in remote_models[sphere.global_id].labels] == ["screws"]
        assert keywords == ["m3", "m4"]
        assert [g.global_id for g in kit_groups] == [remote_groups[0].global_id]
        assert sorted(m.name for m in await local.list_models()) == ["cone", "cube", "sphere"]
        assert await local.get_last_synced() == clock.now

        await _assert_converged(local, remote)

    asyncio.run(scenario())


def test_second_run_without_changes_does_nothing(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        await _seed_library(local, remote)
        clock.tick()
        await coordinator.run_sync()
        clock.tick()
        return await coordinator.run_sync()

    summary = asyncio.run(scenario())
    for stage in ("models", "groups", "labels", "resources"):
        assert all(count == 0 for count in summary[stage].values()), stage


def test_labels_are_created_children_first(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        await _seed_library(local, remote)
        clock.tick()
        await coordinator.run_sync()

    asyncio.run(scenario())
    assert remote.created_labels == ["screws", "parts"]


def test_newer_side_wins_in_both_directions(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        await _seed_library(local, remote)
        clock.tick()
        await coordinator.run_sync()

        clock.tick()
        local_cube = next(m for m in await local.list_models() if m.name == "cube")
        await local.edit_model(local_cube.model_copy(update={"name": "cube v2"}))
        remote_shelf = (await remote.list_groups())[0]
        await remote.edit_group(remote_shelf.meta.model_copy(update={"name": "top shelf"}))
        clock.tick()
        summary = await coordinator.run_sync()

        assert summary["models"]["updated_remote"] == 1
        assert summary["groups"]["updated_local"] == 1
        assert "cube v2" in {m.name for m in await remote.list_models()}
        local_groups = await local.list_groups()
        assert local_groups[0].meta.name == "top shelf"
        assert [m.name for m in local_groups[0].models] == ["cube v2"]
        await _assert_converged(local, remote)

    asyncio.run(scenario())


def test_deletions_propagate_after_watermark(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        cube = local.import_model("cube", b"cube-bytes")
        local.import_model("sphere", b"sphere-bytes")
        clock.tick()
        await coordinator.run_sync()

        clock.tick()
        await local.delete_model(cube)
        remote_sphere = next(m for m in await remote.list_models() if m.name == "sphere")
        await remote.delete_model(remote_sphere)
        local.import_model("gear", b"gear-bytes")
        clock.tick()
        summary = await coordinator.run_sync()

        assert summary["models"]["deleted_remote"] == 1
        assert summary["models"]["deleted_local"] == 1
        assert summary["models"]["uploaded"] == 1
        assert [m.name for m in await local.list_models()] == ["gear"]
        assert [m.name for m in await remote.list_models()] == ["gear"]

    asyncio.run(scenario())


def test_crossed_transfer_reuses_content_and_clears_stale_group(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        half_done = local.import_model("print", b"same-bytes")
        shelf = await local.create_group("shelf")
        await local.add_models_to_group(shelf, [half_done])
        clock.tick()
        server_copy = remote.import_model("print (server)", b"same-bytes")
        clock.tick()
        summary = await coordinator.run_sync()

        assert summary["models"]["crossed"] == 1
        assert summary["models"]["uploaded"] == 0
        assert summary["models"]["downloaded"] == 0
        assert summary["models"]["updated_local"] == 1

        local_models = await local.list_models()
        assert len(local_models) == 1
        assert local_models[0].name == "print (server)"
        assert local_models[0].global_id == server_copy.global_id
        assert local_models[0].group is None
        assert len(await remote.list_models()) == 1
        await _assert_converged(local, remote)

    asyncio.run(scenario())


def test_crossed_transfer_tie_goes_to_remote(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        local.import_model("local name", b"same-bytes")
        server_copy = remote.import_model("server name", b"same-bytes")
        clock.tick()
        summary = await coordinator.run_sync()

        assert summary["models"]["updated_local"] == 1
        assert summary["models"]["updated_remote"] == 0
        local_models = await local.list_models()
        assert local_models[0].global_id == server_copy.global_id
        assert local_models[0].name == "server name"

    asyncio.run(scenario())


def test_group_upload_with_unknown_member_raises(clock):
    local = MemoryBackend(clock=clock)
    remote = MemoryBackend(clock=clock)

    async def scenario():
        cube = local.import_model("cube", b"x")
        shelf = await local.create_group("shelf")
        await local.add_models_to_group(shelf, [cube])
        groups = GroupSync(StoreSet.from_backend(local), StoreSet.from_backend(remote), ProgressTracker())
        await groups.run(DEFAULT_LAST_SYNCED)

    with pytest.raises(MissingReferenceError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.kind == "model"
    assert "missing_reference" in str(exc_info.value)
    assert asyncio.run(remote.list_groups()) == []


def test_progress_is_published_per_step_and_reset_at_end(clock):
    local, remote, coordinator = _pair(clock)
    events = []
    coordinator.progress.subscribe(lambda p: events.append((p.stage, p.step, p.processable_count, p.processed_count)))

    async def scenario():
        local.import_model("cube", b"cube-bytes")
        local.import_model("sphere", b"sphere-bytes")
        clock.tick()
        await coordinator.run_sync()

    asyncio.run(scenario())

    assert (SyncStage.MODELS, SyncStep.UPLOAD, 2, 0) in events
    assert (SyncStage.MODELS, SyncStep.UPLOAD, 2, 2) in events
    assert (SyncStage.RESOURCES, SyncStep.INIT, 0, 0) in events
    assert events[-1] == (SyncStage.IDLE, SyncStep.INIT, 0, 0)
    assert coordinator.progress.snapshot().stage == SyncStage.IDLE


def test_failed_run_resets_progress_and_keeps_watermark(clock):
    local, remote, coordinator = _pair(clock)
    remote.fail_groups = True

    async def scenario():
        cube = local.import_model("cube", b"cube-bytes")
        shelf = await local.create_group("shelf")
        await local.add_models_to_group(shelf, [cube])
        clock.tick()
        with pytest.raises(RuntimeError, match="remote_down"):
            await coordinator.run_sync()

        assert coordinator.progress.snapshot().stage == SyncStage.IDLE
        assert await local.get_last_synced() is None
        # applied mutations are not rolled back
        assert [m.name for m in await remote.list_models()] == ["cube"]

        remote.fail_groups = False
        clock.tick()
        summary = await coordinator.run_sync()
        assert summary["models"]["uploaded"] == 0
        assert summary["groups"]["uploaded"] == 1
        await _assert_converged(local, remote)

    asyncio.run(scenario())


def test_concurrent_run_is_rejected(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        local.import_model("cube", b"cube-bytes")
        first = asyncio.create_task(coordinator.run_sync())
        await asyncio.sleep(0)
        assert coordinator.busy is True
        with pytest.raises(SyncBusyError):
            await coordinator.run_sync()
        await first
        assert coordinator.busy is False

    asyncio.run(scenario())


def test_explicit_watermark_overrides_stored_one(clock):
    local, remote, coordinator = _pair(clock)

    async def scenario():
        local.import_model("old", b"old-bytes")
        clock.tick(10)
        # everything local predates this watermark, so it reads as deleted remotely
        return await coordinator.run_sync(last_synced=clock.now)

    summary = asyncio.run(scenario())
    assert summary["models"]["deleted_local"] == 1
    assert summary["library_counts"]["models"] == 0


def test_abandoned_operations_do_not_touch_progress_after_failure(clock):
    class _SlowThenBrokenRemote(_RecordingBackend):
        async def create_group(self, name):
            if name == "bad":
                raise RuntimeError("remote_down")
            await asyncio.sleep(0.05)
            return await super().create_group(name)

    local = MemoryBackend(clock=clock)
    remote = _SlowThenBrokenRemote(clock=clock)
    coordinator = SyncCoordinator(StoreSet.from_backend(local), StoreSet.from_backend(remote), watermark=local, clock=clock)

    async def scenario():
        await local.create_group("ok1")
        await local.create_group("bad")
        clock.tick()
        with pytest.raises(RuntimeError, match="remote_down"):
            await coordinator.run_sync()
        assert coordinator.progress.snapshot() == SyncProgress()

        # let the in-flight "ok1" upload finish on its own
        await asyncio.sleep(0.2)
        assert [g.meta.name for g in await remote.list_groups()] == ["ok1"]

    asyncio.run(scenario())

    assert coordinator.progress.snapshot() == SyncProgress()


def test_stale_step_token_is_ignored():
    progress = ProgressTracker()
    progress.begin_stage(SyncStage.MODELS)
    first = progress.begin_step(SyncStep.UPLOAD, 3)
    progress.advance(first)
    second = progress.begin_step(SyncStep.DOWNLOAD, 2)

    progress.advance(first)
    assert progress.snapshot().processed_count == 0

    progress.advance(second)
    progress.reset()
    progress.advance(second)
    assert progress.snapshot() == SyncProgress()


def test_watermark_is_not_moved_when_count_refresh_fails(clock):
    class _CountsFailLocal(MemoryBackend):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.resource_listings = 0

        async def list_resources(self):
            # first call is the resource stage snapshot, the second is the count refresh
            self.resource_listings += 1
            if self.resource_listings > 1:
                raise RuntimeError("local_store_unavailable")
            return await super().list_resources()

    local = _CountsFailLocal(clock=clock)
    remote = MemoryBackend(clock=clock)
    coordinator = SyncCoordinator(StoreSet.from_backend(local), StoreSet.from_backend(remote), watermark=local, clock=clock)

    async def scenario():
        local.import_model("cube", b"cube-bytes")
        clock.tick()
        with pytest.raises(RuntimeError, match="local_store_unavailable"):
            await coordinator.run_sync()
        assert await local.get_last_synced() is None

    asyncio.run(scenario())
