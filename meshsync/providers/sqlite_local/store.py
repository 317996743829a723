from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from meshsync.providers.sqlite_local.db import get_conn, get_setting, init_db, set_setting
from meshsync.sync.entities import (
    Blob,
    Group,
    GroupMeta,
    Label,
    LabelMeta,
    Model,
    ModelFlags,
    Resource,
    ResourceFlags,
    format_timestamp,
    new_global_id,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger("store.sqlite")

LAST_SYNCED_KEY = "last_synced"
DEFAULT_FILETYPE = "stl.zip"

_PRINTED = 1
_FAVORITE = 2
_COMPLETED = 1


def _model_flags_to_int(flags: ModelFlags) -> int:
    return (_PRINTED if flags.printed else 0) | (_FAVORITE if flags.favorite else 0)


def _model_flags_from_int(value: int | None) -> ModelFlags:
    value = int(value or 0)
    return ModelFlags(printed=bool(value & _PRINTED), favorite=bool(value & _FAVORITE))


class SqliteBackend:
    """Desktop library: metadata in SQLite, blob content in a hash-addressed directory.

    Every public method is a coroutine that runs its query on a worker thread,
    opening a short-lived connection per call.
    """

    def __init__(self, db_path: str, blob_dir: str, clock: Callable[[], datetime] = utc_now):
        self.db_path = db_path
        self.blob_dir = Path(blob_dir)
        self.clock = clock
        init_db(db_path)
        self.blob_dir.mkdir(parents=True, exist_ok=True)

    def _now_text(self) -> str:
        return format_timestamp(self.clock())

    def _blob_path(self, sha256: str, filetype: str) -> Path:
        return self.blob_dir / f"{sha256}.{filetype}"

    def _run(self, fn, *args):
        conn = get_conn(self.db_path)
        try:
            result = fn(conn, *args)
            conn.commit()
            return result
        finally:
            conn.close()

    async def _call(self, fn, *args):
        return await asyncio.to_thread(self._run, fn, *args)

    # -- row mapping -----------------------------------------------------------

    @staticmethod
    def _group_meta(row: sqlite3.Row) -> GroupMeta:
        return GroupMeta(
            id=row["id"],
            name=row["name"],
            created=row["created"] or "",
            resource_id=row["resource_id"],
            last_modified=row["last_modified"],
            unique_global_id=row["unique_global_id"],
        )

    @staticmethod
    def _label_meta(row: sqlite3.Row) -> LabelMeta:
        return LabelMeta(
            id=row["id"],
            name=row["name"],
            color=row["color"] or 0,
            last_modified=row["last_modified"],
            unique_global_id=row["unique_global_id"],
        )

    @staticmethod
    def _resource(row: sqlite3.Row) -> Resource:
        return Resource(
            id=row["id"],
            name=row["name"],
            flags=ResourceFlags(completed=bool(int(row["flags"] or 0) & _COMPLETED)),
            created=row["created"] or "",
            last_modified=row["last_modified"],
            unique_global_id=row["unique_global_id"],
        )

    def _models_where(self, conn: sqlite3.Connection, where: str = "", params: tuple = ()) -> list[Model]:
        rows = conn.execute(
            f"""
            SELECT m.*, b.id AS b_id, b.sha256, b.filetype, b.size, b.added AS b_added
            FROM models m JOIN blobs b ON b.id = m.blob_id
            {where}
            ORDER BY m.id
            """,
            params,
        ).fetchall()
        groups = {r["id"]: self._group_meta(r) for r in conn.execute("SELECT * FROM model_groups").fetchall()}
        labels = {r["id"]: self._label_meta(r) for r in conn.execute("SELECT * FROM labels").fetchall()}
        links: dict[int, list[int]] = {}
        for r in conn.execute("SELECT model_id, label_id FROM models_labels ORDER BY label_id").fetchall():
            links.setdefault(r["model_id"], []).append(r["label_id"])

        out: list[Model] = []
        for r in rows:
            out.append(
                Model(
                    id=r["id"],
                    name=r["name"],
                    blob=Blob(id=r["b_id"], sha256=r["sha256"], filetype=r["filetype"], size=r["size"], added=r["b_added"] or ""),
                    link=r["link"],
                    description=r["description"],
                    added=r["added"] or "",
                    group=groups.get(r["group_id"]) if r["group_id"] is not None else None,
                    labels=[labels[lid] for lid in links.get(r["id"], [])],
                    flags=_model_flags_from_int(r["flags"]),
                    last_modified=r["last_modified"],
                    unique_global_id=r["unique_global_id"],
                )
            )
        return out

    @staticmethod
    def _require(conn: sqlite3.Connection, table: str, row_id: int, kind: str) -> None:
        if conn.execute(f"SELECT 1 FROM {table} WHERE id=?", (row_id,)).fetchone() is None:
            raise RuntimeError(f"{kind}_not_found: {row_id}")

    def _touch(self, conn: sqlite3.Connection, table: str, row_id: int) -> None:
        conn.execute(f"UPDATE {table} SET last_modified=? WHERE id=?", (self._now_text(), row_id))

    # -- seeding ---------------------------------------------------------------

    def _store_blob(self, conn: sqlite3.Connection, content: bytes, filetype: str) -> int:
        sha256 = hashlib.sha256(content).hexdigest()
        path = self._blob_path(sha256, filetype)
        if not path.exists():
            path.write_bytes(content)
        row = conn.execute("SELECT id FROM blobs WHERE sha256=?", (sha256,)).fetchone()
        if row:
            return row["id"]
        cur = conn.execute(
            "INSERT INTO blobs(sha256, filetype, size, added) VALUES(?, ?, ?, ?)",
            (sha256, filetype, len(content), self._now_text()),
        )
        return cur.lastrowid

    def _import_model(
        self,
        conn: sqlite3.Connection,
        name: str,
        content: bytes,
        filetype: str,
        link: str | None,
        description: str | None,
        flags: ModelFlags,
    ) -> int:
        blob_id = self._store_blob(conn, content, filetype)
        now = self._now_text()
        cur = conn.execute(
            """
            INSERT INTO models(name, blob_id, link, description, added, flags, last_modified, unique_global_id)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (name, blob_id, link, description, now, _model_flags_to_int(flags), now, new_global_id()),
        )
        return cur.lastrowid

    async def import_model(self, name: str, content: bytes, link: str | None = None, description: str | None = None) -> Model:
        model_id = await self._call(self._import_model, name, content, DEFAULT_FILETYPE, link, description, ModelFlags())
        models = await self._call(self._models_where, "WHERE m.id=?", (model_id,))
        return models[0]

    # -- models ----------------------------------------------------------------

    async def list_models(self) -> list[Model]:
        return await self._call(self._models_where)

    async def create_model(self, model: Model, content: bytes) -> Model:
        model_id = await self._call(
            self._import_model, model.name, content, model.blob.filetype, model.link, model.description, model.flags
        )
        models = await self._call(self._models_where, "WHERE m.id=?", (model_id,))
        return models[0]

    def _edit_model(self, conn: sqlite3.Connection, model: Model, force_timestamp: bool, force_global_id: bool) -> None:
        self._require(conn, "models", model.id, "model")
        last_modified = format_timestamp(model.last_modified) if force_timestamp else self._now_text()
        conn.execute(
            "UPDATE models SET name=?, link=?, description=?, flags=?, last_modified=? WHERE id=?",
            (model.name, model.link, model.description, _model_flags_to_int(model.flags), last_modified, model.id),
        )
        if force_global_id:
            conn.execute("UPDATE models SET unique_global_id=? WHERE id=?", (model.unique_global_id, model.id))

    async def edit_model(self, model: Model, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._call(self._edit_model, model, force_timestamp, force_global_id)

    def _delete_model(self, conn: sqlite3.Connection, model_id: int) -> None:
        self._require(conn, "models", model_id, "model")
        conn.execute("DELETE FROM models WHERE id=?", (model_id,))

    async def delete_model(self, model: Model) -> None:
        await self._call(self._delete_model, model.id)

    def _read_blob(self, model: Model) -> bytes:
        path = self._blob_path(model.blob.sha256, model.blob.filetype)
        if not path.exists():
            raise RuntimeError(f"blob_not_found: {model.blob.sha256}")
        return path.read_bytes()

    async def get_blob_bytes(self, model: Model) -> bytes:
        return await asyncio.to_thread(self._read_blob, model)

    # -- groups ----------------------------------------------------------------

    def _groups_where(self, conn: sqlite3.Connection, where: str = "", params: tuple = ()) -> list[Group]:
        metas = [self._group_meta(r) for r in conn.execute(f"SELECT * FROM model_groups {where} ORDER BY id", params).fetchall()]
        members: dict[int, list[Model]] = {}
        for model in self._models_where(conn, "WHERE m.group_id IS NOT NULL"):
            members.setdefault(model.group.id, []).append(model)
        return [Group(meta=meta, models=members.get(meta.id, [])) for meta in metas]

    async def list_groups(self) -> list[Group]:
        return await self._call(self._groups_where)

    def _create_group(self, conn: sqlite3.Connection, name: str) -> GroupMeta:
        now = self._now_text()
        cur = conn.execute(
            "INSERT INTO model_groups(name, created, last_modified, unique_global_id) VALUES(?, ?, ?, ?)",
            (name, now, now, new_global_id()),
        )
        return self._group_meta(conn.execute("SELECT * FROM model_groups WHERE id=?", (cur.lastrowid,)).fetchone())

    async def create_group(self, name: str) -> GroupMeta:
        return await self._call(self._create_group, name)

    def _edit_group(self, conn: sqlite3.Connection, meta: GroupMeta, force_timestamp: bool, force_global_id: bool) -> None:
        self._require(conn, "model_groups", meta.id, "group")
        last_modified = format_timestamp(meta.last_modified) if force_timestamp else self._now_text()
        conn.execute("UPDATE model_groups SET name=?, last_modified=? WHERE id=?", (meta.name, last_modified, meta.id))
        if force_global_id:
            conn.execute("UPDATE model_groups SET unique_global_id=? WHERE id=?", (meta.unique_global_id, meta.id))

    async def edit_group(self, meta: GroupMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._call(self._edit_group, meta, force_timestamp, force_global_id)

    def _delete_group(self, conn: sqlite3.Connection, group_id: int) -> None:
        self._require(conn, "model_groups", group_id, "group")
        conn.execute("UPDATE models SET group_id=NULL WHERE group_id=?", (group_id,))
        conn.execute("DELETE FROM model_groups WHERE id=?", (group_id,))

    async def delete_group(self, meta: GroupMeta) -> None:
        await self._call(self._delete_group, meta.id)

    def _add_models_to_group(self, conn: sqlite3.Connection, group_id: int, model_ids: list[int]) -> None:
        self._require(conn, "model_groups", group_id, "group")
        for model_id in model_ids:
            self._require(conn, "models", model_id, "model")
            conn.execute("UPDATE models SET group_id=? WHERE id=?", (group_id, model_id))
        self._touch(conn, "model_groups", group_id)

    async def add_models_to_group(self, meta: GroupMeta, models: Sequence[Model]) -> None:
        await self._call(self._add_models_to_group, meta.id, [m.id for m in models])

    def _remove_models_from_group(self, conn: sqlite3.Connection, model_ids: list[int]) -> None:
        conn.executemany("UPDATE models SET group_id=NULL WHERE id=?", [(mid,) for mid in model_ids])

    async def remove_models_from_group(self, models: Sequence[Model]) -> None:
        await self._call(self._remove_models_from_group, [m.id for m in models])

    # -- labels ----------------------------------------------------------------

    def _list_labels(self, conn: sqlite3.Connection) -> list[Label]:
        metas = {r["id"]: self._label_meta(r) for r in conn.execute("SELECT * FROM labels ORDER BY id").fetchall()}
        children: dict[int, list[LabelMeta]] = {}
        has_parent: set[int] = set()
        for r in conn.execute("SELECT parent_id, child_id FROM label_children ORDER BY rowid").fetchall():
            children.setdefault(r["parent_id"], []).append(metas[r["child_id"]])
            has_parent.add(r["child_id"])
        return [
            Label(meta=meta, children=children.get(label_id, []), has_parent=label_id in has_parent)
            for label_id, meta in metas.items()
        ]

    async def list_labels(self) -> list[Label]:
        return await self._call(self._list_labels)

    def _create_label(self, conn: sqlite3.Connection, name: str, color: int) -> LabelMeta:
        cur = conn.execute(
            "INSERT INTO labels(name, color, last_modified, unique_global_id) VALUES(?, ?, ?, ?)",
            (name, int(color), self._now_text(), new_global_id()),
        )
        return self._label_meta(conn.execute("SELECT * FROM labels WHERE id=?", (cur.lastrowid,)).fetchone())

    async def create_label(self, name: str, color: int) -> LabelMeta:
        return await self._call(self._create_label, name, color)

    def _edit_label(self, conn: sqlite3.Connection, meta: LabelMeta, force_timestamp: bool, force_global_id: bool) -> None:
        self._require(conn, "labels", meta.id, "label")
        last_modified = format_timestamp(meta.last_modified) if force_timestamp else self._now_text()
        conn.execute(
            "UPDATE labels SET name=?, color=?, last_modified=? WHERE id=?",
            (meta.name, meta.color, last_modified, meta.id),
        )
        if force_global_id:
            conn.execute("UPDATE labels SET unique_global_id=? WHERE id=?", (meta.unique_global_id, meta.id))

    async def edit_label(self, meta: LabelMeta, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._call(self._edit_label, meta, force_timestamp, force_global_id)

    def _delete_label(self, conn: sqlite3.Connection, label_id: int) -> None:
        self._require(conn, "labels", label_id, "label")
        conn.execute("DELETE FROM labels WHERE id=?", (label_id,))

    async def delete_label(self, meta: LabelMeta) -> None:
        await self._call(self._delete_label, meta.id)

    def _link_models(self, conn: sqlite3.Connection, label_id: int, model_ids: list[int], attach: bool) -> None:
        self._require(conn, "labels", label_id, "label")
        for model_id in model_ids:
            if attach:
                self._require(conn, "models", model_id, "model")
                conn.execute("INSERT OR IGNORE INTO models_labels(model_id, label_id) VALUES(?, ?)", (model_id, label_id))
            else:
                conn.execute("DELETE FROM models_labels WHERE model_id=? AND label_id=?", (model_id, label_id))
        self._touch(conn, "labels", label_id)

    async def add_label_to_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._call(self._link_models, meta.id, [m.id for m in models], True)

    async def remove_label_from_models(self, meta: LabelMeta, models: Sequence[Model]) -> None:
        await self._call(self._link_models, meta.id, [m.id for m in models], False)

    def _get_keywords(self, conn: sqlite3.Connection, label_id: int) -> list[str]:
        self._require(conn, "labels", label_id, "label")
        rows = conn.execute("SELECT keyword FROM label_keywords WHERE label_id=? ORDER BY id", (label_id,)).fetchall()
        return [r["keyword"] for r in rows]

    async def get_keywords(self, meta: LabelMeta) -> list[str]:
        return await self._call(self._get_keywords, meta.id)

    def _set_keywords(self, conn: sqlite3.Connection, label_id: int, keywords: list[str]) -> None:
        self._require(conn, "labels", label_id, "label")
        conn.execute("DELETE FROM label_keywords WHERE label_id=?", (label_id,))
        conn.executemany("INSERT INTO label_keywords(label_id, keyword) VALUES(?, ?)", [(label_id, k) for k in keywords])

    async def set_keywords(self, meta: LabelMeta, keywords: Sequence[str]) -> None:
        await self._call(self._set_keywords, meta.id, list(keywords))

    def _set_children(self, conn: sqlite3.Connection, label_id: int, child_ids: list[int], replace: bool) -> None:
        self._require(conn, "labels", label_id, "label")
        if replace:
            conn.execute("DELETE FROM label_children WHERE parent_id=?", (label_id,))
            for child_id in child_ids:
                self._require(conn, "labels", child_id, "label")
                conn.execute("INSERT OR IGNORE INTO label_children(parent_id, child_id) VALUES(?, ?)", (label_id, child_id))
        else:
            conn.executemany(
                "DELETE FROM label_children WHERE parent_id=? AND child_id=?",
                [(label_id, child_id) for child_id in child_ids],
            )
        self._touch(conn, "labels", label_id)

    async def set_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._call(self._set_children, meta.id, [c.id for c in children], True)

    async def remove_children(self, meta: LabelMeta, children: Sequence[LabelMeta]) -> None:
        await self._call(self._set_children, meta.id, [c.id for c in children], False)

    # -- resources -------------------------------------------------------------

    def _list_resources(self, conn: sqlite3.Connection) -> list[Resource]:
        return [self._resource(r) for r in conn.execute("SELECT * FROM resources ORDER BY id").fetchall()]

    async def list_resources(self) -> list[Resource]:
        return await self._call(self._list_resources)

    def _create_resource(self, conn: sqlite3.Connection, name: str) -> Resource:
        now = self._now_text()
        cur = conn.execute(
            "INSERT INTO resources(name, flags, created, last_modified, unique_global_id) VALUES(?, 0, ?, ?, ?)",
            (name, now, now, new_global_id()),
        )
        return self._resource(conn.execute("SELECT * FROM resources WHERE id=?", (cur.lastrowid,)).fetchone())

    async def create_resource(self, name: str) -> Resource:
        return await self._call(self._create_resource, name)

    def _edit_resource(self, conn: sqlite3.Connection, resource: Resource, force_timestamp: bool, force_global_id: bool) -> None:
        self._require(conn, "resources", resource.id, "resource")
        last_modified = format_timestamp(resource.last_modified) if force_timestamp else self._now_text()
        flags = _COMPLETED if resource.flags.completed else 0
        conn.execute(
            "UPDATE resources SET name=?, flags=?, last_modified=? WHERE id=?",
            (resource.name, flags, last_modified, resource.id),
        )
        if force_global_id:
            conn.execute("UPDATE resources SET unique_global_id=? WHERE id=?", (resource.unique_global_id, resource.id))

    async def edit_resource(self, resource: Resource, force_timestamp: bool = False, force_global_id: bool = False) -> None:
        await self._call(self._edit_resource, resource, force_timestamp, force_global_id)

    def _delete_resource(self, conn: sqlite3.Connection, resource_id: int) -> None:
        self._require(conn, "resources", resource_id, "resource")
        conn.execute("UPDATE model_groups SET resource_id=NULL WHERE resource_id=?", (resource_id,))
        conn.execute("DELETE FROM resources WHERE id=?", (resource_id,))

    async def delete_resource(self, resource: Resource) -> None:
        await self._call(self._delete_resource, resource.id)

    def _groups_for_resource(self, conn: sqlite3.Connection, resource_id: int) -> list[Group]:
        self._require(conn, "resources", resource_id, "resource")
        return self._groups_where(conn, "WHERE resource_id=?", (resource_id,))

    async def get_groups_for_resource(self, resource: Resource) -> list[Group]:
        return await self._call(self._groups_for_resource, resource.id)

    def _set_resource_on_group(self, conn: sqlite3.Connection, resource_id: int | None, group_id: int) -> None:
        self._require(conn, "model_groups", group_id, "group")
        if resource_id is not None:
            self._require(conn, "resources", resource_id, "resource")
        conn.execute("UPDATE model_groups SET resource_id=? WHERE id=?", (resource_id, group_id))
        if resource_id is not None:
            self._touch(conn, "resources", resource_id)

    async def set_resource_on_group(self, resource: Resource | None, group_id: int) -> None:
        await self._call(self._set_resource_on_group, resource.id if resource is not None else None, group_id)

    # -- watermark -------------------------------------------------------------

    async def get_last_synced(self) -> datetime | None:
        value = await asyncio.to_thread(get_setting, self.db_path, LAST_SYNCED_KEY)
        return parse_timestamp(value) if value else None

    async def set_last_synced(self, value: datetime) -> None:
        await asyncio.to_thread(set_setting, self.db_path, LAST_SYNCED_KEY, format_timestamp(value))
        logger.info("watermark_saved last_synced=%s", format_timestamp(value))
