from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

DEFAULT_LAST_SYNCED = datetime(2000, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse RFC3339 strings, epoch seconds/milliseconds or datetimes into UTC.

    The hosted server stores timestamps at whole-second precision, so every
    value is truncated to seconds here. Both stores must agree bit-for-bit for
    the "in sync" equality check to hold.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        raw = float(value)
        if raw > 1e11:
            raw = raw / 1000.0
        dt = datetime.fromtimestamp(raw, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp_empty")
        if text.isdigit():
            return parse_timestamp(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"timestamp_invalid: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    return parse_timestamp(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now() -> datetime:
    return parse_timestamp(datetime.now(timezone.utc))


def new_global_id() -> str:
    return uuid.uuid4().hex


class _Timestamped(BaseModel):
    last_modified: datetime
    unique_global_id: str = Field(default_factory=new_global_id)

    @field_validator("last_modified", mode="before")
    @classmethod
    def _normalize_last_modified(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    @field_serializer("last_modified")
    def _serialize_last_modified(self, value: datetime) -> str:
        return format_timestamp(value)

    @property
    def global_id(self) -> str:
        return self.unique_global_id

    def remap(self, new_id: int):
        """Return a copy carrying another store's id."""
        return self.model_copy(update={"id": new_id})


class Blob(BaseModel):
    id: int = 0
    sha256: str
    filetype: str = "stl.zip"
    size: int = 0
    added: str = ""


class ModelFlags(BaseModel):
    printed: bool = False
    favorite: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "ModelFlags":
        if isinstance(raw, ModelFlags):
            return raw
        if isinstance(raw, dict):
            return cls.model_validate(raw)
        names = set(raw or [])
        return cls(printed="Printed" in names, favorite="Favorite" in names)

    def to_raw(self) -> list[str]:
        out: list[str] = []
        if self.printed:
            out.append("Printed")
        if self.favorite:
            out.append("Favorite")
        return out


class ResourceFlags(BaseModel):
    completed: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "ResourceFlags":
        if isinstance(raw, ResourceFlags):
            return raw
        if isinstance(raw, dict):
            return cls.model_validate(raw)
        return cls(completed="Completed" in set(raw or []))

    def to_raw(self) -> list[str]:
        return ["Completed"] if self.completed else []


class GroupMeta(_Timestamped):
    id: int
    name: str
    created: str = ""
    resource_id: int | None = None


class LabelMeta(_Timestamped):
    id: int
    name: str
    color: int = 0


class Model(_Timestamped):
    id: int
    name: str
    blob: Blob
    link: str | None = None
    description: str | None = None
    added: str = ""
    group: GroupMeta | None = None
    labels: list[LabelMeta] = Field(default_factory=list)
    flags: ModelFlags = Field(default_factory=ModelFlags)

    @field_validator("flags", mode="before")
    @classmethod
    def _parse_flags(cls, value: Any) -> ModelFlags:
        return ModelFlags.from_raw(value)


class Resource(_Timestamped):
    id: int
    name: str
    flags: ResourceFlags = Field(default_factory=ResourceFlags)
    created: str = ""

    @field_validator("flags", mode="before")
    @classmethod
    def _parse_flags(cls, value: Any) -> ResourceFlags:
        return ResourceFlags.from_raw(value)


class Group(BaseModel):
    meta: GroupMeta
    models: list[Model] = Field(default_factory=list)

    @property
    def global_id(self) -> str:
        return self.meta.unique_global_id

    @property
    def last_modified(self) -> datetime:
        return self.meta.last_modified


class Label(BaseModel):
    meta: LabelMeta
    children: list[LabelMeta] = Field(default_factory=list)
    has_parent: bool = False

    @property
    def global_id(self) -> str:
        return self.meta.unique_global_id

    @property
    def last_modified(self) -> datetime:
        return self.meta.last_modified
