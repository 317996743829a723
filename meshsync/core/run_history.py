from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from meshsync.core import config as config_module


def _history_path(path: Path | None) -> Path:
    return path if path is not None else config_module.RUN_HISTORY_PATH


def _last_run_path(path: Path | None) -> Path:
    return path if path is not None else config_module.LAST_RUN_PATH


def append_run_history(summary: dict, path: Path | None = None) -> None:
    target = _history_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def read_run_history(limit: int = 50, path: Path | None = None) -> list[dict]:
    """Newest first. Unparseable lines come back as {"raw": ..., "parse_error": True}."""
    source = _history_path(path)
    if limit <= 0 or not source.exists():
        return []

    lines = source.read_text(encoding="utf-8", errors="replace").splitlines()
    out: list[dict] = []
    for line in reversed(lines):
        if len(out) >= limit:
            break
        raw = line.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = {"raw": raw, "parse_error": True}
        if isinstance(payload, dict):
            out.append(payload)
    return out


def record_run(summary: dict, last_run_path: Path | None = None, history_path: Path | None = None) -> None:
    target = _last_run_path(last_run_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    append_run_history(summary, history_path)


def load_latest_run(last_run_path: Path | None = None, history_path: Path | None = None) -> tuple[dict[str, Any] | None, str]:
    """Latest summary and where it came from: "last_run", "history_fallback" or "none"."""
    source = _last_run_path(last_run_path)
    if source.exists():
        try:
            payload = json.loads(source.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return payload, "last_run"

    items = read_run_history(limit=1, path=history_path)
    if items:
        return items[0], "history_fallback"
    return None, "none"
