from __future__ import annotations

import re
from collections import deque
from pathlib import Path


LOG_LINE_RE = re.compile(
    r"^(?P<ts>\S+\s+\S+)\s+\[(?P<level>[A-Z]+)\]\s+\[(?P<module>[^\]]+)\]\s*(?P<message>.*)$"
)


def _tail_lines(path: str, n: int = 200) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    with p.open("r", encoding="utf-8", errors="replace") as fp:
        return [line.rstrip("\n") for line in deque(fp, maxlen=max(n, 0))]


def _parse_line(line: str) -> dict[str, str]:
    match = LOG_LINE_RE.match(line)
    if not match:
        return {"raw": line, "ts": "", "level": "", "module": "", "message": line}
    parsed = match.groupdict()
    return {
        "raw": line,
        "ts": parsed.get("ts", ""),
        "level": parsed.get("level", ""),
        "module": parsed.get("module", ""),
        "message": parsed.get("message", ""),
    }


def _module_matches(module: str, wanted: str) -> bool:
    # "sync" also matches its children such as "sync.labels"
    name = module.strip().lower()
    return name == wanted or name.startswith(wanted + ".")


def build_log_tail_payload(path: str, n: int = 200, level: str | None = None, module: str | None = None) -> dict:
    level_wanted = (level or "").strip().upper() or None
    module_wanted = (module or "").strip().lower() or None

    parsed_lines: list[dict[str, str]] = []
    for line in _tail_lines(path, n=n):
        item = _parse_line(line)
        if level_wanted and item["level"].upper() != level_wanted:
            continue
        if module_wanted and not _module_matches(item["module"], module_wanted):
            continue
        parsed_lines.append(item)

    return {
        "path": path,
        "n": n,
        "level": level_wanted,
        "module": module_wanted,
        "count": len(parsed_lines),
        "tail": "\n".join(item["raw"] for item in parsed_lines),
        "items": parsed_lines,
    }
