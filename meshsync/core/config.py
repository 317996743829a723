from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field


def _default_home() -> Path:
    raw = os.environ.get("MESHSYNC_HOME", "").strip()
    return Path(raw).expanduser() if raw else Path.home() / ".meshsync"


PROJECT_ROOT = _default_home()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = Path(__file__).resolve().parents[2] / "config.yaml.example"
LAST_RUN_PATH = RUNTIME_DIR / "last_run.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"


class RemoteConfig(BaseModel):
    # Hosted library server, e.g. https://meshes.example.org
    base_url: str = ""
    token: str = ""
    timeout_sec: int = Field(default=30, ge=1, le=600)


def _expand(value: str) -> str:
    return str(Path(value).expanduser()) if value else value


ExpandedPath = Annotated[str, AfterValidator(_expand)]


class StorageConfig(BaseModel):
    blob_dir: ExpandedPath = str(RUNTIME_DIR / "blobs")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: ExpandedPath = str(RUNTIME_DIR / "service.log")


class DatabaseConfig(BaseModel):
    path: ExpandedPath = str(RUNTIME_DIR / "library.db")


class AppConfig(BaseModel):
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Web API
    web_bind_host: str = "127.0.0.1"  # can be set to LAN IP
    web_port: int = 8765


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.storage.blob_dir).mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        cfg = None
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
            try:
                cfg = AppConfig.model_validate(yaml.safe_load(template_text) or {})
            except (yaml.YAMLError, ValueError):
                cfg = None
            else:
                path.write_text(template_text, encoding="utf-8")
        if cfg is None:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
