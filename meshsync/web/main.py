from __future__ import annotations

import logging

from fastapi import FastAPI

from meshsync.core.config import load_config
from meshsync.core.service import build_coordinator
from meshsync.sync.coordinator import SyncCoordinator
from meshsync.web.api import router as api_router
from meshsync.web.security import NetworkAllowlistMiddleware, get_allowed_nets


def build_app(coordinator: SyncCoordinator | None = None) -> FastAPI:
    if coordinator is None:
        cfg = load_config()
        if cfg.remote.base_url:
            coordinator = build_coordinator(cfg)
        else:
            logging.getLogger("web").warning("remote_base_url_missing sync_disabled")

    api = FastAPI(title="meshsync", version="0.1.0")
    api.state.coordinator = coordinator
    api.add_middleware(NetworkAllowlistMiddleware, allowed_nets=get_allowed_nets())
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()

    from meshsync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
