from .client import RemoteClient
from .store import RemoteBackend, build_remote_stores

__all__ = ["RemoteBackend", "RemoteClient", "build_remote_stores"]
