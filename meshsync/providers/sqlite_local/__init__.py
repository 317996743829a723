from .store import SqliteBackend

__all__ = ["SqliteBackend"]
