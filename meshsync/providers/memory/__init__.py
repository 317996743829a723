from .store import MemoryBackend

__all__ = ["MemoryBackend"]
