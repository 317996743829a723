from __future__ import annotations


class SyncError(RuntimeError):
    """A sync run failed; the watermark was not advanced."""


class MissingReferenceError(SyncError):
    """A member referenced by global id does not exist on the target store."""

    def __init__(self, kind: str, global_id: str, owner: str = ""):
        self.kind = kind
        self.global_id = global_id
        self.owner = owner
        detail = f"{kind}={global_id}"
        if owner:
            detail += f" owner={owner}"
        super().__init__(f"missing_reference: {detail}")


class SyncBusyError(SyncError):
    def __init__(self) -> None:
        super().__init__("sync_busy")


class RemoteRequestError(RuntimeError):
    """Non-2xx answer or transport failure talking to the hosted server."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
