from __future__ import annotations

from enum import Enum
from typing import Callable

from pydantic import BaseModel


class SyncStage(str, Enum):
    IDLE = "idle"
    MODELS = "models"
    GROUPS = "groups"
    LABELS = "labels"
    RESOURCES = "resources"


class SyncStep(str, Enum):
    INIT = "init"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    UPDATE_METADATA = "update_metadata"
    DELETE = "delete"


class SyncProgress(BaseModel):
    stage: SyncStage = SyncStage.IDLE
    step: SyncStep = SyncStep.INIT
    processable_count: int = 0
    processed_count: int = 0


ProgressListener = Callable[[SyncProgress], None]


class ProgressTracker:
    """Progress of the active run.

    Only the running stage writes; observers either poll `snapshot()` or
    `subscribe()` a listener that receives a copy after every change.
    """

    def __init__(self) -> None:
        self._state = SyncProgress()
        self._listeners: list[ProgressListener] = []
        # bumped whenever the current step ends; stale advances are dropped
        self._step_token = 0

    def snapshot(self) -> SyncProgress:
        return self._state.model_copy()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def begin_stage(self, stage: SyncStage) -> None:
        self._step_token += 1
        self._state = SyncProgress(stage=stage, step=SyncStep.INIT)
        self._publish()

    def begin_step(self, step: SyncStep, processable_count: int) -> int:
        """Start a step and return the token its `advance` calls must carry."""
        self._step_token += 1
        self._state = SyncProgress(
            stage=self._state.stage,
            step=step,
            processable_count=processable_count,
            processed_count=0,
        )
        self._publish()
        return self._step_token

    def advance(self, token: int | None = None) -> None:
        if token is not None and token != self._step_token:
            return
        self._state = self._state.model_copy(update={"processed_count": self._state.processed_count + 1})
        self._publish()

    def reset(self) -> None:
        self._step_token += 1
        self._state = SyncProgress()
        self._publish()

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
