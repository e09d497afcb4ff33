"""QThread worker running keypoint propagation off the UI thread."""

from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Sequence

from loguru import logger
from PySide6.QtCore import QObject, Signal, Slot

from src.utils.keypoint_sync.sync_engine import SyncEngine, SyncOperation
from src.utils.keypoint_sync.time_series import ImageInfo


def format_worker_exception(exc: BaseException) -> str:
    """Format exception with traceback for worker error signals."""
    trace_text = "".join(
        traceback.format_exception(type(exc), exc, exc.__traceback__)
    )
    return f"{type(exc).__name__}: {exc}\n{trace_text}"


@dataclass
class PropagationInput:
    """Input payload for the propagation worker."""

    operation: SyncOperation
    source_image: ImageInfo
    targets: Sequence[ImageInfo] | None = None


class PropagationWorker(QObject):
    """Background worker running one ``SyncEngine.propagate`` call.

    Usage follows the usual ``moveToThread`` pattern::

        worker = PropagationWorker(engine, payload)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
    """

    sigFinished = Signal(object)
    sigFailed = Signal(str)
    sigCancelled = Signal()

    def __init__(self, engine: SyncEngine, payload: PropagationInput) -> None:
        super().__init__()
        self.engine = engine
        self.payload = payload
        self._cancelled = False

    def request_cancel(self) -> None:
        """Request best-effort cancellation before the run starts."""
        self._cancelled = True

    @Slot()
    def run(self) -> None:
        """Execute propagation and emit the result."""
        if self._cancelled:
            self.sigCancelled.emit()
            return
        try:
            result = self.engine.propagate(
                self.payload.operation,
                self.payload.source_image,
                self.payload.targets,
            )
        except Exception as exc:
            message = format_worker_exception(exc)
            logger.error(message)
            self.sigFailed.emit(message)
            return
        # Dispatched I/O has completed; report even if cancel came late.
        self.sigFinished.emit(result)
