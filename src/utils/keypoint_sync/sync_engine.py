"""Forward propagation of keypoint edits through a plant time series."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from loguru import logger
from PySide6.QtCore import QObject, Signal

from src.utils.keypoint_sync.errors import (
    ConflictDetected,
    FailureReason,
    IntegrityError,
    PersistenceFailure,
)
from src.utils.keypoint_sync.records import AnnotationRecord, find_matches
from src.utils.keypoint_sync.store import AnnotationStore, load_records
from src.utils.keypoint_sync.time_series import (
    ImageInfo,
    TimeSeriesIndex,
    TimeSeriesProvider,
)

MESSAGE_DISABLED = "disabled"
MESSAGE_NO_SERIES = "no time series"
MESSAGE_QUEUED = "queued"


class SyncOperationType(str, Enum):
    """Propagated keypoint operations."""

    ADD = "add"
    MOVE = "move"
    DELETE = "delete"
    EDIT_DIRECTION = "edit_direction"


class MovePolicy(str, Enum):
    """Behavior of a propagated move when the target lacks the keypoint."""

    SKIP = "skip"
    CREATE = "create"


class TargetOutcome(str, Enum):
    """Successful per-image propagation outcomes."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass
class SyncOperation:
    """One keypoint mutation to propagate.

    Parameters
    ----------
    kind : SyncOperationType
        Operation type.
    record : AnnotationRecord
        Record state after the mutation (before it, for deletes).
    previous_position : tuple[float, float] | None
        Position before a move.
    carries_directions : bool
        When True a move also copies the record's directions.
    """

    kind: SyncOperationType
    record: AnnotationRecord
    previous_position: tuple[float, float] | None = None
    carries_directions: bool = False

    def __post_init__(self) -> None:
        self.kind = SyncOperationType(self.kind)
        # Snapshot so later local edits do not leak into queued runs.
        self.record = self.record.copy()

    def describe(self) -> str:
        return f"{self.kind.value} {self.record.describe()}"


@dataclass
class TargetFailure:
    """Propagation failure for one target image."""

    image: ImageInfo
    reason: FailureReason
    detail: str = ""


@dataclass
class SyncResult:
    """Summary of one propagation run."""

    operation: SyncOperation | None
    source_image_id: str
    succeeded_count: int = 0
    failed_images: list[TargetFailure] = field(default_factory=list)
    outcomes: dict[str, TargetOutcome] = field(default_factory=dict)
    message: str = ""
    queued: bool = False

    @property
    def synced(self) -> int:
        return self.succeeded_count

    @property
    def success(self) -> bool:
        return not self.failed_images

    @property
    def conflicts(self) -> list[TargetFailure]:
        return [
            failure
            for failure in self.failed_images
            if failure.reason == FailureReason.CONFLICT
        ]

    @property
    def applied_image_ids(self) -> list[str]:
        return [
            image_id
            for image_id, outcome in self.outcomes.items()
            if outcome == TargetOutcome.APPLIED
        ]


@dataclass
class _SyncRequest:
    operation: SyncOperation
    source_image: ImageInfo
    targets: tuple[ImageInfo, ...] | None


class SyncEngine(QObject):
    """Propagate single-image keypoint edits to later images of a series.

    Later images are matched by ``(order, kind)`` only. Runs are serialized:
    a call made while another run is in flight is queued (FIFO) and its
    result is delivered through ``sigSyncFinished``.

    Parameters
    ----------
    store : AnnotationStore
        Per-image record storage.
    series_provider : TimeSeriesProvider
        Source of ordered images for a plant and view angle.
    enabled : bool, optional
        Initial state of the global sync switch.
    move_policy : MovePolicy, optional
        What a propagated move does when the target lacks the keypoint.

    Signals
    -------
    sigSyncToggled : Signal(bool)
        Emitted when the sync switch changes.
    sigSyncStarted : Signal(int)
        Emitted when a drain loop starts, with the queue length.
    sigSyncFinished : Signal(object)
        Emitted with every ``SyncResult`` produced by a run.
    sigConflictDetected : Signal(object)
        Emitted with each conflict ``TargetFailure``.
    sigQueueDrained : Signal()
        Emitted when the queue is empty again.
    """

    sigSyncToggled = Signal(bool)
    sigSyncStarted = Signal(int)
    sigSyncFinished = Signal(object)
    sigConflictDetected = Signal(object)
    sigQueueDrained = Signal()

    def __init__(
        self,
        store: AnnotationStore,
        series_provider: TimeSeriesProvider,
        enabled: bool = False,
        move_policy: MovePolicy = MovePolicy.SKIP,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._store = store
        self._series_provider = series_provider
        self._enabled = bool(enabled)
        self._move_policy = MovePolicy(move_policy)
        self._syncing = False
        self._queue: deque[_SyncRequest] = deque()
        self._lock = threading.Lock()
        self._run_count = 0
        self._failure_count = 0

    # -- switches -----------------------------------------------------------

    @property
    def store(self) -> AnnotationStore:
        return self._store

    @property
    def series_provider(self) -> TimeSeriesProvider:
        return self._series_provider

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def move_policy(self) -> MovePolicy:
        return self._move_policy

    def set_enabled(self, enabled: bool) -> None:
        """Turn propagation on or off; local edits are unaffected."""
        enabled = bool(enabled)
        if enabled == self._enabled:
            return
        self._enabled = enabled
        logger.info(f"Real-time sync {'enabled' if enabled else 'disabled'}")
        self.sigSyncToggled.emit(enabled)

    def set_move_policy(self, policy: MovePolicy) -> None:
        self._move_policy = MovePolicy(policy)

    def series_for(self, image: ImageInfo) -> TimeSeriesIndex:
        return TimeSeriesIndex.from_provider(
            self._series_provider, image.plant_id, image.view_angle
        )

    # -- public API ---------------------------------------------------------

    def propagate(
        self,
        operation: SyncOperation,
        source_image: ImageInfo,
        targets: Sequence[ImageInfo] | None = None,
    ) -> SyncResult:
        """Propagate one operation to images after ``source_image``.

        Parameters
        ----------
        operation : SyncOperation
            Mutation already applied on ``source_image``.
        source_image : ImageInfo
            Image the mutation happened on.
        targets : Sequence[ImageInfo] | None
            Narrowed target set; only images strictly after the source are
            ever used. ``None`` means every later image.

        Returns
        -------
        SyncResult
            Summary of this run, or a ``queued`` placeholder when another run
            is in flight.
        """
        if not self._enabled:
            return SyncResult(operation, source_image.id, message=MESSAGE_DISABLED)
        request = _SyncRequest(
            operation=operation,
            source_image=source_image,
            targets=tuple(targets) if targets is not None else None,
        )
        with self._lock:
            self._queue.append(request)
            if self._syncing:
                logger.debug(
                    f"Sync in flight, queued {operation.describe()} "
                    f"({len(self._queue)} pending)"
                )
                return SyncResult(
                    operation, source_image.id, message=MESSAGE_QUEUED, queued=True
                )
            self._syncing = True
            queue_length = len(self._queue)
        self.sigSyncStarted.emit(queue_length)
        return self._drain(request)

    def clear_queue(self) -> int:
        """Drop queued requests that have not started yet."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
        if dropped:
            logger.info(f"Dropped {dropped} queued sync requests")
        return dropped

    def sync_stats(self) -> dict[str, object]:
        with self._lock:
            queue_length = len(self._queue)
        return {
            "enabled": self._enabled,
            "syncing": self._syncing,
            "queue_length": queue_length,
            "runs": self._run_count,
            "failures": self._failure_count,
        }

    # -- run loop -----------------------------------------------------------

    def _drain(self, own_request: _SyncRequest) -> SyncResult:
        own_result: SyncResult | None = None
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._syncing = False
                        break
                    request = self._queue.popleft()
                result = self._run(request)
                self.sigSyncFinished.emit(result)
                if request is own_request:
                    own_result = result
        except BaseException:
            with self._lock:
                self._syncing = False
            raise
        self.sigQueueDrained.emit()
        if own_result is None:
            # Dropped by clear_queue before it started.
            own_result = SyncResult(
                own_request.operation,
                own_request.source_image.id,
                message="cancelled",
            )
        return own_result

    def _run(self, request: _SyncRequest) -> SyncResult:
        operation = request.operation
        source = request.source_image
        if not self._enabled:
            return SyncResult(operation, source.id, message=MESSAGE_DISABLED)
        try:
            series = self.series_for(source)
        except (KeyError, ValueError, OSError) as exc:
            logger.warning(f"Cannot resolve time series for {source.id}: {exc}")
            return SyncResult(operation, source.id, message=MESSAGE_NO_SERIES)
        if len(series) == 0 or source not in series:
            logger.warning(f"Image {source.id} has no time series, sync skipped")
            return SyncResult(operation, source.id, message=MESSAGE_NO_SERIES)

        candidates = series.images_after(source)
        if request.targets is not None:
            allowed = {image.id for image in request.targets}
            candidates = [image for image in candidates if image.id in allowed]

        self._run_count += 1
        result = SyncResult(operation, source.id)
        logger.info(
            f"Sync {operation.describe()} from {source.id} "
            f"to {len(candidates)} later images"
        )
        for image in candidates:
            self._run_one_target(operation, image, result)
        result.message = (
            f"Synced {operation.kind.value} to {result.succeeded_count} "
            f"of {len(candidates)} later images"
        )
        if result.failed_images:
            self._failure_count += len(result.failed_images)
            logger.warning(
                f"{result.message}; {len(result.failed_images)} failed "
                f"({len(result.conflicts)} conflicts)"
            )
        else:
            logger.info(result.message)
        return result

    def _run_one_target(
        self, operation: SyncOperation, image: ImageInfo, result: SyncResult
    ) -> None:
        try:
            outcome = self._apply_to_image(operation, image)
        except ConflictDetected as exc:
            failure = TargetFailure(image, FailureReason.CONFLICT, str(exc))
            result.failed_images.append(failure)
            logger.warning(f"Conflict on {image.id}: {exc}")
            self.sigConflictDetected.emit(failure)
            return
        except IntegrityError as exc:
            result.failed_images.append(
                TargetFailure(image, FailureReason.INTEGRITY, str(exc))
            )
            logger.error(f"Integrity error on {image.id}: {exc}")
            return
        except Exception as exc:
            result.failed_images.append(
                TargetFailure(image, FailureReason.PERSISTENCE, str(exc))
            )
            logger.error(f"Failed to sync {image.id}: {exc}")
            return
        result.outcomes[image.id] = outcome
        result.succeeded_count += 1
        logger.debug(f"{operation.describe()} -> {image.id}: {outcome.value}")

    def _apply_to_image(
        self, operation: SyncOperation, image: ImageInfo
    ) -> TargetOutcome:
        records = load_records(self._store, image.id)
        matches = find_matches(records, operation.record.identity)
        if len(matches) > 1:
            raise IntegrityError(
                f"{len(matches)} records share {operation.record.describe()}"
            )
        match = matches[0] if matches else None
        handler = {
            SyncOperationType.ADD: self._apply_add,
            SyncOperationType.MOVE: self._apply_move,
            SyncOperationType.DELETE: self._apply_delete,
            SyncOperationType.EDIT_DIRECTION: self._apply_edit_direction,
        }[operation.kind]
        outcome = handler(operation, records, match)
        if outcome == TargetOutcome.APPLIED:
            self._save(image, records)
        return outcome

    def _save(self, image: ImageInfo, records: list[AnnotationRecord]) -> None:
        if not self._store.save_annotations(image.id, records):
            raise PersistenceFailure(image.id, "store reported failure")

    # -- per-operation rules ------------------------------------------------

    def _apply_add(
        self,
        operation: SyncOperation,
        records: list[AnnotationRecord],
        match: AnnotationRecord | None,
    ) -> TargetOutcome:
        source = operation.record
        if match is None:
            records.append(source.clone_for_image(origin="sync:add"))
            return TargetOutcome.APPLIED
        if match.same_content(source):
            return TargetOutcome.UNCHANGED
        raise ConflictDetected(
            f"{source.describe()} already exists at "
            f"({match.x:.1f}, {match.y:.1f})"
        )

    def _apply_move(
        self,
        operation: SyncOperation,
        records: list[AnnotationRecord],
        match: AnnotationRecord | None,
    ) -> TargetOutcome:
        source = operation.record
        if match is None:
            if self._move_policy == MovePolicy.SKIP:
                return TargetOutcome.SKIPPED
            records.append(source.clone_for_image(origin="sync:move"))
            return TargetOutcome.APPLIED
        new_directions = source.directions[: match.max_directions]
        same_position = match.position == source.position
        same_directions = match.directions == new_directions
        if same_position and (not operation.carries_directions or same_directions):
            return TargetOutcome.UNCHANGED
        match.set_position(source.x, source.y)
        if operation.carries_directions:
            match.set_directions(new_directions)
        return TargetOutcome.APPLIED

    def _apply_delete(
        self,
        operation: SyncOperation,
        records: list[AnnotationRecord],
        match: AnnotationRecord | None,
    ) -> TargetOutcome:
        if match is None:
            return TargetOutcome.SKIPPED
        records.remove(match)
        return TargetOutcome.APPLIED

    def _apply_edit_direction(
        self,
        operation: SyncOperation,
        records: list[AnnotationRecord],
        match: AnnotationRecord | None,
    ) -> TargetOutcome:
        if match is None:
            return TargetOutcome.SKIPPED
        new_directions = operation.record.directions[: match.max_directions]
        if match.directions == new_directions:
            return TargetOutcome.UNCHANGED
        match.set_directions(new_directions)
        return TargetOutcome.APPLIED
