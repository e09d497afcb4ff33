"""Local keypoint mutation path feeding the sync engine."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from loguru import logger
from PySide6.QtCore import QObject, Signal

from src.utils.keypoint_sync.errors import PersistenceFailure, RecordValidationError
from src.utils.keypoint_sync.records import (
    REGULAR,
    AnnotationKind,
    AnnotationRecord,
    Direction,
    find_matches,
    next_available_order,
)
from src.utils.keypoint_sync.store import load_records
from src.utils.keypoint_sync.sync_engine import (
    SyncEngine,
    SyncOperation,
    SyncOperationType,
    SyncResult,
)
from src.utils.keypoint_sync.time_series import ImageInfo, TimeSeriesIndex


class KeypointEditor(QObject):
    """Apply keypoint edits to the displayed image and propagate them.

    Every mutation is applied to the in-memory record list, saved for the
    current image and then handed to ``SyncEngine.propagate``. Records whose
    identity is being propagated are busy and reject further edits until the
    run returns.

    Parameters
    ----------
    engine : SyncEngine
        Engine owning the store and the sync switch.

    Signals
    -------
    sigImageLoaded : Signal(object)
        Emitted with the ``ImageInfo`` after ``load_image``.
    sigRecordsChanged : Signal(list)
        Emitted with the current record list after any local change.
    sigSyncResult : Signal(object)
        Emitted with the ``SyncResult`` of each propagated edit.
    """

    sigImageLoaded = Signal(object)
    sigRecordsChanged = Signal(list)
    sigSyncResult = Signal(object)

    def __init__(self, engine: SyncEngine, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._engine = engine
        self._store = engine.store
        self._image: ImageInfo | None = None
        self._records: list[AnnotationRecord] = []
        self._busy: set[tuple[int, AnnotationKind]] = set()
        # Saved directions of records showing a preview.
        self._preview_base: dict[tuple[int, AnnotationKind], list[Direction]] = {}
        self.last_sync_result: SyncResult | None = None

    # -- state --------------------------------------------------------------

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def current_image(self) -> ImageInfo | None:
        return self._image

    @property
    def records(self) -> list[AnnotationRecord]:
        return list(self._records)

    def find(self, identity: tuple[int, AnnotationKind]) -> AnnotationRecord | None:
        matches = find_matches(self._records, identity)
        return matches[0] if matches else None

    def is_busy(self, record: AnnotationRecord) -> bool:
        return record.identity in self._busy

    def series(self) -> TimeSeriesIndex:
        return self._engine.series_for(self._require_image())

    # -- loading ------------------------------------------------------------

    def load_image(self, image: ImageInfo) -> list[AnnotationRecord]:
        """Make ``image`` current and read its records from the store."""
        self._image = image
        self._records = load_records(self._store, image.id)
        self._preview_base.clear()
        logger.debug(f"Loaded {len(self._records)} keypoints for {image.id}")
        self.sigImageLoaded.emit(image)
        self.sigRecordsChanged.emit(self.records)
        return self.records

    def discard_changes(self) -> list[AnnotationRecord]:
        """Drop unsaved local state by reloading; never synchronized."""
        return self.load_image(self._require_image())

    # -- mutations ----------------------------------------------------------

    def add_keypoint(
        self,
        x: float,
        y: float,
        kind: AnnotationKind = REGULAR,
        max_directions: int = 1,
        directions: Iterable[Direction] = (),
        order: int | None = None,
    ) -> AnnotationRecord:
        """Create a keypoint on the current image and propagate it.

        Parameters
        ----------
        x, y : float
            Image-space position.
        kind : AnnotationKind
            Regular or custom kind.
        max_directions : int
            Direction capacity of the new keypoint.
        directions : Iterable[Direction]
            Initial directions.
        order : int | None
            Explicit order; defaults to the smallest free order of ``kind``.

        Returns
        -------
        AnnotationRecord
            The created record.
        """
        self._require_image()
        if order is None:
            order = next_available_order(self._records, kind)
        if self.find((order, kind)) is not None:
            raise RecordValidationError(f"{kind} #{order} already exists on this image")
        record = AnnotationRecord(
            order=order,
            kind=kind,
            x=float(x),
            y=float(y),
            directions=list(directions),
            max_directions=max_directions,
        )
        self._records.append(record)
        logger.info(f"Added {record.describe()} at ({record.x:.1f}, {record.y:.1f})")
        self._commit(SyncOperation(SyncOperationType.ADD, record))
        return record

    def move_keypoint(self, record: AnnotationRecord, x: float, y: float) -> bool:
        local = self._editable(record)
        if local is None:
            return False
        previous = local.position
        local.set_position(x, y)
        self._commit(
            SyncOperation(SyncOperationType.MOVE, local, previous_position=previous)
        )
        return True

    def delete_keypoint(self, record: AnnotationRecord) -> bool:
        local = self._editable(record)
        if local is None:
            return False
        self._records.remove(local)
        self._preview_base.pop(local.identity, None)
        logger.info(f"Deleted {local.describe()}")
        self._commit(SyncOperation(SyncOperationType.DELETE, local))
        return True

    def set_directions(
        self,
        record: AnnotationRecord,
        directions: Sequence[Direction],
        sync_targets: Sequence[ImageInfo] | None = None,
    ) -> bool:
        """Replace directions of ``record`` and propagate the edit.

        ``sync_targets`` narrows the propagation target set, see
        ``SyncEngine.propagate``.
        """
        local = self._editable(record)
        if local is None:
            return False
        self._preview_base.pop(local.identity, None)
        local.set_directions(directions)
        self._commit(
            SyncOperation(SyncOperationType.EDIT_DIRECTION, local),
            sync_targets=sync_targets,
        )
        return True

    def preview_directions(
        self, record: AnnotationRecord, directions: Sequence[Direction]
    ) -> bool:
        """Change directions locally only, without saving or syncing.

        Saves made while a preview is shown keep the record's last saved
        directions; previewing those directions again ends the preview.
        """
        local = self.find(record.identity)
        if local is None:
            return False
        base = self._preview_base.setdefault(local.identity, list(local.directions))
        local.set_directions(directions)
        if local.directions == base:
            del self._preview_base[local.identity]
        self.sigRecordsChanged.emit(self.records)
        return True

    def clear_image(self) -> int:
        """Remove every record of the current image; not propagated."""
        image = self._require_image()
        removed = len(self._records)
        self._records.clear()
        self._preview_base.clear()
        self._save_current()
        logger.info(f"Cleared {removed} keypoints on {image.id}")
        self.sigRecordsChanged.emit(self.records)
        return removed

    # -- lookups ------------------------------------------------------------

    def expected_position(
        self, order: int, kind: AnnotationKind = REGULAR
    ) -> tuple[float, float] | None:
        """Position of the same keypoint on the nearest earlier image."""
        image = self._require_image()
        series = self.series()
        if image not in series:
            return None
        for previous in reversed(series.images_before(image)):
            matches = find_matches(load_records(self._store, previous.id), (order, kind))
            if matches:
                return matches[0].position
        return None

    # -- internals ----------------------------------------------------------

    def _require_image(self) -> ImageInfo:
        if self._image is None:
            raise RuntimeError("no image loaded")
        return self._image

    def _editable(self, record: AnnotationRecord) -> AnnotationRecord | None:
        local = self.find(record.identity)
        if local is None:
            logger.warning(f"{record.describe()} is not on the current image")
            return None
        if self.is_busy(local):
            logger.warning(f"{local.describe()} is being synchronized, edit rejected")
            return None
        return local

    def _save_current(self) -> bool:
        image = self._require_image()
        try:
            saved = self._store.save_annotations(image.id, self._saved_records())
        except PersistenceFailure as exc:
            logger.error(str(exc))
            return False
        if not saved:
            logger.error(f"Failed to save annotations for {image.id}")
        return bool(saved)

    def _saved_records(self) -> list[AnnotationRecord]:
        if not self._preview_base:
            return self._records
        return [
            replace(record, directions=list(self._preview_base[record.identity]))
            if record.identity in self._preview_base
            else record
            for record in self._records
        ]

    def _commit(
        self,
        operation: SyncOperation,
        sync_targets: Sequence[ImageInfo] | None = None,
    ) -> SyncResult | None:
        image = self._require_image()
        self._save_current()
        self.sigRecordsChanged.emit(self.records)
        if not self._engine.is_enabled:
            return None
        identity = operation.record.identity
        self._busy.add(identity)
        try:
            result = self._engine.propagate(operation, image, sync_targets)
        finally:
            self._busy.discard(identity)
        self.last_sync_result = result
        self.sigSyncResult.emit(result)
        return result
