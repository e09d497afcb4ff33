"""Wiring of store, sync engine, editor and direction controller."""

from __future__ import annotations

from PySide6.QtCore import QObject, Signal
from loguru import logger

from src.core.config import Config, cfg
from src.utils.keypoint_sync.direction_controller import (
    DirectionAssignmentController,
    DirectionMode,
    SwitchReason,
)
from src.utils.keypoint_sync.editor import KeypointEditor
from src.utils.keypoint_sync.errors import InvalidModeTransition, RecordValidationError
from src.utils.keypoint_sync.multi_direction import MultiDirectionSession
from src.utils.keypoint_sync.records import REGULAR, AnnotationKind, AnnotationRecord
from src.utils.keypoint_sync.store import AnnotationStore, JsonAnnotationStore
from src.utils.keypoint_sync.sync_engine import MovePolicy, SyncEngine
from src.utils.keypoint_sync.time_series import ImageInfo, TimeSeriesProvider


def build_store(config: Config) -> AnnotationStore:
    """Return the JSON store under the configured ``annotationDir``."""
    annotation_dir = config.get(config.annotationDir)
    logger.info(f"Annotations stored in {annotation_dir}")
    return JsonAnnotationStore(annotation_dir)


class AnnotationSession(QObject):
    """
    One annotation workspace built from the application config.

    Image switches made by the user go through ``open_image`` so the
    direction controller sees them; switches the controller requests are
    tagged ``SwitchReason.CONTROLLER``.

    Parameters
    ----------
    series_provider : TimeSeriesProvider
        Source of ordered images per plant and view angle.
    store : AnnotationStore, optional
        Record storage; built from ``annotationDir`` when omitted.
    config : Config, optional
        Settings, the global ``cfg`` by default.
    """

    sigImageOpened = Signal(object)

    def __init__(
        self,
        series_provider: TimeSeriesProvider,
        store: AnnotationStore | None = None,
        config: Config | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.config = config if config is not None else cfg
        self.store = store if store is not None else build_store(self.config)
        self.engine = SyncEngine(
            self.store,
            series_provider,
            enabled=self.config.get(self.config.syncEnabled),
            move_policy=self.config.get(self.config.movePolicy),
            parent=self,
        )
        self.editor = KeypointEditor(self.engine, parent=self)
        self.controller = DirectionAssignmentController(
            self.editor, self._select_for_controller, parent=self
        )
        self._multi_direction: MultiDirectionSession | None = None
        self.config.syncEnabled.valueChanged.connect(self.engine.set_enabled)
        self.config.movePolicy.valueChanged.connect(self.engine.set_move_policy)

    def close(self) -> None:
        """Disconnect from config signals."""
        self.cancel_multi_direction()
        self.controller.cancel()
        self.config.syncEnabled.valueChanged.disconnect(self.engine.set_enabled)
        self.config.movePolicy.valueChanged.disconnect(self.engine.set_move_policy)

    # -- settings -----------------------------------------------------------

    def set_sync_enabled(self, enabled: bool) -> None:
        self.config.set(self.config.syncEnabled, bool(enabled))

    def set_move_policy(self, policy: MovePolicy) -> None:
        self.config.set(self.config.movePolicy, MovePolicy(policy))

    @property
    def max_directions_limit(self) -> int:
        return int(self.config.get(self.config.maxDirectionsLimit))

    # -- navigation ---------------------------------------------------------

    def open_image(
        self, image: ImageInfo, reason: SwitchReason = SwitchReason.USER
    ) -> list[AnnotationRecord]:
        """Load ``image`` in the editor and notify the controller."""
        self.cancel_multi_direction()
        previous = self.editor.current_image
        if previous is not None and previous.plant_id != image.plant_id:
            self.controller.notify_plant_switch()
        records = self.editor.load_image(image)
        self.controller.notify_image_switch(image, reason)
        self.sigImageOpened.emit(image)
        return records

    def _select_for_controller(self, image: ImageInfo, reason: SwitchReason) -> None:
        self.open_image(image, reason)

    # -- editing ------------------------------------------------------------

    def add_keypoint(
        self,
        x: float,
        y: float,
        kind: AnnotationKind = REGULAR,
        max_directions: int = 1,
    ) -> AnnotationRecord:
        if max_directions > self.max_directions_limit:
            raise RecordValidationError(
                f"max_directions {max_directions} exceeds the configured "
                f"limit {self.max_directions_limit}"
            )
        return self.editor.add_keypoint(x, y, kind=kind, max_directions=max_directions)

    def start_auto_direction(self, mode: DirectionMode | str | None = None) -> bool:
        """Start direction assignment, using ``autoDirectionMode`` by default."""
        if mode is None:
            mode = self.config.get(self.config.autoDirectionMode)
        self.cancel_multi_direction()
        return self.controller.start(mode)

    # -- multi-direction ----------------------------------------------------

    @property
    def multi_direction(self) -> MultiDirectionSession | None:
        return self._multi_direction

    def start_multi_direction(self, record: AnnotationRecord) -> MultiDirectionSession:
        """Open count selection for one keypoint outside an automated run.

        The returned session receives the secondary trigger, scroll and
        click input. Opening another image or starting direction assignment
        interrupts it and restores the keypoint's previous directions.

        Raises
        ------
        InvalidModeTransition
            While direction assignment runs, when the record is not on the
            current image, or when it accepts a single direction only.
        """
        if self.controller.is_active:
            raise InvalidModeTransition("direction assignment is running")
        if self.editor.current_image is None or self.editor.find(record.identity) is None:
            raise InvalidModeTransition(f"{record.describe()} is not on the current image")
        self.cancel_multi_direction()
        session = MultiDirectionSession(self.editor, record, parent=self)
        session.sigCompleted.connect(self._on_multi_direction_completed)
        session.sigInterrupted.connect(self._release_multi_direction)
        self._multi_direction = session
        session.begin()
        return session

    def cancel_multi_direction(self) -> None:
        session = self._multi_direction
        if session is None:
            return
        self._multi_direction = None
        session.interrupt()
        session.deleteLater()

    def _on_multi_direction_completed(self, record: object) -> None:
        self._release_multi_direction()

    def _release_multi_direction(self) -> None:
        session = self._multi_direction
        if session is None or session.is_active:
            return
        self._multi_direction = None
        session.deleteLater()
