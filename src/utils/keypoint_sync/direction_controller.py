"""Automated direction assignment over one image or a whole time series."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger
from PySide6.QtCore import QObject, Signal

from src.utils.keypoint_sync.errors import InvalidModeTransition
from src.utils.keypoint_sync.records import (
    AnnotationKind,
    AnnotationRecord,
    Direction,
    find_matches,
)
from src.utils.keypoint_sync.editor import KeypointEditor
from src.utils.keypoint_sync.multi_direction import (
    MultiDirectionSession,
    click_angle,
)
from src.utils.keypoint_sync.store import load_records
from src.utils.keypoint_sync.time_series import ImageInfo


class DirectionMode(str, Enum):
    """Direction traversal modes."""

    LONGITUDINAL = "longitudinal"
    CROSS_SECTIONAL = "cross_sectional"


class ControllerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"


class SwitchReason(str, Enum):
    """Who asked for an image switch."""

    CONTROLLER = "controller"
    USER = "user"
    PROGRAM = "program"


@dataclass(frozen=True)
class Occurrence:
    """One record lacking a direction, located in the series."""

    image: ImageInfo
    identity: tuple[int, AnnotationKind]


SelectImage = Callable[[ImageInfo, SwitchReason], None]


def _record_sort_key(record: AnnotationRecord) -> tuple:
    return (record.order, record.kind.sort_key())


class DirectionAssignmentController(QObject):
    """Walk keypoints lacking a direction and assign one per click.

    Longitudinal mode walks the current image in ascending order.
    Cross-sectional mode walks every image of the current time series
    order by order, switching images through ``select_image``.

    Parameters
    ----------
    editor : KeypointEditor
        Mutation path; every direction is set through it.
    select_image : Callable[[ImageInfo, SwitchReason], None]
        Capability that makes an image current in the editor.

    Signals
    -------
    sigStateChanged : Signal(str)
        Emitted with the new ``ControllerState`` value.
    sigSelectionChanged : Signal(object)
        Emitted with the selected ``AnnotationRecord`` or ``None``.
    sigProgressChanged : Signal(dict)
        Emitted with the progress dict after each step.
    sigCompleted : Signal(dict)
        Emitted with the final progress dict.
    sigPaused : Signal()
        Emitted when a cross-sectional run is paused.
    sigExited : Signal(str)
        Emitted with the exit reason on a full exit.
    """

    sigStateChanged = Signal(str)
    sigSelectionChanged = Signal(object)
    sigProgressChanged = Signal(dict)
    sigCompleted = Signal(dict)
    sigPaused = Signal()
    sigExited = Signal(str)

    def __init__(
        self,
        editor: KeypointEditor,
        select_image: SelectImage,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._editor = editor
        self._select_image = select_image
        self._state = ControllerState.IDLE
        self._mode: DirectionMode | None = None
        self._paused = False
        self._selected: tuple[int, AnnotationKind] | None = None
        self._session: MultiDirectionSession | None = None
        self._completed = 0
        self._total = 0
        # longitudinal
        self._queue: list[tuple[int, AnnotationKind]] = []
        self._queue_index = 0
        # cross-sectional
        self._orders: list[int] = []
        self._occurrences: dict[int, list[Occurrence]] = {}
        self._order_index = 0
        self._image_index = 0
        self._series_signature: tuple[str, ...] = ()
        self._series_anchor: ImageInfo | None = None

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def mode(self) -> DirectionMode | None:
        return self._mode

    @property
    def is_active(self) -> bool:
        return self._state == ControllerState.ACTIVE

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def session(self) -> MultiDirectionSession | None:
        return self._session

    @property
    def selected_record(self) -> AnnotationRecord | None:
        if self._selected is None:
            return None
        return self._editor.find(self._selected)

    @property
    def pointer(self) -> tuple[int, int]:
        """``(order_index, image_index_within_order)`` of a cross-sectional run."""
        return (self._order_index, self._image_index)

    @property
    def available_orders(self) -> list[int]:
        return list(self._orders)

    def progress(self) -> dict[str, Any]:
        progress: dict[str, Any] = {
            "mode": self._mode.value if self._mode is not None else None,
            "completed": self._completed,
            "total": self._total,
        }
        if self._mode == DirectionMode.CROSS_SECTIONAL:
            current = None
            if self._order_index < len(self._orders):
                current = self._orders[self._order_index]
            progress["current_order"] = current
            progress["total_orders"] = len(self._orders)
        return progress

    # -- entry --------------------------------------------------------------

    def start(self, mode: DirectionMode | str) -> bool:
        """Enter a traversal mode.

        Parameters
        ----------
        mode : DirectionMode | str
            Traversal mode.

        Returns
        -------
        bool
            True when something needs a direction, False when the run
            completed immediately.

        Raises
        ------
        InvalidModeTransition
            Unknown mode or no image loaded; state is left unchanged.
        """
        try:
            mode = DirectionMode(mode)
        except ValueError:
            raise InvalidModeTransition(f"unknown direction mode: {mode!r}") from None
        if self._editor.current_image is None:
            raise InvalidModeTransition("cannot assign directions without an image")
        if self._state == ControllerState.ACTIVE:
            self._exit("restarted")

        self._reset()
        self._mode = mode
        if mode == DirectionMode.LONGITUDINAL:
            self._enter_longitudinal()
        else:
            self._enter_cross_sectional()
        logger.info(f"Direction assignment started: {mode.value}, {self._total} keypoints")
        self._set_state(ControllerState.ACTIVE)
        self._select_next()
        return self._state == ControllerState.ACTIVE

    def _enter_longitudinal(self) -> None:
        pending = sorted(
            (r for r in self._editor.records if not r.has_direction),
            key=_record_sort_key,
        )
        self._queue = [record.identity for record in pending]
        self._total = len(self._queue)

    def _enter_cross_sectional(self) -> None:
        current = self._editor.current_image
        series = self._editor.series()
        self._series_anchor = current
        self._series_signature = series.signature
        occurrences: dict[int, list[Occurrence]] = {}
        for image in series:
            if image.id == current.id:
                records = self._editor.records
            else:
                records = load_records(self._editor.engine.store, image.id)
            for record in sorted(records, key=_record_sort_key):
                if record.has_direction:
                    continue
                occurrences.setdefault(record.order, []).append(
                    Occurrence(image, record.identity)
                )
        self._orders = sorted(occurrences)
        self._occurrences = occurrences
        self._total = sum(len(items) for items in occurrences.values())

    # -- user input ---------------------------------------------------------

    def handle_click(self, x: float, y: float) -> bool:
        """Assign a direction to the selected keypoint from a primary click."""
        record = self._accepting_record()
        if record is None:
            return False
        if self._session is not None and self._session.is_active:
            return self._session.add_click(x, y)
        if record.max_directions > 1:
            session = self._open_session(record)
            session.begin()
            session.confirm()
            if not session.is_active:
                return True
            return session.add_click(x, y)

        direction = Direction(click_angle(record.position, (x, y)), (float(x), float(y)))
        if not self._editor.set_directions(
            record, [direction], sync_targets=self._sync_targets()
        ):
            return False
        logger.debug(f"{record.describe()} -> {direction.angle:.1f} deg")
        self._advance()
        return True

    def handle_secondary_trigger(self) -> bool:
        """Open or confirm the direction count of a multi-direction keypoint."""
        record = self._accepting_record()
        if record is None or record.max_directions <= 1:
            return False
        if self._session is None or not self._session.is_active:
            self._open_session(record)
        try:
            self._session.handle_secondary_trigger()
        except InvalidModeTransition as exc:
            logger.warning(f"Secondary trigger ignored: {exc}")
            return False
        return True

    def handle_scroll(self, delta: float) -> bool:
        if self._session is None or not self._session.is_active:
            return False
        try:
            self._session.adjust_count(delta)
        except InvalidModeTransition:
            return False
        return True

    # -- external events ----------------------------------------------------

    def notify_image_switch(self, image: ImageInfo, reason: SwitchReason) -> None:
        """Report an image switch; switches the controller did not ask for interrupt."""
        if self._state != ControllerState.ACTIVE:
            return
        if SwitchReason(reason) == SwitchReason.CONTROLLER:
            return
        self._interrupt(f"image switch to {image.id}")

    def notify_mode_entered(self, mode_name: str) -> None:
        """Report that a competing annotation mode became active."""
        if self._state != ControllerState.ACTIVE:
            return
        self._interrupt(f"mode {mode_name} entered")

    def notify_plant_switch(self) -> None:
        if self._state == ControllerState.ACTIVE:
            self._exit("plant switch")

    def notify_series_changed(self) -> None:
        if self._state == ControllerState.ACTIVE:
            self._exit("time series changed")

    def cancel(self) -> None:
        if self._state == ControllerState.ACTIVE:
            self._exit("cancelled")

    def resume(self) -> bool:
        """Continue a paused cross-sectional run from its pointer."""
        if self._state != ControllerState.ACTIVE or not self._paused:
            return False
        if self._series_changed():
            self._exit("time series changed")
            return False
        self._paused = False
        logger.info(f"Cross-sectional assignment resumed at {self.pointer}")
        self._select_next()
        return self._state == ControllerState.ACTIVE

    # -- traversal ----------------------------------------------------------

    def _select_next(self) -> None:
        if self._mode == DirectionMode.LONGITUDINAL:
            self._select_next_longitudinal()
        else:
            self._select_next_cross_sectional()

    def _select_next_longitudinal(self) -> None:
        while self._queue_index < len(self._queue):
            identity = self._queue[self._queue_index]
            record = self._editor.find(identity)
            if record is not None and not record.has_direction:
                self._select(identity)
                return
            logger.debug(f"Skipping #{identity[0]}, deleted or already oriented")
            self._queue_index += 1
            self._completed += 1
        self._finish()

    def _select_next_cross_sectional(self) -> None:
        while self._order_index < len(self._orders):
            items = self._occurrences[self._orders[self._order_index]]
            while self._image_index < len(items):
                if self._series_changed():
                    self._exit("time series changed")
                    return
                occurrence = items[self._image_index]
                if self._still_pending(occurrence):
                    self._show(occurrence.image)
                    if self._editor.find(occurrence.identity) is not None:
                        self._select(occurrence.identity)
                        return
                logger.debug(
                    f"Skipping #{occurrence.identity[0]} on {occurrence.image.id}"
                )
                self._image_index += 1
                self._completed += 1
            self._image_index = 0
            self._order_index += 1
        self._finish()

    def _series_changed(self) -> bool:
        series = self._editor.engine.series_for(self._series_anchor)
        return series.signature != self._series_signature

    def _still_pending(self, occurrence: Occurrence) -> bool:
        current = self._editor.current_image
        if current is not None and current.id == occurrence.image.id:
            records = self._editor.records
        else:
            records = load_records(self._editor.engine.store, occurrence.image.id)
        matches = find_matches(records, occurrence.identity)
        return bool(matches) and not matches[0].has_direction

    def _show(self, image: ImageInfo) -> None:
        current = self._editor.current_image
        if current is not None and current.id == image.id:
            return
        self._select_image(image, SwitchReason.CONTROLLER)
        current = self._editor.current_image
        if current is None or current.id != image.id:
            logger.warning(f"select_image did not load {image.id}, loading directly")
            self._editor.load_image(image)

    def _advance(self) -> None:
        self._completed += 1
        if self._mode == DirectionMode.LONGITUDINAL:
            self._queue_index += 1
        else:
            self._image_index += 1
            items = self._occurrences[self._orders[self._order_index]]
            if self._image_index >= len(items):
                self._image_index = 0
                self._order_index += 1
        self._select_next()

    def _select(self, identity: tuple[int, AnnotationKind]) -> None:
        self._selected = identity
        self.sigSelectionChanged.emit(self._editor.find(identity))
        self.sigProgressChanged.emit(self.progress())

    def _clear_selection(self) -> None:
        if self._selected is None:
            return
        self._selected = None
        self.sigSelectionChanged.emit(None)

    def _sync_targets(self) -> list[ImageInfo] | None:
        """Propagation targets for directions set by the traversal.

        Cross-sectional runs save each direction on the displayed image only
        (empty target set): later occurrences of the same order are visited
        and oriented by the traversal itself, so forward sync would fill them
        before their turn. Longitudinal runs use the default forward sync.
        """
        if self._mode == DirectionMode.CROSS_SECTIONAL:
            return []
        return None

    def _accepting_record(self) -> AnnotationRecord | None:
        if self._state != ControllerState.ACTIVE or self._paused:
            return None
        return self.selected_record

    # -- multi-direction ----------------------------------------------------

    def _open_session(self, record: AnnotationRecord) -> MultiDirectionSession:
        self._close_session()
        session = MultiDirectionSession(
            self._editor, record, sync_targets=self._sync_targets(), parent=self
        )
        session.sigCompleted.connect(self._on_session_completed)
        self._session = session
        return session

    def _close_session(self) -> None:
        if self._session is None:
            return
        session = self._session
        self._session = None
        session.sigCompleted.disconnect(self._on_session_completed)
        session.interrupt()
        session.deleteLater()

    def _on_session_completed(self, record: object) -> None:
        session = self._session
        self._session = None
        if session is not None:
            session.sigCompleted.disconnect(self._on_session_completed)
            session.deleteLater()
        self._advance()

    # -- exits --------------------------------------------------------------

    def _interrupt(self, reason: str) -> None:
        if self._mode == DirectionMode.CROSS_SECTIONAL:
            self._pause(reason)
        else:
            self._exit(reason)

    def _pause(self, reason: str) -> None:
        if self._paused:
            return
        self._close_session()
        self._clear_selection()
        self._paused = True
        logger.info(f"Cross-sectional assignment paused ({reason}) at {self.pointer}")
        self.sigPaused.emit()

    def _finish(self) -> None:
        self._close_session()
        self._clear_selection()
        progress = self.progress()
        logger.info(f"Direction assignment completed: {progress}")
        self._set_state(ControllerState.COMPLETED)
        self.sigProgressChanged.emit(progress)
        self.sigCompleted.emit(progress)

    def _exit(self, reason: str) -> None:
        self._close_session()
        self._clear_selection()
        logger.info(f"Direction assignment exited: {reason}")
        self._reset()
        self._set_state(ControllerState.IDLE)
        self.sigExited.emit(reason)

    def _reset(self) -> None:
        self._mode = None
        self._paused = False
        self._selected = None
        self._completed = 0
        self._total = 0
        self._queue = []
        self._queue_index = 0
        self._orders = []
        self._occurrences = {}
        self._order_index = 0
        self._image_index = 0
        self._series_signature = ()
        self._series_anchor = None

    def _set_state(self, state: ControllerState) -> None:
        if state == self._state:
            return
        self._state = state
        self.sigStateChanged.emit(state.value)
