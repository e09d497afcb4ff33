"""Nested session assigning several directions to one keypoint."""

from __future__ import annotations

from enum import Enum

import numpy as np
from loguru import logger
from PySide6.QtCore import QObject, Signal

from src.utils.keypoint_sync.errors import InvalidModeTransition
from src.utils.keypoint_sync.records import (
    AnnotationKind,
    AnnotationRecord,
    Direction,
    normalize_angle,
)
from src.utils.keypoint_sync.editor import KeypointEditor


def click_angle(
    anchor: tuple[float, float], click: tuple[float, float]
) -> float:
    """Return the angle of ``click`` seen from ``anchor``.

    Parameters
    ----------
    anchor : tuple[float, float]
        Keypoint position.
    click : tuple[float, float]
        Click position in the same coordinate space.

    Returns
    -------
    float
        ``atan2`` of the offset in degrees, normalized to ``[0, 360)``.

    Examples
    --------
    >>> click_angle((0.0, 0.0), (0.0, -1.0))
    270.0
    """
    delta = np.asarray(click, dtype=np.float64) - np.asarray(anchor, dtype=np.float64)
    angle = float(np.degrees(np.arctan2(delta[1], delta[0])))
    return normalize_angle(angle)


class SessionState(str, Enum):
    """Multi-direction session states."""

    IDLE = "idle"
    COUNT_SELECTION = "count_selection"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


class MultiDirectionSession(QObject):
    """Collect ``1..max_directions`` directions for one keypoint.

    The session is bound to the image displayed when it was created; once the
    editor shows another image the session no longer touches any record.

    The first secondary trigger opens count selection, scroll deltas adjust
    the proposed count, the second trigger confirms it. Each primary click
    then appends one direction; at the target count the direction list is
    committed through the editor once.

    Parameters
    ----------
    editor : KeypointEditor
        Mutation path for the record's image.
    record : AnnotationRecord
        Record with ``max_directions > 1``.

    Signals
    -------
    sigStateChanged : Signal(str)
        Emitted with the new ``SessionState`` value.
    sigCountChanged : Signal(int)
        Emitted when the proposed target count changes.
    sigProgressChanged : Signal(int, int)
        Emitted with ``(collected, target)`` while collecting.
    sigCompleted : Signal(object)
        Emitted with the committed record.
    sigInterrupted : Signal()
        Emitted when the session is torn down before completion.
    """

    sigStateChanged = Signal(str)
    sigCountChanged = Signal(int)
    sigProgressChanged = Signal(int, int)
    sigCompleted = Signal(object)
    sigInterrupted = Signal()

    def __init__(
        self,
        editor: KeypointEditor,
        record: AnnotationRecord,
        sync_targets=None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        if record.max_directions <= 1:
            raise InvalidModeTransition(
                f"{record.describe()} accepts a single direction only"
            )
        self._editor = editor
        self._image_id = editor.current_image.id
        self._identity: tuple[int, AnnotationKind] = record.identity
        self._max_directions = record.max_directions
        self._prior: list[Direction] = list(record.directions)
        self._collected: list[Direction] = []
        self._target_count = record.max_directions
        self._sync_targets = sync_targets
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state in (SessionState.COUNT_SELECTION, SessionState.COLLECTING)

    @property
    def identity(self) -> tuple[int, AnnotationKind]:
        return self._identity

    @property
    def target_count(self) -> int:
        return self._target_count

    @property
    def collected_count(self) -> int:
        return len(self._collected)

    @property
    def record(self) -> AnnotationRecord | None:
        """The session's record, or None once the editor shows another image."""
        current = self._editor.current_image
        if current is None or current.id != self._image_id:
            return None
        return self._editor.find(self._identity)

    # -- inputs -------------------------------------------------------------

    def handle_secondary_trigger(self) -> SessionState:
        """Open count selection, or confirm the count when already open."""
        if self._state == SessionState.IDLE:
            self.begin()
        elif self._state == SessionState.COUNT_SELECTION:
            self.confirm()
        else:
            raise InvalidModeTransition(
                f"secondary trigger not accepted in state {self._state.value}"
            )
        return self._state

    def begin(self) -> None:
        self._expect(SessionState.IDLE)
        self._target_count = self._max_directions
        self._set_state(SessionState.COUNT_SELECTION)
        self.sigCountChanged.emit(self._target_count)

    def adjust_count(self, delta: float) -> int:
        """Step the proposed count by one in the direction of ``delta``."""
        self._expect(SessionState.COUNT_SELECTION)
        step = int(np.sign(delta))
        new_count = int(np.clip(self._target_count + step, 1, self._max_directions))
        if new_count != self._target_count:
            self._target_count = new_count
            self.sigCountChanged.emit(new_count)
        return self._target_count

    def set_target_count(self, count: int) -> None:
        self._expect(SessionState.COUNT_SELECTION)
        if not 1 <= count <= self._max_directions:
            raise InvalidModeTransition(
                f"direction count {count} outside [1, {self._max_directions}]"
            )
        if count != self._target_count:
            self._target_count = count
            self.sigCountChanged.emit(count)

    def confirm(self) -> None:
        """Fix the target count and start collecting clicks."""
        self._expect(SessionState.COUNT_SELECTION)
        record = self.record
        if record is None:
            self.interrupt()
            return
        self._collected = list(record.directions[: self._target_count])
        self._set_state(SessionState.COLLECTING)
        self._editor.preview_directions(record, self._collected)
        logger.info(
            f"Collecting {self._target_count} directions for {record.describe()} "
            f"({len(self._collected)} already set)"
        )
        self.sigProgressChanged.emit(len(self._collected), self._target_count)
        if len(self._collected) >= self._target_count:
            self._complete(record)

    def add_click(self, x: float, y: float) -> bool:
        """Append one direction from a primary click.

        Returns
        -------
        bool
            False when the click is rejected.
        """
        if self._state != SessionState.COLLECTING:
            logger.warning(f"Direction click ignored in state {self._state.value}")
            return False
        record = self.record
        if record is None:
            self.interrupt()
            return False
        if len(self._collected) >= self._max_directions:
            logger.warning(f"{record.describe()} already has {self._max_directions} directions")
            return False
        angle = click_angle(record.position, (x, y))
        self._collected.append(Direction(angle=angle, origin_click=(float(x), float(y))))
        self._editor.preview_directions(record, self._collected)
        self.sigProgressChanged.emit(len(self._collected), self._target_count)
        if len(self._collected) >= self._target_count:
            self._complete(record)
        return True

    def interrupt(self) -> None:
        """Tear down the session, restoring prior directions if unfinished."""
        if self._state in (SessionState.COMPLETED, SessionState.INTERRUPTED):
            return
        record = self.record
        if record is not None and self._state == SessionState.COLLECTING:
            self._editor.preview_directions(record, self._prior)
        self._set_state(SessionState.INTERRUPTED)
        self.sigInterrupted.emit()

    # -- internals ----------------------------------------------------------

    def _complete(self, record: AnnotationRecord) -> None:
        self._set_state(SessionState.COMPLETED)
        self._editor.set_directions(
            record, list(self._collected), sync_targets=self._sync_targets
        )
        logger.info(f"{record.describe()} got {len(self._collected)} directions")
        self.sigCompleted.emit(self._editor.find(self._identity))

    def _expect(self, state: SessionState) -> None:
        if self._state != state:
            raise InvalidModeTransition(
                f"expected state {state.value}, session is {self._state.value}"
            )

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        self.sigStateChanged.emit(state.value)
