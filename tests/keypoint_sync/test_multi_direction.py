"""Tests for the multi-direction count and collection session."""

from __future__ import annotations

import pytest

from src.utils.keypoint_sync.errors import InvalidModeTransition
from src.utils.keypoint_sync.multi_direction import (
    MultiDirectionSession,
    SessionState,
    click_angle,
)
from src.utils.keypoint_sync.records import Direction
from src.utils.keypoint_sync.store import load_records


class _CountingEditor:
    """Wrap an editor and count committed direction sets."""

    def __init__(self, editor) -> None:
        self._editor = editor
        self.commits: list[list[Direction]] = []

    @property
    def current_image(self):
        return self._editor.current_image

    def find(self, identity):
        return self._editor.find(identity)

    def preview_directions(self, record, directions):
        return self._editor.preview_directions(record, directions)

    def set_directions(self, record, directions, sync_targets=None):
        self.commits.append(list(directions))
        return self._editor.set_directions(record, directions, sync_targets=sync_targets)


def test_click_angle_uses_image_coordinates() -> None:
    """Angles follow atan2 on (dy, dx), normalized into [0, 360)."""
    assert click_angle((0.0, 0.0), (1.0, 0.0)) == 0.0
    assert click_angle((0.0, 0.0), (0.0, 1.0)) == 90.0
    assert click_angle((0.0, 0.0), (-1.0, 0.0)) == 180.0
    assert click_angle((0.0, 0.0), (0.0, -1.0)) == 270.0
    assert click_angle((5.0, 5.0), (6.0, 6.0)) == pytest.approx(45.0)


def test_single_direction_record_cannot_open_session(editor, images) -> None:
    """Sessions require a capacity above one."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0)
    with pytest.raises(InvalidModeTransition):
        MultiDirectionSession(editor, record)


def test_count_adjustment_is_clamped(editor, images) -> None:
    """Scroll steps by one and never leaves [1, max_directions]."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=3)
    session = MultiDirectionSession(editor, record)
    counts = []
    session.sigCountChanged.connect(counts.append)

    session.begin()
    assert session.target_count == 3
    assert session.adjust_count(120) == 3
    assert session.adjust_count(-120) == 2
    assert session.adjust_count(-1) == 1
    assert session.adjust_count(-1) == 1
    assert counts == [3, 2, 1]

    with pytest.raises(InvalidModeTransition):
        session.set_target_count(4)
    assert session.target_count == 1
    assert session.state == SessionState.COUNT_SELECTION


def test_session_steps_out_of_sequence_raise(editor, images) -> None:
    """Confirming or scrolling before begin is rejected."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=2)
    session = MultiDirectionSession(editor, record)
    with pytest.raises(InvalidModeTransition):
        session.confirm()
    with pytest.raises(InvalidModeTransition):
        session.adjust_count(1)
    assert session.add_click(1.0, 0.0) is False
    assert session.state == SessionState.IDLE


def test_third_click_auto_completes_with_single_commit(editor, store, images) -> None:
    """Reaching the target commits once and rejects further clicks."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=3)
    counting = _CountingEditor(editor)
    session = MultiDirectionSession(counting, record)
    progress = []
    completed = []
    session.sigProgressChanged.connect(lambda done, target: progress.append((done, target)))
    session.sigCompleted.connect(completed.append)

    session.handle_secondary_trigger()
    session.handle_secondary_trigger()
    assert session.state == SessionState.COLLECTING

    assert session.add_click(1.0, 0.0) is True
    assert session.add_click(0.0, 1.0) is True
    assert counting.commits == []
    assert session.add_click(-1.0, 0.0) is True

    assert session.state == SessionState.COMPLETED
    assert len(counting.commits) == 1
    assert [item.angle for item in counting.commits[0]] == [0.0, 90.0, 180.0]
    assert progress == [(0, 3), (1, 3), (2, 3), (3, 3)]
    assert len(completed) == 1

    assert session.add_click(0.0, -1.0) is False
    assert len(editor.find(record.identity).directions) == 3
    assert len(load_records(store, images[1].id)[0].directions) == 3


def test_confirm_truncates_and_counts_existing_directions(editor, images) -> None:
    """Existing directions seed the counter; excess ones are dropped."""
    editor.load_image(images[0])
    record = editor.add_keypoint(
        0.0,
        0.0,
        max_directions=3,
        directions=[Direction(10.0), Direction(20.0), Direction(30.0)],
    )
    counting = _CountingEditor(editor)
    session = MultiDirectionSession(counting, record)

    session.begin()
    session.set_target_count(2)
    session.confirm()

    assert session.state == SessionState.COMPLETED
    assert [item.angle for item in counting.commits[0]] == [10.0, 20.0]


def test_interrupt_restores_prior_directions(editor, store, images) -> None:
    """An unfinished session leaves the record as it was."""
    editor.load_image(images[0])
    record = editor.add_keypoint(
        0.0, 0.0, max_directions=3, directions=[Direction(45.0)]
    )
    session = MultiDirectionSession(editor, record)
    interrupted = []
    session.sigInterrupted.connect(lambda: interrupted.append(True))

    session.begin()
    session.confirm()
    session.add_click(0.0, 1.0)
    assert len(editor.find(record.identity).directions) == 2

    session.interrupt()

    assert session.state == SessionState.INTERRUPTED
    assert editor.find(record.identity).directions == [Direction(45.0)]
    assert load_records(store, images[0].id)[0].directions == [Direction(45.0)]
    assert interrupted == [True]


def test_interrupt_after_image_switch_leaves_new_image_alone(editor, store, images) -> None:
    """Restoring targets only the image the session was opened on."""
    editor.engine.set_enabled(False)
    editor.load_image(images[1])
    editor.add_keypoint(0.0, 0.0, max_directions=3, directions=[Direction(45.0)])
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=3)
    session = MultiDirectionSession(editor, record)
    session.begin()
    session.confirm()
    session.add_click(0.0, 1.0)

    editor.load_image(images[1])
    session.interrupt()

    assert session.state == SessionState.INTERRUPTED
    assert session.record is None
    assert session.add_click(1.0, 0.0) is False
    assert editor.find(record.identity).directions == [Direction(45.0)]
    assert load_records(store, images[1].id)[0].directions == [Direction(45.0)]
    assert load_records(store, images[0].id)[0].directions == []
