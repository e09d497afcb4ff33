"""Tests for the keypoint mutation path."""

from __future__ import annotations

import pytest

from src.utils.keypoint_sync.editor import KeypointEditor
from src.utils.keypoint_sync.errors import RecordValidationError
from src.utils.keypoint_sync.records import REGULAR, AnnotationKind, AnnotationRecord, Direction
from src.utils.keypoint_sync.store import load_records
from src.utils.keypoint_sync.sync_engine import SyncEngine


class _BusyProbeEngine(SyncEngine):
    """Engine double trying to edit the record being propagated."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.editor: KeypointEditor | None = None
        self.probe_results: list[bool] = []

    def propagate(self, operation, source_image, targets=None):
        if self.editor is not None and not self.probe_results:
            record = self.editor.find(operation.record.identity)
            other = self.editor.find((2, REGULAR))
            self.probe_results.append(self.editor.move_keypoint(record, 0.0, 0.0))
            if other is not None:
                self.probe_results.append(self.editor.move_keypoint(other, 1.0, 1.0))
        return super().propagate(operation, source_image, targets)


def test_add_keypoint_allocates_order_and_propagates(editor, store, images) -> None:
    """New keypoints take the smallest free order and sync forward."""
    editor.load_image(images[1])
    results = []
    editor.sigSyncResult.connect(results.append)

    first = editor.add_keypoint(10.0, 20.0)
    second = editor.add_keypoint(30.0, 40.0)
    custom = editor.add_keypoint(5.0, 5.0, kind=AnnotationKind.custom("node"))

    assert (first.order, second.order, custom.order) == (1, 2, 1)
    assert [result.synced for result in results] == [2, 2, 2]
    assert len(load_records(store, images[1].id)) == 3
    assert len(load_records(store, images[3].id)) == 3
    assert load_records(store, images[0].id) == []


def test_add_keypoint_rejects_duplicate_identity(editor, images) -> None:
    """An explicit order already used on the image is refused."""
    editor.load_image(images[0])
    editor.add_keypoint(1.0, 1.0, order=3)
    with pytest.raises(RecordValidationError):
        editor.add_keypoint(2.0, 2.0, order=3)


def test_move_and_delete_propagate(editor, store, images) -> None:
    """Moves and deletes reach later images through the engine."""
    editor.load_image(images[0])
    record = editor.add_keypoint(1.0, 1.0)

    assert editor.move_keypoint(record, 4.0, 5.0) is True
    assert load_records(store, images[2].id)[0].position == (4.0, 5.0)

    assert editor.delete_keypoint(record) is True
    assert editor.records == []
    assert load_records(store, images[2].id) == []


def test_disabled_sync_keeps_edits_local(editor, engine, store, images) -> None:
    """With sync off, edits are saved locally only."""
    engine.set_enabled(False)
    editor.load_image(images[0])

    editor.add_keypoint(1.0, 1.0)

    assert editor.last_sync_result is None
    assert len(load_records(store, images[0].id)) == 1
    assert load_records(store, images[1].id) == []


def test_set_directions_with_empty_targets_stays_local(editor, store, images) -> None:
    """An empty target set saves the current image without touching others."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0)

    editor.set_directions(record, [Direction(90.0)], sync_targets=[])

    assert load_records(store, images[0].id)[0].directions == [Direction(90.0)]
    assert load_records(store, images[1].id)[0].directions == []
    assert editor.last_sync_result.synced == 0


def test_preview_is_not_saved_and_discard_reloads(editor, store, images) -> None:
    """Previewed directions vanish when changes are discarded."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=2)
    saves = store.save_calls

    editor.preview_directions(record, [Direction(10.0)])
    assert editor.find(record.identity).directions == [Direction(10.0)]
    assert store.save_calls == saves

    editor.discard_changes()
    assert editor.find(record.identity).directions == []


def test_saves_during_preview_keep_saved_directions(editor, store, images) -> None:
    """Another edit saved while a preview is shown stores the saved directions."""
    editor.load_image(images[0])
    record = editor.add_keypoint(0.0, 0.0, max_directions=3)
    editor.preview_directions(record, [Direction(10.0)])

    other = editor.add_keypoint(5.0, 5.0)
    editor.move_keypoint(other, 6.0, 6.0)

    stored = {item.order: item for item in load_records(store, images[0].id)}
    assert stored[1].directions == []
    assert stored[1].local_id == record.local_id
    assert stored[2].position == (6.0, 6.0)
    assert editor.find(record.identity).directions == [Direction(10.0)]

    editor.set_directions(record, [Direction(20.0)])
    assert load_records(store, images[0].id)[0].directions == [Direction(20.0)]


def test_clear_image_is_not_propagated(editor, store, images) -> None:
    """Bulk clear empties the current image only."""
    editor.load_image(images[0])
    editor.add_keypoint(1.0, 1.0)
    editor.add_keypoint(2.0, 2.0)

    assert editor.clear_image() == 2
    assert load_records(store, images[0].id) == []
    assert len(load_records(store, images[1].id)) == 2


def test_expected_position_uses_nearest_earlier_image(editor, store, images) -> None:
    """Expected position comes from the closest earlier image holding the keypoint."""
    store.save_annotations(images[0].id, [AnnotationRecord(order=1, kind=REGULAR, x=1, y=1)])
    store.save_annotations(images[1].id, [AnnotationRecord(order=1, kind=REGULAR, x=2, y=2)])
    editor.load_image(images[3])

    assert editor.expected_position(1) == (2.0, 2.0)
    assert editor.expected_position(7) is None


def test_busy_record_rejects_edits_while_others_stay_editable(store, catalog, images) -> None:
    """Only the record being propagated is locked."""
    engine = _BusyProbeEngine(store, catalog, enabled=True)
    editor = KeypointEditor(engine)
    editor.load_image(images[0])
    engine.editor = None
    editor.add_keypoint(1.0, 1.0)
    editor.add_keypoint(2.0, 2.0)
    first = editor.find((1, REGULAR))

    engine.editor = editor
    editor.set_directions(first, [Direction(0.0)])

    assert engine.probe_results == [False, True]
    assert not editor.is_busy(first)
