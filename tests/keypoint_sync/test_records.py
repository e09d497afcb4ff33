"""Tests for keypoint record model and legacy normalization."""

from __future__ import annotations

import pytest

from src.utils.keypoint_sync.errors import RecordValidationError
from src.utils.keypoint_sync.records import (
    REGULAR,
    AnnotationKind,
    AnnotationRecord,
    Direction,
    assign_missing_orders,
    next_available_order,
    normalize_record_payload,
    records_from_payloads,
)


def test_identity_ignores_local_id_and_position() -> None:
    """Records with equal order and kind share identity."""
    first = AnnotationRecord(order=2, kind=REGULAR, x=1.0, y=2.0)
    second = AnnotationRecord(order=2, kind=AnnotationKind.regular(), x=9.0, y=9.0)
    assert first.local_id != second.local_id
    assert first.identity == second.identity
    assert first.identity != AnnotationRecord(
        order=2, kind=AnnotationKind.custom("leaf-tip"), x=1.0, y=2.0
    ).identity


def test_record_rejects_invalid_order_and_capacity() -> None:
    """Model invariants are enforced at construction."""
    with pytest.raises(RecordValidationError):
        AnnotationRecord(order=0, kind=REGULAR, x=0.0, y=0.0)
    with pytest.raises(RecordValidationError):
        AnnotationRecord(order=1, kind=REGULAR, x=0.0, y=0.0, max_directions=0)
    with pytest.raises(RecordValidationError):
        AnnotationRecord(order=1, kind=REGULAR, x=0.0, y=0.0, max_directions=9)
    with pytest.raises(RecordValidationError):
        AnnotationRecord(
            order=1, kind=REGULAR, x=0.0, y=0.0, directions=[10.0, 20.0]
        )


def test_set_directions_enforces_max_directions() -> None:
    """A record never holds more directions than its capacity."""
    record = AnnotationRecord(order=1, kind=REGULAR, x=0.0, y=0.0, max_directions=2)
    record.set_directions([Direction(10.0), Direction(20.0)])
    with pytest.raises(RecordValidationError):
        record.set_directions([Direction(10.0), Direction(20.0), Direction(30.0)])
    assert [item.angle for item in record.directions] == [10.0, 20.0]


def test_normalize_legacy_left_right_and_numeric() -> None:
    """Legacy single direction values map to one angle entry."""
    left = normalize_record_payload({"order": 1, "x": 0, "y": 0, "direction": "left"})
    right = normalize_record_payload({"order": 2, "x": 0, "y": 0, "direction": "right"})
    numeric = normalize_record_payload({"order": 3, "x": 0, "y": 0, "direction": 450})
    missing = normalize_record_payload({"order": 4, "x": 0, "y": 0, "direction": None})

    assert left["directions"] == [{"angle": 180.0, "type": "angle"}]
    assert right["directions"] == [{"angle": 0.0, "type": "angle"}]
    assert numeric["directions"] == [{"angle": 90.0, "type": "angle"}]
    assert missing["directions"] == []
    assert missing["maxDirections"] == 1
    assert left["annotationType"] == "regular"


def test_normalize_is_pure() -> None:
    """Normalization returns a new dict and leaves the input untouched."""
    payload = {"order": 1, "x": 0, "y": 0, "direction": "left"}
    normalize_record_payload(payload)
    assert payload == {"order": 1, "x": 0, "y": 0, "direction": "left"}


def test_custom_kind_round_trip_through_dict() -> None:
    """Custom kind and multi directions survive serialization."""
    record = AnnotationRecord(
        order=3,
        kind=AnnotationKind.custom("node"),
        x=5.0,
        y=6.0,
        directions=[Direction(45.0, (7.0, 8.0)), Direction(90.0)],
        max_directions=3,
    )
    payload = record.to_dict()
    assert payload["annotationType"] == "custom"
    assert payload["customTypeId"] == "node"
    assert payload["direction"] == 45.0

    restored = AnnotationRecord.from_dict(payload)
    assert restored.identity == record.identity
    assert restored.directions == record.directions
    assert restored.max_directions == 3
    assert restored.local_id == record.local_id


def test_next_available_order_fills_gaps_per_kind() -> None:
    """Order allocation picks the smallest free order of the same kind."""
    custom = AnnotationKind.custom("node")
    records = [
        AnnotationRecord(order=1, kind=REGULAR, x=0, y=0),
        AnnotationRecord(order=3, kind=REGULAR, x=0, y=0),
        AnnotationRecord(order=1, kind=custom, x=0, y=0),
    ]
    assert next_available_order(records, REGULAR) == 2
    assert next_available_order(records, custom) == 2
    assert next_available_order(records, AnnotationKind.custom("tip")) == 1


def test_missing_orders_filled_and_valid_orders_kept() -> None:
    """Only order-less records get an order; stored orders stay as they are."""
    records = records_from_payloads(
        [
            {"order": 3, "x": 1, "y": 1},
            {"order": 5, "x": 2, "y": 2},
            {"x": 9, "y": 9},
            {"order": 5, "x": 4, "y": 4},
            {"x": 3, "y": 3, "annotationType": "custom", "customTypeId": "n"},
        ]
    )
    assert [record.order for record in records] == [3, 5, 1, 5, 1]
    assert assign_missing_orders(records) is False
