"""Tests for per-series annotation statistics."""

from __future__ import annotations

import math

from src.utils.keypoint_sync.records import REGULAR, AnnotationRecord, Direction
from src.utils.keypoint_sync.stats import (
    TABLE_COLUMNS,
    series_annotation_table,
    series_summary,
)
from src.utils.keypoint_sync.time_series import TimeSeriesIndex


def test_series_table_counts_direction_coverage(store, images) -> None:
    """Each image row counts records with and without a direction."""
    store.save_annotations(
        images[0].id,
        [
            AnnotationRecord(order=1, kind=REGULAR, x=0, y=0, directions=[Direction(0.0)]),
            AnnotationRecord(order=2, kind=REGULAR, x=0, y=0),
        ],
    )
    store.put_payloads(images[2].id, [{"order": 1, "x": 0, "y": 0, "direction": "right"}])
    series = TimeSeriesIndex(images)

    table = series_annotation_table(series, store)

    assert list(table.columns) == TABLE_COLUMNS
    assert table["image_id"].tolist() == [image.id for image in images]
    assert table["records"].tolist() == [2, 0, 1, 0]
    assert table["missing_direction"].tolist() == [1, 0, 0, 0]

    summary = series_summary(series, store, table=table)
    assert summary["images"] == 4
    assert summary["annotated_images"] == 2
    assert summary["records"] == 3
    assert summary["coverage"] == 2 / 3


def test_empty_series_summary(store) -> None:
    """An empty series yields an empty table and nan coverage."""
    series = TimeSeriesIndex([])
    table = series_annotation_table(series, store)
    assert table.empty
    assert list(table.columns) == TABLE_COLUMNS

    summary = series_summary(series, store)
    assert summary["records"] == 0
    assert math.isnan(summary["coverage"])
