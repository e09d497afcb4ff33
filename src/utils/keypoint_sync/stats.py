"""Per-series annotation statistics."""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from src.utils.keypoint_sync.store import AnnotationStore, load_records
from src.utils.keypoint_sync.time_series import TimeSeriesIndex

TABLE_COLUMNS = [
    "image_id",
    "position",
    "capture_time",
    "records",
    "with_direction",
    "missing_direction",
]


def series_annotation_table(
    series: TimeSeriesIndex, store: AnnotationStore
) -> pd.DataFrame:
    """Count keypoints and direction coverage for each image of a series.

    Parameters
    ----------
    series : TimeSeriesIndex
        Ordered images of one plant and view angle.
    store : AnnotationStore
        Record storage.

    Returns
    -------
    pandas.DataFrame
        One row per image in series order, columns ``image_id, position,
        capture_time, records, with_direction, missing_direction``.
    """
    rows = []
    for position, image in enumerate(series):
        records = load_records(store, image.id)
        with_direction = sum(1 for record in records if record.has_direction)
        rows.append(
            {
                "image_id": image.id,
                "position": position,
                "capture_time": image.capture_time,
                "records": len(records),
                "with_direction": with_direction,
                "missing_direction": len(records) - with_direction,
            }
        )
    if not rows:
        return pd.DataFrame(columns=TABLE_COLUMNS)
    return pd.DataFrame(rows)[TABLE_COLUMNS].reset_index(drop=True)


def series_summary(
    series: TimeSeriesIndex,
    store: AnnotationStore,
    table: pd.DataFrame | None = None,
) -> dict[str, Any]:
    """Summarize a series table into totals and direction coverage.

    ``coverage`` is the fraction of keypoints with at least one direction,
    ``nan`` when the series holds no keypoints.
    """
    if table is None:
        table = series_annotation_table(series, store)
    total = int(table["records"].sum()) if len(table) else 0
    with_direction = int(table["with_direction"].sum()) if len(table) else 0
    annotated_images = int((table["records"] > 0).sum()) if len(table) else 0
    coverage = with_direction / total if total else float(np.nan)
    return {
        "images": len(series),
        "annotated_images": annotated_images,
        "records": total,
        "with_direction": with_direction,
        "missing_direction": total - with_direction,
        "coverage": coverage,
    }
