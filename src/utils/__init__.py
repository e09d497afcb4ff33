"""Utility package exports for plant-keypoint-sync."""

from src.utils.keypoint_sync import (
    AnnotationKind,
    AnnotationRecord,
    DirectionAssignmentController,
    KeypointEditor,
    SyncEngine,
    TimeSeriesIndex,
)

__all__ = [
    "AnnotationKind",
    "AnnotationRecord",
    "DirectionAssignmentController",
    "KeypointEditor",
    "SyncEngine",
    "TimeSeriesIndex",
]
