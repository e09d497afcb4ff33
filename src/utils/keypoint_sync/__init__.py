"""Keypoint synchronization across plant time series."""

from src.utils.keypoint_sync.direction_controller import (
    ControllerState,
    DirectionAssignmentController,
    DirectionMode,
    SwitchReason,
)
from src.utils.keypoint_sync.editor import KeypointEditor
from src.utils.keypoint_sync.errors import (
    ConflictDetected,
    FailureReason,
    IntegrityError,
    InvalidModeTransition,
    KeypointSyncError,
    NotFound,
    PersistenceFailure,
    RecordValidationError,
)
from src.utils.keypoint_sync.multi_direction import (
    MultiDirectionSession,
    SessionState,
    click_angle,
)
from src.utils.keypoint_sync.records import (
    REGULAR,
    AnnotationKind,
    AnnotationRecord,
    Direction,
    assign_missing_orders,
    next_available_order,
    normalize_record_payload,
)
from src.utils.keypoint_sync.stats import series_annotation_table, series_summary
from src.utils.keypoint_sync.store import (
    AnnotationStore,
    InMemoryAnnotationStore,
    JsonAnnotationStore,
)
from src.utils.keypoint_sync.sync_engine import (
    MovePolicy,
    SyncEngine,
    SyncOperation,
    SyncOperationType,
    SyncResult,
    TargetFailure,
    TargetOutcome,
)
from src.utils.keypoint_sync.time_series import (
    ImageCatalog,
    ImageInfo,
    TimeSeriesIndex,
    parse_capture_time,
)

__all__ = [
    "REGULAR",
    "AnnotationKind",
    "AnnotationRecord",
    "AnnotationStore",
    "ConflictDetected",
    "ControllerState",
    "Direction",
    "DirectionAssignmentController",
    "DirectionMode",
    "FailureReason",
    "ImageCatalog",
    "ImageInfo",
    "InMemoryAnnotationStore",
    "IntegrityError",
    "InvalidModeTransition",
    "JsonAnnotationStore",
    "KeypointEditor",
    "KeypointSyncError",
    "MovePolicy",
    "MultiDirectionSession",
    "NotFound",
    "PersistenceFailure",
    "RecordValidationError",
    "SessionState",
    "SwitchReason",
    "SyncEngine",
    "SyncOperation",
    "SyncOperationType",
    "SyncResult",
    "TargetFailure",
    "TargetOutcome",
    "TimeSeriesIndex",
    "click_angle",
    "assign_missing_orders",
    "next_available_order",
    "normalize_record_payload",
    "parse_capture_time",
    "series_annotation_table",
    "series_summary",
]
