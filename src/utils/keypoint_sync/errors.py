"""Error types for keypoint synchronization and direction assignment."""

from __future__ import annotations

from enum import Enum


class KeypointSyncError(Exception):
    """Base class for keypoint sync errors."""


class NotFound(KeypointSyncError, LookupError):
    """Target image has no stored records (treated as empty)."""


class PersistenceFailure(KeypointSyncError):
    """Saving records for one image failed."""

    def __init__(self, image_id: str, detail: str = "") -> None:
        self.image_id = image_id
        self.detail = detail
        message = f"failed to save annotations for {image_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ConflictDetected(KeypointSyncError):
    """An add found a divergent record with the same identity."""


class IntegrityError(KeypointSyncError):
    """One image holds several records sharing an identity."""


class InvalidModeTransition(KeypointSyncError, ValueError):
    """A state-machine step was requested that the current state rejects."""


class RecordValidationError(KeypointSyncError, ValueError):
    """A keypoint record violates the model invariants."""


class FailureReason(str, Enum):
    """Per-image propagation failure categories."""

    CONFLICT = "conflict"
    PERSISTENCE = "persistence"
    INTEGRITY = "integrity"
