"""Keypoint record model and legacy payload normalization."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from src.utils.keypoint_sync.errors import RecordValidationError

# Hard ceiling on directions per keypoint.
MAX_DIRECTIONS_LIMIT = 8

LEGACY_DIRECTION_ANGLES = {"left": 180.0, "right": 0.0}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    """Return a fresh per-image record id."""
    return uuid4().hex


@dataclass(frozen=True)
class AnnotationKind:
    """Annotation kind, either regular or one custom type.

    Parameters
    ----------
    custom_type_id : str | None
        Custom type id, ``None`` for regular keypoints.
    """

    custom_type_id: str | None = None

    @property
    def is_custom(self) -> bool:
        return self.custom_type_id is not None

    @classmethod
    def regular(cls) -> AnnotationKind:
        return cls(None)

    @classmethod
    def custom(cls, custom_type_id: str) -> AnnotationKind:
        if not custom_type_id:
            raise RecordValidationError("custom_type_id must be a non-empty string")
        return cls(str(custom_type_id))

    def sort_key(self) -> tuple[int, str]:
        """Regular kind sorts before every custom type."""
        if self.custom_type_id is None:
            return (0, "")
        return (1, self.custom_type_id)

    def __str__(self) -> str:
        if self.custom_type_id is None:
            return "regular"
        return f"custom({self.custom_type_id})"


REGULAR = AnnotationKind.regular()


@dataclass(frozen=True)
class Direction:
    """One direction of a keypoint.

    Parameters
    ----------
    angle : float
        Angle in degrees within ``[0, 360)``.
    origin_click : tuple[float, float] | None
        Image-space click that produced the angle, if known.
    """

    angle: float
    origin_click: tuple[float, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"angle": float(self.angle), "type": "angle"}
        if self.origin_click is not None:
            payload["clickPosition"] = {
                "x": float(self.origin_click[0]),
                "y": float(self.origin_click[1]),
            }
        return payload

    @classmethod
    def from_value(cls, value: Any) -> Direction:
        """Build a direction from a stored dict, number or legacy symbol."""
        if isinstance(value, Direction):
            return value
        if isinstance(value, str):
            return cls(angle=_legacy_symbol_angle(value))
        if isinstance(value, (int, float)):
            return cls(angle=normalize_angle(float(value)))
        if isinstance(value, dict):
            click = value.get("clickPosition") or value.get("origin_click")
            origin = None
            if isinstance(click, dict) and "x" in click and "y" in click:
                origin = (float(click["x"]), float(click["y"]))
            elif isinstance(click, (list, tuple)) and len(click) == 2:
                origin = (float(click[0]), float(click[1]))
            raw_angle = value.get("angle")
            if isinstance(raw_angle, str):
                return cls(angle=_legacy_symbol_angle(raw_angle), origin_click=origin)
            if raw_angle is None:
                raise RecordValidationError("direction entry has no angle")
            return cls(angle=normalize_angle(float(raw_angle)), origin_click=origin)
        raise RecordValidationError(f"unsupported direction value: {value!r}")


def normalize_angle(angle: float) -> float:
    """Wrap an angle in degrees into ``[0, 360)``."""
    wrapped = float(angle) % 360.0
    if wrapped >= 360.0:
        return 0.0
    return wrapped


def _legacy_symbol_angle(symbol: str) -> float:
    try:
        return LEGACY_DIRECTION_ANGLES[symbol.strip().lower()]
    except KeyError as exc:
        raise RecordValidationError(f"unknown legacy direction: {symbol!r}") from exc


@dataclass
class AnnotationRecord:
    """One labeled keypoint on one image.

    ``(order, kind)`` is the identity shared by the same keypoint across all
    images of a time series; ``local_id`` is meaningful inside one image only.

    Parameters
    ----------
    order : int
        Positive keypoint number.
    kind : AnnotationKind
        Regular or custom kind.
    x, y : float
        Image-space position.
    directions : list[Direction]
        Ordered directions, at most ``max_directions`` entries.
    max_directions : int
        Direction capacity fixed at creation.
    local_id : str
        Per-image id.
    origin : str
        Tag of the operation that created the record, used for logging.
    """

    order: int
    kind: AnnotationKind
    x: float
    y: float
    directions: list[Direction] = field(default_factory=list)
    max_directions: int = 1
    local_id: str = field(default_factory=new_local_id)
    origin: str = "manual"
    created_at: datetime = field(default_factory=_utc_now)
    modified_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not isinstance(self.order, int) or isinstance(self.order, bool):
            raise RecordValidationError(f"order must be int, got {self.order!r}")
        if self.order <= 0:
            raise RecordValidationError(f"order must be positive, got {self.order}")
        if not 1 <= self.max_directions <= MAX_DIRECTIONS_LIMIT:
            raise RecordValidationError(
                f"max_directions must be in [1, {MAX_DIRECTIONS_LIMIT}], "
                f"got {self.max_directions}"
            )
        self.directions = [Direction.from_value(item) for item in self.directions]
        if len(self.directions) > self.max_directions:
            raise RecordValidationError(
                f"{len(self.directions)} directions exceed max_directions="
                f"{self.max_directions}"
            )

    @property
    def identity(self) -> tuple[int, AnnotationKind]:
        return (self.order, self.kind)

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)

    @property
    def has_direction(self) -> bool:
        return len(self.directions) > 0

    def describe(self) -> str:
        return f"{self.kind} #{self.order}"

    def set_position(self, x: float, y: float) -> None:
        self.x = float(x)
        self.y = float(y)
        self.touch()

    def set_directions(self, directions: Iterable[Direction | Any]) -> None:
        """Replace directions, enforcing the record's capacity."""
        parsed = [Direction.from_value(item) for item in directions]
        if len(parsed) > self.max_directions:
            raise RecordValidationError(
                f"{self.describe()} accepts at most {self.max_directions} directions"
            )
        self.directions = parsed
        self.touch()

    def touch(self) -> None:
        self.modified_at = _utc_now()

    def same_content(self, other: AnnotationRecord) -> bool:
        """Return True when position and directions equal ``other``'s."""
        return (
            self.identity == other.identity
            and self.position == other.position
            and self.directions == other.directions
        )

    def clone_for_image(self, origin: str) -> AnnotationRecord:
        """Copy the record for another image with a fresh local id."""
        now = _utc_now()
        return replace(
            self,
            directions=list(self.directions),
            local_id=new_local_id(),
            origin=origin,
            created_at=now,
            modified_at=now,
        )

    def copy(self) -> AnnotationRecord:
        return replace(self, directions=list(self.directions))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored camelCase payload."""
        first_angle = self.directions[0].angle if self.directions else None
        return {
            "id": self.local_id,
            "order": self.order,
            "annotationType": "custom" if self.kind.is_custom else "regular",
            "customTypeId": self.kind.custom_type_id,
            "x": self.x,
            "y": self.y,
            "direction": first_angle,
            "directionType": "angle" if first_angle is not None else None,
            "directions": [item.to_dict() for item in self.directions],
            "maxDirections": self.max_directions,
            "origin": self.origin,
            "createdAt": self.created_at.isoformat(),
            "timestamp": self.modified_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AnnotationRecord:
        """Build a record from a stored payload of any supported vintage."""
        return record_from_payload(normalize_record_payload(payload))


def normalize_record_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Normalize one stored keypoint payload into the current shape.

    Pure function: the input is not modified. Handles the legacy single
    ``direction`` field (bare angle, ``"left"`` / ``"right"`` or ``None``),
    missing ``maxDirections`` and missing ``annotationType``.

    Parameters
    ----------
    payload : dict
        Raw stored keypoint payload.

    Returns
    -------
    dict
        Payload with ``directions`` list, ``maxDirections`` and kind keys.

    Examples
    --------
    >>> normalize_record_payload({"order": 1, "x": 0, "y": 0, "direction": "left"})["directions"]
    [{'angle': 180.0, 'type': 'angle'}]
    """
    normalized = dict(payload)
    raw_directions = normalized.get("directions")
    if isinstance(raw_directions, list) and raw_directions:
        directions = [Direction.from_value(item) for item in raw_directions]
    else:
        directions = _legacy_single_direction(normalized.get("direction"))
    normalized["directions"] = [item.to_dict() for item in directions]

    max_directions = normalized.get("maxDirections")
    if not isinstance(max_directions, int) or max_directions < 1:
        max_directions = max(1, len(directions))
    normalized["maxDirections"] = min(
        max(max_directions, len(directions)), MAX_DIRECTIONS_LIMIT
    )
    if len(directions) > normalized["maxDirections"]:
        normalized["directions"] = normalized["directions"][: normalized["maxDirections"]]

    annotation_type = normalized.get("annotationType") or "regular"
    if annotation_type == "custom" and not normalized.get("customTypeId"):
        annotation_type = "regular"
    normalized["annotationType"] = annotation_type
    if annotation_type != "custom":
        normalized["customTypeId"] = None
    return normalized


def _legacy_single_direction(value: Any) -> list[Direction]:
    if value is None or value == "":
        return []
    return [Direction.from_value(value)]


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _utc_now()
    return _utc_now()


def record_from_payload(payload: dict[str, Any]) -> AnnotationRecord:
    """Build a record from an already normalized payload."""
    if payload.get("annotationType") == "custom":
        kind = AnnotationKind.custom(str(payload["customTypeId"]))
    else:
        kind = REGULAR
    raw_order = payload.get("order")
    order = int(raw_order) if isinstance(raw_order, (int, float)) else 0
    created_at = _parse_timestamp(payload.get("createdAt") or payload.get("timestamp"))
    return AnnotationRecord(
        order=order if order > 0 else _UNSET_ORDER,
        kind=kind,
        x=float(payload.get("x", 0.0)),
        y=float(payload.get("y", 0.0)),
        directions=[Direction.from_value(item) for item in payload["directions"]],
        max_directions=int(payload["maxDirections"]),
        local_id=str(payload.get("id") or new_local_id()),
        origin=str(payload.get("origin") or "legacy"),
        created_at=created_at,
        modified_at=_parse_timestamp(payload.get("timestamp")),
    )


# Placeholder order for stored records without a usable order;
# ``assign_missing_orders`` replaces it.
_UNSET_ORDER = 10**9


def assign_missing_orders(records: list[AnnotationRecord]) -> bool:
    """Give records stored without a usable order the next free order.

    Valid orders are never rewritten, duplicates included: a duplicated
    identity is left for the sync engine to report.

    Returns
    -------
    bool
        True when any record received an order.
    """
    changed = False
    for record in records:
        if record.order != _UNSET_ORDER:
            continue
        assigned = [item for item in records if item.order != _UNSET_ORDER]
        record.order = next_available_order(assigned, record.kind)
        changed = True
    return changed


def next_available_order(
    records: Iterable[AnnotationRecord], kind: AnnotationKind
) -> int:
    """Return the smallest positive order unused by records of ``kind``."""
    used = {record.order for record in records if record.kind == kind}
    candidate = 1
    while candidate in used:
        candidate += 1
    return candidate


def find_matches(
    records: Iterable[AnnotationRecord], identity: tuple[int, AnnotationKind]
) -> list[AnnotationRecord]:
    """Return every record in ``records`` sharing ``identity``."""
    return [record for record in records if record.identity == identity]


def records_from_payloads(payloads: Iterable[dict[str, Any]]) -> list[AnnotationRecord]:
    """Normalize and build records, then fill in missing orders."""
    records = [AnnotationRecord.from_dict(payload) for payload in payloads]
    assign_missing_orders(records)
    return records
