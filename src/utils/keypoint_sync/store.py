"""Annotation persistence boundary used by the sync engine."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, Sequence

from loguru import logger

from src.utils.keypoint_sync.errors import NotFound, PersistenceFailure
from src.utils.keypoint_sync.records import AnnotationRecord, records_from_payloads


class AnnotationStore(Protocol):
    """Per-image record storage.

    ``get_annotations`` returns ``None`` when nothing is stored; callers treat
    that exactly like an empty list.
    """

    def get_annotations(self, image_id: str) -> list[AnnotationRecord] | None:
        ...

    def save_annotations(
        self, image_id: str, records: Sequence[AnnotationRecord]
    ) -> bool:
        ...


def load_records(store: AnnotationStore, image_id: str) -> list[AnnotationRecord]:
    """Read records for one image, mapping "nothing stored" to ``[]``."""
    try:
        records = store.get_annotations(image_id)
    except NotFound:
        return []
    if records is None:
        return []
    return list(records)


def build_annotation_document(
    image_id: str, records: Sequence[AnnotationRecord]
) -> dict[str, Any]:
    """Build the stored per-image document."""
    return {
        "imageId": image_id,
        "annotations": [record.to_dict() for record in records],
        "lastModified": datetime.now(timezone.utc).isoformat(),
    }


def parse_annotation_document(document: Any) -> list[AnnotationRecord]:
    """Parse a stored per-image document, accepting a bare list too."""
    if isinstance(document, list):
        payloads = document
    elif isinstance(document, dict):
        payloads = document.get("annotations") or []
    else:
        raise TypeError("annotation document must be a dict or a list")
    return records_from_payloads(payloads)


class InMemoryAnnotationStore:
    """Dictionary-backed store holding serialized documents.

    Records are serialized on save and rebuilt on read, so callers never share
    record objects with the store.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self.save_calls: int = 0

    def get_annotations(self, image_id: str) -> list[AnnotationRecord] | None:
        document = self._documents.get(image_id)
        if document is None:
            return None
        return parse_annotation_document(document)

    def save_annotations(
        self, image_id: str, records: Sequence[AnnotationRecord]
    ) -> bool:
        self._documents[image_id] = build_annotation_document(image_id, records)
        self.save_calls += 1
        return True

    def put_payloads(self, image_id: str, payloads: list[dict[str, Any]]) -> None:
        """Store raw payloads as-is, e.g. legacy data."""
        self._documents[image_id] = {"imageId": image_id, "annotations": payloads}

    def image_ids(self) -> list[str]:
        return sorted(self._documents)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def annotation_file_name(image_id: str) -> str:
    """Return the JSON file name used for one image id."""
    return f"{_UNSAFE_CHARS.sub('_', image_id)}.json"


class JsonAnnotationStore:
    """Directory of ``<image_id>.json`` documents.

    Parameters
    ----------
    root_dir : str | Path
        Annotation directory, created on first save.
    """

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)

    def path_for(self, image_id: str) -> Path:
        return self.root_dir / annotation_file_name(image_id)

    def get_annotations(self, image_id: str) -> list[AnnotationRecord] | None:
        file_path = self.path_for(image_id)
        if not file_path.exists():
            return None
        with open(file_path, "r", encoding="utf-8") as f:
            document = json.load(f)
        records = parse_annotation_document(document)
        logger.debug(f"Loaded {len(records)} annotations for {image_id}")
        return records

    def save_annotations(
        self, image_id: str, records: Sequence[AnnotationRecord]
    ) -> bool:
        file_path = self.path_for(image_id)
        document = build_annotation_document(image_id, records)
        temp_path = file_path.with_suffix(".json.tmp")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            temp_path.replace(file_path)
        except OSError as exc:
            logger.error(f"Failed to write {file_path}: {exc}")
            raise PersistenceFailure(image_id, str(exc)) from exc
        return True

    def delete_annotations(self, image_id: str) -> bool:
        file_path = self.path_for(image_id)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True
