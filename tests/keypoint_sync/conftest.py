"""Pytest path bootstrap and shared fixtures for keypoint sync tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _append_repo_root() -> None:
    """Ensure repository root is present in import path."""
    repo_root = Path(__file__).resolve().parents[2]
    repo_root_text = str(repo_root)
    if repo_root_text in sys.path:
        return
    sys.path.insert(0, repo_root_text)


_append_repo_root()

from src.utils.keypoint_sync.editor import KeypointEditor  # noqa: E402
from src.utils.keypoint_sync.store import InMemoryAnnotationStore  # noqa: E402
from src.utils.keypoint_sync.sync_engine import SyncEngine  # noqa: E402
from src.utils.keypoint_sync.time_series import ImageCatalog, ImageInfo  # noqa: E402

PLANT_ID = "BR017-028111"
VIEW_ANGLE = "sv-000"


def build_series_images(count: int = 4) -> list[ImageInfo]:
    """Build ``count`` images of one plant captured on consecutive days."""
    return [
        ImageInfo.from_filename(
            PLANT_ID,
            VIEW_ANGLE,
            f"BR017-028111-2018-06-{day:02d}_00_VIS_sv_000-0-0-0.png",
        )
        for day in range(1, count + 1)
    ]


@pytest.fixture
def images() -> list[ImageInfo]:
    return build_series_images(4)


@pytest.fixture
def catalog(images) -> ImageCatalog:
    return ImageCatalog(images)


@pytest.fixture
def store() -> InMemoryAnnotationStore:
    return InMemoryAnnotationStore()


@pytest.fixture
def engine(store, catalog) -> SyncEngine:
    return SyncEngine(store, catalog, enabled=True)


@pytest.fixture
def editor(engine) -> KeypointEditor:
    return KeypointEditor(engine)
