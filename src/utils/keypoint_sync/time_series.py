"""Capture-time ordering of one plant / view-angle image series."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Protocol, Sequence

from loguru import logger

# e.g. BR017-028111-2018-06-06_00_VIS_sv_000-0-0-0.png
_CAPTURE_TIME_PATTERN = re.compile(
    r"BR\d+-\d+-(\d{4}-\d{2}-\d{2})_(\d{2})_VIS_sv_\d+"
)
UNKNOWN_CAPTURE_TIME = datetime(1970, 1, 1)


def parse_capture_time(filename: str) -> datetime:
    """Parse capture date and hour from a phenotyping image filename.

    Parameters
    ----------
    filename : str
        Image filename such as ``BR017-028111-2018-06-06_00_VIS_sv_000-0-0-0.png``.

    Returns
    -------
    datetime
        Capture time, or ``UNKNOWN_CAPTURE_TIME`` so that unparsable files
        sort first.

    Examples
    --------
    >>> parse_capture_time("BR017-028111-2018-06-06_07_VIS_sv_000-0-0-0.png")
    datetime.datetime(2018, 6, 6, 7, 0)
    """
    match = _CAPTURE_TIME_PATTERN.search(filename)
    if match is None:
        logger.warning(f"Cannot parse capture time from filename: {filename}")
        return UNKNOWN_CAPTURE_TIME
    date_text, hour_text = match.groups()
    return datetime.fromisoformat(f"{date_text}T{hour_text}:00:00")


@dataclass(frozen=True)
class ImageInfo:
    """One image of a plant time series."""

    id: str
    plant_id: str
    view_angle: str
    capture_time: datetime
    name: str = ""

    @classmethod
    def from_filename(cls, plant_id: str, view_angle: str, filename: str) -> ImageInfo:
        """Build image info with the id scheme ``<plant>_<view>_<filename>``."""
        return cls(
            id=f"{plant_id}_{view_angle}_{filename}",
            plant_id=plant_id,
            view_angle=view_angle,
            capture_time=parse_capture_time(filename),
            name=filename,
        )

    @property
    def series_key(self) -> tuple[str, str]:
        return (self.plant_id, self.view_angle)


class TimeSeriesProvider(Protocol):
    """Leaf data provider for time series images."""

    def get_time_series(self, plant_id: str, view_angle: str) -> Sequence[ImageInfo]:
        ...


class TimeSeriesIndex:
    """Immutable capture-time ordering of one ``(plant, view angle)`` series.

    Images are ordered by ``capture_time``; ties are broken by lexical id.

    Parameters
    ----------
    images : Iterable[ImageInfo]
        Images of a single plant and view angle in any order.
    """

    def __init__(self, images: Iterable[ImageInfo]) -> None:
        ordered = sorted(images, key=lambda image: (image.capture_time, image.id))
        keys = {image.series_key for image in ordered}
        if len(keys) > 1:
            raise ValueError(f"images span several series: {sorted(keys)}")
        ids = [image.id for image in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError("duplicate image ids in time series")
        self._images: tuple[ImageInfo, ...] = tuple(ordered)
        self._positions: dict[str, int] = {
            image.id: index for index, image in enumerate(self._images)
        }

    @classmethod
    def from_provider(
        cls, provider: TimeSeriesProvider, plant_id: str, view_angle: str
    ) -> TimeSeriesIndex:
        return cls(provider.get_time_series(plant_id, view_angle))

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self) -> Iterator[ImageInfo]:
        return iter(self._images)

    def __getitem__(self, index: int) -> ImageInfo:
        return self._images[index]

    def __contains__(self, image: object) -> bool:
        return isinstance(image, ImageInfo) and image.id in self._positions

    @property
    def images(self) -> tuple[ImageInfo, ...]:
        return self._images

    @property
    def signature(self) -> tuple[str, ...]:
        """Ordered image ids; changes whenever the image set changes."""
        return tuple(image.id for image in self._images)

    def position_of(self, image: ImageInfo | str) -> int:
        """Return series position of an image or image id.

        Raises
        ------
        KeyError
            When the image is not part of this series.
        """
        image_id = image.id if isinstance(image, ImageInfo) else image
        return self._positions[image_id]

    def images_after(self, image: ImageInfo | str) -> list[ImageInfo]:
        """Return all images strictly after ``image``."""
        return list(self._images[self.position_of(image) + 1 :])

    def images_before(self, image: ImageInfo | str) -> list[ImageInfo]:
        """Return all images strictly before ``image``, nearest last."""
        return list(self._images[: self.position_of(image)])


class ImageCatalog:
    """In-memory ``TimeSeriesProvider`` over a fixed list of images.

    Examples
    --------
    >>> catalog = ImageCatalog([image_a, image_b])
    >>> catalog.get_time_series("plant-1", "sv-000")
    [image_a, image_b]
    """

    def __init__(self, images: Iterable[ImageInfo] = ()) -> None:
        self._images: dict[str, ImageInfo] = {}
        for image in images:
            self.add_image(image)

    def add_image(self, image: ImageInfo) -> None:
        self._images[image.id] = image

    def remove_image(self, image_id: str) -> bool:
        return self._images.pop(image_id, None) is not None

    def get_time_series(self, plant_id: str, view_angle: str) -> list[ImageInfo]:
        selected = [
            image
            for image in self._images.values()
            if image.series_key == (plant_id, view_angle)
        ]
        return list(TimeSeriesIndex(selected))
