"""In-process image metadata source."""

from __future__ import annotations

from collections.abc import Iterable

from turnbudget.models.turn import ImageRef


class InMemoryImageMetadataSource:
    """Dict-backed :class:`~turnbudget.protocols.ImageMetadataSource`."""

    __slots__ = ("_images",)

    def __init__(self, images: Iterable[ImageRef] = ()) -> None:
        self._images: dict[str, ImageRef] = {img.id: img for img in images}

    def __len__(self) -> int:
        return len(self._images)

    def add(self, image: ImageRef) -> None:
        self._images[image.id] = image

    def remove(self, image_id: str) -> bool:
        return self._images.pop(image_id, None) is not None

    async def get_dimensions(self, image_id: str) -> ImageRef | None:
        return self._images.get(image_id)
