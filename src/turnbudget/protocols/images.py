"""Image metadata collaborator protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from turnbudget.models.turn import ImageRef


@runtime_checkable
class ImageMetadataSource(Protocol):
    """Resolves attachment ids to dimensions; never exposes image bytes."""

    async def get_dimensions(self, image_id: str) -> ImageRef | None:
        """Look up an attachment.

        Parameters:
            image_id: The attachment identifier.

        Returns:
            An ``ImageRef`` carrying width and height, or ``None`` if the
            image is unknown.
        """
        ...
