import io
from typing import NamedTuple, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from ..logger import logger

HIGH_RES_EDGE = 2048


class GenerationShape(NamedTuple):
    aspect_ratio: str
    resolution: str


def image_size(data: bytes) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not read image dimensions: {e}")
        return None


def closest_aspect_ratio(width: int, height: int) -> str:
    """Nearest ratio the generation API accepts."""
    ratio = width / height
    if ratio > 1.6:
        return "16:9"
    if ratio > 1.2:
        return "4:3"
    if ratio > 0.9:
        return "1:1"
    if ratio > 0.7:
        return "3:4"
    return "9:16"


def generation_shape(
    data: Optional[bytes],
    requested_ratio: Optional[str] = None,
    default_resolution: str = "2K",
) -> GenerationShape:
    """
    Aspect ratio and resolution for regenerating an image.

    An explicit `requested_ratio` wins over the probed one. Images with an
    edge above 2048px are regenerated at 4K. Unreadable data falls back to
    1:1 at the default resolution.
    """
    size = image_size(data) if data else None
    if not size or not size[0] or not size[1]:
        return GenerationShape(requested_ratio or "1:1", default_resolution)

    width, height = size
    ratio = requested_ratio or closest_aspect_ratio(width, height)
    resolution = "4K" if width > HIGH_RES_EDGE or height > HIGH_RES_EDGE else default_resolution
    return GenerationShape(ratio, resolution)
