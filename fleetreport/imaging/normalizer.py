from __future__ import annotations

import asyncio
import io
import logging

from PIL import Image, UnidentifiedImageError

from ..errors import EncodeFailure
from ..types import CanonicalImage
from .orientation import DEFAULT_PREFIX_BYTES, Orientation, decode


logger = logging.getLogger(__name__)

OUTPUT_FORMAT = 'JPEG'
OUTPUT_MIME_TYPE = 'image/jpeg'

# Pixel transform that makes an image stored with the given EXIF orientation
# display upright. Codes 5-8 swap the canvas axes.
_ORIENTATION_TRANSPOSE: dict[Orientation, Image.Transpose] = {
    Orientation.MIRROR_HORIZONTAL: Image.Transpose.FLIP_LEFT_RIGHT,
    Orientation.ROTATE_180: Image.Transpose.ROTATE_180,
    Orientation.MIRROR_VERTICAL: Image.Transpose.FLIP_TOP_BOTTOM,
    Orientation.TRANSPOSE: Image.Transpose.TRANSPOSE,
    Orientation.ROTATE_90_CW: Image.Transpose.ROTATE_270,
    Orientation.TRANSVERSE: Image.Transpose.TRANSVERSE,
    Orientation.ROTATE_90_CCW: Image.Transpose.ROTATE_90,
}


def canvas_size(width: int, height: int, orientation: Orientation) -> tuple[int, int]:
    if Orientation(orientation).swaps_axes:
        return height, width
    return width, height


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Uniformly shrink ``(width, height)`` so neither side exceeds ``max_dimension``."""
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    return (
        min(max_dimension, max(1, round(width * scale))),
        min(max_dimension, max(1, round(height * scale))),
    )


def _jpeg_quality(quality: float) -> int:
    if not 0 < quality <= 1:
        raise ValueError(f'quality must be in (0, 1], got {quality}')
    return max(1, min(95, int(round(quality * 100))))


def normalize(
    raw_image: bytes,
    orientation: Orientation | int,
    max_dimension: int,
    quality: float,
) -> CanonicalImage:
    """Upright, size-capped JPEG rendition of ``raw_image``.

    Pillow's JPEG encoder is deterministic for identical pixels and settings,
    so repeated calls with the same arguments produce identical bytes.
    """
    if max_dimension <= 0:
        raise ValueError(f'max_dimension must be positive, got {max_dimension}')
    jpeg_quality = _jpeg_quality(quality)
    try:
        orientation = Orientation(orientation)
    except ValueError:
        orientation = Orientation.UNKNOWN

    try:
        with Image.open(io.BytesIO(raw_image)) as source:
            source.load()
            surface = source.copy()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise EncodeFailure(f'cannot decode photo: {exc}') from exc

    out_width, out_height = fit_within(
        *canvas_size(surface.width, surface.height, orientation),
        max_dimension,
    )
    # Scale in source space, then transpose onto the upright canvas.
    if orientation.swaps_axes:
        scaled = (out_height, out_width)
    else:
        scaled = (out_width, out_height)
    if scaled != surface.size:
        surface = surface.resize(scaled, Image.Resampling.LANCZOS)

    transpose = _ORIENTATION_TRANSPOSE.get(orientation)
    if transpose is not None:
        surface = surface.transpose(transpose)

    if surface.mode not in ('RGB', 'L'):
        surface = surface.convert('RGB')

    out = io.BytesIO()
    try:
        surface.save(out, format=OUTPUT_FORMAT, quality=jpeg_quality, optimize=True)
    except (OSError, ValueError) as exc:
        raise EncodeFailure(f'cannot encode photo: {exc}') from exc

    return CanonicalImage(
        pixel_width=surface.width,
        pixel_height=surface.height,
        encoded_bytes=out.getvalue(),
        mime_type=OUTPUT_MIME_TYPE,
    )


def normalize_photo(
    raw_image: bytes,
    *,
    max_dimension: int,
    quality: float,
    prefix_bytes: int = DEFAULT_PREFIX_BYTES,
) -> CanonicalImage:
    orientation = decode(raw_image, max_prefix=prefix_bytes)
    logger.debug('Decoded photo orientation %s', orientation.name)
    return normalize(raw_image, orientation, max_dimension, quality)


async def normalize_photo_async(
    raw_image: bytes,
    *,
    max_dimension: int,
    quality: float,
    prefix_bytes: int = DEFAULT_PREFIX_BYTES,
) -> CanonicalImage:
    return await asyncio.to_thread(
        normalize_photo,
        raw_image,
        max_dimension=max_dimension,
        quality=quality,
        prefix_bytes=prefix_bytes,
    )
