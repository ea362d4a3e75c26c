"""Image intake normalization.

Raw picked media is decoded with Pillow, rotated upright according to its
EXIF orientation, flattened to RGB and downscaled so that neither side
exceeds ``max_dimension``. Images that already fit are never upscaled.
"""
from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError


class ImageUnreadable(Exception):
    pass


@dataclass
class NormalizedImage:
    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def to_jpeg(self, *, quality: int = 90) -> bytes:
        out_io = io.BytesIO()
        self.image.save(out_io, format="JPEG", quality=quality)
        return out_io.getvalue()


def fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    longest = max(width, height)
    if longest <= max_dimension or longest <= 0:
        return max(1, width), max(1, height)
    scale = max_dimension / longest
    return (
        min(max_dimension, max(1, round(width * scale))),
        min(max_dimension, max(1, round(height * scale))),
    )


class ImageNormalizer:
    def __init__(self, max_dimension: int = 2000) -> None:
        if max_dimension < 1:
            raise ValueError("max_dimension must be at least 1")
        self.max_dimension = max_dimension

    def normalize(self, raw_bytes: bytes) -> NormalizedImage:
        if not raw_bytes:
            raise ImageUnreadable("Image payload is empty.")
        try:
            src = Image.open(io.BytesIO(raw_bytes))
            src.load()
            upright = ImageOps.exif_transpose(src)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise ImageUnreadable("Image bytes are not a supported image format.") from exc

        if upright.mode != "RGB":
            upright = upright.convert("RGB")
        target = fit_within(upright.width, upright.height, self.max_dimension)
        if target != upright.size:
            upright = upright.resize(target, Image.LANCZOS)
        return NormalizedImage(image=upright)

    def downscale(self, image: NormalizedImage, max_dimension: int) -> NormalizedImage:
        target = fit_within(image.width, image.height, max_dimension)
        if target == image.size:
            return image
        return NormalizedImage(image=image.image.resize(target, Image.LANCZOS))

    def strip_metadata(self, image: NormalizedImage) -> NormalizedImage:
        reencoded = Image.open(io.BytesIO(image.to_jpeg(quality=90)))
        reencoded.load()
        reencoded.info.clear()
        return NormalizedImage(image=reencoded.convert("RGB"))
