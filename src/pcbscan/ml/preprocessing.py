"""Image preprocessing: decode uploaded bytes into the classifier's input tensor.

The model was trained on 224x224 RGB images scaled to [0, 1]. Changing the
size or the divisor does not raise; it silently produces meaningless scores.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from pcbscan.ml.errors import ImageDecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

INPUT_SIZE: int = 224
CHANNELS: int = 3
PIXEL_SCALE: float = 255.0


class ImagePreprocessor:
    """Turns raw image bytes into a (1, 224, 224, 3) float32 batch."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def probe(self, image_bytes: bytes) -> tuple[str, int, int]:
        """Read only the image header.

        Returns:
            (format, width, height) of the encoded image.

        Raises:
            ImageDecodeError: If the format is unknown or the image is too large.
        """
        with self._open(image_bytes) as image:
            return str(image.format), image.width, image.height

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an HxWx3 RGB uint8 array.

        Raises:
            ImageDecodeError: If the image cannot be decoded or exceeds size limits.
        """
        return np.asarray(self._decode_rgb(image_bytes), dtype=np.uint8)

    def preprocess(self, image_bytes: bytes) -> NDArray[np.float32]:
        """Decode, resize (nearest neighbour), scale to [0, 1], and batch an image.

        Raises:
            ImageDecodeError: If the image cannot be decoded or exceeds size limits.
        """
        resized = Image.fromarray(self.decode_image(image_bytes)).resize(
            (INPUT_SIZE, INPUT_SIZE),
            resample=Image.Resampling.NEAREST,
        )
        tensor = np.asarray(resized, dtype=np.float32) / PIXEL_SCALE
        return np.expand_dims(tensor, axis=0)

    def _decode_rgb(self, image_bytes: bytes) -> Image.Image:
        with self._open(image_bytes) as image:
            try:
                # Alpha is dropped, greyscale and palette images are expanded.
                return image.convert("RGB")
            except (OSError, SyntaxError, ValueError) as exc:
                raise ImageDecodeError(f"Failed to decode image: {exc}") from exc

    def _open(self, image_bytes: bytes) -> Image.Image:
        if not image_bytes:
            raise ImageDecodeError("Empty image payload")
        try:
            image = Image.open(io.BytesIO(image_bytes))
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise ImageDecodeError("Input is not a decodable image") from exc

        pixel_count = image.width * image.height
        if pixel_count > self._max_image_pixels:
            image.close()
            raise ImageDecodeError(f"Image has {pixel_count} pixels, limit is {self._max_image_pixels}")
        return image
