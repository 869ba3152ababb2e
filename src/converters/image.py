from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from container_models.descriptors import RawVolume
from exceptions import ConverterNegotiationError

from .base import AbstractConverter
from .raw import raw_volume_from_array


class ImageConverter(AbstractConverter):
    """
    Any 2D image Pillow can decode, read as a volume of a single slice.

    Registered as the fallback converter: it accepts every file and lets
    Pillow decide whether it is an image.
    """

    description = "2D image (single slice volume)"
    supported_extensions = ("png", "jpg", "jpeg", "bmp", "gif")

    def can_read(self, path: Path, first_block: bytes) -> bool:
        return True

    def convert_to_raw(
        self, source: Path, temp_dir: Path, interactive: bool = False
    ) -> RawVolume:
        try:
            with Image.open(source) as image:
                if image.mode not in ("L", "I;16", "I", "F", "RGB", "RGBA"):
                    image = image.convert("RGBA")
                data = np.asarray(image)
        except (UnidentifiedImageError, OSError) as error:
            raise ConverterNegotiationError(f"{source} is not a readable image") from error
        return raw_volume_from_array(data[np.newaxis], source, temp_dir)
