from .base import AbstractConverter, AbstractGeoConverter
from .geometry import OBJGeoConverter, PLYGeoConverter
from .image import ImageConverter
from .nrrd import NRRDConverter
from .raw import convert_raw_dataset
from .tiff import TIFFConverter


__all__ = [
    "AbstractConverter",
    "AbstractGeoConverter",
    "ImageConverter",
    "NRRDConverter",
    "OBJGeoConverter",
    "PLYGeoConverter",
    "TIFFConverter",
    "convert_raw_dataset",
]
