from .isosurface import add_mesh, export_mesh, extract_isosurface, load_mesh
from .merge import CombineMode, DataMerger, merge_datasets
from .pipeline import ConversionPipeline
from .registry import FormatEntry, FormatRegistry, default_registry

__all__ = [
    "CombineMode",
    "ConversionPipeline",
    "DataMerger",
    "FormatEntry",
    "FormatRegistry",
    "add_mesh",
    "default_registry",
    "export_mesh",
    "extract_isosurface",
    "load_mesh",
    "merge_datasets",
]
