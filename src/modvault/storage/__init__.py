"""Storage layer: JSON catalog, flat upload directory and storage naming."""

from .catalog import CatalogStore, find_item
from .files import StagedFile, UploadDirectory
from .namer import clean_filename, extension_of, make_storage_name, new_storage_name

__all__ = [
    "CatalogStore",
    "StagedFile",
    "UploadDirectory",
    "clean_filename",
    "extension_of",
    "find_item",
    "make_storage_name",
    "new_storage_name",
]
