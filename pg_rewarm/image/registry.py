"""
Static registry of cache image backends.

Names are matched case-insensitively. Lookup never touches the filesystem,
so an unknown name fails before any I/O or network activity.
"""

from typing import Dict, List, Type

from ..errors import UnsupportedImageFormatError
from .base import CacheImage
from .json_image import JsonCacheImage
from .sqlite_image import SqliteCacheImage

DEFAULT_FORMAT = "json"

IMAGE_FORMATS: Dict[str, Type[CacheImage]] = {
    "json": JsonCacheImage,
    "sqlite": SqliteCacheImage,
    "sqlite3": SqliteCacheImage,
}


def available_formats() -> List[str]:
    """Registered format names, sorted."""
    return sorted(IMAGE_FORMATS)


def get_image_class(name: str) -> Type[CacheImage]:
    """Resolve a format name to its backend class."""
    key = name.strip().lower() if isinstance(name, str) else None
    if not key or key not in IMAGE_FORMATS:
        raise UnsupportedImageFormatError(
            f"Unsupported image format {name!r}. "
            f"Available: {', '.join(available_formats())}"
        )
    return IMAGE_FORMATS[key]


def create_image(name: str) -> CacheImage:
    """Instantiate the backend registered under ``name``."""
    return get_image_class(name)()
