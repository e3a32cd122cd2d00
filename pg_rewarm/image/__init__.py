"""
Cache images for pg_rewarm.

A cache image persists one buffer-pool snapshot: a format header, the
SnapshotMetadata record and the ordered list of resident pages.

Backends:
- json:   one JSON document, fully loaded on read
- sqlite: embedded SQLite database, streamed on read
"""

from .models import PageDescriptor, SnapshotMetadata
from .base import CacheImage, FORMAT_VERSION
from .json_image import JsonCacheImage
from .sqlite_image import SqliteCacheImage
from .registry import (
    DEFAULT_FORMAT,
    IMAGE_FORMATS,
    available_formats,
    create_image,
    get_image_class,
)

__all__ = [
    'PageDescriptor',
    'SnapshotMetadata',
    'CacheImage',
    'FORMAT_VERSION',
    'JsonCacheImage',
    'SqliteCacheImage',
    'DEFAULT_FORMAT',
    'IMAGE_FORMATS',
    'available_formats',
    'create_image',
    'get_image_class',
]
