"""
pg_rewarm - Save and restore the PostgreSQL buffer pool working set

Captures which pages occupy shared_buffers (via pg_buffercache) into a
cache image, and after a restart reads those pages back in priority order
(via pg_prewarm) so the server re-warms in minutes instead of hours.

Usage:
    # As a module
    python -m pg_rewarm save -H localhost -d mydb -f mydb.img
    python -m pg_rewarm restore -H localhost -d mydb -f mydb.img

    # Programmatically
    from pg_rewarm import CacheManager, CacheConfig

    config = CacheConfig(host="localhost", database="mydb")
    CacheManager(config).save("mydb.img")
    report = CacheManager(config).restore("mydb.img", batch_size=500)
"""

__version__ = "1.0.0"

from .errors import (
    RewarmError,
    ConnectionError,
    UnsupportedImageFormatError,
    ImageCorruptError,
    ImageVersionMismatch,
    InvalidConfigurationError,
    IntrospectionUnavailableError,
    InvalidStateTransition,
    PageFetchError,
)
from .timing import TimingLedger
from .image import (
    PageDescriptor,
    SnapshotMetadata,
    CacheImage,
    JsonCacheImage,
    SqliteCacheImage,
    available_formats,
    create_image,
    get_image_class,
)
from .restore import BatchRestorer, BatchResult, PageFetcher
from .server import PageEnumerator, ServerConnection, ServerStatus
from .manager import CacheConfig, CacheManager, RestoreReport, SaveReport
from .report import RunStatistics

__all__ = [
    # Version
    "__version__",
    # Engine
    "CacheManager",
    "CacheConfig",
    "SaveReport",
    "RestoreReport",
    "RunStatistics",
    "TimingLedger",
    # Images
    "PageDescriptor",
    "SnapshotMetadata",
    "CacheImage",
    "JsonCacheImage",
    "SqliteCacheImage",
    "available_formats",
    "create_image",
    "get_image_class",
    # Server
    "ServerConnection",
    "ServerStatus",
    "PageEnumerator",
    # Restore
    "BatchRestorer",
    "BatchResult",
    "PageFetcher",
    # Errors
    "RewarmError",
    "ConnectionError",
    "UnsupportedImageFormatError",
    "ImageCorruptError",
    "ImageVersionMismatch",
    "InvalidConfigurationError",
    "IntrospectionUnavailableError",
    "InvalidStateTransition",
    "PageFetchError",
]
