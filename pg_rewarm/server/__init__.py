"""
Server access for pg_rewarm: connection, counters and buffer introspection.
"""

from .connection import ServerConnection
from .status import (
    ServerStatus,
    STATUS_KEYS,
    extension_installed,
    major_version,
    query_error,
)
from .enumerator import BUFFER_PAGES_QUERY, PageEnumerator

__all__ = [
    'ServerConnection',
    'ServerStatus',
    'STATUS_KEYS',
    'extension_installed',
    'major_version',
    'query_error',
    'BUFFER_PAGES_QUERY',
    'PageEnumerator',
]
