"""
Mock components for testing pg_rewarm.

FakeServer stands in for a live PostgreSQL connection, answering with the
realistic pgbench buffer pool in golden_data.py.
"""

from .golden_data import (
    BLOCK_SIZE,
    BUFFER_ROWS,
    DATABASE,
    RELATIONS,
    SERVER_VERSION,
    SHARED_BUFFERS,
    buffer_rows_with_duplicates,
)
from .mock_server import FakeCursor, FakeServer

__all__ = [
    'FakeServer',
    'FakeCursor',
    'BLOCK_SIZE',
    'BUFFER_ROWS',
    'DATABASE',
    'RELATIONS',
    'SERVER_VERSION',
    'SHARED_BUFFERS',
    'buffer_rows_with_duplicates',
]
