"""
Buffer pool re-warm: batch partitioning and targeted page fetches.
"""

from .fetcher import PageFetcher, classify_error
from .batch import BatchRestorer, BatchResult, iter_batches, validate_positive_int

__all__ = [
    'PageFetcher',
    'classify_error',
    'BatchRestorer',
    'BatchResult',
    'iter_batches',
    'validate_positive_int',
]
