"""
Console UI for pg_rewarm (rich).
"""

from .display import ResultDisplay
from .progress import RestoreProgress

__all__ = [
    'ResultDisplay',
    'RestoreProgress',
]
