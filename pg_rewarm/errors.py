"""
Error taxonomy for pg_rewarm.

Fatal errors derive from RewarmError and abort the running operation.
PageFetchError is not an exception: it is a per-page record kept by the
batch restorer and only ever surfaces as data.
"""

import builtins
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Phase(str, Enum):
    """Phases of a save or restore operation."""
    CONFIGURE = "configure"
    CONNECT = "connect"
    ENUMERATE = "enumerate"
    STATUS = "status"
    WRITE = "write"
    READ = "read"
    FETCH = "fetch"
    CLOSE = "close"


class FetchErrorKind(str, Enum):
    """Why a single page could not be fetched."""
    MISSING = "missing"      # Owning table or index no longer exists
    RANGE = "range"          # Block number past end of relation
    TIMEOUT = "timeout"      # statement_timeout expired
    CONNECTION = "connection"
    ERROR = "error"


class RewarmError(Exception):
    """Base class for fatal pg_rewarm errors."""

    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.phase = phase

    def with_phase(self, phase) -> "RewarmError":
        """Attach the failing phase unless one is already recorded."""
        if self.phase is None:
            self.phase = phase.value if isinstance(phase, Phase) else phase
        return self

    def __str__(self) -> str:
        if self.phase:
            return f"[{self.phase}] {self.message}"
        return self.message


class ConnectionError(RewarmError, builtins.ConnectionError):
    """Server unreachable or connection lost. Never retried."""


class UnsupportedImageFormatError(RewarmError, ValueError):
    """No registered cache image backend matches the requested name."""


class ImageCorruptError(RewarmError):
    """Cache image failed structural validation."""


class ImageVersionMismatch(RewarmError):
    """Cache image declares a format or version this build cannot read."""


class InvalidConfigurationError(RewarmError, ValueError):
    """Engine configuration is unusable (e.g. non-positive batch size)."""


class IntrospectionUnavailableError(RewarmError):
    """Server lacks pg_buffercache / pg_prewarm or the role cannot use them."""


class InvalidStateTransition(RewarmError):
    """CacheManager asked to move between states that are not connected."""


@dataclass(frozen=True)
class PageFetchError:
    """One page that was attempted but not brought into the buffer pool."""
    relation: str
    page_number: int
    kind: str = FetchErrorKind.ERROR.value
    message: str = ""
    sqlstate: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.relation}#{self.page_number}: {self.kind} ({self.message})"
