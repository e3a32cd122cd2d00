"""
TimingLedger - cumulative phase durations for one operation.
"""

import time
from contextlib import contextmanager
from types import MappingProxyType
from typing import Dict, Iterator, Mapping


class TimingLedger:
    """
    Append-only mapping of phase name to elapsed seconds.

    Durations come from time.monotonic(), so they are never negative and
    never sum to more than the wall clock spent inside measure() blocks.
    Once frozen the ledger rejects further records.
    """

    def __init__(self):
        self._phases: Dict[str, float] = {}
        self._frozen = False

    @contextmanager
    def measure(self, phase: str) -> Iterator[None]:
        """Time the enclosed block and add it to ``phase``."""
        started = time.monotonic()
        try:
            yield
        finally:
            self.record(phase, time.monotonic() - started)

    def record(self, phase: str, seconds: float):
        """Add ``seconds`` to the running total for ``phase``."""
        if self._frozen:
            raise RuntimeError("TimingLedger is read-only once the operation finished")
        if seconds < 0:
            raise ValueError(f"Negative duration for phase '{phase}': {seconds}")
        self._phases[phase] = self._phases.get(phase, 0.0) + seconds

    def freeze(self):
        """Make the ledger read-only."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def phases(self) -> Mapping[str, float]:
        """Read-only view of the recorded phases."""
        return MappingProxyType(self._phases)

    def get(self, phase: str, default: float = 0.0) -> float:
        return self._phases.get(phase, default)

    def total(self) -> float:
        """Sum of all recorded phase durations."""
        return sum(self._phases.values())

    def to_dict(self) -> Dict[str, float]:
        return dict(self._phases)

    def __contains__(self, phase: str) -> bool:
        return phase in self._phases

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v:.3f}s" for k, v in self._phases.items())
        return f"TimingLedger({inner})"
