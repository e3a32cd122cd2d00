"""
StateMachine - lifecycle of a single save or restore operation.

IDLE → CONNECTED → SAVING    → CLOSED
                 → RESTORING → CLOSED

Any non-terminal state may move to FAILED. CLOSED and FAILED are terminal:
a new operation needs a new CacheManager (and a new connection).
"""

from enum import Enum, auto
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import InvalidStateTransition


class State(Enum):
    """Cache manager states."""
    IDLE = auto()
    CONNECTED = auto()
    SAVING = auto()
    RESTORING = auto()
    CLOSED = auto()
    FAILED = auto()


# Valid state transitions
TRANSITIONS: Dict[State, List[State]] = {
    State.IDLE: [State.CONNECTED, State.FAILED],
    State.CONNECTED: [State.SAVING, State.RESTORING, State.FAILED],
    State.SAVING: [State.CLOSED, State.FAILED],
    State.RESTORING: [State.CLOSED, State.FAILED],
    State.CLOSED: [],
    State.FAILED: [],
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StateEvent:
    """Record of a state transition."""
    from_state: State
    to_state: State
    timestamp: datetime
    duration_ms: int
    metadata: Dict[str, Any] = field(default_factory=dict)


class StateMachine:
    """
    Validates cache manager transitions and keeps their history.
    """

    def __init__(self, initial_state: State = State.IDLE):
        self._state = initial_state
        self._history: List[StateEvent] = []
        self._state_entered_at = _now()

    @property
    def state(self) -> State:
        """Get current state."""
        return self._state

    @property
    def history(self) -> List[StateEvent]:
        """Get state transition history."""
        return self._history.copy()

    def can_transition(self, to_state: State) -> bool:
        """Check if transition to target state is valid."""
        return to_state in TRANSITIONS.get(self._state, [])

    def transition(self, to_state: State, metadata: Optional[Dict[str, Any]] = None):
        """
        Transition to a new state.

        Raises:
            InvalidStateTransition: If transition is not valid
        """
        if not self.can_transition(to_state):
            raise InvalidStateTransition(
                f"Invalid transition: {self._state.name} → {to_state.name}. "
                f"Valid transitions: {[s.name for s in TRANSITIONS.get(self._state, [])]}"
            )

        now = _now()
        duration_ms = int((now - self._state_entered_at).total_seconds() * 1000)

        event = StateEvent(
            from_state=self._state,
            to_state=to_state,
            timestamp=now,
            duration_ms=max(duration_ms, 0),
            metadata=metadata or {},
        )
        self._history.append(event)

        self._state = to_state
        self._state_entered_at = now

    def fail(self, metadata: Optional[Dict[str, Any]] = None):
        """Move to FAILED unless already terminal."""
        if not self.is_terminal():
            self.transition(State.FAILED, metadata)

    def is_terminal(self) -> bool:
        """Check if in terminal state (CLOSED or FAILED)."""
        return self._state in (State.CLOSED, State.FAILED)

    def format_history(self) -> str:
        """Format history as human-readable string."""
        return '\n'.join(
            f"{event.from_state.name} → {event.to_state.name} ({event.duration_ms}ms)"
            for event in self._history
        )
