"""Tests for the cache manager state machine."""

import pytest

from pg_rewarm.errors import InvalidStateTransition
from pg_rewarm.state import State, StateMachine, TRANSITIONS


class TestStateMachine:

    def test_save_path(self):
        sm = StateMachine()
        for state in (State.CONNECTED, State.SAVING, State.CLOSED):
            sm.transition(state)

        assert sm.state == State.CLOSED
        assert sm.is_terminal()
        assert [e.to_state for e in sm.history] == [State.CONNECTED, State.SAVING, State.CLOSED]

    def test_restore_path(self):
        sm = StateMachine()
        for state in (State.CONNECTED, State.RESTORING, State.CLOSED):
            sm.transition(state)
        assert sm.state == State.CLOSED

    @pytest.mark.parametrize("start,target", [
        (State.IDLE, State.SAVING),
        (State.IDLE, State.CLOSED),
        (State.CONNECTED, State.CLOSED),
        (State.SAVING, State.RESTORING),
    ])
    def test_invalid_transitions(self, start, target):
        sm = StateMachine(start)
        with pytest.raises(InvalidStateTransition):
            sm.transition(target)
        assert sm.state == start

    @pytest.mark.parametrize("terminal", [State.CLOSED, State.FAILED])
    def test_terminal_states_have_no_exits(self, terminal):
        assert TRANSITIONS[terminal] == []
        sm = StateMachine(terminal)
        assert sm.is_terminal()
        with pytest.raises(InvalidStateTransition):
            sm.transition(State.CONNECTED)

    def test_fail_from_any_live_state(self):
        for state in (State.IDLE, State.CONNECTED, State.SAVING, State.RESTORING):
            sm = StateMachine(state)
            sm.fail({"phase": "connect"})
            assert sm.state == State.FAILED
            assert sm.history[-1].metadata == {"phase": "connect"}

    def test_fail_after_close_is_ignored(self):
        sm = StateMachine(State.CLOSED)
        sm.fail()
        assert sm.state == State.CLOSED
        assert sm.history == []

    def test_transition_records_event(self):
        sm = StateMachine()

        sm.transition(State.CONNECTED, {"dsn": "localhost:5432"})

        assert sm.history[0].from_state == State.IDLE
        assert sm.history[0].metadata == {"dsn": "localhost:5432"}
        assert sm.history[0].duration_ms >= 0

    def test_history_is_a_copy(self):
        sm = StateMachine()
        sm.transition(State.CONNECTED)
        sm.history.clear()
        assert len(sm.history) == 1

    def test_format_history(self):
        sm = StateMachine()
        sm.transition(State.CONNECTED)
        sm.transition(State.RESTORING)
        lines = sm.format_history().splitlines()
        assert lines[0].startswith("IDLE → CONNECTED")
        assert lines[1].startswith("CONNECTED → RESTORING")
