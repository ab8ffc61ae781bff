"""Client session lifecycle states."""

from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel

from ..core.bus import BusEvent


class SessionState(str, Enum):
    """Lifecycle state of a client session."""
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.STARTING, SessionState.STOPPED}),
    SessionState.STARTING: frozenset({SessionState.RUNNING, SessionState.STOPPING}),
    SessionState.RUNNING: frozenset({SessionState.STOPPING}),
    SessionState.STOPPING: frozenset({SessionState.STOPPED}),
    SessionState.STOPPED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in TRANSITIONS[current]


class SessionStateProps(BaseModel):
    """Properties for session.state event."""
    session_id: str
    previous: SessionState
    state: SessionState


SessionStateChanged = BusEvent.define("session.state", SessionStateProps)
