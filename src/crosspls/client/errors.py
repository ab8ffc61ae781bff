"""Client session errors."""

from typing import Optional

from .state import SessionState


class SessionStateError(Exception):
    """Requested lifecycle transition is not allowed."""

    def __init__(self, session_id: str, current: SessionState, target: Optional[SessionState] = None):
        self.session_id = session_id
        self.current = current
        self.target = target
        if target is None:
            message = f"session {session_id} cannot do this while {current.value}"
        else:
            message = f"session {session_id} cannot move from {current.value} to {target.value}"
        super().__init__(message)


class ShutdownFailure(Exception):
    """The stop sequence of a session did not complete cleanly."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        self.message = message
        super().__init__(f"session {session_id} failed to stop: {message}")
