from __future__ import annotations

import errno

from crosspls.client.errors import SessionStateError, ShutdownFailure
from crosspls.client.state import SessionState
from crosspls.core.config import ConfigError
from crosspls.transport.process import SpawnFailure
from crosspls.util.error import format_error, format_unknown_error


def test_spawn_failure_uses_warning_text() -> None:
    failure = SpawnFailure("spawn ./server ENOENT", "./server", errno.ENOENT)

    assert format_error(failure) == "Failed to spawn crosspls: `spawn ./server ENOENT`"


def test_known_errors_are_formatted() -> None:
    assert format_error(ShutdownFailure("crosspls", "pipe closed")) == (
        "crosspls did not shut down cleanly: pipe closed"
    )
    state_error = SessionStateError("crosspls", SessionState.STOPPED, SessionState.STARTING)
    assert format_error(state_error) == str(state_error)
    assert format_error(ConfigError("crosspls.json", "bad")) == "Config error in crosspls.json: bad"


def test_unknown_errors_fall_back() -> None:
    assert format_error(ValueError("x")) is None
    assert format_unknown_error(ValueError("x")) == "ValueError: x"
    assert format_unknown_error({"code": 1}) == '{\n  "code": 1\n}'
    assert format_unknown_error(42) == "42"
