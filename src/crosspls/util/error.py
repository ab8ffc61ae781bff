"""Error formatting utilities.

Turns the errors crosspls raises or reports into one-line user messages.
"""

import json
import traceback
from typing import Any


def format_error(error: Any) -> str | None:
    """Format known crosspls errors into user-friendly messages.

    Returns None if the error type is not recognized, allowing
    fallback to format_unknown_error.
    """
    from ..client.errors import SessionStateError, ShutdownFailure
    from ..core.config import ConfigError
    from ..transport.process import SpawnFailure

    if isinstance(error, SpawnFailure):
        return f"Failed to spawn crosspls: `{error.message}`"
    if isinstance(error, ShutdownFailure):
        return f"crosspls did not shut down cleanly: {error.message}"
    if isinstance(error, SessionStateError):
        return str(error)
    if isinstance(error, ConfigError):
        return str(error)
    return None


def format_unknown_error(error: Any) -> str:
    """Format any error into a string representation.

    Handles Exception objects, serializable objects, and primitives.
    """
    if isinstance(error, Exception):
        if error.__traceback__:
            return ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {str(error)}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)
