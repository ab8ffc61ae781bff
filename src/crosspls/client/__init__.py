"""Language client: options, protocol connection and session lifecycle."""

from .connection import ProtocolConnection
from .errors import SessionStateError, ShutdownFailure
from .options import ClientOptions, DocumentFilter, build_client_options
from .session import ClientSession
from .state import SessionState, SessionStateChanged

__all__ = [
    "ClientOptions",
    "ClientSession",
    "DocumentFilter",
    "ProtocolConnection",
    "SessionState",
    "SessionStateChanged",
    "SessionStateError",
    "ShutdownFailure",
    "build_client_options",
]
