"""crosspls - editor-host integration for the Crossplane package language server.

Launches the server as a subprocess, drives the client session lifecycle
and reports spawn failures to the user.
"""

__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy import module components."""
    if name in ("activate", "deactivate", "ActivationController"):
        from . import extension
        return getattr(extension, name)
    if name in ("ClientSession", "ClientOptions", "SessionState"):
        from . import client
        return getattr(client, name)
    if name in ("ProcessTransport", "ProcessHandle", "SpawnFailure"):
        from . import transport
        return getattr(transport, name)
    if name == "ExtensionContext":
        from .host import ExtensionContext
        return ExtensionContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "activate",
    "deactivate",
    "ActivationController",
    "ClientSession",
    "ClientOptions",
    "SessionState",
    "ProcessTransport",
    "ProcessHandle",
    "SpawnFailure",
    "ExtensionContext",
]
