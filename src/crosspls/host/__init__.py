"""Host-facing surfaces: extension context, window and output channels."""

from .context import ExtensionContext
from .window import MessageType, OutputChannel, Window, WindowMessage, WindowMessageProps

__all__ = [
    "ExtensionContext",
    "MessageType",
    "OutputChannel",
    "Window",
    "WindowMessage",
    "WindowMessageProps",
]
