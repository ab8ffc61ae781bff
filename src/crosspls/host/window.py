"""User-visible host surfaces: the notification window and output channels."""

from collections import deque
from enum import Enum
from typing import Deque, List

from pydantic import BaseModel

from ..core.bus import Bus, BusEvent
from ..util.log import Log

log = Log.create({"service": "host.window"})

# Lines retained per output channel
OUTPUT_CHANNEL_CAPACITY = 1000


class MessageType(str, Enum):
    """Severity of a window notification."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class WindowMessageProps(BaseModel):
    """Properties for window.message event."""
    type: MessageType
    message: str


WindowMessage = BusEvent.define("window.message", WindowMessageProps)


class Window:
    """Notification surface the host renders to the user.

    Each message is logged, kept in :attr:`messages` and published as a
    ``window.message`` event for whatever UI the host attaches.
    """

    def __init__(self) -> None:
        self.messages: List[WindowMessageProps] = []

    async def show_warning_message(self, message: str) -> None:
        log.warn(message)
        props = WindowMessageProps(type=MessageType.WARNING, message=message)
        self.messages.append(props)
        await Bus.publish(WindowMessage, props)


class OutputChannel:
    """Named, append-only log view for one integration.

    Appends may come from reader threads; only a bounded tail is kept.
    """

    def __init__(self, name: str, capacity: int = OUTPUT_CHANNEL_CAPACITY):
        self.name = name
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._log = Log.create({"service": f"output.{name}"})

    def append_line(self, text: str) -> None:
        self._lines.append(text)
        self._log.info(text)

    @property
    def lines(self) -> List[str]:
        return list(self._lines)
