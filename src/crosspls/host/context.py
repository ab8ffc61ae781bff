"""Host-provided extension context."""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..core.bus import Bus
from ..core.config_schema import Config
from ..core.global_paths import GlobalPath
from .window import OutputChannel, Window

PathLike = Union[str, os.PathLike]


class ExtensionContext:
    """State the host hands to ``activate`` and ``deactivate``.

    The context owns everything that outlives a single call: the window,
    the output channels, the event bus and ``workspace_state``, where the
    activation controller keeps its client session.

    Attributes:
        install_root: Directory the server executable is resolved against
        workspace_root: Root folder reported to the server
        config: Resolved crosspls configuration
        window: Notification surface for user-visible warnings
        bus: Event bus bound on activation when the host has none
        workspace_state: Store owned by the host for extension state
    """

    def __init__(
        self,
        install_root: Optional[PathLike] = None,
        workspace_root: Optional[PathLike] = None,
        config: Optional[Config] = None,
        window: Optional[Window] = None,
        bus: Optional[Bus] = None,
    ):
        self.install_root = Path(install_root or GlobalPath.install())
        self.workspace_root = Path(workspace_root or os.getcwd()).resolve()
        self.config = config or Config()
        self.window = window or Window()
        self.bus = bus or Bus()
        self.workspace_state: Dict[str, Any] = {}
        self._channels: Dict[str, OutputChannel] = {}

    def output_channel(self, name: str) -> OutputChannel:
        """Get or create the output channel with the given label."""
        channel = self._channels.get(name)
        if channel is None:
            channel = OutputChannel(name)
            self._channels[name] = channel
        return channel
