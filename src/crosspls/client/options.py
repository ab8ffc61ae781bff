"""Client configuration assembly.

Everything here is a pure value construction: the document selector and
output channel label are fixed, the server path is resolved against the
install root.
"""

import os
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from ..core.config_schema import ServerConfig

OUTPUT_CHANNEL_NAME = "crosspls"
SERVER_RELATIVE_PATH = Path("cmd") / "lsp" / "server" / "server"

DEFAULT_START_TIMEOUT = 45.0
DEFAULT_STOP_TIMEOUT = 10.0


class DocumentFilter(BaseModel):
    """Selects documents by URI scheme and language id."""
    scheme: str
    language: str

    model_config = ConfigDict(frozen=True)

    def matches(self, uri: str, language_id: str) -> bool:
        return urlparse(uri).scheme == self.scheme and language_id == self.language


YAML_FILES = DocumentFilter(scheme="file", language="yaml")


class ClientOptions(BaseModel):
    """Immutable configuration of a client session.

    Attributes:
        document_selector: Documents the server is responsible for
        output_channel_name: Label of the output channel for server output
        server_path: Executable spawned as the language server
        start_timeout: Seconds the start sequence may take
        stop_timeout: Seconds the stop sequence may take
    """
    document_selector: Tuple[DocumentFilter, ...] = (YAML_FILES,)
    output_channel_name: str = OUTPUT_CHANNEL_NAME
    server_path: Path
    start_timeout: float = Field(DEFAULT_START_TIMEOUT, gt=0)
    stop_timeout: float = Field(DEFAULT_STOP_TIMEOUT, gt=0)

    model_config = ConfigDict(frozen=True)


def resolve_server_path(
    install_root: Union[str, os.PathLike],
    override: Optional[str] = None,
) -> Path:
    """Resolve the server executable, relative paths against ``install_root``."""
    if override:
        path = Path(override).expanduser()
        return path if path.is_absolute() else Path(install_root) / path
    return Path(install_root) / SERVER_RELATIVE_PATH


def build_client_options(
    install_root: Union[str, os.PathLike],
    server: Optional[ServerConfig] = None,
) -> ClientOptions:
    server = server or ServerConfig()
    return ClientOptions(
        server_path=resolve_server_path(install_root, server.path),
        start_timeout=server.start_timeout or DEFAULT_START_TIMEOUT,
        stop_timeout=server.stop_timeout or DEFAULT_STOP_TIMEOUT,
    )
