"""Subprocess transport for the language server."""

from .process import (
    ProcessHandle,
    ProcessTransport,
    RunningProcess,
    ServerExited,
    SpawnFailure,
    SpawnResult,
)

__all__ = [
    "ProcessHandle",
    "ProcessTransport",
    "RunningProcess",
    "ServerExited",
    "SpawnFailure",
    "SpawnResult",
]
