"""Shared test helpers: fake server processes and protocol connections."""

from __future__ import annotations

import asyncio
import subprocess
import threading
from typing import IO, Any, Callable, Optional

from crosspls.client.session import ClientSession
from crosspls.transport.process import ProcessHandle


class FakeProcess:
    """Stand-in for ``subprocess.Popen`` driven by the test."""

    def __init__(
        self,
        pid: int = 4242,
        *,
        stderr: Optional[IO[bytes]] = None,
        ignore_terminate: bool = False,
    ) -> None:
        self.pid = pid
        self.stdin = None
        self.stdout = None
        self.stderr = stderr
        self.returncode: Optional[int] = None
        self.terminated = False
        self.killed = False
        self._ignore_terminate = ignore_terminate
        self._exited = threading.Event()

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("fake-server", timeout)
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self._ignore_terminate:
            self.exit(0)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()


class FakeSpawner:
    """Replacement for ``ProcessTransport._popen`` that counts spawns."""

    def __init__(
        self,
        process: Optional[FakeProcess] = None,
        *,
        error: Optional[OSError] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.process = process or FakeProcess()
        self.error = error
        self.gate = gate
        self.calls = 0

    def __call__(self, *_args: Any) -> FakeProcess:
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.process


class FakeConnection:
    """Protocol connection double recording handshake calls."""

    def __init__(
        self,
        handle: ProcessHandle,
        *,
        calls: list[str],
        initialize_ok: bool = True,
        initialize_gate: Optional[asyncio.Event] = None,
        shutdown_error: Optional[Exception] = None,
        shutdown_delay: float = 0.0,
    ) -> None:
        self.handle = handle
        self.calls = calls
        self._initialize_ok = initialize_ok
        self._initialize_gate = initialize_gate
        self._shutdown_error = shutdown_error
        self._shutdown_delay = shutdown_delay

    async def initialize(self, timeout: Optional[float] = None) -> bool:
        del timeout
        self.calls.append("initialize")
        if self._initialize_gate is not None:
            await self._initialize_gate.wait()
        return self._initialize_ok

    async def shutdown(self, grace: float = 5.0) -> None:
        self.calls.append("shutdown")
        if self._shutdown_delay:
            await asyncio.sleep(self._shutdown_delay)
        await self.handle.terminate(grace)
        if self._shutdown_error is not None:
            raise self._shutdown_error


def connection_factory(calls: list[str], **options: Any) -> Callable[..., FakeConnection]:
    def build(handle: ProcessHandle, **_kw: Any) -> FakeConnection:
        return FakeConnection(handle, calls=calls, **options)

    return build


def session_factory(calls: list[str], **options: Any) -> Callable[..., ClientSession]:
    def build(*args: Any, **kwargs: Any) -> ClientSession:
        return ClientSession(*args, connection_factory=connection_factory(calls, **options), **kwargs)

    return build


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and event tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
