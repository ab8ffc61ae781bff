"""Subprocess transport for the language server.

``ProcessTransport.launch`` hands back a :class:`ProcessHandle` at once and
spawns the server in the background. The handle reports the outcome of the
spawn through :meth:`ProcessHandle.wait_ready`, which resolves to either a
:class:`RunningProcess` or a :class:`SpawnFailure`, and reports the end of
the process through :meth:`ProcessHandle.wait_closed`.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass
from typing import IO, Any, Awaitable, Callable, Optional, Set, Union

from pydantic import BaseModel

from ..core.bus import Bus, BusEvent
from ..util.log import Log

log = Log.create({"service": "transport.process"})

# Seconds to wait after terminate() before the process is killed
TERMINATE_GRACE = 5.0


class ServerExitedProps(BaseModel):
    """Properties for server.exited event."""
    command: str
    pid: int
    code: int


ServerExited = BusEvent.define("server.exited", ServerExitedProps)


class SpawnFailure(Exception):
    """The server executable could not be started.

    Attributes:
        message: Failure text from the OS, shown to the user verbatim
        command: Executable that was attempted
        errno: OS error number when one was reported
    """

    def __init__(self, message: str, command: str, errno: Optional[int] = None):
        self.message = message
        self.command = command
        self.errno = errno
        super().__init__(message)


@dataclass(frozen=True)
class RunningProcess:
    """Outcome of a successful spawn."""
    pid: int
    process: subprocess.Popen


SpawnResult = Union[RunningProcess, SpawnFailure]
ErrorObserver = Callable[[SpawnFailure], Awaitable[None]]
LineSink = Callable[[str], None]


class ProcessHandle:
    """Handle to a server process that may still be spawning.

    The handle exists before the process does. Readiness and exit are
    separate futures so callers can wait for either without polling.
    """

    def __init__(self, command: str, loop: asyncio.AbstractEventLoop):
        self.command = command
        self.process: Optional[subprocess.Popen] = None
        self._ready: asyncio.Future[SpawnResult] = loop.create_future()
        self._exited: asyncio.Future[int] = loop.create_future()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def stdin(self) -> Optional[IO[bytes]]:
        return self.process.stdin if self.process else None

    @property
    def stdout(self) -> Optional[IO[bytes]]:
        return self.process.stdout if self.process else None

    @property
    def ready(self) -> bool:
        """True once the spawn has succeeded."""
        return self._ready.done() and isinstance(self._ready.result(), RunningProcess)

    @property
    def failure(self) -> Optional[SpawnFailure]:
        if not self._ready.done():
            return None
        result = self._ready.result()
        return result if isinstance(result, SpawnFailure) else None

    @property
    def returncode(self) -> Optional[int]:
        return self._exited.result() if self._exited.done() else None

    async def wait_ready(self, timeout: Optional[float] = None) -> SpawnResult:
        """Wait for the spawn outcome.

        Raises:
            asyncio.TimeoutError: If the spawn has not finished within ``timeout``
        """
        return await asyncio.wait_for(asyncio.shield(self._ready), timeout)

    async def wait_closed(self) -> Optional[int]:
        """Wait for the process to exit and return its exit code.

        Returns None straight away when the process never started.
        """
        result = await asyncio.shield(self._ready)
        if isinstance(result, SpawnFailure):
            return None
        return await asyncio.shield(self._exited)

    async def terminate(self, grace: float = TERMINATE_GRACE) -> Optional[int]:
        """Stop the process, killing it if it outlives ``grace`` seconds."""
        process = self.process
        if process is None:
            return None

        if process.poll() is None:
            process.terminate()
            try:
                await asyncio.to_thread(process.wait, grace)
            except subprocess.TimeoutExpired:
                log.warn("server ignored terminate; killing", {"pid": process.pid})
                process.kill()
                await asyncio.to_thread(process.wait, 1)

        return process.returncode

    def kill(self) -> None:
        if self.process is not None and self.process.poll() is None:
            self.process.kill()

    def _resolve(self, result: SpawnResult) -> None:
        if self._ready.done():
            return
        if isinstance(result, RunningProcess):
            self.process = result.process
        self._ready.set_result(result)

    def _finish(self, code: int) -> None:
        if not self._exited.done():
            self._exited.set_result(code)


class ProcessTransport:
    """Launcher for the language server executable.

    Each :meth:`launch` call spawns exactly one process. No arguments and
    no extra environment are passed to it. stdin and stdout carry the
    protocol, stderr is forwarded line by line to ``output``.
    """

    def __init__(
        self,
        command: Union[str, os.PathLike],
        *,
        on_error: Optional[ErrorObserver] = None,
        output: Optional[LineSink] = None,
    ):
        self.command = os.fspath(command)
        self._on_error = on_error
        self._output = output
        self._tasks: Set[asyncio.Task[Any]] = set()

    def launch(self) -> ProcessHandle:
        """Start spawning the server and return its handle without waiting."""
        loop = asyncio.get_running_loop()
        handle = ProcessHandle(self.command, loop)
        log.info("launching server", {"command": self.command})
        self._track(loop.create_task(self._spawn(handle)))
        return handle

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("transport task failed", {"command": self.command, "error": error})

    def _popen(self) -> subprocess.Popen:
        return subprocess.Popen(
            [self.command],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

    async def _spawn(self, handle: ProcessHandle) -> None:
        try:
            process = await asyncio.to_thread(self._popen)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            # ValueError covers paths Popen rejects before exec, e.g. a NUL byte
            await self._fail(handle, SpawnFailure(str(e), self.command, getattr(e, "errno", None)))
            return
        except asyncio.CancelledError:
            handle._resolve(SpawnFailure("spawn cancelled", self.command))
            raise

        handle._resolve(RunningProcess(pid=process.pid, process=process))
        log.info("spawned server", {"command": self.command, "pid": process.pid})

        if process.stderr is not None and self._output is not None:
            self._track(asyncio.create_task(asyncio.to_thread(self._pump_stderr, process.stderr, self._output)))
        self._track(asyncio.create_task(self._watch(handle, process)))

    async def _fail(self, handle: ProcessHandle, failure: SpawnFailure) -> None:
        log.error("failed to spawn server", {"command": self.command, "error": failure.message})
        # observers run first so waiters on the handle see the report done
        try:
            if self._on_error:
                await self._on_error(failure)
        finally:
            handle._resolve(failure)

    def _pump_stderr(self, stream: IO[bytes], sink: LineSink) -> None:
        """Forward server stderr to ``sink`` until EOF."""
        try:
            for raw in iter(stream.readline, b""):
                sink(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except (OSError, ValueError) as e:
            # stream closed underneath the reader during teardown
            log.debug("stderr reader stopped", {"command": self.command, "error": str(e)})

    async def _watch(self, handle: ProcessHandle, process: subprocess.Popen) -> None:
        code = await asyncio.to_thread(process.wait)
        handle._finish(code)
        log.info("server exited", {"command": self.command, "pid": process.pid, "code": code})
        await Bus.publish(ServerExited, ServerExitedProps(
            command=self.command,
            pid=process.pid,
            code=code,
        ))
