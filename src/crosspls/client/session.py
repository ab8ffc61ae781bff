"""Language client session.

A :class:`ClientSession` pairs one launcher with one protocol connection
and walks the lifecycle ``uninitialized -> starting -> running ->
stopping -> stopped``. Starting and stopping return tasks immediately;
the actual work happens on the event loop.
"""

import asyncio
from typing import Any, Callable, Optional, Set

from ..core.bus import Bus
from ..host.window import OutputChannel
from ..transport.process import ProcessHandle, SpawnFailure
from ..util.log import Log
from .connection import ProtocolConnection
from .errors import SessionStateError, ShutdownFailure
from .options import ClientOptions
from .state import SessionState, SessionStateChanged, SessionStateProps, can_transition

log = Log.create({"service": "client.session"})

ServerLauncher = Callable[[], ProcessHandle]
ConnectionFactory = Callable[..., ProtocolConnection]


class ClientSession:
    """Language client bound to a single server process.

    Args:
        session_id: Identifier used in logs and events
        name: Human-readable client name sent to the server
        server_options: Launcher called once to obtain the server handle
        client_options: Fixed session configuration
        output: Output channel for server and lifecycle output
        root: Workspace root reported to the server
        connection_factory: Builds the protocol connection for a handle
        bus: Bus that receives ``session.state`` events; defaults to the
            bus active when the session is created
    """

    def __init__(
        self,
        session_id: str,
        name: str,
        server_options: ServerLauncher,
        client_options: ClientOptions,
        *,
        output: OutputChannel,
        root: str,
        connection_factory: ConnectionFactory = ProtocolConnection,
        bus: Optional[Bus] = None,
    ):
        self.id = session_id
        self.name = name
        self.options = client_options
        self.output = output
        self.root = root
        self._launch = server_options
        self._connection_factory = connection_factory
        self._state = SessionState.UNINITIALIZED
        self._handle: Optional[ProcessHandle] = None
        self._connection: Optional[ProtocolConnection] = None
        self._start_task: Optional[asyncio.Task[None]] = None
        self._stop_task: Optional[asyncio.Task[None]] = None
        self._watch_task: Optional[asyncio.Task[None]] = None
        self._events: Set[asyncio.Task[Any]] = set()
        self._bus = bus or Bus.active()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def connection(self) -> Optional[ProtocolConnection]:
        return self._connection

    def handles(self, uri: str, language_id: str) -> bool:
        """Whether a document falls under this session's selector."""
        return any(f.matches(uri, language_id) for f in self.options.document_selector)

    def _transition(self, target: SessionState) -> None:
        previous = self._state
        if not can_transition(previous, target):
            raise SessionStateError(self.id, previous, target)

        self._state = target
        log.info("session state changed", {
            "session_id": self.id,
            "previous": previous,
            "state": target,
        })
        task = asyncio.get_running_loop().create_task(self._publish(
            SessionStateProps(session_id=self.id, previous=previous, state=target),
        ))
        self._events.add(task)
        task.add_done_callback(self._on_event_done)

    async def _publish(self, props: SessionStateProps) -> None:
        # stop() may run from a task that never saw the activating context
        if self._bus is None:
            log.debug("no bus bound; state event dropped", {"session_id": self.id, "state": props.state})
            return
        token = Bus.provide(self._bus)
        try:
            await Bus.publish(SessionStateChanged, props)
        finally:
            Bus.restore(token)

    def _on_event_done(self, task: asyncio.Task[Any]) -> None:
        self._events.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("state event failed", {"session_id": self.id, "error": error})

    def start(self, timeout: Optional[float] = None) -> asyncio.Task[None]:
        """Launch the server and begin the handshake without waiting.

        Calling again while starting or running returns the same task.

        Raises:
            SessionStateError: If the session is stopping or stopped
        """
        if self._start_task is not None and self._state in (SessionState.STARTING, SessionState.RUNNING):
            return self._start_task
        if self._state is not SessionState.UNINITIALIZED:
            raise SessionStateError(self.id, self._state, SessionState.STARTING)

        loop = asyncio.get_running_loop()
        self._transition(SessionState.STARTING)
        self._handle = self._launch()
        self._start_task = loop.create_task(self._run_start(
            self._handle,
            self.options.start_timeout if timeout is None else timeout,
        ))
        return self._start_task

    async def _run_start(self, handle: ProcessHandle, timeout: float) -> None:
        with log.time("starting session", {"session_id": self.id}):
            try:
                result = await handle.wait_ready(timeout)
            except asyncio.TimeoutError:
                log.error("server did not spawn in time", {"session_id": self.id, "timeout": timeout})
                return

            if isinstance(result, SpawnFailure):
                # Degraded: the session stays starting and never sees traffic.
                self.output.append_line(f"{self.name} failed to start: {result.message}")
                return

            self._watch_task = asyncio.create_task(self._watch_exit(handle))
            connection = self._connection_factory(
                handle,
                client_name=self.name,
                root=self.root,
                output=self.output,
            )
            self._connection = connection

            if not await connection.initialize(timeout=timeout):
                self.output.append_line(f"{self.name} handshake with the server failed")
                return

            if self._state is SessionState.STARTING:
                self._transition(SessionState.RUNNING)

    async def _watch_exit(self, handle: ProcessHandle) -> None:
        code = await handle.wait_closed()
        if self._state is not SessionState.RUNNING:
            return
        log.warn("server exited while session running", {"session_id": self.id, "code": code})
        self.output.append_line(f"{self.name} server exited with code {code}")

    def stop(self, timeout: Optional[float] = None) -> asyncio.Task[None]:
        """Stop the session and return the pending completion.

        The returned task raises :class:`ShutdownFailure` if the stop
        sequence fails or exceeds ``timeout`` seconds. Calling again
        returns the same task.
        """
        if self._stop_task is not None:
            return self._stop_task

        loop = asyncio.get_running_loop()
        if self._state is SessionState.UNINITIALIZED:
            self._transition(SessionState.STOPPED)
        else:
            self._transition(SessionState.STOPPING)
        self._stop_task = loop.create_task(self._run_stop(
            self.options.stop_timeout if timeout is None else timeout,
        ))
        return self._stop_task

    async def _run_stop(self, timeout: float) -> None:
        if self._state is SessionState.STOPPED:
            return

        try:
            await asyncio.wait_for(self._teardown(), timeout)
        except asyncio.TimeoutError as e:
            log.error("session stop timed out; killing server", {"session_id": self.id, "timeout": timeout})
            if self._handle is not None:
                self._handle.kill()
            raise ShutdownFailure(self.id, f"stop did not finish within {timeout}s") from e
        except Exception as e:
            log.error("session stop failed", {"session_id": self.id, "error": e})
            raise ShutdownFailure(self.id, str(e)) from e
        finally:
            self._transition(SessionState.STOPPED)

    async def _teardown(self) -> None:
        start_task = self._start_task
        if start_task is not None and not start_task.done():
            start_task.cancel()
            await asyncio.gather(start_task, return_exceptions=True)

        if self._watch_task is not None:
            self._watch_task.cancel()

        handle = self._handle
        if handle is None:
            return

        # A spawn in flight cannot be cancelled; wait for it so the process
        # it produces is torn down too.
        result = await handle.wait_ready()
        if isinstance(result, SpawnFailure):
            return

        if self._connection is not None:
            await self._connection.shutdown()
        else:
            await handle.terminate()
