"""Host entry points for the crosspls integration.

The host calls :func:`activate` once it has an :class:`ExtensionContext`
and :func:`deactivate` when it shuts the integration down. The client
session lives in the context's ``workspace_state``; nothing here keeps it
in module state.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterator, Optional

from .client.errors import SessionStateError
from .client.options import ClientOptions, build_client_options
from .client.session import ClientSession
from .client.state import SessionState
from .core.bus import Bus
from .host.context import ExtensionContext
from .host.window import Window
from .transport.process import ProcessTransport, SpawnFailure
from .util.log import Log

log = Log.create({"service": "extension"})

CLIENT_ID = "crosspls"
CLIENT_NAME = "Crossplane Language Server"
SESSION_KEY = "crosspls.session"


def spawn_warning(window: Window) -> Callable[[SpawnFailure], Awaitable[None]]:
    """Build the transport error observer that warns the user."""

    async def report(failure: SpawnFailure) -> None:
        await window.show_warning_message(f"Failed to spawn crosspls: `{failure.message}`")

    return report


class Completed:
    """Already finished, result-less awaitable.

    Returned by ``deactivate`` when there is nothing to stop, so it works
    with or without a running event loop.
    """

    def done(self) -> bool:
        return True

    def result(self) -> None:
        return None

    def __await__(self) -> Iterator[Any]:
        return iter(())


def _completed() -> Awaitable[None]:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return Completed()
    done: asyncio.Future[None] = loop.create_future()
    done.set_result(None)
    return done


class ActivationController:
    """Builds, starts and stops the client session for a host context."""

    def __init__(
        self,
        transport_factory: Callable[..., ProcessTransport] = ProcessTransport,
        session_factory: Callable[..., ClientSession] = ClientSession,
    ):
        self._transport_factory = transport_factory
        self._session_factory = session_factory

    def build_options(self, context: ExtensionContext) -> ClientOptions:
        return build_client_options(context.install_root, context.config.server)

    def session(self, context: ExtensionContext) -> Optional[ClientSession]:
        return context.workspace_state.get(SESSION_KEY)

    def activate(self, context: ExtensionContext) -> ClientSession:
        """Create and start the client session without waiting for the server.

        A session that is still live is returned as is; a stopped one is
        replaced by a fresh session.

        Raises:
            SessionStateError: If the previous session is still stopping
        """
        existing = self.session(context)
        if existing is not None:
            if existing.state is SessionState.STOPPING:
                raise SessionStateError(existing.id, existing.state, SessionState.STARTING)
            if existing.state is not SessionState.STOPPED:
                log.warn("already activated; reusing session", {
                    "session_id": existing.id,
                    "state": existing.state,
                })
                return existing

        bus = Bus.active()
        if bus is None:
            Bus.provide(context.bus)
            bus = context.bus

        options = self.build_options(context)
        channel = context.output_channel(options.output_channel_name)
        transport = self._transport_factory(
            options.server_path,
            on_error=spawn_warning(context.window),
            output=channel.append_line,
        )
        session = self._session_factory(
            CLIENT_ID,
            CLIENT_NAME,
            transport.launch,
            options,
            output=channel,
            root=str(context.workspace_root),
            bus=bus,
        )
        context.workspace_state[SESSION_KEY] = session

        log.info("activating", {"session_id": session.id, "server": str(options.server_path)})
        session.start()
        return session

    def deactivate(
        self,
        context: Optional[ExtensionContext] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Awaitable[None]:
        """Request the session to stop and return the pending completion."""
        session = self.session(context) if context is not None else None
        if session is None:
            return _completed()

        log.info("deactivating", {"session_id": session.id, "state": session.state})
        return session.stop(timeout)


_controller = ActivationController()


def activate(context: ExtensionContext) -> ClientSession:
    return _controller.activate(context)


def deactivate(
    context: Optional[ExtensionContext] = None,
    *,
    timeout: Optional[float] = None,
) -> Awaitable[None]:
    return _controller.deactivate(context, timeout=timeout)
