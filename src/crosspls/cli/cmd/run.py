"""Headless host: activate the integration and keep it alive."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Callable, List, Optional

from ...client.errors import ShutdownFailure
from ...core.bus import Bus, EventPayload
from ...core.config import ConfigManager
from ...extension import activate, deactivate
from ...host.context import ExtensionContext
from ...host.window import WindowMessage
from ...util.error import format_error, format_unknown_error
from ...util.log import Log

log = Log.create({"service": "cli.run"})


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> List[int]:
    installed: List[int] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # not supported by this loop (e.g. Windows); Ctrl-C still raises
            continue
        installed.append(sig)
    return installed


async def run_host(
    *,
    install_root: Optional[str] = None,
    server: Optional[str] = None,
    directory: Optional[str] = None,
    on_message: Optional[Callable[[EventPayload], None]] = None,
    stop: Optional[asyncio.Event] = None,
) -> int:
    """Activate, wait for the server to exit or a stop signal, deactivate.

    Returns:
        Process exit code: 0 on a clean run, 1 if the server failed to
        spawn or did not shut down cleanly
    """
    workspace = str(Path(directory or Path.cwd()).resolve())
    config = await ConfigManager.load(workspace)
    if server:
        config = config.model_copy(update={
            "server": config.server.model_copy(update={"path": server}),
        })

    context = ExtensionContext(install_root=install_root, workspace_root=workspace, config=config)
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()

    token = Bus.provide(context.bus)
    unsubscribe = Bus.subscribe(WindowMessage, on_message) if on_message else None
    installed = _install_signal_handlers(loop, stop)
    try:
        session = activate(context)

        waiters = {asyncio.create_task(stop.wait())}
        if session.handle is not None:
            waiters.add(asyncio.create_task(session.handle.wait_closed()))
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in waiters:
            task.cancel()

        try:
            await deactivate(context)
        except ShutdownFailure as e:
            log.error("deactivate failed", {"error": e})
            if on_message:
                on_message(EventPayload(type="window.message", properties={
                    "type": "error",
                    "message": format_error(e) or format_unknown_error(e),
                }))
            return 1

        failed = session.handle is not None and session.handle.failure is not None
        return 1 if failed else 0
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        if unsubscribe:
            unsubscribe()
        Bus.restore(token)
