from __future__ import annotations

import asyncio
import contextvars
import threading
from pathlib import Path

import pytest

from crosspls.client.errors import SessionStateError
from crosspls.client.options import DocumentFilter, SERVER_RELATIVE_PATH
from crosspls.client.state import SessionState, SessionStateChanged
from crosspls.core.bus import Bus, EventPayload
from crosspls.core.config_schema import Config
from crosspls.extension import SESSION_KEY, ActivationController, Completed, activate, deactivate
from crosspls.host.context import ExtensionContext
from crosspls.host.window import WindowMessage
from crosspls.transport.process import ProcessTransport
from tests.helpers import FakeSpawner, eventually, session_factory, settle


def _controller(calls: list[str], **options: object) -> ActivationController:
    return ActivationController(session_factory=session_factory(calls, **options))


@pytest.mark.anyio
async def test_deactivate_before_activate_completes_immediately(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    spawner = FakeSpawner()
    monkeypatch.setattr(ProcessTransport, "_popen", spawner)

    without_context = deactivate()
    with_context = deactivate(ExtensionContext(install_root=tmp_path))

    assert without_context.done()
    assert with_context.done()
    assert await without_context is None
    assert await with_context is None
    assert spawner.calls == 0


@pytest.mark.anyio
async def test_activate_spawns_exactly_once(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    spawner = FakeSpawner()
    monkeypatch.setattr(ProcessTransport, "_popen", spawner)
    calls: list[str] = []
    context = ExtensionContext(install_root=tmp_path)
    controller = _controller(calls)

    session = controller.activate(context)
    await session.start()

    assert spawner.calls == 1
    assert session.state is SessionState.RUNNING
    assert context.workspace_state[SESSION_KEY] is session

    await controller.deactivate(context)
    assert spawner.calls == 1


@pytest.mark.anyio
async def test_missing_executable_warns_asynchronously(tmp_path: Path) -> None:
    context = ExtensionContext(install_root=tmp_path)
    messages: list[EventPayload] = []
    unsubscribe = Bus.subscribe(WindowMessage, messages.append)

    session = activate(context)

    # Nothing has run on the loop yet, so no warning can exist.
    assert context.window.messages == []
    assert session.state is SessionState.STARTING

    await eventually(lambda: len(messages) == 1)
    unsubscribe()

    expected_path = tmp_path / SERVER_RELATIVE_PATH
    assert messages[0].properties["type"] == "warning"
    assert messages[0].properties["message"].startswith("Failed to spawn crosspls: `")
    assert str(expected_path) in messages[0].properties["message"]
    assert [m.message for m in context.window.messages] == [messages[0].properties["message"]]
    assert session.state is SessionState.STARTING

    await deactivate(context)
    assert session.state is SessionState.STOPPED


@pytest.mark.anyio
async def test_activate_returns_before_server_is_ready(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    gate = threading.Event()
    spawner = FakeSpawner(gate=gate)
    monkeypatch.setattr(ProcessTransport, "_popen", spawner)
    context = ExtensionContext(install_root=tmp_path)
    controller = _controller([])

    try:
        session = controller.activate(context)
        assert session.handle is not None
        assert session.handle.ready is False
        assert session.state is SessionState.STARTING
    finally:
        gate.set()

    await asyncio.wait_for(session.handle.wait_ready(), timeout=5)
    assert session.handle.ready is True

    await controller.deactivate(context)


@pytest.mark.anyio
async def test_reactivation_after_deactivate_starts_fresh_session(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    spawner = FakeSpawner()
    monkeypatch.setattr(ProcessTransport, "_popen", spawner)
    context = ExtensionContext(install_root=tmp_path)
    controller = _controller([])

    first = controller.activate(context)
    await first.start()
    await controller.deactivate(context)
    assert first.state is SessionState.STOPPED

    spawner.process = type(spawner.process)(pid=5151)
    second = controller.activate(context)
    await second.start()

    assert second is not first
    assert second.state is SessionState.RUNNING
    assert second.handle is not None and second.handle.pid == 5151
    assert first.state is SessionState.STOPPED
    assert spawner.calls == 2

    await controller.deactivate(context)


@pytest.mark.anyio
async def test_second_activate_reuses_live_session(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    spawner = FakeSpawner()
    monkeypatch.setattr(ProcessTransport, "_popen", spawner)
    context = ExtensionContext(install_root=tmp_path)
    controller = _controller([])

    first = controller.activate(context)
    second = controller.activate(context)
    await first.start()

    assert first is second
    assert spawner.calls == 1

    await controller.deactivate(context)


@pytest.mark.anyio
async def test_activate_while_stopping_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(ProcessTransport, "_popen", FakeSpawner())
    context = ExtensionContext(install_root=tmp_path)
    controller = _controller([], shutdown_delay=0.05)

    session = controller.activate(context)
    await session.start()
    pending = controller.deactivate(context)

    with pytest.raises(SessionStateError):
        controller.activate(context)

    await pending
    assert controller.activate(context) is not session
    await controller.deactivate(context)


@pytest.mark.anyio
async def test_deactivate_uses_configured_stop_timeout(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(ProcessTransport, "_popen", FakeSpawner())
    config = Config.model_validate({"server": {"stopTimeout": 0.05}})
    context = ExtensionContext(install_root=tmp_path, config=config)
    controller = _controller([], shutdown_delay=10.0)

    session = controller.activate(context)
    await session.start()

    with pytest.raises(Exception, match="within 0.05s"):
        await controller.deactivate(context)
    assert session.state is SessionState.STOPPED


@pytest.mark.parametrize(
    "config",
    [
        Config(),
        Config.model_validate({"server": {"path": "/usr/local/bin/crosspls", "startTimeout": 1}}),
        Config.model_validate({"logLevel": "debug"}),
    ],
)
def test_configuration_is_fixed_regardless_of_host_state(tmp_path: Path, config: Config) -> None:
    context = ExtensionContext(install_root=tmp_path, workspace_root=tmp_path, config=config)
    context.workspace_state["unrelated"] = object()

    options = ActivationController().build_options(context)

    assert options.document_selector == (DocumentFilter(scheme="file", language="yaml"),)
    assert options.document_selector[0].model_dump() == {"scheme": "file", "language": "yaml"}
    assert options.output_channel_name == "crosspls"


def test_server_path_resolves_under_install_root(tmp_path: Path) -> None:
    context = ExtensionContext(install_root=tmp_path)

    options = ActivationController().build_options(context)

    assert options.server_path == tmp_path / "cmd" / "lsp" / "server" / "server"


def test_deactivate_without_running_loop_is_a_completed_no_op(tmp_path: Path) -> None:
    pending = deactivate(ExtensionContext(install_root=tmp_path))

    assert isinstance(pending, Completed)
    assert pending.done() is True
    assert pending.result() is None
    assert asyncio.run(_await(pending)) is None


async def _await(pending):  # type: ignore[no-untyped-def]
    return await pending


@pytest.mark.anyio
async def test_unusable_server_path_warns_and_deactivates_cleanly(tmp_path: Path) -> None:
    config = Config.model_validate({"server": {"path": "bad\x00path", "startTimeout": 0.5, "stopTimeout": 0.5}})
    context = ExtensionContext(install_root=tmp_path, config=config)

    session = activate(context)
    await eventually(lambda: len(context.window.messages) == 1)

    assert context.window.messages[0].message.startswith("Failed to spawn crosspls: `")
    assert session.handle is not None and session.handle.failure is not None

    await deactivate(context)
    assert session.state is SessionState.STOPPED


@pytest.mark.anyio
async def test_activate_and_deactivate_from_unrelated_contexts(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setattr(ProcessTransport, "_popen", FakeSpawner())
    host_bus = Bus()
    states: list[str] = []
    token = Bus.provide(host_bus)
    try:
        Bus.subscribe(SessionStateChanged, lambda payload: states.append(payload.properties["state"]))
    finally:
        Bus.restore(token)

    context = ExtensionContext(install_root=tmp_path, bus=host_bus)
    controller = _controller([])
    loop = asyncio.get_running_loop()

    async def start_host():  # type: ignore[no-untyped-def]
        assert Bus.active() is None
        session = controller.activate(context)
        await session.start()
        return session

    async def stop_host() -> None:
        assert Bus.active() is None
        await controller.deactivate(context)

    session = await contextvars.Context().run(loop.create_task, start_host())
    await contextvars.Context().run(loop.create_task, stop_host())
    await settle()

    assert session.state is SessionState.STOPPED
    assert states == ["starting", "running", "stopping", "stopped"]
