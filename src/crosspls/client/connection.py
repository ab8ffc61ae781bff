"""JSON-RPC connection to the language server.

This module speaks the Language Server Protocol framing over the server
process's stdio using ``pylsp_jsonrpc`` and performs the two handshakes a
session needs: ``initialize``/``initialized`` on start and
``shutdown``/``exit`` on stop. Message payloads beyond those are not
interpreted.
"""

import asyncio
import os
from contextvars import Context, copy_context
from typing import Any, Dict, Optional
from urllib.parse import quote

from pylsp_jsonrpc.streams import JsonRpcStreamReader, JsonRpcStreamWriter

from ..host.window import OutputChannel
from ..transport.process import TERMINATE_GRACE, ProcessHandle
from ..util.log import Log

log = Log.create({"service": "client.connection"})

# JSON-RPC error code for unsupported server-to-client requests
METHOD_NOT_FOUND = -32601

# Server-to-client requests acknowledged with a null result
_ACKNOWLEDGED_REQUESTS = {
    "window/workDoneProgress/create",
    "client/registerCapability",
    "client/unregisterCapability",
}

_MESSAGE_TYPES = {1: "error", 2: "warning", 3: "info", 4: "log"}


def path_to_uri(path: str) -> str:
    """Convert a file path to a file URI."""
    path = os.path.abspath(path)
    if os.name == "nt":
        # Windows: file:///C:/path
        path = "/" + path.replace("\\", "/")
    return "file://" + quote(path, safe="/:")


class ProtocolConnection:
    """Protocol connection over a spawned server's stdio.

    Reading happens on an executor thread via ``JsonRpcStreamReader.listen``;
    every message is handed back to the event loop before it is handled.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        *,
        client_name: str,
        root: str,
        output: OutputChannel,
    ):
        self.handle = handle
        self.client_name = client_name
        self.root = root
        self.output = output
        self._request_id = 0
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_context: Optional[Context] = None
        self._stream_reader: Optional[JsonRpcStreamReader] = None
        self._stream_writer: Optional[JsonRpcStreamWriter] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, timeout: Optional[float] = None) -> bool:
        """Run the initialize handshake.

        Returns:
            True if the server acknowledged initialization
        """
        if self._initialized:
            return True

        self._loop = asyncio.get_running_loop()
        self._loop_context = copy_context()

        stdout = self.handle.stdout
        stdin = self.handle.stdin
        if not stdout or not stdin:
            log.error("server stdio not available", {"command": self.handle.command})
            return False

        self._stream_reader = JsonRpcStreamReader(stdout)
        self._stream_writer = JsonRpcStreamWriter(stdin)
        self._reader_task = asyncio.create_task(self._read_messages())

        root_uri = path_to_uri(self.root)

        try:
            await asyncio.wait_for(
                self._send_request("initialize", {
                    "processId": os.getpid(),
                    "clientInfo": {"name": self.client_name},
                    "rootUri": root_uri,
                    "workspaceFolders": [
                        {"name": os.path.basename(self.root) or "workspace", "uri": root_uri}
                    ],
                    "capabilities": {
                        "window": {"workDoneProgress": True},
                        "textDocument": {
                            "synchronization": {"didSave": True, "dynamicRegistration": False},
                            "publishDiagnostics": {"versionSupport": True},
                        },
                    },
                }),
                timeout=timeout,
            )
            await self._send_notification("initialized", {})
        except asyncio.TimeoutError:
            log.error("initialize timeout", {"command": self.handle.command, "timeout": timeout})
            return False
        except Exception as e:
            log.error("initialize error", {"command": self.handle.command, "error": str(e)})
            return False

        self._initialized = True
        log.info("connection initialized", {"command": self.handle.command})
        return True

    async def _read_messages(self) -> None:
        if not self._stream_reader:
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                self._stream_reader.listen,
                self._consume_message_from_reader_thread,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("error reading server messages", {"error": str(e)})

        self._fail_pending(ConnectionError("server closed the connection"))

    def _consume_message_from_reader_thread(self, message: Dict[str, Any]) -> None:
        """Bridge reader-thread messages into the asyncio event loop."""
        if not self._loop or self._loop.is_closed():
            return

        self._loop.call_soon_threadsafe(
            self._schedule_message,
            message,
            context=self._loop_context,
        )

    def _schedule_message(self, message: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._handle_message(message))
        task.add_done_callback(self._on_message_done)

    def _on_message_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("error handling server message", {"error": str(error)})

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        if "id" in message and "method" not in message:
            future = self._pending_requests.get(message["id"])
            if future is None or future.done():
                return
            if "error" in message:
                error = message["error"] or {}
                future.set_exception(RuntimeError(error.get("message", "Unknown error")))
            else:
                future.set_result(message.get("result"))
            return

        method = message.get("method")
        params = message.get("params") or {}

        if method in ("window/logMessage", "window/showMessage"):
            kind = _MESSAGE_TYPES.get(params.get("type"), "log")
            self.output.append_line(f"[{kind}] {params.get('message', '')}")
            return

        if "id" not in message:
            return

        if method in _ACKNOWLEDGED_REQUESTS:
            await self._send_response(message["id"], None)
        elif method == "workspace/configuration":
            items = params.get("items", [])
            await self._send_response(message["id"], [None for _ in items])
        elif method == "workspace/workspaceFolders":
            await self._send_response(message["id"], [
                {"name": os.path.basename(self.root) or "workspace", "uri": path_to_uri(self.root)}
            ])
        else:
            await self._send_message({
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": f"unhandled method {method}"},
            })

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)

    async def _send_request(self, method: str, params: Optional[Dict[str, Any]]) -> Any:
        self._request_id += 1
        request_id = self._request_id

        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._send_message(message)
            return await future
        finally:
            self._pending_requests.pop(request_id, None)

    async def _send_notification(self, method: str, params: Optional[Dict[str, Any]]) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send_message(message)

    async def _send_response(self, request_id: Any, result: Any) -> None:
        await self._send_message({"jsonrpc": "2.0", "id": request_id, "result": result})

    async def _send_message(self, message: Dict[str, Any]) -> None:
        if not self._stream_writer:
            return

        await asyncio.get_running_loop().run_in_executor(
            None, self._stream_writer.write, message
        )

    async def shutdown(self, grace: float = TERMINATE_GRACE) -> None:
        """Run the shutdown handshake and tear down the server process.

        The process is terminated even when the handshake fails; the
        handshake error is re-raised afterwards.
        """
        log.info("shutting down", {"command": self.handle.command})

        try:
            if self._initialized:
                self._initialized = False
                await self._send_request("shutdown", None)
                await self._send_notification("exit", None)
        finally:
            if self._stream_writer:
                self._stream_writer.close()

            # Terminate the server process first to unblock the reader thread.
            await self.handle.terminate(grace)

            if self._reader_task:
                self._reader_task.cancel()
                await asyncio.gather(self._reader_task, return_exceptions=True)

            for future in self._pending_requests.values():
                if not future.done():
                    future.cancel()
            self._pending_requests.clear()

        log.info("shutdown complete", {"command": self.handle.command})
