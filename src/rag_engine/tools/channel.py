"""Per-worker RPC channel multiplexing calls over one pair of byte streams."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from rag_engine.errors import (
    RpcTimeoutError,
    ToolCallError,
    ToolChannelClosed,
    ToolProtocolError,
)
from rag_engine.tools.protocol import (
    TOOLS_LIST,
    RpcRequest,
    RpcResponse,
    decode_response,
    encode_request,
    tool_call_request,
)

logger = logging.getLogger(__name__)


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class RpcChannel:
    """Actor owning a worker's input and output streams.

    Callers never touch the streams: `request` registers a pending future
    under a fresh correlation id and enqueues the encoded request; a writer
    task drains the queue onto the input stream, and a reader task buffers
    the output stream, splits it into lines and resolves the matching
    future. Each call completes exactly once, with a result, the worker's
    error, a timeout, or channel closure.
    """

    def __init__(
        self,
        name: str,
        reader: ByteReader,
        writer: ByteWriter,
        *,
        call_timeout: float = 30.0,
        read_size: int = 65536,
    ) -> None:
        self.name = name
        self.call_timeout = call_timeout
        self._reader = reader
        self._writer = writer
        self._read_size = read_size
        self._next_id = 0
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._outbox: asyncio.Queue[tuple[int, bytes] | None] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        if self._reader_task is not None:
            return
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"rpc-read-{self.name}")
        self._writer_task = asyncio.create_task(self._write_loop(), name=f"rpc-write-{self.name}")

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        call_id = self._allocate_id()
        return await self._send(RpcRequest(id=call_id, method=method, params=params), timeout)

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        return await self._send(tool_call_request(self._allocate_id(), name, arguments), timeout)

    async def list_tools(self, *, timeout: float | None = None) -> Any:
        return await self.request(TOOLS_LIST, timeout=timeout)

    def _allocate_id(self) -> int:
        self._next_id += 1
        return self._next_id

    async def _send(self, request: RpcRequest, timeout: float | None) -> Any:
        if self._closed:
            raise ToolChannelClosed(self.name, f"Channel to {self.name} is closed")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        limit = self.call_timeout if timeout is None else timeout
        try:
            await self._outbox.put((request.id, encode_request(request)))
            return await asyncio.wait_for(future, limit)
        except asyncio.TimeoutError as exc:
            raise RpcTimeoutError(
                f"Call {request.method} #{request.id} to {self.name} timed out after {limit}s"
            ) from exc
        finally:
            self._pending.pop(request.id, None)

    async def _write_loop(self) -> None:
        while True:
            item = await self._outbox.get()
            if item is None:
                return
            call_id, payload = item
            if call_id not in self._pending:
                continue
            try:
                self._writer.write(payload)
                await self._writer.drain()
            except (ConnectionError, RuntimeError, OSError) as exc:
                logger.error("Failed to write to %s: %s", self.name, exc)
                self._fail_pending(ToolChannelClosed(self.name, f"Write to {self.name} failed: {exc}"))
                self._closed = True
                return

    async def _read_loop(self) -> None:
        buffer = b""
        try:
            while True:
                data = await self._reader.read(self._read_size)
                if not data:
                    break
                buffer += data
                *lines, buffer = buffer.split(b"\n")
                for line in lines:
                    self._handle_line(line)
            if buffer.strip():
                self._handle_line(buffer)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Output stream of %s failed: %s", self.name, exc)
        finally:
            self._closed = True
            self._fail_pending(ToolChannelClosed(self.name, f"Output stream of {self.name} closed"))

    def _handle_line(self, line: bytes) -> None:
        if not line.strip():
            return
        try:
            response = decode_response(line)
        except ToolProtocolError as exc:
            logger.warning("[%s] skipping unparseable line: %s", self.name, exc)
            return
        self._dispatch(response)

    def _dispatch(self, response: RpcResponse) -> None:
        if not isinstance(response.id, int) or isinstance(response.id, bool):
            logger.debug("[%s] ignoring message without numeric id", self.name)
            return
        future = self._pending.get(response.id)
        if future is None or future.done():
            logger.debug("[%s] ignoring response for unknown or expired id %s", self.name, response.id)
            return
        if response.error is not None:
            future.set_exception(ToolCallError(response.error.message, response.error.code))
        else:
            future.set_result(response.result)

    def _fail_pending(self, error: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)

    async def close(self) -> None:
        """Stop both tasks and reject in-flight calls; safe to call twice."""

        self._closed = True
        self._fail_pending(ToolChannelClosed(self.name, f"Channel to {self.name} closed"))
        await self._outbox.put(None)
        for task in (self._writer_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._writer_task, self._reader_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
