import asyncio
import json

import pytest

from rag_engine.errors import RpcTimeoutError, ToolCallError, ToolChannelClosed
from rag_engine.tools.channel import RpcChannel


class _RecordingWriter:
    def __init__(self) -> None:
        self.chunks: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.chunks.append(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def requests(self) -> list[dict]:
        return [json.loads(chunk) for chunk in self.chunks]


async def _wait_for_writes(writer: _RecordingWriter, count: int) -> None:
    for _ in range(200):
        if len(writer.chunks) >= count:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"expected {count} requests, saw {len(writer.chunks)}")


def _response(call_id: int, result=None, error=None) -> bytes:
    message = {"jsonrpc": "2.0", "id": call_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    return json.dumps(message).encode("utf-8") + b"\n"


def _open_channel(call_timeout: float = 2.0) -> tuple[RpcChannel, asyncio.StreamReader, _RecordingWriter]:
    reader = asyncio.StreamReader()
    writer = _RecordingWriter()
    channel = RpcChannel("fake", reader, writer, call_timeout=call_timeout)
    channel.start()
    return channel, reader, writer


@pytest.mark.asyncio
async def test_interleaved_responses_reach_their_callers() -> None:
    channel, reader, writer = _open_channel()
    calls = [asyncio.create_task(channel.call_tool(name, {"n": name})) for name in ("a", "b", "c")]

    await _wait_for_writes(writer, 3)
    ids = {request["params"]["name"]: request["id"] for request in writer.requests()}
    for name in ("c", "a", "b"):
        reader.feed_data(_response(ids[name], {"tool": name}))
    results = await asyncio.gather(*calls)

    assert [result["tool"] for result in results] == ["a", "b", "c"]
    assert sorted(ids.values()) == [1, 2, 3]
    assert channel.pending_count == 0
    await channel.close()


@pytest.mark.asyncio
async def test_partial_reads_are_buffered_until_newline() -> None:
    channel, reader, writer = _open_channel()
    call = asyncio.create_task(channel.list_tools())

    await _wait_for_writes(writer, 1)
    assert writer.requests()[0] == {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}
    line = _response(1, {"tools": [{"name": "echo"}]})
    reader.feed_data(line[:10])
    await asyncio.sleep(0.01)
    assert not call.done()
    reader.feed_data(line[10:])

    assert await call == {"tools": [{"name": "echo"}]}
    await channel.close()


@pytest.mark.asyncio
async def test_timeout_removes_pending_and_late_response_is_ignored() -> None:
    channel, reader, writer = _open_channel()

    with pytest.raises(RpcTimeoutError):
        await channel.call_tool("slow", timeout=0.05)
    assert channel.pending_count == 0

    follow_up = asyncio.create_task(channel.call_tool("echo"))
    await _wait_for_writes(writer, 2)
    reader.feed_data(_response(1, {"late": True}))
    reader.feed_data(_response(2, {"fresh": True}))

    assert await follow_up == {"fresh": True}
    await channel.close()


@pytest.mark.asyncio
async def test_malformed_and_unknown_lines_are_skipped() -> None:
    channel, reader, writer = _open_channel()
    call = asyncio.create_task(channel.call_tool("echo"))

    await _wait_for_writes(writer, 1)
    reader.feed_data(b"this is not json\n")
    reader.feed_data(_response(99, {"stray": True}))
    reader.feed_data(b'{"jsonrpc": "2.0", "method": "notifications/progress"}\n')
    reader.feed_data(_response(1, {"ok": True}))

    assert await call == {"ok": True}
    assert not channel.closed
    await channel.close()


@pytest.mark.asyncio
async def test_error_response_raises_tool_call_error() -> None:
    channel, reader, writer = _open_channel()
    call = asyncio.create_task(channel.call_tool("fail"))

    await _wait_for_writes(writer, 1)
    reader.feed_data(_response(1, error={"code": -32000, "message": "quota exceeded"}))

    with pytest.raises(ToolCallError) as excinfo:
        await call
    assert excinfo.value.code == -32000
    assert "quota exceeded" in str(excinfo.value)
    await channel.close()


@pytest.mark.asyncio
async def test_end_of_stream_rejects_pending_calls() -> None:
    channel, reader, writer = _open_channel()
    call = asyncio.create_task(channel.call_tool("never"))

    await _wait_for_writes(writer, 1)
    reader.feed_eof()

    with pytest.raises(ToolChannelClosed):
        await call
    assert channel.closed
    with pytest.raises(ToolChannelClosed):
        await channel.call_tool("echo")
    await channel.close()


@pytest.mark.asyncio
async def test_close_rejects_pending_calls_and_is_idempotent() -> None:
    channel, _, writer = _open_channel()
    calls = [asyncio.create_task(channel.call_tool("never")) for _ in range(3)]

    await _wait_for_writes(writer, 3)
    await channel.close()
    await channel.close()

    outcomes = await asyncio.gather(*calls, return_exceptions=True)
    assert all(isinstance(outcome, ToolChannelClosed) for outcome in outcomes)
    assert channel.pending_count == 0
