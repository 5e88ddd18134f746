import asyncio
import sys
import time
from pathlib import Path

import pytest

from rag_engine.config import ToolServerConfig
from rag_engine.errors import (
    RpcTimeoutError,
    ToolCallError,
    ToolChannelClosed,
    ToolExitedError,
    ToolServerUnavailable,
    ToolSpawnError,
    ToolStartupTimeout,
)
from rag_engine.tools.supervisor import ToolServerSupervisor

FAKE_SERVER = Path(__file__).resolve().parents[1] / "fixtures" / "fake_tool_server.py"


def _config(name: str = "alpha", mode: str = "serve", **overrides) -> ToolServerConfig:
    settings = {
        "name": name,
        "command": sys.executable,
        "args": [str(FAKE_SERVER), mode],
        "env": {"PYTHONUNBUFFERED": "1"},
        "startup_timeout": 10.0,
        "call_timeout": 5.0,
        "shutdown_grace": 2.0,
    }
    settings.update(overrides)
    return ToolServerConfig(**settings)


@pytest.mark.asyncio
async def test_worker_becomes_ready_and_answers_calls() -> None:
    supervisor = ToolServerSupervisor([_config()])
    observed = []
    supervisor.set_observer(observed.append)
    try:
        assert await supervisor.start() == {"alpha": None}
        assert supervisor.is_ready("alpha")

        result = await supervisor.call_tool("alpha", "echo", {"text": "hi"})
        tools = await supervisor.list_tools("alpha")

        assert result == {"echoed": {"text": "hi"}}
        assert "get_blog_posts" in [tool["name"] for tool in tools["tools"]]
        assert observed[0].name == "alpha:echo"
        assert observed[0].input_payload == {"text": "hi"}
        assert supervisor.status()["alpha"]["ready"] is True
    finally:
        await supervisor.shutdown()

    assert supervisor.status() == {}
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_spawn_failure_does_not_block_other_workers() -> None:
    supervisor = ToolServerSupervisor(
        [_config("broken", command="/nonexistent/tool-server-binary", args=[]), _config("alpha")]
    )
    try:
        results = await supervisor.start()

        assert isinstance(results["broken"], ToolSpawnError)
        assert results["alpha"] is None
        assert await supervisor.call_tool("alpha", "echo", {}) == {"echoed": {}}
        with pytest.raises(ToolServerUnavailable):
            await supervisor.call_tool("broken", "echo", {})
        assert "error" in supervisor.status()["broken"]
    finally:
        await supervisor.shutdown()


@pytest.mark.asyncio
async def test_premature_exit_reports_exit_code() -> None:
    supervisor = ToolServerSupervisor()

    with pytest.raises(ToolExitedError) as excinfo:
        await supervisor.start_server(_config("quitter", mode="exit"))

    assert excinfo.value.exit_code == 3
    assert not supervisor.is_ready("quitter")


@pytest.mark.asyncio
async def test_silent_worker_hits_startup_timeout() -> None:
    supervisor = ToolServerSupervisor()
    started = time.monotonic()

    with pytest.raises(ToolStartupTimeout):
        await supervisor.start_server(_config("mute", mode="silent", startup_timeout=0.5))

    assert time.monotonic() - started < 5.0
    assert supervisor.status() == {}


@pytest.mark.asyncio
async def test_out_of_order_responses_are_correlated() -> None:
    supervisor = ToolServerSupervisor([_config()])
    try:
        await supervisor.start()
        tags = ["first", "second", "third"]

        results = await asyncio.gather(
            *(supervisor.call_tool("alpha", "hold", {"tag": tag, "batch": 3}) for tag in tags)
        )

        assert [result["tag"] for result in results] == tags
    finally:
        await supervisor.shutdown()


@pytest.mark.asyncio
async def test_call_failures_are_isolated_per_call() -> None:
    supervisor = ToolServerSupervisor([_config()])
    try:
        await supervisor.start()

        with pytest.raises(ToolCallError):
            await supervisor.call_tool("alpha", "fail", {"message": "quota exceeded"})
        with pytest.raises(RpcTimeoutError):
            await supervisor.call_tool("alpha", "slow", {"delay": 1.0}, timeout=0.2)

        assert await supervisor.call_tool("alpha", "garbage", {}) == {"ok": True}
        assert await supervisor.call_tool("alpha", "echo", {"n": 1}) == {"echoed": {"n": 1}}
        await asyncio.sleep(1.0)
        assert await supervisor.call_tool("alpha", "echo", {"n": 2}) == {"echoed": {"n": 2}}
    finally:
        await supervisor.shutdown()


@pytest.mark.asyncio
async def test_unexpected_exit_after_ready_marks_worker_unavailable() -> None:
    supervisor = ToolServerSupervisor([_config()])
    try:
        await supervisor.start()

        with pytest.raises(ToolChannelClosed):
            await supervisor.call_tool("alpha", "crash", {"code": 5})
        for _ in range(100):
            if not supervisor.is_ready("alpha"):
                break
            await asyncio.sleep(0.05)

        assert not supervisor.is_ready("alpha")
        assert supervisor.failures["alpha"].exit_code == 5
        with pytest.raises(ToolServerUnavailable):
            await supervisor.call_tool("alpha", "echo", {})
    finally:
        await supervisor.shutdown()
