"""Spawns, health-checks, and tears down tool-provider worker processes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any

from rag_engine.config import ToolServerConfig
from rag_engine.errors import (
    ToolExitedError,
    ToolProcessError,
    ToolServerUnavailable,
    ToolSpawnError,
    ToolStartupTimeout,
)
from rag_engine.tools.channel import RpcChannel
from rag_engine.types import ToolTrace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolServer:
    """Runtime state of one supervised worker."""

    name: str
    config: ToolServerConfig
    process: asyncio.subprocess.Process
    ready: bool = False
    channel: RpcChannel | None = None
    ready_event: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: list[asyncio.Task[Any]] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.returncode is None


class ToolServerSupervisor:
    """Owns every tool-provider process and its RPC channel.

    Servers are started independently: one that fails to spawn, exits early,
    or never announces readiness is recorded in `failures` and does not
    affect the others.
    """

    def __init__(self, configs: Sequence[ToolServerConfig] = ()) -> None:
        self.configs = list(configs)
        self.failures: dict[str, ToolProcessError] = {}
        self._servers: dict[str, ToolServer] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each completed tool call."""
        self._observer = observer

    async def start(self) -> dict[str, ToolProcessError | None]:
        """Start every configured server concurrently; never raises."""

        logger.info("Starting %d tool server(s)", len(self.configs))
        outcomes = await asyncio.gather(
            *(self.start_server(config) for config in self.configs),
            return_exceptions=True,
        )
        results: dict[str, ToolProcessError | None] = {}
        for config, outcome in zip(self.configs, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                error = (
                    outcome
                    if isinstance(outcome, ToolProcessError)
                    else ToolProcessError(config.name, str(outcome))
                )
                self.failures[config.name] = error
                results[config.name] = error
                logger.warning("Failed to start %s: %s", config.name, error)
            else:
                self.failures.pop(config.name, None)
                results[config.name] = None
        return results

    async def start_server(self, config: ToolServerConfig) -> ToolServer:
        """Spawn one worker and wait for exactly one startup outcome.

        Outcomes: a readiness marker on stderr (ready), a spawn failure, an
        exit before readiness, or the startup timeout (process terminated).
        """

        if config.name in self._servers:
            raise ToolProcessError(config.name, f"{config.name} is already running")

        env = {**os.environ, **config.env}
        try:
            process = await asyncio.create_subprocess_exec(
                config.command,
                *config.args,
                cwd=config.cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Error spawning %s: %s", config.name, exc)
            raise ToolSpawnError(config.name, f"Could not spawn {config.name}: {exc}") from exc

        server = ToolServer(name=config.name, config=config, process=process)
        logger.info("Starting %s (pid %s)...", config.name, process.pid)
        server.tasks.append(
            asyncio.create_task(self._pump_diagnostics(server), name=f"stderr-{config.name}")
        )

        ready_waiter = asyncio.create_task(server.ready_event.wait())
        exit_waiter = asyncio.create_task(process.wait())
        try:
            done, _ = await asyncio.wait(
                {ready_waiter, exit_waiter},
                timeout=config.startup_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in (ready_waiter, exit_waiter):
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(ready_waiter, exit_waiter, return_exceptions=True)

        if server.ready_event.is_set() and process.returncode is None:
            return self._activate(server)

        if exit_waiter in done or process.returncode is not None:
            await self._terminate(server)
            message = f"{config.name} exited prematurely with code {process.returncode}"
            logger.error(message)
            raise ToolExitedError(config.name, message, exit_code=process.returncode)

        await self._terminate(server)
        raise ToolStartupTimeout(
            config.name,
            f"{config.name} failed to start within {config.startup_timeout}s",
        )

    def _activate(self, server: ToolServer) -> ToolServer:
        assert server.process.stdout is not None and server.process.stdin is not None
        server.channel = RpcChannel(
            server.name,
            server.process.stdout,
            server.process.stdin,
            call_timeout=server.config.call_timeout,
        )
        server.channel.start()
        server.ready = True
        self._servers[server.name] = server
        server.tasks.append(
            asyncio.create_task(self._watch_exit(server), name=f"exit-{server.name}")
        )
        logger.info("%s is ready", server.name)
        return server

    async def _pump_diagnostics(self, server: ToolServer) -> None:
        stream = server.process.stderr
        if stream is None:
            return
        markers = server.config.ready_markers
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning("[%s]: dropped oversized diagnostic line", server.name)
                continue
            if not line:
                return
            message = line.decode("utf-8", errors="replace").rstrip()
            if not server.ready_event.is_set():
                logger.info("[%s]: %s", server.name, message)
                if any(marker in message for marker in markers):
                    server.ready_event.set()
            else:
                logger.debug("[%s]: %s", server.name, message)

    async def _watch_exit(self, server: ToolServer) -> None:
        code = await server.process.wait()
        if self._servers.get(server.name) is not server:
            return
        logger.warning("%s exited unexpectedly with code %s", server.name, code)
        server.ready = False
        self._servers.pop(server.name, None)
        self.failures[server.name] = ToolExitedError(
            server.name, f"{server.name} exited with code {code}", exit_code=code
        )
        if server.channel is not None:
            await server.channel.close()
        if server.process.stdin is not None:
            server.process.stdin.close()

    def get(self, name: str) -> ToolServer:
        server = self._servers.get(name)
        if server is None:
            raise ToolServerUnavailable(name, f"Server {name} not found")
        if not server.ready or server.channel is None:
            raise ToolServerUnavailable(name, f"Server {name} not ready")
        return server

    def is_ready(self, name: str) -> bool:
        server = self._servers.get(name)
        return server is not None and server.ready

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        server = self.get(server_name)
        assert server.channel is not None
        payload = dict(arguments or {})
        logger.info("Calling %s:%s", server_name, tool_name)
        start = perf_counter()
        result = await server.channel.call_tool(tool_name, payload, timeout=timeout)
        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=f"{server_name}:{tool_name}",
                    input_payload=payload,
                    output_preview=str(result)[:320],
                    latency_ms=(perf_counter() - start) * 1000.0,
                )
            )
        return result

    async def list_tools(self, server_name: str, *, timeout: float | None = None) -> Any:
        server = self.get(server_name)
        assert server.channel is not None
        return await server.channel.list_tools(timeout=timeout)

    def status(self) -> dict[str, dict[str, Any]]:
        status: dict[str, dict[str, Any]] = {
            name: {"ready": server.ready, "pid": server.pid, "running": server.running}
            for name, server in self._servers.items()
        }
        for name, error in self.failures.items():
            status.setdefault(name, {"ready": False, "pid": None, "running": False})
            status[name]["error"] = str(error)
        return status

    async def shutdown(self) -> None:
        """Terminate every worker and clear the process table; idempotent."""

        if not self._servers:
            return
        logger.info("Shutting down %d tool server(s)...", len(self._servers))
        servers = list(self._servers.values())
        self._servers.clear()
        for server in servers:
            server.ready = False
            try:
                await self._terminate(server)
                logger.info("Stopped %s", server.name)
            except Exception as exc:
                logger.error("Error stopping %s: %s", server.name, exc)

    async def _terminate(self, server: ToolServer) -> None:
        if server.channel is not None:
            await server.channel.close()
        process = server.process
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), server.config.shutdown_grace)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        if process.stdin is not None:
            process.stdin.close()
        await self._cancel_tasks(server)

    @staticmethod
    async def _cancel_tasks(server: ToolServer) -> None:
        current = asyncio.current_task()
        tasks = [task for task in server.tasks if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        server.tasks.clear()
