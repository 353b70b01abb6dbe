"""Child-process binding of the capability provider protocol: newline-delimited JSON over stdin/stdout."""

import asyncio
import json
import logging
import os
from typing import Any

from agentloom.cancellation import CancellationToken
from agentloom.exceptions import ProtocolConnectionError
from .base import JsonRpcClient

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 16 * 1024 * 1024


class StdioCapabilityClient(JsonRpcClient):
    def __init__(
            self,
            command: str,
            args: list[str] | None = None,
            *,
            env: dict[str, str] | None = None,
            cwd: str | None = None,
            client_name: str = "agentloom",
            request_timeout: float = 60.0,
            terminate_timeout: float = 5.0,
    ):
        super().__init__(client_name=client_name, request_timeout=request_timeout)
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.cwd = cwd
        self.terminate_timeout = terminate_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._initialized = False
        self._connect_lock = asyncio.Lock()

    def is_connected(self) -> bool:
        return self._initialized and self._process is not None and self._process.returncode is None

    async def connect(self, cancel: CancellationToken | None = None) -> None:
        async with self._connect_lock:
            if self.is_connected():
                return
            await self._start(cancel)

    async def _start(self, cancel: CancellationToken | None):
        await self.close()
        logger.info("Starting capability provider %s %s", self.command, " ".join(self.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command, *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env} if self.env else None,
                cwd=self.cwd,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            raise ProtocolConnectionError(f"Failed to start {self.command}: {e}") from e
        self._reader_task = asyncio.create_task(self._read_stdout(self._process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))
        try:
            await self._initialize(cancel)
        except BaseException:
            await self.close()
            raise
        self._initialized = True

    async def _read_stdout(self, process: asyncio.subprocess.Process):
        assert process.stdout is not None
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Ignoring non JSON output of %s: %s", self.command, text[:200])
                continue
            if isinstance(message, dict):
                self._handle_message(message)
        self._initialized = False
        self._fail_pending(ProtocolConnectionError(f"Capability provider {self.command} exited"))

    async def _read_stderr(self, process: asyncio.subprocess.Process):
        assert process.stderr is not None
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            logger.debug("[%s] %s", self.command, line.decode("utf-8", errors="replace").rstrip())

    async def _send(self, message: dict[str, Any]) -> None:
        if self._process is None or self._process.stdin is None or self._process.returncode is not None:
            raise ProtocolConnectionError(f"Capability provider {self.command} is not running")
        data = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProtocolConnectionError(f"Capability provider {self.command} closed its input: {e}") from e

    async def close(self) -> None:
        process, self._process = self._process, None
        self._initialized = False
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self.terminate_timeout)
            except asyncio.TimeoutError:
                logger.warning("Capability provider %s did not exit, killing it", self.command)
                process.kill()
                await process.wait()
        tasks = [task for task in (self._reader_task, self._stderr_task) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reader_task = self._stderr_task = None
        self._fail_pending(ProtocolConnectionError(f"Connection to {self.command} closed"))
