"""Server-sent-events binding of the capability provider protocol.

The provider pushes responses over a long-lived ``text/event-stream`` GET;
requests are POSTed to the message endpoint announced by the first
``endpoint`` event, and each POST must be acknowledged with ``Accepted``.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from agentloom.cancellation import CancellationToken
from agentloom.exceptions import AgentLoomError, CapabilityProtocolError, ProtocolConnectionError
from .base import JsonRpcClient

logger = logging.getLogger(__name__)


@dataclass
class ServerEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None
    fields: dict[str, str] = field(default_factory=dict)


class EventStreamParser:
    """Incremental parser of a ``text/event-stream`` body.

    Frames are separated by a blank line; a partial trailing frame is kept
    until the next chunk completes it.
    """

    def __init__(self):
        self._buffer = ""

    def feed(self, chunk: str) -> list[ServerEvent]:
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        events = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = self.parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def parse_frame(frame: str) -> ServerEvent | None:
        event = ServerEvent()
        data_lines = []
        seen = False
        for line in frame.split("\n"):
            if not line or line.startswith(":") or ":" not in line:
                continue
            key, value = line.split(":", 1)
            key, value = key.strip(), value.strip()
            seen = True
            if key == "data":
                data_lines.append(value)
            elif key == "event":
                event.event = value
            elif key == "id":
                event.id = value
            else:
                event.fields[key] = value
        if not seen:
            return None
        event.data = "\n".join(data_lines)
        return event


class SseCapabilityClient(JsonRpcClient):
    def __init__(
            self,
            url: str,
            *,
            client_name: str = "agentloom",
            headers: dict[str, str] | None = None,
            connect_timeout: float = 15.0,
            request_timeout: float = 60.0,
            heartbeat_interval: float = 10.0,
            reconnect_delay: float = 0.5,
            http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client_name=client_name, request_timeout=request_timeout)
        self.url = url
        self.headers = headers or {}
        self.connect_timeout = connect_timeout
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self._http = http_client
        self._owns_http = http_client is None
        self._endpoint: str | None = None
        self._ready = asyncio.Event()
        self._connect_lock = asyncio.Lock()
        self._connect_error: Exception | None = None
        self._streaming = False
        self._closing = False
        self._reconnect_pending = False
        self._stream_task: asyncio.Task | None = None
        self._init_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    def is_connected(self) -> bool:
        return self._streaming and self._endpoint is not None and self._ready.is_set() and self._connect_error is None

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.request_timeout, read=None))
            self._owns_http = True
        return self._http

    async def connect(self, cancel: CancellationToken | None = None) -> None:
        async with self._connect_lock:
            # Sibling agents share the client; the first one to get the lock connects
            if self.is_connected():
                return
            await self._connect(cancel)

    async def _connect(self, cancel: CancellationToken | None):
        logger.info("Connecting to capability provider %s", self.url)
        await self._stop_stream()
        self._closing = False
        self._endpoint = None
        self._connect_error = None
        ready = self._ready = asyncio.Event()
        stream_task = self._stream_task = asyncio.create_task(self._read_stream(ready))

        waiter = asyncio.wait_for(ready.wait(), self.connect_timeout)
        try:
            await (cancel.run(waiter) if cancel is not None else waiter)
        except asyncio.TimeoutError as e:
            await self._abandon(stream_task)
            raise ProtocolConnectionError(f"Timed out connecting to {self.url}") from e
        except BaseException:
            await self._abandon(stream_task)
            raise
        if self._connect_error is not None:
            error = self._connect_error
            await self._abandon(stream_task)
            if isinstance(error, AgentLoomError):
                raise error
            raise ProtocolConnectionError(f"Failed to connect to {self.url}: {error}") from error
        if self._stream_task is not stream_task or not self.is_connected():
            raise ProtocolConnectionError(f"Connection to {self.url} closed while connecting")

        self._reconnect_pending = False
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        logger.info("Capability provider %s connected, endpoint %s", self.url, self._endpoint)

    async def _read_stream(self, ready: asyncio.Event):
        parser = EventStreamParser()
        headers = {"Content-Type": "text/event-stream", "Cache-Control": "no-cache", **self.headers}
        try:
            async with self._get_http().stream("GET", self.url, headers=headers) as response:
                response.raise_for_status()
                self._streaming = True
                async for chunk in response.aiter_text():
                    for event in parser.feed(chunk):
                        self._on_event(event, ready)
            error: Exception = ProtocolConnectionError(f"Event stream of {self.url} closed")
        except asyncio.CancelledError:
            # Release a connect still waiting on this stream
            ready.set()
            raise
        except Exception as e:
            logger.error("Event stream of %s failed: %s", self.url, e)
            error = ProtocolConnectionError(f"Event stream of {self.url} failed: {e}")
        finally:
            self._streaming = False

        self._fail_pending(error)
        if not ready.is_set():
            self._connect_error = error
            ready.set()
        elif not self._closing:
            self._schedule_reconnect()

    def _on_event(self, event: ServerEvent, ready: asyncio.Event):
        if event.event == "endpoint":
            self._endpoint = str(httpx.URL(self.url).join(event.data))
            self._init_task = asyncio.create_task(self._handshake(ready))
        elif event.event == "message":
            try:
                message = json.loads(event.data)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed provider message: %s", event.data[:200])
                return
            if isinstance(message, dict):
                self._handle_message(message)
        else:
            logger.debug("Ignoring event %s", event.event)

    async def _handshake(self, ready: asyncio.Event):
        try:
            await self._initialize()
        except AgentLoomError as e:
            self._connect_error = e
        finally:
            ready.set()

    async def _send(self, message: dict[str, Any]) -> None:
        if self._endpoint is None:
            raise ProtocolConnectionError(f"Capability provider {self.url} has not announced an endpoint")
        method = message.get("method", "response")
        try:
            response = await self._get_http().post(
                self._endpoint,
                content=json.dumps(message, ensure_ascii=False),
                headers={"Content-Type": "application/json", **self.headers},
            )
        except httpx.HTTPError as e:
            raise ProtocolConnectionError(f"MCP {method} request failed: {e}") from e
        body = response.text
        if body != "Accepted":
            raise CapabilityProtocolError(method, body)

    async def _heartbeat(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._request("ping", {})
            except AgentLoomError as e:
                logger.warning("Heartbeat to %s failed: %s", self.url, e)

    def _schedule_reconnect(self):
        if self._reconnect_pending:
            logger.error("Capability provider %s is unreachable, giving up", self.url)
            return
        self._reconnect_pending = True
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self):
        await asyncio.sleep(self.reconnect_delay)
        logger.info("Reconnecting to capability provider %s", self.url)
        try:
            await self.connect()
        except AgentLoomError as e:
            logger.error("Reconnecting to %s failed: %s", self.url, e)

    async def _abandon(self, stream_task: asyncio.Task):
        """Tear down a stream started by a failed connect, leaving any newer stream alone."""
        if self._stream_task is stream_task:
            await self._stop_stream()
        elif not stream_task.done():
            stream_task.cancel()
            await asyncio.gather(stream_task, return_exceptions=True)

    async def _stop_stream(self):
        current = asyncio.current_task()
        tasks = [
            task for task in (self._heartbeat_task, self._init_task, self._stream_task, self._reconnect_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._heartbeat_task = self._init_task = self._stream_task = None
        if self._reconnect_task is not current:
            self._reconnect_task = None
        self._streaming = False

    async def close(self) -> None:
        self._closing = True
        if self.is_connected():
            try:
                await self.notify("notifications/cancelled", {
                    "requestId": str(uuid.uuid4()),
                    "reason": "User requested cancellation",
                })
            except AgentLoomError as e:
                logger.warning("Failed to notify %s of cancellation: %s", self.url, e)
        await self._stop_stream()
        self._fail_pending(ProtocolConnectionError(f"Connection to {self.url} closed"))
        self._endpoint = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
        logger.info("Capability provider %s closed", self.url)
