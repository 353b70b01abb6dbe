"""Capability provider client contract and the JSON-RPC core shared by its bindings.

Bindings implement the transport (``_send`` plus whatever reads incoming
frames and hands them to ``_handle_message``); request id generation,
response correlation, cancellation and error conversion live here.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

from agentloom.cancellation import CancellationToken
from agentloom.capability.types import CapabilityDescriptor, CapabilityResult, validate_capability_result
from agentloom.exceptions import AgentLoomError, CapabilityProtocolError, ProtocolConnectionError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
_CONTENT_TYPES = ("text", "image")


class CapabilityProviderClient(ABC):
    """Client of an out-of-process capability provider"""

    @abstractmethod
    async def connect(self, cancel: CancellationToken | None = None) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def list_capabilities(
            self,
            filter: dict[str, Any] | None = None,
            cancel: CancellationToken | None = None,
    ) -> list[CapabilityDescriptor]:
        pass

    @abstractmethod
    async def invoke(
            self,
            name: str,
            arguments: dict[str, Any],
            cancel: CancellationToken | None = None,
            ext_info: dict[str, Any] | None = None,
    ) -> CapabilityResult:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def __aenter__(self) -> 'CapabilityProviderClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def check_response(method: str, message: dict[str, Any]) -> Any:
    """Return the ``result`` of a JSON-RPC response, raising on protocol or capability errors."""
    error = message.get("error")
    if error:
        if isinstance(error, str):
            detail = error
        elif isinstance(error, dict) and error.get("message"):
            detail = str(error["message"])
        else:
            detail = json.dumps(error, ensure_ascii=False)
        logger.error("MCP %s error: %s", method, detail)
        raise CapabilityProtocolError(method, detail)
    result = message.get("result")
    if isinstance(result, dict) and result.get("isError") is True:
        content = result.get("content")
        if isinstance(content, str):
            detail = content
        elif isinstance(content, list) and content and isinstance(content[0], dict) and "text" in content[0]:
            detail = str(content[0]["text"])
        else:
            detail = json.dumps(result, ensure_ascii=False)
        raise CapabilityProtocolError(method, detail)
    return result


class JsonRpcClient(CapabilityProviderClient, ABC):
    def __init__(self, client_name: str = "agentloom", request_timeout: float = 60.0):
        self.client_name = client_name
        self.request_timeout = request_timeout
        self._pending: dict[str, asyncio.Future] = {}

    @abstractmethod
    async def _send(self, message: dict[str, Any]) -> None:
        """Write one JSON-RPC message to the transport."""
        pass

    def _handle_message(self, message: dict[str, Any]):
        message_id = message.get("id")
        if message_id is not None and ("result" in message or "error" in message):
            future = self._pending.get(str(message_id))
            if future is not None and not future.done():
                future.set_result(message)
            else:
                logger.debug("Dropping response to unknown request %s", message_id)
        elif message.get("method") == "ping" and message_id is not None:
            asyncio.ensure_future(self._reply_ping(message_id))
        else:
            logger.debug("Ignoring provider message: %s", message.get("method"))

    async def _reply_ping(self, message_id: Any):
        try:
            await self._send({"jsonrpc": "2.0", "id": message_id, "result": {}})
        except ProtocolConnectionError as e:
            logger.warning("Failed to answer provider ping: %s", e)

    def _fail_pending(self, error: Exception):
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _request(self, method: str, params: dict[str, Any], cancel: CancellationToken | None = None) -> Any:
        request_id = str(uuid.uuid4())
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        logger.debug("MCP %s %s %s", method, request_id, params)
        try:
            await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            waiter = asyncio.wait_for(future, self.request_timeout)
            message = await (cancel.run(waiter) if cancel is not None else waiter)
        except asyncio.TimeoutError as e:
            raise CapabilityProtocolError(method, f"no response within {self.request_timeout}s") from e
        finally:
            self._pending.pop(request_id, None)
        return check_response(method, message)

    async def notify(self, method: str, params: dict[str, Any] | None = None):
        await self._send({"jsonrpc": "2.0", "method": method, "params": params or {}})

    async def request(self, method: str, params: dict[str, Any], cancel: CancellationToken | None = None) -> Any:
        if not self.is_connected():
            await self.connect(cancel)
        return await self._request(method, params, cancel)

    async def _initialize(self, cancel: CancellationToken | None = None):
        await self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": True}, "sampling": {}},
            "clientInfo": {"name": self.client_name, "version": "1.0.0"},
        }, cancel)
        try:
            await self.notify("notifications/initialized")
        except AgentLoomError as e:
            logger.error("MCP notifications/initialized failed: %s", e)

    async def list_capabilities(
            self,
            filter: dict[str, Any] | None = None,
            cancel: CancellationToken | None = None,
    ) -> list[CapabilityDescriptor]:
        result = await self.request("tools/list", dict(filter or {}), cancel)
        tools = (result or {}).get("tools") or []
        return [CapabilityDescriptor.model_validate(tool) for tool in tools]

    async def invoke(
            self,
            name: str,
            arguments: dict[str, Any],
            cancel: CancellationToken | None = None,
            ext_info: dict[str, Any] | None = None,
    ) -> CapabilityResult:
        params: dict[str, Any] = {"name": name, "arguments": arguments}
        if ext_info:
            params["extInfo"] = ext_info
        result = await self.request("tools/call", params, cancel) or {}
        content = [part for part in result.get("content") or [] if part.get("type") in _CONTENT_TYPES]
        return validate_capability_result({**result, "content": content})
