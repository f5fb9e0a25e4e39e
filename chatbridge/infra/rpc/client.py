"""Asyncio Unix socket JSON-RPC client."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator
from typing import Any

from chatbridge.infra.rpc.protocol import (
    STATE_NOTIFICATION,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode,
    encode,
)

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """Error response from the server."""

    def __init__(self, code: int | str, message: str) -> None:
        self.code = code
        super().__init__(f"RPC error {code}: {message}")


class RpcClient:
    """Asyncio Unix domain socket JSON-RPC 2.0 client."""

    def __init__(self, socket_path: str) -> None:
        self._socket_path = socket_path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._id_counter = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        self._reader, self._writer = await asyncio.open_unix_connection(self._socket_path)
        logger.debug("Connected to RPC server at %s", self._socket_path)

    async def close(self) -> None:
        if self._writer:
            try:
                self._writer.close()
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._writer = None
            self._reader = None
        logger.debug("RPC client disconnected")

    async def call(self, method: str, **params: Any) -> Any:
        """Send a request and return its result.

        Raises RpcError on error responses. Reconnects once on connection failure.
        """
        async with self._lock:
            try:
                return await self._call_inner(method, params)
            except (ConnectionError, OSError):
                logger.debug("Connection lost, reconnecting...")
                await self.close()
                await self.connect()
                return await self._call_inner(method, params)

    async def _read_message(self):
        assert self._reader is not None
        line = await self._reader.readline()
        if not line:
            raise ConnectionError("Server closed connection")
        return decode(line)

    async def _call_inner(self, method: str, params: dict) -> Any:
        if not self.connected:
            await self.connect()
        assert self._writer is not None

        req_id = next(self._id_counter)
        self._writer.write(encode(JsonRpcRequest(method=method, params=params, id=req_id)))
        await self._writer.drain()

        while True:
            msg = await self._read_message()
            # Subscribed connections may see pushes ahead of the reply.
            if isinstance(msg, JsonRpcNotification):
                continue
            break

        if not isinstance(msg, JsonRpcResponse):
            raise RuntimeError(f"Expected response, got {type(msg).__name__}")
        if msg.is_error:
            error = msg.error or {}
            raise RpcError(error.get("code", "?"), error.get("message", "Unknown error"))
        return msg.result

    async def listen(self) -> AsyncIterator[dict]:
        """Subscribe this connection and yield every state snapshot pushed to it.

        The first item is the snapshot returned by the subscribe call itself.
        """
        initial = await self.call("conversation.subscribe")
        yield initial
        while True:
            msg = await self._read_message()
            if isinstance(msg, JsonRpcNotification) and msg.method == STATE_NOTIFICATION:
                yield msg.params
