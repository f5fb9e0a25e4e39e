"""Asyncio Unix socket JSON-RPC server with state-change subscriptions."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from chatbridge.infra.rpc.methods import MethodRegistry
from chatbridge.infra.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode,
    encode,
    make_error,
    state_notification,
)
from chatbridge.infra.rpc.serialization import jsonable

if TYPE_CHECKING:
    from chatbridge.context import AppContext

logger = logging.getLogger(__name__)

SUBSCRIBE_METHOD = "conversation.subscribe"


class _Connection:
    """One client stream; writes are serialized so pushes never interleave replies."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self.writer = writer
        self._lock = asyncio.Lock()

    async def send(self, msg: JsonRpcMessage) -> None:
        async with self._lock:
            self.writer.write(encode(msg))
            await self.writer.drain()

    async def push_state(self, snapshot: dict) -> None:
        await self.send(state_notification(jsonable(snapshot)))


class RpcServer:
    """Asyncio Unix domain socket JSON-RPC 2.0 server."""

    def __init__(self, ctx: AppContext, socket_path: str) -> None:
        self._ctx = ctx
        self._socket_path = socket_path
        self._registry = MethodRegistry(ctx)
        self._server: asyncio.Server | None = None

    @property
    def socket_path(self) -> str:
        return self._socket_path

    async def start(self) -> None:
        """Start listening on the Unix socket."""
        try:
            os.unlink(self._socket_path)
        except FileNotFoundError:
            pass

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=self._socket_path,
        )
        os.chmod(self._socket_path, 0o600)
        logger.info("RPC server listening on %s", self._socket_path)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        try:
            os.unlink(self._socket_path)
        except FileNotFoundError:
            pass
        logger.info("RPC server stopped")

    async def _dispatch(self, msg: JsonRpcRequest, conn: _Connection) -> JsonRpcResponse:
        if msg.method == SUBSCRIBE_METHOD:
            self._ctx.controller.add_listener(conn.push_state)
            return JsonRpcResponse(id=msg.id, result=jsonable(await self._ctx.controller.get_state()))

        if not self._registry.has_method(msg.method):
            return make_error(msg.id, METHOD_NOT_FOUND, f"Method not found: {msg.method}")

        try:
            result = await self._registry.dispatch(msg.method, msg.params)
        except Exception as e:
            logger.exception("Error dispatching %s", msg.method)
            return make_error(msg.id, INTERNAL_ERROR, str(e))
        return JsonRpcResponse(id=msg.id, result=result)

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Read JSON lines, dispatch, write responses until the client hangs up."""
        conn = _Connection(writer)
        logger.debug("Client connected")

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break

                try:
                    msg = decode(line)
                except ValueError:
                    await conn.send(make_error(0, PARSE_ERROR, "Parse error"))
                    continue

                if isinstance(msg, JsonRpcNotification):
                    continue

                if not isinstance(msg, JsonRpcRequest):
                    await conn.send(make_error(0, INVALID_REQUEST, "Invalid request"))
                    continue

                await conn.send(await self._dispatch(msg, conn))

        except asyncio.CancelledError:
            pass
        except ConnectionResetError:
            logger.debug("Client reset connection")
        except Exception:
            logger.exception("Error handling client")
        finally:
            self._ctx.controller.remove_listener(conn.push_state)
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.debug("Client disconnected")
