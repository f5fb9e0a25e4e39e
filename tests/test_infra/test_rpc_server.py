"""End-to-end tests for the Unix socket RPC server and client."""

import asyncio
from types import SimpleNamespace

import pytest

from chatbridge.config import AppConfig
from chatbridge.infra.rpc.client import RpcClient, RpcError
from chatbridge.infra.rpc.server import RpcServer


@pytest.fixture
def app_ctx(controller, host, events, learner):
    return SimpleNamespace(
        controller=controller,
        host=host,
        event_repo=events,
        learner=learner,
        config=AppConfig(),
    )


@pytest.fixture
def socket_path(tmp_path):
    return str(tmp_path / "rpc.sock")


class TestRpcServer:
    @pytest.mark.asyncio
    async def test_ping_and_state(self, app_ctx, socket_path):
        server = RpcServer(app_ctx, socket_path)
        await server.start()
        client = RpcClient(socket_path)
        try:
            assert await client.call("server.ping") == "pong"
            state = await client.call("conversation.state")
            assert state["success"] is True
            assert state["active"] is False
        finally:
            await client.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_errors(self, app_ctx, socket_path):
        server = RpcServer(app_ctx, socket_path)
        await server.start()
        client = RpcClient(socket_path)
        try:
            with pytest.raises(RpcError) as exc:
                await client.call("no.such.method")
            assert exc.value.code == -32601
            with pytest.raises(RpcError):
                await client.call("participant.assign", tab_handle="t1")
            result = await client.call("participant.assign", tab_handle="t1", slot_order=1)
            assert result["success"] is False
        finally:
            await client.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_subscribe_pushes_state(self, app_ctx, socket_path, controller, host):
        server = RpcServer(app_ctx, socket_path)
        await server.start()
        client = RpcClient(socket_path)
        stream = client.listen()
        try:
            initial = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
            assert initial["pool"] == []

            host.add_tab("a")
            await controller.register_agent("a", "chatgpt", "A")
            pushed = await asyncio.wait_for(stream.__anext__(), timeout=2.0)
            assert pushed["pool"][0]["tab_handle"] == "a"
            assert isinstance(pushed["pool"][0]["registered_at"], str)
        finally:
            await stream.aclose()
            await client.close()
            await server.stop()
