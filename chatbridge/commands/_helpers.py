"""CLI helpers for connecting to the RPC server and printing results."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click

from chatbridge.config import load_config


def _run(coro):
    """Run an async function from sync context."""
    return asyncio.run(coro)


def get_socket_path() -> str:
    return load_config().server.resolved_socket_path


def get_pid_path() -> str:
    return load_config().server.resolved_pid_file


async def get_client():
    """Create and connect an RpcClient. Exits if the server is not running."""
    from chatbridge.infra.rpc.client import RpcClient

    client = RpcClient(get_socket_path())
    try:
        await client.connect()
    except (ConnectionRefusedError, FileNotFoundError, OSError) as e:
        raise SystemExit("Server not running. Start with: chatbridge server start") from e
    return client


async def call(method: str, **params: Any) -> Any:
    """One RPC round trip on a fresh connection."""
    from chatbridge.infra.rpc.client import RpcError

    client = await get_client()
    try:
        return await client.call(method, **params)
    except RpcError as e:
        raise click.ClickException(str(e)) from e
    finally:
        await client.close()


def echo_result(result: Any) -> None:
    """Print a controller result; failures go to stderr with a non-zero exit."""
    if isinstance(result, dict) and result.get("success") is False:
        raise click.ClickException(result.get("error", "Operation failed"))
    click.echo(json.dumps(result, indent=2, default=str))
