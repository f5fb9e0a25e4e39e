"""CLI handlers for server commands: start, stop, status."""

from __future__ import annotations

import asyncio
import os
import signal

import click

from chatbridge.commands._helpers import _run, get_pid_path, get_socket_path


@click.group("server")
def server_group():
    """Manage the orchestrator server (browser + RPC socket)."""
    pass


@server_group.command("start")
@click.option("--headless", is_flag=True, default=None, help="Run the browser headless")
def server_start(headless: bool | None):
    """Start the browser, restore the session and serve RPC in the foreground."""

    async def _start():
        from chatbridge.context import AppContext
        from chatbridge.infra.rpc.server import RpcServer

        socket_path = get_socket_path()
        pid_path = get_pid_path()

        with open(pid_path, "w") as f:
            f.write(str(os.getpid()))

        ctx = AppContext()
        if headless is not None:
            ctx.config.browser.headless = headless
        rpc_server: RpcServer | None = None
        try:
            click.echo(f"Initializing server (pid={os.getpid()})...")
            await ctx.initialize()
            click.echo("MongoDB connected")

            await ctx.host.start()
            click.echo("Browser started")

            await ctx.controller.load()
            session = ctx.controller.session
            click.echo(
                f"Session restored: active={session.active}, "
                f"participants={len(session.filled_participants)}"
            )

            rpc_server = RpcServer(ctx, socket_path)
            await rpc_server.start()
            click.echo(f"RPC server listening on {socket_path}")
            click.echo("Server ready")

            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(signum, stop_event.set)

            await stop_event.wait()
            click.echo("\nShutting down...")

        finally:
            if rpc_server is not None:
                await rpc_server.stop()
            await ctx.close()
            try:
                os.unlink(pid_path)
            except FileNotFoundError:
                pass
            click.echo("Server stopped")

    _run(_start())


@server_group.command("stop")
def server_stop():
    """Stop the running server."""
    pid_path = get_pid_path()

    try:
        with open(pid_path) as f:
            pid = int(f.read().strip())
    except FileNotFoundError:
        click.echo("Server not running (no PID file found)")
        return
    except ValueError:
        click.echo("Invalid PID file", err=True)
        return

    try:
        os.kill(pid, signal.SIGTERM)
        click.echo(f"Sent SIGTERM to server (pid={pid})")
    except ProcessLookupError:
        click.echo("Server process not found (stale PID file)")
        try:
            os.unlink(pid_path)
        except FileNotFoundError:
            pass


@server_group.command("status")
def server_status():
    """Check if the server is running."""

    async def _status():
        from chatbridge.infra.rpc.client import RpcClient

        client = RpcClient(get_socket_path())
        try:
            await client.connect()
            result = await client.call("server.status")
            click.echo("Server: running")
            for key, value in result.items():
                click.echo(f"  {key}: {value}")
        except (ConnectionRefusedError, FileNotFoundError, OSError):
            click.echo("Server: not running")
            try:
                with open(get_pid_path()) as f:
                    pid = int(f.read().strip())
                try:
                    os.kill(pid, 0)
                    click.echo(f"  PID {pid} exists but not accepting connections")
                except ProcessLookupError:
                    click.echo(f"  Stale PID file found (pid={pid})")
            except (FileNotFoundError, ValueError):
                pass
        finally:
            await client.close()

    _run(_status())
