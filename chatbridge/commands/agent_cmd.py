"""CLI handlers for agent tabs and the pool."""

from __future__ import annotations

import click

from chatbridge.commands._helpers import _run, call, echo_result


@click.group("agent")
def agent_group():
    """Open agent tabs and manage the pool."""
    pass


@agent_group.command("open")
@click.argument("url")
def agent_open(url: str):
    """Open URL in a new tab; recognised chat sites join the pool."""
    echo_result(_run(call("tab.open", url=url)))


@agent_group.command("remove")
@click.argument("tab_handle")
def agent_remove(tab_handle: str):
    """Drop TAB_HANDLE from the pool."""
    echo_result(_run(call("agent.remove", tab_handle=tab_handle)))


@agent_group.command("check")
@click.argument("tab_handle")
def agent_check(tab_handle: str):
    """Probe whether TAB_HANDLE is ready to receive messages."""
    echo_result(_run(call("agent.check_availability", tab_handle=tab_handle)))


@agent_group.command("status")
@click.argument("tab_handle")
def agent_status(tab_handle: str):
    """Show whether TAB_HANDLE is pooled or in a slot."""
    echo_result(_run(call("agent.check_registration", tab_handle=tab_handle)))


@agent_group.command("events")
@click.option("--limit", "-n", default=20, help="Number of events")
def agent_events(limit: int):
    """Show recent conversation events."""
    events = _run(call("events.list_recent", limit=limit))
    for e in events:
        idx = e["participant_index"]
        who = f"#{idx}" if idx is not None else "-"
        click.echo(f"{e['created_at']}  {e['event_type']:<18} {who:<4} {e['detail']}")
