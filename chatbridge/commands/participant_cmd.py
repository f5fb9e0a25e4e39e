"""CLI handlers for participant slot commands."""

from __future__ import annotations

import click

from chatbridge.commands._helpers import _run, call, echo_result


@click.group("participant")
def participant_group():
    """Manage conversation slots."""
    pass


@participant_group.command("assign")
@click.argument("tab_handle")
@click.argument("slot_order", type=int)
def participant_assign(tab_handle: str, slot_order: int):
    """Bind pooled agent TAB_HANDLE to SLOT_ORDER (1-based)."""
    echo_result(_run(call("participant.assign", tab_handle=tab_handle, slot_order=slot_order)))


@participant_group.command("release")
@click.argument("slot_order", type=int)
def participant_release(slot_order: int):
    """Remove SLOT_ORDER, returning its agent to the pool."""
    echo_result(_run(call("participant.release", slot_order=slot_order)))


@participant_group.command("add-slot")
@click.option("--at", "slot_order", type=int, default=None, help="Insert at this slot (default: end)")
def participant_add_slot(slot_order: int | None):
    """Add an empty slot."""
    params = {"slot_order": slot_order} if slot_order is not None else {}
    echo_result(_run(call("participant.add_slot", **params)))


@participant_group.command("reorder")
@click.argument("from_slot", type=int)
@click.argument("to_slot", type=int)
def participant_reorder(from_slot: int, to_slot: int):
    """Move the participant at FROM_SLOT to TO_SLOT."""
    echo_result(_run(call("participant.reorder", from_slot=from_slot, to_slot=to_slot)))


@participant_group.command("list")
def participant_list():
    """List slots and pooled agents."""
    result = _run(call("agent.list"))
    click.echo("Participants:")
    for p in result.get("participants", []):
        tab = p.get("tab_handle") or "(empty)"
        click.echo(f"  {p['slot_order']}. {p['display_role']}: {tab} {p.get('platform_id') or ''}")
    click.echo("Pool:")
    for a in result.get("pool", []):
        click.echo(f"  {a['tab_handle']} {a['platform_id']} {a.get('title', '')}")
