"""CLI handlers for conversation commands."""

from __future__ import annotations

import json

import click

from chatbridge.commands._helpers import _run, call, echo_result, get_client

TEMPLATES = ["debate", "story", "qa", "brainstorm"]


@click.group("conversation")
def conversation_group():
    """Start, stop and inspect the conversation."""
    pass


@conversation_group.command("start")
@click.argument("topic", required=False)
@click.option("--template", "-t", type=click.Choice(TEMPLATES), default=None, help="Conversation template")
def conversation_start(topic: str | None, template: str | None):
    """Start the conversation, sending TOPIC to the first participant."""
    params: dict = {}
    if topic is not None:
        params["topic"] = topic
    if template is not None:
        params["template_id"] = template
    echo_result(_run(call("conversation.start", **params)))


@conversation_group.command("stop")
def conversation_stop():
    """Stop the conversation."""
    echo_result(_run(call("conversation.stop")))


@conversation_group.command("continue")
@click.argument("participant_index", type=int)
@click.argument("message")
def conversation_continue(participant_index: int, message: str):
    """Resume at PARTICIPANT_INDEX (0-based) by sending MESSAGE."""
    echo_result(_run(call(
        "conversation.continue", participant_index=participant_index, message=message,
    )))


@conversation_group.command("ask")
@click.argument("participant_index", type=int)
@click.argument("text")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the reply")
def conversation_ask(participant_index: int, text: str, timeout: float | None):
    """One-shot question to a participant, outside the turn cycle."""
    params: dict = {"participant_index": participant_index, "text": text}
    if timeout is not None:
        params["timeout_s"] = timeout
    result = _run(call("conversation.ask", **params))
    if result.get("success"):
        click.echo(result["response"])
    else:
        echo_result(result)


@conversation_group.command("state")
def conversation_state():
    """Show the current session state."""
    echo_result(_run(call("conversation.state")))


@conversation_group.command("history")
@click.option("--clear", is_flag=True, help="Clear the history instead of showing it")
def conversation_history(clear: bool):
    """Show (or clear) the conversation history."""
    if clear:
        echo_result(_run(call("conversation.clear_history")))
        return
    result = _run(call("conversation.history"))
    for entry in result.get("history", []):
        click.echo(f"[{entry['id']}] {entry['role']}: {entry['content']}\n")


@conversation_group.command("config")
@click.argument("updates", nargs=-1)
def conversation_config(updates: tuple[str, ...]):
    """Update conversation settings as KEY=VALUE pairs (no pairs: show them)."""
    if not updates:
        result = _run(call("conversation.state"))
        echo_result(result.get("config", {}))
        return
    parsed: dict = {}
    for item in updates:
        key, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}")
        try:
            parsed[key] = json.loads(value)
        except json.JSONDecodeError:
            parsed[key] = value
    echo_result(_run(call("conversation.update_config", updates=parsed)))


@conversation_group.command("watch")
def conversation_watch():
    """Print every session state change until interrupted."""

    async def _watch():
        client = await get_client()
        try:
            async for snapshot in client.listen():
                turn = snapshot.get("current_turn")
                click.echo(
                    f"active={snapshot.get('active')} turn={turn} "
                    f"history={snapshot.get('history_length')}"
                )
        finally:
            await client.close()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        pass
