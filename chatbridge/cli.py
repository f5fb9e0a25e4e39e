"""Click CLI definitions - main entry point."""

from __future__ import annotations

import logging
import sys

import click

from chatbridge.commands.agent_cmd import agent_group
from chatbridge.commands.config_cmd import config_group
from chatbridge.commands.conversation_cmd import conversation_group
from chatbridge.commands.participant_cmd import participant_group
from chatbridge.commands.server_cmd import server_group


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool) -> None:
    """chatbridge - turn-based conversations between browser chat agents."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


cli.add_command(server_group, "server")
cli.add_command(conversation_group, "conversation")
cli.add_command(participant_group, "participant")
cli.add_command(agent_group, "agent")
cli.add_command(config_group, "config")


if __name__ == "__main__":
    cli()
