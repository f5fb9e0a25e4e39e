"""CLI handlers for config commands."""

from __future__ import annotations

import json

import click

from chatbridge.config import DEFAULT_CONFIG_PATH, init_config, load_config


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
def config_init():
    """Create default configuration file."""
    path = init_config()
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
def config_show():
    """Show current configuration."""
    config = load_config()
    conv = config.conversation
    orch = config.orchestrator
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  MongoDB: {config.mongodb.uri}/{config.mongodb.database}")
    click.echo(f"  Activation mode: {conv.activation_mode.value}")
    click.echo(f"  Auto-reply delay: {conv.auto_reply_delay_ms}ms, max turns: {conv.max_turns}")
    click.echo(f"  Context window: {conv.context_window_size} messages")
    click.echo(
        f"  Hybrid timings: activation={conv.hybrid_activation_ms}ms "
        f"check={conv.hybrid_check_interval_ms}ms initial={conv.hybrid_initial_delay_ms}ms"
    )
    click.echo(
        f"  Tab message timeout: {orch.message_timeout_s}s, poll ceiling: {orch.poll_ceiling_ms}ms"
    )
    click.echo(f"  Browser: {'headless' if config.browser.headless else 'headed'}")
    click.echo(f"  Server socket: {config.server.resolved_socket_path}")
    click.echo(f"  Server PID file: {config.server.resolved_pid_file}")

    click.echo("\n  Platforms:")
    for name, platform in config.platforms.items():
        click.echo(f"    {name}: {', '.join(platform.host_patterns)}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    Key uses dot notation, e.g. conversation.max_turns, browser.headless,
    platforms.chatgpt.input_selectors
    """
    import tomli_w

    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    path = DEFAULT_CONFIG_PATH
    if not path.exists():
        click.echo("No config file found. Run 'chatbridge config init' first.", err=True)
        return

    with open(path, "rb") as f:
        data = tomllib.load(f)

    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})

    final_key = parts[-1]
    if value.lower() in ("true", "false"):
        target[final_key] = value.lower() == "true"
    elif value.isdigit():
        target[final_key] = int(value)
    elif value.startswith(("[", "{")):
        try:
            target[final_key] = json.loads(value)
        except json.JSONDecodeError:
            target[final_key] = value
    else:
        target[final_key] = value

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")
