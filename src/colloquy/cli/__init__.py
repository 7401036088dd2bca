"""
Colloquy CLI entry point.
"""

import click

from colloquy.config.app import load_config

from .chat import messages_cmd, parse_cmd, payload_cmd, respond_cmd
from .config import agents_cmd, init_cmd, prune_cmd, validate_cmd
from .utils import setup_logging


@click.group()
@click.option(
    "--config",
    type=click.Path(dir_okay=False),
    help="Path to custom configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Colloquy - chat with LLMs inside plain-text documents."""
    # Store config in context for subcommands
    ctx.ensure_object(dict)
    try:
        loaded = load_config(config)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(verbose, loaded.logging)
    ctx.obj["config"] = loaded
    ctx.obj["config_path"] = config


# Register commands
cli.add_command(parse_cmd)
cli.add_command(messages_cmd)
cli.add_command(payload_cmd)
cli.add_command(respond_cmd)
cli.add_command(agents_cmd)
cli.add_command(validate_cmd)
cli.add_command(prune_cmd)
cli.add_command(init_cmd)
