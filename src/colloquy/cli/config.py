"""
Configuration commands: agents, parameter validation and housekeeping.
"""

from pathlib import Path

import click

from colloquy.cli.utils import get_config
from colloquy.config.app import default_config_path, generate_default_config
from colloquy.dispatch.store import QueryStore
from colloquy.errors import UnknownProviderError
from colloquy.llm import family_for
from colloquy.llm.params import validate_model


@click.command("agents")
@click.option("--all", "show_all", is_flag=True, help="Include disabled agents")
@click.pass_context
def agents_cmd(ctx: click.Context, show_all: bool) -> None:
    """List configured agents."""
    config = get_config(ctx)
    agents = config.agents if show_all else config.get_enabled_agents()
    if not agents:
        click.echo("No agents configured.")
        return

    try:
        default: str | None = config.get_agent().name
    except ValueError:
        default = None
    for agent in agents:
        model = agent.model if isinstance(agent.model, str) else agent.model["model"]
        marker = "*" if agent.name == default else " "
        state = " (disabled)" if agent.disable else ""
        click.echo(f"{marker} {agent.name}: {agent.provider}/{model}{state}")


@click.command("validate")
@click.pass_context
def validate_cmd(ctx: click.Context) -> None:
    """Check every enabled agent's model parameters against its provider."""
    config = get_config(ctx)
    failed = False
    for agent in config.get_enabled_agents():
        try:
            settings = config.get_provider(agent.provider)
        except UnknownProviderError as e:
            click.echo(f"{agent.name}: error: {e}")
            failed = True
            continue

        family = family_for(settings.to_provider_config(agent.provider))
        report = validate_model(agent.provider, agent.model, family)
        for warning in report.warnings:
            click.echo(f"{agent.name}: warning: {warning}")
        for error in report.errors:
            click.echo(f"{agent.name}: error: {error}")
        failed = failed or not report.ok

    if failed:
        raise click.ClickException("Configuration has invalid agents")
    click.echo("All agents valid.")


@click.command("prune")
@click.pass_context
def prune_cmd(ctx: click.Context) -> None:
    """Remove old request payload files."""
    dispatch = get_config(ctx).dispatch
    store = QueryStore(dispatch.query_dir, dispatch.max_query_files, dispatch.keep_query_files)
    removed = store.prune()
    click.echo(f"Removed {removed} payload files from {store.query_dir}")


@click.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init_cmd(ctx: click.Context, force: bool) -> None:
    """Write a default config file."""
    path = ctx.obj.get("config_path") or str(default_config_path())
    if Path(path).expanduser().exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    generate_default_config(path)
    click.echo(f"Wrote default configuration to {path}")
