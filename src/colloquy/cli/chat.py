"""
Chat document commands: inspect, preview and answer transcripts.
"""

import json
import logging
from dataclasses import asdict

import click

from colloquy.chat.responder import ChatResponder, PreparedRequest, ResubmitDriver
from colloquy.cli.utils import get_config, open_document, run_async
from colloquy.context.files import LocalFileResolver
from colloquy.dispatch.dispatcher import StreamDispatcher
from colloquy.dispatch.events import StreamResult
from colloquy.errors import ColloquyError

logger = logging.getLogger(__name__)


def _responder(ctx: click.Context) -> ChatResponder:
    config = get_config(ctx)
    # file references resolve against the working directory
    return ChatResponder(config, StreamDispatcher.from_config(config), LocalFileResolver())


def _prepare(
    ctx: click.Context, path: str, line: int | None, agent: str | None
) -> PreparedRequest:
    document = open_document(path)
    responder = _responder(ctx)
    try:
        transcript = responder.parse(document)
    except ColloquyError as e:
        raise click.ClickException(str(e)) from e
    index = responder.target_for(transcript, line)
    if index is None:
        raise click.ClickException(f"No question found in {path}")
    try:
        return responder.prepare(transcript, index, agent)
    except (ColloquyError, ValueError) as e:
        raise click.ClickException(str(e)) from e


@click.command("parse")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_context
def parse_cmd(ctx: click.Context, path: str, json_format: bool) -> None:
    """Show the headers and exchanges of a chat document."""
    document = open_document(path)
    try:
        transcript = _responder(ctx).parse(document)
    except ColloquyError as e:
        raise click.ClickException(str(e)) from e

    if json_format:
        click.echo(json.dumps(transcript.to_dict(), indent=2, ensure_ascii=False))
        return

    for key, value in transcript.headers.items():
        click.echo(f"{key}: {value}")
    click.echo(f"{len(transcript.exchanges)} exchanges")
    for i, exchange in enumerate(transcript.exchanges):
        answer = exchange.answer
        answer_range = f"{answer.start_line}-{answer.end_line}" if answer else "-"
        refs = len(exchange.question.file_references)
        click.echo(
            f"  [{i}] question {exchange.question.start_line}-{exchange.question.end_line}"
            f"  answer {answer_range}"
            + (f"  files {refs}" if refs else "")
            + ("  summary" if exchange.summary else "")
        )


@click.command("messages")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", "-l", type=int, help="Answer the exchange at this line")
@click.option("--agent", "-a", help="Agent name")
@click.pass_context
def messages_cmd(ctx: click.Context, path: str, line: int | None, agent: str | None) -> None:
    """Print the messages that would be sent for an exchange."""
    prepared = _prepare(ctx, path, line, agent)
    click.echo(
        json.dumps([asdict(m) for m in prepared.messages], indent=2, ensure_ascii=False)
    )


@click.command("payload")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", "-l", type=int, help="Answer the exchange at this line")
@click.option("--agent", "-a", help="Agent name")
@click.pass_context
def payload_cmd(ctx: click.Context, path: str, line: int | None, agent: str | None) -> None:
    """Print the provider request for an exchange, with secrets masked."""
    prepared = _prepare(ctx, path, line, agent)
    click.echo(json.dumps(prepared.request.redacted(), indent=2, ensure_ascii=False))


def _report(result: StreamResult | None) -> None:
    if result is None:
        click.echo("Nothing was sent.", err=True)
        return
    if result.usage is not None:
        usage = result.usage
        click.echo(f"Tokens: {usage.input_tokens} in, {usage.output_tokens} out", err=True)
    if result.cancelled:
        reason = "timed out" if result.timed_out else "cancelled"
        click.echo(f"Request {reason}.", err=True)
    if result.error is not None:
        click.echo(f"Error: {result.error}", err=True)


@click.command("respond")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--line", "-l", type=int, help="Answer the exchange at this line")
@click.option("--agent", "-a", help="Agent name")
@click.option("--all", "resubmit_all", is_flag=True, help="Re-answer every question up to --line")
@click.option("--force", is_flag=True, help="Replace a running query")
@click.option("--timeout", type=float, help="Seconds before the request is cancelled")
@click.pass_context
def respond_cmd(
    ctx: click.Context,
    path: str,
    line: int | None,
    agent: str | None,
    resubmit_all: bool,
    force: bool,
    timeout: float | None,
) -> None:
    """Answer a question in a chat document and save the result."""
    document = open_document(path)
    responder = _responder(ctx)
    responder.dispatcher.store.prepare()

    if resubmit_all:
        results = run_async(
            ResubmitDriver(responder).run(document, line, agent, timeout=timeout)
        )
        document.save()
        for result in results:
            _report(result)
        click.echo(f"Answered {len(results)} questions in {path}")
        if any(not r.ok for r in results):
            ctx.exit(1)
        return

    result = run_async(
        responder.respond(document, line, agent, force=force or None, timeout=timeout)
    )
    document.save()
    _report(result)
    if result is None or not result.ok:
        ctx.exit(1)
