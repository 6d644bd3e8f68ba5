"""
Operator CLI for the dead-letter queues.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from mailqueue.config import get_settings
from mailqueue.db import JobStore, TableNames, build_tables, close_db, init_db
from mailqueue.deadletter.absorber import DeadLetterAbsorber
from mailqueue.errors import MailQueueError
from mailqueue.observability.logging import setup_logging

T = TypeVar("T")


def _run(operation: Callable[[DeadLetterAbsorber, JobStore], Awaitable[T]]) -> T:
    async def runner() -> T:
        settings = get_settings()
        session_factory = await init_db(settings)
        tables = build_tables(TableNames.from_settings(settings))
        try:
            return await operation(
                DeadLetterAbsorber.from_settings(session_factory, tables, settings),
                JobStore(session_factory, tables),
            )
        finally:
            await close_db()

    try:
        return asyncio.run(runner())
    except MailQueueError as e:
        raise click.ClickException(str(e)) from e


def _default_queue(queue: str | None) -> str:
    return queue or get_settings().send_dead_letter_queue_name


@click.group(help="mailqueue-dlq: inspect and replay quarantined email messages")
def cli() -> None:
    setup_logging()


@cli.command("list")
@click.option("--queue", "queue", default=None, help="Dead-letter queue (defaults to the send DLQ)")
@click.option("--limit", default=50, type=int, show_default=True)
def list_cmd(queue: str | None, limit: int) -> None:
    """List quarantined messages."""
    queue = _default_queue(queue)
    messages = _run(lambda absorber, _: absorber.list_messages(queue, limit=limit))

    if not messages:
        click.echo(f"{queue} is empty.")
        return

    for m in messages:
        click.echo(
            f"{m.message_id} | from={m.source_queue} | receives={m.receive_count} "
            f"| dead_lettered_at={m.dead_lettered_at} | body={json.dumps(m.body)}"
        )


@cli.command("replay")
@click.argument("message_id", required=False)
@click.option("--queue", "queue", default=None, help="Dead-letter queue (defaults to the send DLQ)")
@click.option("--all", "replay_all", is_flag=True, help="Replay every message in the queue")
def replay_cmd(message_id: str | None, queue: str | None, replay_all: bool) -> None:
    """Send a quarantined message back to its source queue."""
    queue = _default_queue(queue)

    if replay_all:
        count = _run(lambda absorber, _: absorber.replay_all(queue))
        click.secho(f"Replayed {count} message(s) from {queue}.", fg="green")
        return

    if message_id is None:
        raise click.UsageError("Give a MESSAGE_ID or --all.")

    if not _run(lambda absorber, _: absorber.replay(queue, message_id)):
        raise click.ClickException(f"Message {message_id} not found in {queue}.")
    click.secho(f"Replayed {message_id}.", fg="green")


@cli.command("discard")
@click.argument("message_id")
@click.option("--queue", "queue", default=None, help="Dead-letter queue (defaults to the send DLQ)")
@click.confirmation_option(prompt="Discard this message permanently?")
def discard_cmd(message_id: str, queue: str | None) -> None:
    """Delete a quarantined message."""
    queue = _default_queue(queue)
    if not _run(lambda absorber, _: absorber.discard(queue, message_id)):
        raise click.ClickException(f"Message {message_id} not found in {queue}.")
    click.secho(f"Discarded {message_id}.", fg="yellow")


@cli.command("stats")
def stats_cmd() -> None:
    """Show dead-letter depths and job counts by status."""

    async def collect(absorber: DeadLetterAbsorber, store: JobStore) -> dict[str, Any]:
        return {
            "dead_letter_queues": await absorber.counts(),
            "jobs": await store.count_by_status(),
        }

    click.echo(json.dumps(_run(collect), indent=2))


def main() -> None:
    """Entry point for the ``mailqueue-dlq`` command."""
    cli()


if __name__ == "__main__":
    main()
