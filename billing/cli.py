"""CLI for billing operations using Typer."""

import asyncio
import json
import logging
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from billing.config import get_settings
from billing.constants import ROLE_MASTER_ADMIN, WEBHOOK_LOGS_PER_PAGE, WEBHOOK_STATUSES
from billing.services.events import MalformedEvent
from billing.utils import setup_logging

# CLI styles
STYLE_HEADER = "bold blue"
STYLE_SUCCESS = "bold green"
STYLE_WARNING = "bold yellow"
STYLE_ERROR = "bold red"

STATUS_STYLES = {"success": "green", "error": "red", "processing": "yellow"}

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="billing",
    help="Clinic billing - Stripe webhook log and subscription maintenance.",
    add_completion=False,
)
console = Console()


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
):
    setup_logging(verbose)


# Webhooks subcommand group
webhooks_app = typer.Typer(help="Inspect and repair the Stripe webhook log.")
app.add_typer(webhooks_app, name="webhooks")


async def _list_logs(status: str | None, limit: int):
    from billing.db.session import async_session_factory
    from billing.services.webhook_log_service import list_logs

    async with async_session_factory() as db:
        return await list_logs(db, status=status, limit=limit)


@webhooks_app.command("list")
def webhooks_list(
    status: Annotated[Optional[str], typer.Option(help="Filter by status")] = None,
    limit: Annotated[int, typer.Option(help="Maximum rows")] = WEBHOOK_LOGS_PER_PAGE,
):
    """Show the most recent webhook events."""
    if status and status not in WEBHOOK_STATUSES:
        console.print(f"[{STYLE_ERROR}]Unknown status: {status}[/{STYLE_ERROR}]")
        raise typer.Exit(1)

    logs = asyncio.run(_list_logs(status, limit))
    if not logs:
        console.print(f"[{STYLE_WARNING}]No webhook events found.[/{STYLE_WARNING}]")
        return

    table = Table(title="Webhook events", header_style=STYLE_HEADER)
    table.add_column("Event")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Processed at")
    table.add_column("Error", overflow="fold")
    for log in logs:
        style = STATUS_STYLES.get(log.status, "")
        table.add_row(
            log.event_id,
            log.event_type,
            f"[{style}]{log.status}[/{style}]" if style else log.status,
            str(log.attempts),
            log.processed_at.strftime("%Y-%m-%d %H:%M:%S"),
            log.error_message or "",
        )
    console.print(table)


async def _get_log(event_id: str):
    from billing.db.session import async_session_factory
    from billing.services.webhook_log_service import get_log

    async with async_session_factory() as db:
        return await get_log(db, event_id)


@webhooks_app.command("show")
def webhooks_show(event_id: str):
    """Print one webhook event with its payload."""
    log = asyncio.run(_get_log(event_id))
    if log is None:
        console.print(f"[{STYLE_ERROR}]Event not found: {event_id}[/{STYLE_ERROR}]")
        raise typer.Exit(1)

    console.print(f"[{STYLE_HEADER}]{log.event_id}[/{STYLE_HEADER}] {log.event_type}")
    console.print(f"  status:   {log.status} (attempts: {log.attempts})")
    if log.error_message:
        console.print(f"  error:    [{STYLE_ERROR}]{log.error_message}[/{STYLE_ERROR}]")
    console.print_json(json.dumps(log.payload))


async def _replay(event_id: str):
    from billing.app import build_webhook_processor
    from billing.db.session import async_session_factory

    processor = build_webhook_processor(get_settings())
    if processor is None:
        return None
    async with async_session_factory() as db:
        return await processor.replay(db, event_id)


@webhooks_app.command("replay")
def webhooks_replay(event_id: str):
    """
    Re-run a stored webhook event.

    The stored payload is dispatched again and its log row is finalized
    with the new result. The signature is not re-checked.
    """
    try:
        result = asyncio.run(_replay(event_id))
    except LookupError:
        console.print(f"[{STYLE_ERROR}]Event not found: {event_id}[/{STYLE_ERROR}]")
        raise typer.Exit(1)
    except MalformedEvent as e:
        console.print(f"[{STYLE_ERROR}]Stored payload cannot be replayed: {e}[/{STYLE_ERROR}]")
        raise typer.Exit(1)

    if result is None:
        console.print(f"[{STYLE_ERROR}]Stripe is not configured.[/{STYLE_ERROR}]")
        raise typer.Exit(1)
    if result.status == "success":
        console.print(f"[{STYLE_SUCCESS}]Replayed {event_id}: success[/{STYLE_SUCCESS}]")
    else:
        console.print(f"[{STYLE_ERROR}]Replayed {event_id}: {result.error_message}[/{STYLE_ERROR}]")
        raise typer.Exit(1)


async def _sweep(minutes: int) -> list[str]:
    from billing.db.session import async_session_factory
    from billing.services.webhook_log_service import mark_stale_processing

    async with async_session_factory() as db:
        return await mark_stale_processing(db, minutes)


@webhooks_app.command("sweep-stale")
def webhooks_sweep_stale(
    minutes: Annotated[Optional[int], typer.Option(help="Age threshold in minutes")] = None,
):
    """Mark events stuck in processing as errors."""
    minutes = minutes if minutes is not None else get_settings().webhook_stale_after_minutes
    event_ids = asyncio.run(_sweep(minutes))
    console.print(f"[{STYLE_SUCCESS}]{len(event_ids)} stale event(s) marked as error.[/{STYLE_SUCCESS}]")
    for event_id in event_ids:
        console.print(f"  {event_id}")


async def _seed_admin(email: str, name: str | None):
    from sqlalchemy import select

    from billing.db.session import async_session_factory, engine
    from billing.models import Base
    from billing.models.user import User
    from billing.services.auth_service import create_jwt

    if get_settings().database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        created = user is None
        if created:
            user = User(email=email, display_name=name, role=ROLE_MASTER_ADMIN, is_active=True)
            db.add(user)
        else:
            user.role = ROLE_MASTER_ADMIN
            user.is_active = True
        await db.commit()
        await db.refresh(user)

    await engine.dispose()
    return user, created, create_jwt(user.id)


@app.command("seed-admin")
def seed_admin(
    email: str,
    name: Annotated[Optional[str], typer.Option(help="Display name")] = None,
):
    """
    Create (or promote) a master admin user.

    Prints a session token that can be sent as a Bearer token to the
    admin API.
    """
    user, created, token = asyncio.run(_seed_admin(email.strip().lower(), name))
    verb = "created" if created else "promoted"
    console.print(f"[{STYLE_SUCCESS}]Master admin {verb} (id={user.id}, {user.email})[/{STYLE_SUCCESS}]")
    console.print(f"Token: {token}")


if __name__ == "__main__":
    app()
