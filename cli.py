"""CLI commands for running guest lifecycle jobs outside the API."""

import asyncio
from uuid import UUID

import typer

from src.announcements.dtos import AnnouncementStatus, DispatchResult
from src.announcements.router import get_batch_dispatcher
from src.cache.namespace import get_cache_manager
from src.config.logging import setup_logging
from src.errors import LifecycleError
from src.notifications.dtos import Channel
from src.notifications.rate_limiter import get_rate_limiter
from src.notifications.read_models import SqlRateLimitReadModel

app = typer.Typer(help="CLI commands for wedding guest lifecycle management")


def _print_result(announcement_id: UUID, result: DispatchResult) -> None:
    color = typer.colors.GREEN if result.status == AnnouncementStatus.SENT else typer.colors.YELLOW
    typer.secho(f"Announcement {announcement_id}: {result.status.value}", fg=color)
    typer.secho(f"  Batches: {result.batches}", fg=typer.colors.BLUE)
    typer.secho(f"  Sent: {result.sent}", fg=typer.colors.GREEN)
    typer.secho(f"  Failed: {result.failed}", fg=typer.colors.RED)
    typer.secho(f"  Skipped: {result.skipped}", fg=typer.colors.CYAN)
    if result.cancelled:
        typer.secho("  Stopped early: announcement was cancelled", fg=typer.colors.YELLOW)


@app.command()
def dispatch_announcement(
    wedding_id: UUID = typer.Argument(..., help="Wedding UUID"),
    announcement_id: UUID = typer.Argument(..., help="Announcement UUID"),
    resume: bool = typer.Option(
        False,
        "--resume",
        "-r",
        help="Continue an announcement left in 'sending' by an interrupted run",
    ),
):
    """Send an announcement in batches."""
    setup_logging()
    try:
        result = asyncio.run(
            get_batch_dispatcher().dispatch(wedding_id, announcement_id, resume=resume)
        )
    except LifecycleError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(1)

    _print_result(announcement_id, result)


@app.command()
def dispatch_due():
    """Send every scheduled announcement whose time has come."""
    setup_logging()
    results = asyncio.run(get_batch_dispatcher().dispatch_due())

    if not results:
        typer.secho("No scheduled announcements due", fg=typer.colors.YELLOW)
    for result in results:
        _print_result(result.announcement_id, result)


@app.command()
def bump_cache(
    wedding_id: UUID = typer.Argument(..., help="Wedding UUID"),
):
    """Invalidate every cached read for a wedding."""
    setup_logging()
    version = asyncio.run(get_cache_manager().bump_namespace_version(wedding_id))

    typer.secho("Cache namespace bumped!", fg=typer.colors.GREEN)
    typer.secho(f"  Wedding ID: {wedding_id}", fg=typer.colors.CYAN)
    typer.secho(f"  New version: {version}", fg=typer.colors.BLUE)


@app.command()
def rate_limit(
    wedding_id: UUID = typer.Argument(..., help="Wedding UUID"),
    invitation_id: UUID = typer.Argument(..., help="Invitation UUID"),
    channel: Channel = typer.Option(Channel.EMAIL, "--channel", "-c", help="Delivery channel"),
):
    """Show how many invitation sends remain today."""
    setup_logging()
    read_model = SqlRateLimitReadModel(rate_limiter=get_rate_limiter())
    try:
        status = asyncio.run(read_model.get_status(wedding_id, invitation_id, channel))
    except LifecycleError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(1)

    color = typer.colors.GREEN if status.can_send else typer.colors.RED
    typer.secho(f"Rate limit for invitation {invitation_id} ({channel.value})", fg=color)
    typer.secho(f"  Sent today: {status.sent_today}/{status.max_per_day}", fg=typer.colors.BLUE)
    typer.secho(f"  Remaining: {status.remaining}", fg=typer.colors.BLUE)
    typer.secho(f"  Window resets at: {status.window_reset_at.isoformat()}", fg=typer.colors.CYAN)


if __name__ == "__main__":
    app()
