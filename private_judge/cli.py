"""Operator CLI for the Private Judge job pipeline."""

import asyncio
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .config import settings
from .events import install_default_handlers
from .job_queue import JobQueue
from .jobs import JobStatus, JobType, job_summary
from .lifecycle import RoomLifecycle

console = Console()

STATUS_STYLES = {
    JobStatus.QUEUED.value: "cyan",
    JobStatus.RUNNING.value: "yellow",
    JobStatus.SUCCEEDED.value: "green",
    JobStatus.FAILED.value: "red",
    JobStatus.RETRYING.value: "magenta",
    JobStatus.CANCELLED.value: "dim",
}


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _fail(result) -> None:
    console.print(f"[red]{result.error.kind.value}: {result.error}[/red]")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Private Judge job pipeline CLI.

    Inspect and operate the job queue, rooms and workers.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@main.command(name="init-db")
def init_db() -> None:
    """Create all tables (development only; use alembic in production)."""
    asyncio.run(db.init_db())
    console.print("[green]Database tables created[/green]")


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
def schema_check() -> None:
    async def check() -> None:
        from sqlalchemy import text

        from .models import Base

        async with db.get_session() as session:
            result = await session.execute(
                text("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'")
            )
            tables = {row[0] for row in result}

        missing = set(Base.metadata.tables) - tables
        if missing:
            console.print(f"[red]Missing tables: {sorted(missing)}[/red]")
            console.print("Run: `alembic upgrade head` or `private-judge init-db`")
            raise SystemExit(1)
        console.print("[green]Schema ready[/green]")

    asyncio.run(check())


@main.command(name="queue-status")
def queue_status() -> None:
    """Show queued, retrying and running counts plus the next jobs to run."""

    async def show() -> None:
        async with db.store_scope() as store:
            result = await JobQueue(store).queue_status()
            counts = await store.count_jobs_by_status()
        if not result.ok:
            _fail(result)
        status = result.value

        console.print(
            Panel(
                f"Queued: [cyan]{status['queued']}[/cyan]\n"
                f"Retrying: [magenta]{status['retrying']}[/magenta]\n"
                f"Running: [yellow]{status['running']}[/yellow]\n"
                f"Max concurrent: {status['max_concurrent']}\n"
                f"All-time: "
                + ", ".join(f"{k}={v}" for k, v in sorted(counts.items())),
                title="Job Queue",
            )
        )
        if status["next_jobs"]:
            table = Table(title="Next Jobs")
            table.add_column("ID", style="dim")
            table.add_column("Type", style="cyan")
            table.add_column("Priority")
            table.add_column("Wait (s)")
            for job in status["next_jobs"]:
                table.add_row(
                    job["id"][:8], job["type"], str(job["priority"]), f"{job['wait_time_seconds']:.0f}"
                )
            console.print(table)

    asyncio.run(show())


@main.command()
@click.option("--type", "types", multiple=True, type=click.Choice([t.value for t in JobType]))
@click.option("--status", "statuses", multiple=True, type=click.Choice([s.value for s in JobStatus]))
@click.option("--room", "room_id", default=None, help="Filter by room id")
@click.option("--limit", default=20, help="Number of jobs to show")
@click.option("--offset", default=0, help="Skip this many jobs")
def jobs(types: tuple[str, ...], statuses: tuple[str, ...], room_id: str | None, limit: int, offset: int) -> None:
    """List jobs, newest first."""

    async def list_all() -> None:
        async with db.store_scope() as store:
            result = await JobQueue(store).list_jobs(
                types=types, statuses=statuses, room_id=room_id, limit=limit, offset=offset
            )
        if not result.ok:
            _fail(result)
        if not result.value:
            console.print("[yellow]No jobs found[/yellow]")
            return

        table = Table(title="Jobs")
        table.add_column("ID", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Status")
        table.add_column("Retries")
        table.add_column("Room", style="dim")
        table.add_column("Created")
        for job in result.value:
            table.add_row(
                job.id[:8],
                job.type,
                _styled(job.status),
                f"{job.retry_count}/{job.max_retries}",
                (job.room_id or "-")[:8],
                job.created_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    asyncio.run(list_all())


@main.command()
@click.argument("job_id")
def job(job_id: str) -> None:
    """Show one job in detail."""

    async def show() -> None:
        async with db.store_scope() as store:
            result = await JobQueue(store).get_job(job_id)
        if not result.ok:
            _fail(result)
        summary = job_summary(result.value)
        lines = [f"{key}: {value}" for key, value in summary.items() if value is not None]
        console.print(Panel("\n".join(lines), title=f"Job {job_id[:8]}"))

    asyncio.run(show())


@main.command(name="cancel-job")
@click.argument("job_id")
@click.option("--requester", required=True, help="User id of the room creator")
def cancel_job(job_id: str, requester: str) -> None:
    """Cancel a queued or running job."""

    async def cancel() -> None:
        install_default_handlers()
        async with db.store_scope() as store:
            result = await JobQueue(store).cancel(job_id, requester)
        if not result.ok:
            _fail(result)
        console.print(f"[green]Job {job_id[:8]} cancelled[/green]")

    asyncio.run(cancel())


@main.command(name="retry-job")
@click.argument("job_id")
def retry_job(job_id: str) -> None:
    """Manually retry a failed job that has attempts left."""

    async def retry() -> None:
        install_default_handlers()
        async with db.store_scope() as store:
            result = await JobQueue(store).retry(job_id)
        if not result.ok:
            _fail(result)
        console.print(
            f"[green]Job {job_id[:8]} rescheduled for {result.value.scheduled_at:%H:%M:%S}[/green]"
        )

    asyncio.run(retry())


@main.command()
@click.option("--days", default=None, type=int, help="Age in days of finished jobs to delete")
def cleanup(days: int | None) -> None:
    """Delete finished jobs older than the retention window."""

    async def run_cleanup() -> None:
        async with db.store_scope() as store:
            result = await JobQueue(store).cleanup_finished(days)
        if not result.ok:
            _fail(result)
        window = settings.cleanup_completed_after_days if days is None else days
        console.print(f"[green]Removed {result.value} jobs older than {window} days[/green]")

    asyncio.run(run_cleanup())


@main.command()
@click.argument("room_id")
def room(room_id: str) -> None:
    """Show a room's status, stall information, rounds and verdict."""

    async def show() -> None:
        async with db.store_scope() as store:
            result = await RoomLifecycle(store).room_status(room_id)
            verdict = await store.get_verdict(room_id)
        if not result.ok:
            _fail(result)
        status = result.value

        body = f"Code: [bold]{status['code']}[/bold]\nStatus: [cyan]{status['status']}[/cyan]"
        if status["stalled"]:
            body += (
                f"\n[red]Stalled: {status['stall_reason']}[/red]"
                f"\nLast error: {status['last_job_error']}"
                f"\nRetries: {status['last_job_retry_count']}"
            )
        console.print(Panel(body, title=f"Room {room_id[:8]}"))

        if status["rounds"]:
            table = Table(title="Debate Rounds")
            table.add_column("Round", style="cyan")
            table.add_column("Status")
            table.add_column("Overtime")
            for r in status["rounds"]:
                table.add_row(str(r["round_number"]), r["status"], "yes" if r["overtime"] else "-")
            console.print(table)

        if verdict is not None:
            summary = verdict.jury_summary
            console.print(
                Panel(
                    f"Winner: [bold]{verdict.winner}[/bold]\n"
                    f"Jury: {summary['votes_a']}-{summary['votes_b']} "
                    f"(avg confidence {summary['average_confidence']})\n"
                    f"Quality: {verdict.overall_quality}/10\n"
                    f"Credibility: {verdict.credibility_score:.0f}/100",
                    title="Verdict",
                )
            )

    asyncio.run(show())


@main.command()
@click.option(
    "--types",
    "-t",
    multiple=True,
    type=click.Choice([t.value for t in JobType]),
    help="Job types to process (default: all)",
)
@click.option("--once", is_flag=True, help="Process at most one job and exit")
def worker(types: tuple[str, ...], once: bool) -> None:
    """Run a polling worker against the database."""
    from .responder import ResponderClient
    from .workers.ai_worker import AIWorker
    from .workers.notification_worker import NotificationWorker

    logging.getLogger().setLevel(logging.INFO)
    install_default_handlers()
    selected = {JobType(t) for t in types} if types else set(JobType)

    ai_types = sorted(selected - {JobType.NOTIFICATION}, key=lambda t: t.value)

    async def run() -> None:
        async with ResponderClient() as responder:
            workers = []
            if ai_types:
                workers.append(AIWorker(db.store_scope, responder=responder, types=ai_types))
            if JobType.NOTIFICATION in selected:
                workers.append(NotificationWorker(db.store_scope))

            if once:
                for w in workers:
                    if await w.run_once() is not None:
                        return
                console.print("[yellow]No runnable jobs[/yellow]")
                return
            await asyncio.gather(*(w.run_forever() for w in workers))

    asyncio.run(run())


if __name__ == "__main__":
    main()
