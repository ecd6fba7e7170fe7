"""CLI for the review engine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import structlog
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from review_engine import __version__
from review_engine.core.config import EngineConfig, load_config
from review_engine.core.errors import ReviewEngineError
from review_engine.models import ScoreBreakdown
from review_engine.pipeline import ReviewPipeline, create_pipeline
from review_engine.services.assignment import GroupStatus, PlanningReport, PlanningStatus
from review_engine.services.execution import create_execution_client
from review_engine.services.storage import ReviewStore

T = TypeVar("T")

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="review-engine",
    help="Peer review assignment and truth-inference scoring for coding challenges",
    add_completion=False,
)
console = Console()

ConfigArg = Annotated[Path, typer.Argument(help="Path to config YAML file")]
ChallengeArg = Annotated[str, typer.Argument(help="Challenge id")]
DryRunOpt = Annotated[
    bool, typer.Option("--dry-run", help="Use the in-process fake execution client")
]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"review-engine v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Review engine CLI."""
    load_dotenv()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _run_pipeline(
    config_path: Path,
    dry_run: bool,
    verbose: bool,
    action: Callable[[ReviewPipeline], Awaitable[T]],
) -> T:
    """Load config, build a pipeline, run ``action`` and report failures."""
    _configure_logging(verbose)
    try:
        config = load_config(config_path)
        if dry_run:
            console.print("[yellow]DRY RUN MODE - using fake code execution[/yellow]")
        client = create_execution_client(config.execution, dry_run=dry_run or config.dry_run)

        async def _run() -> T:
            pipeline = create_pipeline(config, client)
            try:
                return await action(pipeline)
            finally:
                await pipeline.close()
                pipeline.store.close()

        return asyncio.run(_run())

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ReviewEngineError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1) from e


def _print_planning_report(report: PlanningReport) -> None:
    if report.status != PlanningStatus.OK:
        console.print(f"[red]Planning stopped:[/red] {report.status}")
        return

    table = Table(title=f"Assignments (k={report.expected_reviews_per_submission})")
    table.add_column("Match setting")
    table.add_column("Status")
    table.add_column("Valid", justify="right")
    table.add_column("Reviewers", justify="right")
    table.add_column("Per reviewer", justify="right")
    table.add_column("Base", justify="right")
    table.add_column("Total", justify="right")
    for result in report.results:
        style = "green" if result.status == GroupStatus.ASSIGNED else "yellow"
        table.add_row(
            result.match_setting_id,
            f"[{style}]{result.status}[/{style}]",
            str(result.valid_submissions_count),
            str(result.reviewer_count),
            str(result.reviews_per_reviewer or "-"),
            str(result.base_reviews_per_submission or "-"),
            str(result.total_assignments or "-"),
        )
    console.print(table)
    for result in report.results:
        if result.teacher_message:
            console.print(f"  {result.match_setting_id}: {result.teacher_message}")


def _print_scores(breakdowns: list[ScoreBreakdown]) -> None:
    table = Table(title="Scores")
    table.add_column("Participant")
    table.add_column("Code review", justify="right")
    table.add_column("Implementation", justify="right")
    table.add_column("Total", justify="right")
    for breakdown in sorted(breakdowns, key=lambda b: b.total_score, reverse=True):
        table.add_row(
            breakdown.participant_id,
            f"{breakdown.code_review_score:.2f}",
            f"{breakdown.implementation_score:.2f}",
            f"{breakdown.total_score:.2f}",
        )
    console.print(table)


@app.command("init-db")
def init_db(config_path: ConfigArg, verbose: VerboseOpt = False) -> None:
    """Create the database tables for the configured database."""
    _configure_logging(verbose)
    try:
        config = load_config(config_path)
        ReviewStore.from_url(config.database_url).close()
        console.print(f"[green]Database ready:[/green] {config.database_url}")
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ReviewEngineError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e


@app.command()
def plan(
    config_path: ConfigArg,
    challenge_id: ChallengeArg,
    expected_reviews: Annotated[
        int | None,
        typer.Option("--expected-reviews", "-k", help="Reviews per submission (>= 2)"),
    ] = None,
    overwrite: Annotated[
        bool, typer.Option("--overwrite/--keep-existing", help="Regenerate existing assignments")
    ] = True,
    verbose: VerboseOpt = False,
) -> None:
    """Assign peer reviews for a challenge whose coding phase has ended."""
    report = _run_pipeline(
        config_path,
        False,
        verbose,
        lambda p: p.plan_assignments(challenge_id, expected_reviews, overwrite),
    )
    _print_planning_report(report)
    if report.status != PlanningStatus.OK:
        raise typer.Exit(1)


@app.command()
def finalize(
    config_path: ConfigArg, challenge_id: ChallengeArg, verbose: VerboseOpt = False
) -> None:
    """Try to complete the coding phase finalization of a challenge."""
    result = _run_pipeline(
        config_path, False, verbose, lambda p: p.maybe_complete_finalization(challenge_id)
    )
    console.print(f"Finalization: [bold]{result.status}[/bold]")
    if result.finalized_matches:
        console.print(f"  Final submissions set for {len(result.finalized_matches)} match(es)")


@app.command("end-review")
def end_review(
    config_path: ConfigArg,
    challenge_id: ChallengeArg,
    allow_early: Annotated[
        bool, typer.Option("--allow-early", help="End before the scheduled time")
    ] = False,
    dry_run: DryRunOpt = False,
    verbose: VerboseOpt = False,
) -> None:
    """End the peer review phase (filling abstain votes) and score the challenge."""
    result = _run_pipeline(
        config_path, dry_run, verbose, lambda p: p.end_peer_review(challenge_id, allow_early)
    )
    console.print(f"Peer review end: [bold]{result.status}[/bold]")
    if result.abstain_votes:
        console.print(f"  Abstain votes created: {result.abstain_votes}")
    if result.scoring_error:
        console.print(f"[red]Scoring failed:[/red] {result.scoring_error}")
        raise typer.Exit(1)
    if result.breakdowns:
        _print_scores(result.breakdowns)


@app.command()
def score(
    config_path: ConfigArg,
    challenge_id: ChallengeArg,
    dry_run: DryRunOpt = False,
    verbose: VerboseOpt = False,
) -> None:
    """Run a scoring pass and print the score table."""
    breakdowns = _run_pipeline(
        config_path, dry_run, verbose, lambda p: p.run_scoring_pass(challenge_id)
    )
    _print_scores(breakdowns)


@app.command()
def validate(config_path: ConfigArg) -> None:
    """Validate a configuration file without running."""
    try:
        config: EngineConfig = load_config(config_path)
        console.print("[green]Configuration is valid![/green]")
        console.print(f"  Database: {config.database_url}")
        console.print(f"  Execution service: {config.execution.base_url}")
        console.print(f"  Default language: {config.execution.default_language}")
        console.print(f"  Grace period: {config.finalization.grace_period_seconds}s")
        console.print(f"  Default reviews: {config.assignment.default_expected_reviews}")
        console.print(f"  Dry run: {config.dry_run}")

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ReviewEngineError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def info() -> None:
    """Show tool information and example commands."""
    console.print("[bold]Review Engine[/bold]")
    console.print(f"Version: {__version__}\n")

    console.print("[bold]Example Commands:[/bold]")
    console.print("  # Create tables")
    console.print("  review-engine init-db config.yaml\n")

    console.print("  # Assign three reviews per submission")
    console.print("  review-engine plan config.yaml <challenge-id> -k 3\n")

    console.print("  # End peer review now and score with fake execution")
    console.print("  review-engine end-review config.yaml <challenge-id> --allow-early --dry-run\n")

    console.print("  # Validate config")
    console.print("  review-engine validate config.yaml")


if __name__ == "__main__":
    app()
