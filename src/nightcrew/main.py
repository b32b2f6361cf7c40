"""CLI entrypoint for nightcrew."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from nightcrew import __version__
from nightcrew.controllers import (
    LedgerCreditCommand,
    LedgerSnapshotCommand,
    LedgerSpentCommand,
    NightCommand,
    NightcrewCliController,
    PlanCommand,
    RunTaskCommand,
    TaskAddCommand,
    TaskListCommand,
    TaskMutateCommand,
)
from nightcrew.core.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = NightcrewCliController()

_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
_rating = click.IntRange(min=1, max=5)


@click.group()
@click.version_option(version=__version__, prog_name="nightcrew")
@click.option("--verbose", is_flag=True, default=False, help="Log progress to stderr.")
def nightcrew(verbose: bool) -> None:
    """Budget-governed night scheduler for coding-agent chores."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


@nightcrew.group()
def tasks() -> None:
    """Task backlog commands."""


@tasks.command("add")
@_db_path_option
@click.option("--project", "project_path", required=True, help="Project directory.")
@click.option("--title", required=True, help="Short task title.")
@click.option("--description", required=True, help="What the agent should do.")
@click.option("--category", default="maintenance", show_default=True, help="Task category.")
@click.option("--source", default="manual", show_default=True, help="Discovery source.")
@click.option("--impact", type=_rating, default=3, show_default=True, help="Impact rating 1-5.")
@click.option(
    "--confidence",
    type=_rating,
    default=3,
    show_default=True,
    help="Confidence rating 1-5.",
)
@click.option("--risk", type=_rating, default=2, show_default=True, help="Risk rating 1-5.")
@click.option(
    "--duration",
    type=_rating,
    default=2,
    show_default=True,
    help="Duration rating 1-5.",
)
@click.option("--prompt", default=None, help="Explicit agent prompt; defaults to description.")
@click.option("--project-name", default=None, help="Display name; defaults to directory name.")
def tasks_add(  # noqa: PLR0913
    db_path: Path | None,
    project_path: str,
    title: str,
    description: str,
    category: str,
    source: str,
    impact: int,
    confidence: int,
    risk: int,
    duration: int,
    prompt: str | None,
    project_name: str | None,
) -> None:
    """Queue a task manually."""

    _emit(
        CONTROLLER.add_task,
        TaskAddCommand(
            db_path=db_path,
            project_path=project_path,
            title=title,
            description=description,
            category=category,
            source=source,
            impact=impact,
            confidence=confidence,
            risk=risk,
            duration=duration,
            prompt=prompt,
            project_name=project_name,
        ),
    )


@tasks.command("list")
@_db_path_option
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List tasks, newest first."""

    _emit(CONTROLLER.list_tasks, TaskListCommand(db_path=db_path, status=status, limit=limit))


@tasks.command("skip")
@_db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
def tasks_skip(db_path: Path | None, task_id: int) -> None:
    """Withdraw a queued task from scheduling."""

    _emit(CONTROLLER.skip_task, TaskMutateCommand(db_path=db_path, task_id=task_id))


@nightcrew.command("plan")
@_db_path_option
def plan(db_path: Path | None) -> None:
    """Preview tonight's batch plan."""

    _emit(CONTROLLER.plan, PlanCommand(db_path=db_path))


@nightcrew.command("run")
@_db_path_option
@click.option("--task-id", type=int, required=True, help="Task id.")
@click.option("--dry-run", is_flag=True, default=False, help="Do not invoke the agent.")
def run(db_path: Path | None, task_id: int, dry_run: bool) -> None:
    """Execute one task now, outside the night window."""

    _emit(CONTROLLER.run_task, RunTaskCommand(db_path=db_path, task_id=task_id, dry_run=dry_run))


@nightcrew.command("night")
@_db_path_option
@click.option("--dry-run", is_flag=True, default=False, help="Plan only; execute nothing.")
def night(db_path: Path | None, dry_run: bool) -> None:
    """Run the night batch and write the morning report."""

    _emit(CONTROLLER.run_night, NightCommand(db_path=db_path, dry_run=dry_run))


@nightcrew.group()
def ledger() -> None:
    """Credit ledger commands."""


@ledger.command("spent")
@_db_path_option
@click.option(
    "--since",
    default=None,
    help="ISO timestamp; defaults to the start of the current credit window.",
)
def ledger_spent(db_path: Path | None, since: str | None) -> None:
    """Show USD spend recorded since a point in time."""

    _emit(CONTROLLER.ledger_spent, LedgerSpentCommand(db_path=db_path, since=since))


@ledger.command("credit")
@_db_path_option
@click.option("--amount", type=int, required=True, help="Amount in cents or tokens.")
@click.option(
    "--currency",
    type=click.Choice(["usd_cents", "tokens"]),
    default="usd_cents",
    show_default=True,
    help="Amount denomination.",
)
@click.option("--description", default="Subscription credit", show_default=True)
def ledger_credit(db_path: Path | None, amount: int, currency: str, description: str) -> None:
    """Record a subscription credit."""

    _emit(
        CONTROLLER.ledger_credit,
        LedgerCreditCommand(
            db_path=db_path,
            amount=amount,
            currency=currency,
            description=description,
        ),
    )


@ledger.command("snapshot")
@_db_path_option
@click.option("--balance-usd-cents", type=int, required=True, help="Current balance in cents.")
@click.option("--balance-tokens", type=int, default=0, show_default=True, help="Token balance.")
def ledger_snapshot(db_path: Path | None, balance_usd_cents: int, balance_tokens: int) -> None:
    """Record the current balance for budget planning."""

    _emit(
        CONTROLLER.ledger_snapshot,
        LedgerSnapshotCommand(
            db_path=db_path,
            balance_usd_cents=balance_usd_cents,
            balance_tokens=balance_tokens,
        ),
    )


def _emit(handler: Callable[..., list[str]], command: object) -> None:
    try:
        lines = handler(command)
    except (RuntimeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    nightcrew()
