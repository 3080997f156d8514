"""CLI entrypoint for junior.

``junior run`` keeps invoking OpenCode on a Beads-tracked project until the
backlog is empty, the iteration limit is hit, or the user presses Ctrl+C.
The first Ctrl+C lets the current agent run finish; a second one quits
immediately with exit code 130.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .agent import AgentConfig, create_agent
from .config import DEFAULT_PROGRESS_FILE, Config
from .interrupt import InterruptHandler, StopToken
from .loop import LoopConfig, open_tasks, run_loop
from .progress import ProgressReader
from .prompts import PromptError, get_epic_prompt, get_generic_prompt
from .reporter import ConsoleReporter
from .tasks import BeadsTaskBackend

# Initialize Typer app
app = typer.Typer(
    name="junior",
    help="Run a coding agent in a loop until the Beads backlog is done.",
    add_completion=False,
)

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, level: str = "WARNING") -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level; otherwise use ``level``.
        level: Log level name from configuration.
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"junior version {__version__}")
        raise typer.Exit()


def load_config(directory: Optional[Path]) -> Config:
    """Load configuration, exiting with code 1 if it cannot be parsed."""
    try:
        config = Config.from_env(directory)
    except (ValueError, TypeError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] Invalid configuration: {e}")
        raise typer.Exit(1)

    return config


def check_config(config: Config) -> None:
    """Print validation errors and exit with code 1 if there are any."""
    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        raise typer.Exit(1)


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Run a coding agent in a loop until the Beads backlog is done."""
    pass


@app.command()
def run(
    directory: Optional[Path] = typer.Argument(
        None,
        help="Working directory (default: current directory).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log agent output to the verbose log file and show debug logging.",
    ),
    progress: Optional[str] = typer.Option(
        None,
        "--progress",
        "-p",
        help="Progress file the agent appends to, relative to the working directory.",
    ),
    epic: Optional[str] = typer.Option(
        None,
        "--epic",
        help="Only work on tasks of this epic.",
    ),
    docker: bool = typer.Option(
        False,
        "--docker",
        help="Run OpenCode in Docker.",
    ),
    max_iterations: Optional[int] = typer.Option(
        None,
        "--max-iterations",
        "-n",
        help="Maximum agent runs (default: 50, or from config).",
    ),
) -> None:
    """Run the agent until the backlog is empty.

    Examples:
        # Work through the backlog of the current directory:
        junior run

        # Work on one epic, reading the agent's notes from progress.txt:
        junior run ../myproject --epic bd-a1b2 --progress progress.txt
    """
    config = load_config(directory)
    if max_iterations is not None:
        config.max_iterations = max_iterations
    check_config(config)

    setup_logging(verbose, config.log_level)

    progress_file = config.progress_path(progress)
    progress_file_name = (progress or "").strip() or DEFAULT_PROGRESS_FILE
    epic_id = (epic or "").strip()

    console.print("[bold]=== Junior going to june ===[/bold]\n")
    console.print("Context:")
    console.print(f"  [dim]Working directory:[/dim] {config.workdir}")
    if progress_file:
        console.print(f"  [dim]Progress file:[/dim] {progress_file}")
    if verbose:
        config.verbose_log_file.parent.mkdir(parents=True, exist_ok=True)
        config.verbose_log_file.write_text("")
        console.print(f"  [dim]Verbose log:[/dim] {config.verbose_log_file}")
    if docker:
        console.print(f"  [dim]Docker image:[/dim] {config.docker_image}")
    console.print()
    console.print(f"Mode: {f'Epic {epic_id}' if epic_id else 'next available task'}")
    console.print()

    try:
        prompt = (
            get_epic_prompt(epic_id, progress_file_name)
            if epic_id
            else get_generic_prompt(progress_file_name)
        )
    except PromptError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if verbose:
        console.print("[bold]Agent instructions:[/bold]")
        console.print(prompt, markup=False, highlight=False)
        console.print()

    task_backend = BeadsTaskBackend(
        config.workdir,
        bd_command=config.bd_command,
        timeout=config.tracker_timeout,
    )

    # An unreachable tracker would otherwise look like an empty backlog.
    check = task_backend.fetch()
    if not check.ok:
        console.print(f"[red]Error:[/red] Cannot query tasks: {check.error}")
        raise typer.Exit(1)

    agent = create_agent(
        AgentConfig(
            workdir=config.workdir,
            verbose=verbose,
            log_file=config.verbose_log_file,
            model=config.model,
            docker_image=config.docker_image,
        ),
        docker=docker,
    )

    token = StopToken()
    reporter = ConsoleReporter(console=console, token=token, verbose=verbose)

    with InterruptHandler(token, spinner=reporter.spinner, console=console):
        try:
            run_loop(
                LoopConfig(
                    agent=agent,
                    task_backend=task_backend,
                    prompt=prompt,
                    max_iterations=config.max_iterations,
                    read_progress=ProgressReader(progress_file),
                    stop_token=token,
                ),
                reporter,
            )
        finally:
            stats = reporter.finish()

    if stats.remaining is None:
        final = task_backend.fetch()
        if final.ok:
            reporter.recount(check.tasks, final.tasks)
        else:
            logger.warning(f"Could not refresh run totals: {final.error}")
    reporter.print_summary()

    console.print("[bold]=== Junior finished juning ===[/bold]")


@app.command()
def status(
    directory: Optional[Path] = typer.Argument(
        None,
        help="Working directory (default: current directory).",
    ),
) -> None:
    """Show the open tasks of the backlog."""
    config = load_config(directory)
    check_config(config)
    setup_logging(False, config.log_level)

    task_backend = BeadsTaskBackend(
        config.workdir,
        bd_command=config.bd_command,
        timeout=config.tracker_timeout,
    )
    result = task_backend.fetch()
    if not result.ok:
        console.print(f"[red]Error:[/red] Cannot query tasks: {result.error}")
        raise typer.Exit(1)

    remaining = open_tasks(result.tasks)
    if remaining:
        table = Table(title="Open Tasks")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Status")
        for task in remaining:
            table.add_row(task.id, escape(task.title), task.status)
        console.print(table)

    closed_count = len(result.tasks) - len(remaining)
    console.print(f"{len(remaining)} open tasks ({closed_count} closed)")


if __name__ == "__main__":
    app()
