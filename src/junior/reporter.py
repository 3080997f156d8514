"""Console reporting for loop runs.

``ConsoleReporter`` is the loop delegate used by the CLI. It prints iteration
summaries with Rich, drives a spinner while the agent works, and keeps run
statistics for the closing summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.status import Status
from rich.table import Table

from .interrupt import StopToken
from .loop import IterationProgress, diff_snapshots
from .tasks import Task


def format_task(task: Task) -> str:
    return f"{task.id} - {task.title}"


class Spinner:
    """Spinner shown while the agent runs.

    Owned by a single reporter; the text can be changed while it spins.
    """

    def __init__(self, console: Console):
        self.console = console
        self._text = ""
        self._status: Optional[Status] = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def running(self) -> bool:
        return self._status is not None

    def start(self, text: str) -> None:
        self.stop()
        self._text = text
        self._status = Status(text, console=self.console, spinner="dots")
        self._status.start()

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def update_text(self, text: str) -> None:
        self._text = text
        if self._status is not None:
            self._status.update(text)


@dataclass
class RunStats:
    """Statistics for one loop run."""

    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    iterations: int = 0
    tasks_closed: int = 0
    tasks_created: int = 0
    remaining: Optional[int] = None
    outcome: str = "iteration limit reached"

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()


class ConsoleReporter:
    """Loop delegate that renders progress to the terminal."""

    def __init__(
        self,
        console: Optional[Console] = None,
        token: Optional[StopToken] = None,
        verbose: bool = False,
    ):
        """Initialize the reporter.

        Args:
            console: Rich console for output.
            token: Stop token checked by should_stop().
            verbose: Show the iteration counter next to the spinner.
        """
        self.console = console or Console()
        self.token = token or StopToken()
        self.verbose = verbose
        self.spinner = Spinner(self.console)
        self.stats = RunStats()

    def log(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False)

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        self.stats.iterations = iteration
        text = "Working..."
        if self.verbose:
            text += f" (iteration {iteration}/{max_iterations})"
        self.spinner.start(text)

    def on_iteration_agent_done(self) -> None:
        self.spinner.stop()

    def on_iteration_complete(self, progress: IterationProgress) -> None:
        self.stats.tasks_closed += len(progress.newly_closed)
        self.stats.tasks_created += len(progress.newly_created)
        self.stats.remaining = len(progress.remaining)

        self.console.print(f"[bold]--- Iteration {progress.iteration} ---[/bold]")

        if progress.agent_log:
            self.console.print(progress.agent_log, markup=False, highlight=False)
            self.console.print()

        if progress.newly_closed:
            self.console.print("Task closed:")
            for task in progress.newly_closed:
                self.console.print(f"  [green]✓[/green] {escape(format_task(task))}", highlight=False)

        if progress.newly_created:
            self.console.print(f"Created ({len(progress.newly_created)}):")
            for task in progress.newly_created:
                self.console.print(f"  [cyan]+[/cyan] {escape(format_task(task))}", highlight=False)

        if not progress.newly_closed and not progress.newly_created:
            self.console.print("[dim]No changes[/dim]")

        self.console.print(f"Backlog: {len(progress.remaining)} open tasks remaining")
        self.console.print()

    def on_all_tasks_complete(self) -> None:
        self.stats.outcome = "all tasks complete"
        self.stats.remaining = 0
        self.console.print("[bold green]No remaining tasks. Feature complete![/bold green]")

    def on_user_stopped(self) -> None:
        self.stats.outcome = "stopped by user"
        # Counts from the last completed iteration miss the stopped run.
        self.stats.remaining = None
        self.console.print("[yellow]Stopped by user after iteration completed[/yellow]")

    def should_stop(self) -> bool:
        return self.token.is_set

    def recount(self, initial_tasks: Sequence[Task], tasks: Sequence[Task]) -> None:
        """Recompute run totals from the tracker state at start and at end.

        Args:
            initial_tasks: Snapshot taken before the first iteration.
            tasks: Snapshot taken after the loop returned.
        """
        created, closed, remaining = diff_snapshots(
            initial_tasks,
            [t for t in initial_tasks if t.is_closed],
            tasks,
            [t for t in tasks if t.is_closed],
        )
        self.stats.tasks_created = len(created)
        self.stats.tasks_closed = len(closed)
        self.stats.remaining = len(remaining)

    def finish(self) -> RunStats:
        """Stop the spinner and freeze the run statistics."""
        self.spinner.stop()
        self.stats.end_time = datetime.now()
        return self.stats

    def print_summary(self) -> None:
        """Print a summary table of the run."""
        stats = self.stats
        table = Table(title="Run Summary", show_header=False)
        table.add_column("Metric", style="dim")
        table.add_column("Value")
        table.add_row("Outcome", stats.outcome)
        table.add_row("Iterations", str(stats.iterations))
        table.add_row("Tasks closed", str(stats.tasks_closed))
        table.add_row("Tasks created", str(stats.tasks_created))
        if stats.remaining is not None:
            table.add_row("Open tasks", str(stats.remaining))
        table.add_row("Duration", f"{stats.duration_seconds:.1f}s")
        self.console.print(table)
