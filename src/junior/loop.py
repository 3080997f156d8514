"""The iteration loop.

Each iteration runs the agent once against the whole backlog, then compares
tracker state before and after the run to report what changed. The loop stops
when the backlog is empty, when the user asks it to stop, or after
``max_iterations`` runs.

The loop owns correction of interrupted work: any task left ``in_progress``
before the first run or after any run is moved back to ``ready``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from .agent import Agent
from .interrupt import StopToken
from .progress import extract_agent_log
from .tasks import Task, TaskBackend, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class IterationProgress:
    """What changed during one iteration."""

    iteration: int
    newly_closed: List[Task] = field(default_factory=list)
    newly_created: List[Task] = field(default_factory=list)
    remaining: List[Task] = field(default_factory=list)
    agent_log: Optional[str] = None


class LoopDelegate(Protocol):
    """Receives loop lifecycle callbacks."""

    def log(self, message: str) -> None:
        ...

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        ...

    def on_iteration_agent_done(self) -> None:
        ...

    def on_iteration_complete(self, progress: IterationProgress) -> None:
        ...

    def on_all_tasks_complete(self) -> None:
        ...

    def on_user_stopped(self) -> None:
        ...

    def should_stop(self) -> bool:
        ...


@dataclass
class LoopConfig:
    """Everything one loop run needs."""

    agent: Agent
    task_backend: TaskBackend
    prompt: str
    max_iterations: int
    read_progress: Callable[[], str]
    stop_token: Optional[StopToken] = None


def open_tasks(tasks: Sequence[Task]) -> List[Task]:
    return [t for t in tasks if t.status != TaskStatus.CLOSED]


def diff_snapshots(
    prev_tasks: Sequence[Task],
    prev_closed: Sequence[Task],
    tasks: Sequence[Task],
    closed: Sequence[Task],
) -> Tuple[List[Task], List[Task], List[Task]]:
    """Compare two tracker snapshots by task id.

    Returns:
        (newly_created, newly_closed, remaining), each in the newer
        snapshot's order.
    """
    prev_task_ids = {t.id for t in prev_tasks}
    prev_closed_ids = {t.id for t in prev_closed}

    newly_created = [t for t in tasks if t.id not in prev_task_ids]
    newly_closed = [t for t in closed if t.id not in prev_closed_ids]
    remaining = open_tasks(tasks)
    return newly_created, newly_closed, remaining


def reset_in_progress(
    task_backend: TaskBackend,
    tasks: Sequence[Task],
    delegate: LoopDelegate,
    header: str,
) -> bool:
    """Move every in-progress task back to ready.

    Args:
        task_backend: Backend to update.
        tasks: Current snapshot.
        delegate: Receives a header line and one line per corrected task.
        header: First line logged when anything is corrected.

    Returns:
        True if any task was corrected.
    """
    in_progress = [t for t in tasks if t.status == TaskStatus.IN_PROGRESS]
    if not in_progress:
        return False

    delegate.log(header)
    for task in in_progress:
        delegate.log(f"  ↩ {task.id} - {task.title}")
        task_backend.set_status(task.id, TaskStatus.READY)
    return True


def get_open_task_count(task_backend: TaskBackend) -> int:
    """Number of tasks that are not closed."""
    tasks = task_backend.list()
    closed = task_backend.get_closed()
    return len(tasks) - len(closed)


def _stop_requested(config: LoopConfig, delegate: LoopDelegate) -> bool:
    if config.stop_token is not None and config.stop_token.is_set:
        return True
    return delegate.should_stop()


def run_loop(config: LoopConfig, delegate: LoopDelegate) -> None:
    """Run the agent until the backlog is empty, a stop is requested, or
    the iteration cap is reached.

    Args:
        config: Agent, backend, prompt and limits for this run.
        delegate: Receives progress callbacks.

    Raises:
        ValueError: If max_iterations is not positive.
    """
    if config.max_iterations <= 0:
        raise ValueError(f"max_iterations must be positive, got {config.max_iterations}")

    agent = config.agent
    task_backend = config.task_backend

    prev_tasks = task_backend.list()
    prev_closed = task_backend.get_closed()
    prev_progress = config.read_progress()

    delegate.log("⏳ Preflight checks...")
    if reset_in_progress(
        task_backend,
        prev_tasks,
        delegate,
        "⚠ Found tasks left in-progress, moving back to 'ready':",
    ):
        prev_tasks = task_backend.list()
    delegate.log("✓ Preflight checks done\n")

    open_count = len(prev_tasks) - len(prev_closed)
    delegate.log(f"{open_count} open tasks\n")
    if open_count == 0:
        delegate.on_all_tasks_complete()
        return

    for iteration in range(1, config.max_iterations + 1):
        # A Ctrl+C during a tracker call can leave an empty snapshot behind.
        if _stop_requested(config, delegate):
            delegate.on_user_stopped()
            break

        if not open_tasks(prev_tasks):
            delegate.on_all_tasks_complete()
            break

        delegate.on_iteration_start(iteration, config.max_iterations)
        logger.debug(f"Iteration {iteration}/{config.max_iterations} started")

        agent.run(config.prompt)

        delegate.on_iteration_agent_done()

        if _stop_requested(config, delegate):
            delegate.on_user_stopped()
            break

        tasks = task_backend.list()
        current_progress = config.read_progress()

        if reset_in_progress(
            task_backend,
            tasks,
            delegate,
            "Agent left tasks in-progress, moving back to 'ready':",
        ):
            tasks = task_backend.list()

        closed = task_backend.get_closed()

        newly_created, newly_closed, remaining = diff_snapshots(
            prev_tasks, prev_closed, tasks, closed
        )

        delegate.on_iteration_complete(
            IterationProgress(
                iteration=iteration,
                newly_closed=newly_closed,
                newly_created=newly_created,
                remaining=remaining,
                agent_log=extract_agent_log(prev_progress, current_progress),
            )
        )

        prev_progress = current_progress
        prev_tasks = tasks
        prev_closed = closed
    else:
        logger.debug(f"Iteration cap of {config.max_iterations} reached")
