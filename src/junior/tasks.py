"""Task tracking backed by the Beads issue tracker.

This module wraps the ``bd`` CLI so the iteration loop can:
- List every task in the backlog (any status)
- Filter the closed subset
- Move a task back to ``ready`` when an agent run left it half done

Every call shells out to ``bd`` in the working directory. Tracker failures
are logged and swallowed at this boundary: ``list()`` returns an empty list
and ``set_status()`` returns normally. Callers that need to tell "tracker
failed" apart from "tracker is empty" use ``fetch()``.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class TaskStatus:
    """Task states the loop cares about."""

    READY = "ready"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


@dataclass
class Task:
    """A task record from the tracker."""

    id: str
    title: str = ""
    status: str = TaskStatus.READY
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_closed(self) -> bool:
        return self.status == TaskStatus.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        d = dict(self.extra)
        d.update({"id": self.id, "title": self.title, "status": self.status})
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Task:
        data = dict(data)
        return cls(
            id=str(data.pop("id")),
            title=str(data.pop("title", "")),
            status=str(data.pop("status", TaskStatus.READY)),
            extra=data,
        )


@dataclass
class TaskListResult:
    """Outcome of a single tracker query."""

    ok: bool
    tasks: List[Task] = field(default_factory=list)
    error: Optional[str] = None


class TaskBackendError(Exception):
    """Exception raised for task backend misconfiguration."""
    pass


class TaskBackend(Protocol):
    """Interface the iteration loop uses to read and correct task state."""

    def list(self) -> List[Task]:
        ...

    def get_closed(self) -> List[Task]:
        ...

    def set_status(self, task_id: str, status: str) -> None:
        ...


def parse_task_list(output: str) -> List[Task]:
    """Parse ``bd list --json`` output into Task objects.

    Args:
        output: Raw stdout of the tracker.

    Returns:
        List of tasks in tracker order.

    Raises:
        ValueError: If the output is not a JSON array of task records.
    """
    if not output.strip():
        return []

    data = json.loads(output)
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of tasks, got {type(data).__name__}")

    tasks = []
    for item in data:
        if not isinstance(item, dict) or "id" not in item:
            raise ValueError(f"Malformed task record: {item!r}")
        tasks.append(Task.from_dict(item))
    return tasks


class BeadsTaskBackend:
    """Task backend that shells out to the Beads ``bd`` CLI."""

    def __init__(
        self,
        workdir: Path,
        bd_command: str = "bd",
        timeout: int = 60,
    ):
        """Initialize the Beads backend.

        Args:
            workdir: Directory holding the Beads database.
            bd_command: Name or path of the ``bd`` executable.
            timeout: Maximum time in seconds for one tracker call.

        Raises:
            TaskBackendError: If ``bd_command`` is empty.
        """
        if not bd_command:
            raise TaskBackendError("bd command must not be empty")

        self.workdir = Path(workdir)
        self.bd_command = bd_command
        self.timeout = timeout

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.bd_command, *args],
            cwd=self.workdir,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            start_new_session=True,
        )

    def fetch(self) -> TaskListResult:
        """Query all tasks and report whether the query succeeded.

        Returns:
            TaskListResult with the tasks, or the error on failure.
        """
        try:
            result = self._run(["list", "--json", "--type", "task", "--all"])
        except FileNotFoundError:
            return TaskListResult(ok=False, error=f"{self.bd_command} not found in PATH")
        except subprocess.TimeoutExpired:
            return TaskListResult(
                ok=False,
                error=f"{self.bd_command} list timed out after {self.timeout} seconds",
            )
        except OSError as e:
            return TaskListResult(ok=False, error=str(e))

        if result.returncode != 0:
            error_msg = result.stderr.strip() or f"{self.bd_command} list exited with code {result.returncode}"
            return TaskListResult(ok=False, error=error_msg)

        try:
            tasks = parse_task_list(result.stdout)
        except ValueError as e:
            return TaskListResult(ok=False, error=f"Invalid tracker output: {e}")

        return TaskListResult(ok=True, tasks=tasks)

    def list(self) -> List[Task]:
        """Get all tasks regardless of status; empty on tracker failure."""
        result = self.fetch()
        if not result.ok:
            logger.error(f"Failed to get tasks: {result.error}")
            return []
        return result.tasks

    def get_closed(self) -> List[Task]:
        """Get the closed subset of all tasks."""
        return [t for t in self.list() if t.is_closed]

    def set_status(self, task_id: str, status: str) -> None:
        """Update a task's status.

        Args:
            task_id: Task ID to update.
            status: New status (ready, in_progress, closed).
        """
        try:
            result = self._run(["update", task_id, "--status", status])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to set status of {task_id} to {status}: {e}")
            return

        if result.returncode != 0:
            logger.error(
                f"Failed to set status of {task_id} to {status}: "
                f"{result.stderr.strip() or f'exit code {result.returncode}'}"
            )
            return

        logger.debug(f"Task {task_id} status -> {status}")


class MockTaskBackend:
    """In-memory task backend for testing."""

    def __init__(self, tasks: Optional[List[Task]] = None):
        self.tasks: List[Task] = list(tasks or [])
        self.status_updates: List[tuple] = []
        self.list_calls = 0

    def list(self) -> List[Task]:
        self.list_calls += 1
        return [Task(t.id, t.title, t.status, dict(t.extra)) for t in self.tasks]

    def get_closed(self) -> List[Task]:
        return [t for t in self.list() if t.is_closed]

    def set_status(self, task_id: str, status: str) -> None:
        self.status_updates.append((task_id, status))
        for task in self.tasks:
            if task.id == task_id:
                task.status = status

    def add_task(self, task_id: str, title: str = "", status: str = TaskStatus.READY) -> Task:
        task = Task(id=task_id, title=title or f"Task {task_id}", status=status)
        self.tasks.append(task)
        return task

    def close_task(self, task_id: str) -> None:
        for task in self.tasks:
            if task.id == task_id:
                task.status = TaskStatus.CLOSED
