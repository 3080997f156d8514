"""Shared test fixtures for junior tests."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest

from junior.loop import IterationProgress
from junior.tasks import MockTaskBackend, Task, TaskStatus


class RecordingDelegate:
    """Loop delegate that records every callback."""

    def __init__(self, stop_after: Optional[int] = None):
        self.stop_after = stop_after
        self.events: List[tuple] = []
        self.messages: List[str] = []
        self.progress: List[IterationProgress] = []
        self.agent_done_count = 0

    def log(self, message: str) -> None:
        self.messages.append(message)
        self.events.append(("log", message))

    def on_iteration_start(self, iteration: int, max_iterations: int) -> None:
        self.events.append(("start", iteration, max_iterations))

    def on_iteration_agent_done(self) -> None:
        self.agent_done_count += 1
        self.events.append(("agent_done",))

    def on_iteration_complete(self, progress: IterationProgress) -> None:
        self.progress.append(progress)
        self.events.append(("complete", progress.iteration))

    def on_all_tasks_complete(self) -> None:
        self.events.append(("all_complete",))

    def on_user_stopped(self) -> None:
        self.events.append(("user_stopped",))

    def should_stop(self) -> bool:
        return self.stop_after is not None and self.agent_done_count >= self.stop_after

    def count(self, name: str) -> int:
        return sum(1 for e in self.events if e[0] == name)


@pytest.fixture
def delegate() -> RecordingDelegate:
    return RecordingDelegate()


@pytest.fixture
def backlog() -> MockTaskBackend:
    """Three-task backlog: one ready, one closed, one left in progress."""
    return MockTaskBackend([
        Task(id="1", title="Add login form", status=TaskStatus.READY),
        Task(id="2", title="Set up CI", status=TaskStatus.CLOSED),
        Task(id="3", title="Write API client", status=TaskStatus.IN_PROGRESS),
    ])


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A working directory with a progress file."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "progress.txt").write_text("")
    return project
