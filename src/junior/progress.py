"""Progress file reading.

The agent appends a short note to a progress file after each task. The loop
only reads it, and treats anything appended since the last read as the
agent's log for that iteration.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ProgressReader:
    """Reads the agent's progress file, returning "" when there is none."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None

    def read(self) -> str:
        if self.path is None or not self.path.exists():
            return ""
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read progress file {self.path}: {e}")
            return ""

    __call__ = read


def extract_agent_log(previous: str, current: str) -> Optional[str]:
    """Return the text appended to the progress file since the last read.

    This assumes the file is append-only: when it did not grow, or only grew
    by whitespace, there is no log.

    Args:
        previous: Progress file text before the iteration.
        current: Progress file text after the iteration.

    Returns:
        The stripped appended text, or None.
    """
    if len(current) <= len(previous):
        return None
    appended = current[len(previous):].strip()
    return appended or None
