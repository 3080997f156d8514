"""Ctrl+C handling for a loop run.

The first interrupt asks the loop to stop once the current agent run has
finished. The agent process keeps running. A second interrupt quits
immediately with exit code 130, skipping cleanup.
"""

from __future__ import annotations

import logging
import os
import signal
from typing import Any, Optional

from rich.console import Console

logger = logging.getLogger(__name__)

FORCE_QUIT_EXIT_CODE = 130
STOPPING_SUFFIX = " (stopping after this iteration, Ctrl+C again to force quit)"


class StopToken:
    """Cancellation flag shared by the interrupt handler and the loop."""

    def __init__(self) -> None:
        self._requested = False

    def request(self) -> None:
        self._requested = True

    @property
    def is_set(self) -> bool:
        return self._requested


class InterruptHandler:
    """Installs a SIGINT handler bound to one run's StopToken."""

    def __init__(self, token: StopToken, spinner: Optional[Any] = None, console: Optional[Console] = None):
        """Initialize the handler.

        Args:
            token: Token to set on the first interrupt.
            spinner: Optional Spinner whose text is updated on interrupt.
            console: Console for the force-quit message.
        """
        self.token = token
        self.spinner = spinner
        self.console = console or Console()
        self._previous = None
        self._installed = False

    def install(self) -> None:
        try:
            self._previous = signal.signal(signal.SIGINT, self.handle)
            self._installed = True
        except ValueError as e:
            logger.warning(f"Cannot register SIGINT handler (not in main thread): {e}")

    def restore(self) -> None:
        if self._installed:
            signal.signal(signal.SIGINT, self._previous)
            self._installed = False

    def handle(self, signum: int, frame: Any) -> None:
        if self.token.is_set:
            if self.spinner:
                self.spinner.stop()
            self.console.print("\n\nForce quit")
            os._exit(FORCE_QUIT_EXIT_CODE)

        self.token.request()
        logger.debug("Stop requested; finishing current iteration")
        if self.spinner:
            self.spinner.update_text(f"{self.spinner.text}{STOPPING_SUFFIX}")

    def __enter__(self) -> InterruptHandler:
        self.install()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.restore()
