"""Configuration management for junior."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from .agent import DEFAULT_DOCKER_IMAGE, DEFAULT_MODEL

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "junior.yaml"
DEFAULT_PROGRESS_FILE = "progress.txt"


def load_file_settings(workdir: Path) -> dict:
    """Load settings from ``junior.yaml`` in the working directory.

    Returns:
        Dictionary of settings; empty if the file doesn't exist.
    """
    path = workdir / CONFIG_FILE_NAME
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a mapping at top level")
        return {}
    return data


def _setting(env_name: str, file_settings: dict, key: str, default: Any) -> Any:
    """Environment beats the config file, which beats the default."""
    value = os.getenv(env_name)
    if value is not None and value != "":
        return value
    return file_settings.get(key, default)


@dataclass
class Config:
    """Configuration settings for a loop run."""

    # Paths
    workdir: Path = field(default_factory=Path.cwd)
    verbose_log_file: Path = field(default_factory=lambda: Path.cwd() / "temp" / "opencode-stdout.jsonl")

    # Loop Settings
    max_iterations: int = 50

    # Agent Settings
    model: str = DEFAULT_MODEL
    docker_image: str = DEFAULT_DOCKER_IMAGE

    # Tracker Settings
    bd_command: str = "bd"
    tracker_timeout: int = 60

    # Runtime Settings
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, workdir: Optional[Path] = None) -> Config:
        """Load configuration from the environment and ``junior.yaml``.

        Args:
            workdir: Working directory of the run. Defaults to CWD.

        Returns:
            Config instance.
        """
        load_dotenv()

        workdir = Path(workdir).resolve() if workdir else Path.cwd()
        file_settings = load_file_settings(workdir) if workdir.is_dir() else {}

        verbose_log = Path(_setting("JUNIOR_VERBOSE_LOG", file_settings, "verbose_log_file", "temp/opencode-stdout.jsonl"))
        if not verbose_log.is_absolute():
            verbose_log = Path.cwd() / verbose_log

        return cls(
            workdir=workdir,
            verbose_log_file=verbose_log,
            max_iterations=int(_setting("JUNIOR_MAX_ITERATIONS", file_settings, "max_iterations", 50)),
            model=str(_setting("JUNIOR_MODEL", file_settings, "model", DEFAULT_MODEL)),
            docker_image=str(_setting("JUNIOR_DOCKER_IMAGE", file_settings, "docker_image", DEFAULT_DOCKER_IMAGE)),
            bd_command=str(_setting("JUNIOR_BD_COMMAND", file_settings, "bd_command", "bd")),
            tracker_timeout=int(_setting("JUNIOR_TRACKER_TIMEOUT", file_settings, "tracker_timeout", 60)),
            log_level=str(_setting("JUNIOR_LOG_LEVEL", file_settings, "log_level", "WARNING")).upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors = []

        if not self.workdir.exists():
            errors.append(f"Working directory does not exist: {self.workdir}")
        elif not self.workdir.is_dir():
            errors.append(f"Working directory is not a directory: {self.workdir}")

        if self.max_iterations <= 0:
            errors.append(f"max_iterations must be positive, got {self.max_iterations}")

        if self.tracker_timeout <= 0:
            errors.append(f"tracker_timeout must be positive, got {self.tracker_timeout}")

        return errors

    def progress_path(self, progress: Optional[str]) -> Optional[Path]:
        """Resolve a ``--progress`` value against the working directory."""
        if not progress:
            return None
        return (self.workdir / progress).resolve()
