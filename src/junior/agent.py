"""OpenCode agent runners.

An agent run spawns one OpenCode process bound to a prompt and a working
directory, then blocks until it exits. Runs never raise: a spawn error or a
non-zero exit is logged and treated the same as a successful run, since the
loop judges progress from the task tracker, not from the agent's exit code.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
import sys
import tarfile
import tempfile
from contextlib import contextmanager
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

PERMISSION_ENV = "OPENCODE_PERMISSION"
ALLOW_ALL_PERMISSION = '{"*":"allow"}'

DEFAULT_MODEL = "opencode/grok-code"
DEFAULT_DOCKER_IMAGE = "ghcr.io/anomalyco/opencode"

BEADS_RELEASES_API = "https://api.github.com/repos/steveyegge/beads/releases/latest"
BEADS_DOWNLOAD_URL = "https://github.com/steveyegge/beads/releases/download/{tag}/{archive}"
CONTAINER_PATH = "/host-bin:/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


@dataclass
class AgentConfig:
    """Settings fixed for the lifetime of an agent runner."""

    workdir: Path
    verbose: bool = False
    log_file: Optional[Path] = None
    model: str = DEFAULT_MODEL
    command: str = "opencode"
    docker_image: str = DEFAULT_DOCKER_IMAGE


class Agent(Protocol):
    """Interface the iteration loop uses to invoke the coding agent."""

    def run(self, prompt: str) -> None:
        ...


class _SubprocessAgent(ABC):
    """Shared process handling for OpenCode runners."""

    def __init__(self, config: AgentConfig):
        self.config = config
        self.workdir = Path(config.workdir)
        self.verbose = config.verbose
        self.log_file = config.log_file

    @abstractmethod
    def build_command(self, prompt: str) -> List[str]:
        """Build the full command line for one run."""
        pass

    def build_env(self) -> Optional[dict]:
        return None

    def build_cwd(self) -> Optional[Path]:
        return None

    @contextmanager
    def _output_target(self) -> Iterator[object]:
        """Yield where the child's stdout/stderr should go."""
        if self.verbose and self.log_file:
            with open(self.log_file, "ab") as f:
                yield f
        else:
            yield subprocess.DEVNULL

    def run(self, prompt: str) -> None:
        """Run the agent once and wait for it to exit.

        Args:
            prompt: Instructions passed to OpenCode.
        """
        cmd = self.build_command(prompt)
        logger.debug(f"Starting agent: {cmd[0]} ({len(prompt)} char prompt)")

        try:
            with self._output_target() as output:
                # Without verbose output the agent gets its own session so a
                # Ctrl+C in the terminal only reaches us, not the agent.
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=output,
                    stderr=output,
                    cwd=self.build_cwd(),
                    env=self.build_env(),
                    start_new_session=not self.verbose,
                )
                returncode = process.wait()
        except OSError as e:
            logger.warning(f"Failed to start agent {cmd[0]}: {e}")
            return

        if returncode != 0:
            logger.debug(f"Agent exited with code {returncode}")


class OpenCodeAgent(_SubprocessAgent):
    """Runs OpenCode directly on the host."""

    def build_command(self, prompt: str) -> List[str]:
        return [self.config.command, "run", "-m", self.config.model, prompt]

    def build_env(self) -> dict:
        env = os.environ.copy()
        env[PERMISSION_ENV] = ALLOW_ALL_PERMISSION
        return env

    def build_cwd(self) -> Path:
        return self.workdir


class OpenCodeDockerAgent(_SubprocessAgent):
    """Runs OpenCode inside a Docker container with the workdir mounted."""

    def __init__(self, config: AgentConfig, bd_resolver: Optional[Callable[[], Optional[Path]]] = None):
        super().__init__(config)
        self.bd_resolver = bd_resolver or resolve_container_bd

    def build_command(self, prompt: str) -> List[str]:
        args = [
            "docker", "run", "--rm", "-i",
            "-v", f"{self.workdir}:/workspace",
            "-w", "/workspace",
        ]

        bd_path = self.bd_resolver()
        if bd_path:
            args += [
                "-v", f"{bd_path.parent}:/host-bin:ro",
                "-e", f"PATH={CONTAINER_PATH}",
            ]
        else:
            logger.warning("bd not found in PATH; Docker agent may fail.")

        args += [
            "-e", f"{PERMISSION_ENV}={ALLOW_ALL_PERMISSION}",
            self.config.docker_image,
            "run", "-m", self.config.model, prompt,
        ]
        return args


def create_agent(config: AgentConfig, docker: bool = False) -> Agent:
    """Create the agent runner for the requested mode."""
    if docker:
        return OpenCodeDockerAgent(config)
    return OpenCodeAgent(config)


# =============================================================================
# bd binary for the container
# =============================================================================


def linux_arch(machine: Optional[str] = None) -> Optional[str]:
    """Map the host CPU to a Beads release architecture, or None if unsupported."""
    machine = (machine or platform.machine()).lower()
    if machine in ("arm64", "aarch64"):
        return "arm64"
    if machine in ("x86_64", "amd64"):
        return "amd64"
    return None


def resolve_container_bd() -> Optional[Path]:
    """Find a Linux ``bd`` binary that can be mounted into the container.

    On Linux the host binary works as is. Elsewhere a Linux build is
    downloaded once and cached.
    """
    if sys.platform.startswith("linux"):
        found = shutil.which("bd")
        return Path(found) if found else None
    return ensure_linux_bd()


def ensure_linux_bd(cache_root: Optional[Path] = None, client: Optional[httpx.Client] = None) -> Optional[Path]:
    """Return a cached Linux ``bd``, downloading the latest release if needed.

    Args:
        cache_root: Cache directory. Defaults to ~/.cache/junior/bd.
        client: Optional HTTP client (for tests).

    Returns:
        Path to the executable, or None if it could not be obtained.
    """
    arch = linux_arch()
    if not arch:
        return None

    cache_dir = (cache_root or Path.home() / ".cache" / "junior" / "bd") / f"linux_{arch}"
    cache_bin = cache_dir / "bd"
    if cache_bin.exists() and os.access(cache_bin, os.X_OK):
        return cache_bin

    cache_dir.mkdir(parents=True, exist_ok=True)
    owns_client = client is None
    client = client or httpx.Client(timeout=60, follow_redirects=True)

    try:
        meta = client.get(BEADS_RELEASES_API, headers={"User-Agent": "junior"})
        meta.raise_for_status()
        tag = meta.json().get("tag_name")
        if not tag:
            return None

        version = tag[1:] if tag.startswith("v") else tag
        archive_name = f"beads_{version}_linux_{arch}.tar.gz"
        download = client.get(BEADS_DOWNLOAD_URL.format(tag=tag, archive=archive_name))
        download.raise_for_status()

        with tempfile.TemporaryDirectory(prefix="junior-bd-") as tmp:
            archive_path = Path(tmp) / archive_name
            archive_path.write_bytes(download.content)
            with tarfile.open(archive_path, "r:gz") as tar:
                member = next((m for m in tar.getmembers() if Path(m.name).name == "bd" and m.isfile()), None)
                if member is None:
                    return None
                extracted = tar.extractfile(member)
                if extracted is None:
                    return None
                cache_bin.write_bytes(extracted.read())
    except (httpx.HTTPError, tarfile.TarError, OSError, ValueError) as e:
        logger.warning(f"Failed to download bd for Docker: {e}")
        return None
    finally:
        if owns_client:
            client.close()

    cache_bin.chmod(0o755)
    logger.info(f"Cached bd {tag} at {cache_bin}")
    return cache_bin


class MockAgent:
    """Mock agent for testing.

    ``on_run`` is called with the 1-based run number, letting tests change
    tracker state the way a real agent would.
    """

    def __init__(self, on_run: Optional[Callable[[int], None]] = None):
        self.on_run = on_run
        self.call_count = 0
        self.prompts: List[str] = []

    def run(self, prompt: str) -> None:
        self.call_count += 1
        self.prompts.append(prompt)
        if self.on_run:
            self.on_run(self.call_count)
