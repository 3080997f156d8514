"""Tests for OpenCode agent runners."""

from __future__ import annotations

import io
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from junior.agent import (
    ALLOW_ALL_PERMISSION,
    PERMISSION_ENV,
    AgentConfig,
    MockAgent,
    OpenCodeAgent,
    OpenCodeDockerAgent,
    _SubprocessAgent,
    create_agent,
    ensure_linux_bd,
    linux_arch,
)


def popen_returning(returncode: int) -> MagicMock:
    process = MagicMock()
    process.wait.return_value = returncode
    return process


class TestOpenCodeAgent:
    """Tests for OpenCodeAgent."""

    def test_command(self, tmp_path: Path):
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path))

        assert agent.build_command("fix it") == ["opencode", "run", "-m", "opencode/grok-code", "fix it"]

    def test_custom_model(self, tmp_path: Path):
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path, model="anthropic/claude"))

        assert agent.build_command("p")[3] == "anthropic/claude"

    def test_run_quiet(self, tmp_path: Path):
        """Test a quiet run discards output and detaches from the terminal."""
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path))

        with patch("subprocess.Popen", return_value=popen_returning(0)) as mock_popen:
            agent.run("do work")

        kwargs = mock_popen.call_args[1]
        assert kwargs["cwd"] == tmp_path
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert kwargs["stdout"] == subprocess.DEVNULL
        assert kwargs["stderr"] == subprocess.DEVNULL
        assert kwargs["start_new_session"] is True
        assert kwargs["env"][PERMISSION_ENV] == ALLOW_ALL_PERMISSION

    def test_env_inherits_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("JUNIOR_TEST_VAR", "kept")
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path))

        env = agent.build_env()

        assert env["JUNIOR_TEST_VAR"] == "kept"
        assert env[PERMISSION_ENV] == ALLOW_ALL_PERMISSION

    def test_run_verbose_writes_log(self, tmp_path: Path):
        """Test verbose runs send output to the log file."""
        log_file = tmp_path / "agent.log"
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path, verbose=True, log_file=log_file))

        with patch("subprocess.Popen", return_value=popen_returning(0)) as mock_popen:
            agent.run("do work")

        kwargs = mock_popen.call_args[1]
        assert kwargs["stdout"] is kwargs["stderr"]
        assert Path(kwargs["stdout"].name) == log_file
        assert kwargs["start_new_session"] is False
        assert log_file.exists()

    def test_run_with_real_process_appends_output(self, tmp_path: Path):
        """Test real process output lands in the verbose log."""
        log_file = tmp_path / "agent.log"
        log_file.write_text("earlier\n")
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path, verbose=True, log_file=log_file))

        with patch.object(agent, "build_command", return_value=["sh", "-c", "echo out; echo err >&2"]):
            agent.run("ignored")

        content = log_file.read_text()
        assert content.startswith("earlier\n")
        assert "out" in content
        assert "err" in content

    def test_nonzero_exit_does_not_raise(self, tmp_path: Path):
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path))

        with patch("subprocess.Popen", return_value=popen_returning(3)):
            agent.run("p")

    def test_spawn_error_does_not_raise(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        """Test a missing opencode binary is logged and swallowed."""
        agent = OpenCodeAgent(AgentConfig(workdir=tmp_path))

        with patch("subprocess.Popen", side_effect=FileNotFoundError("opencode")):
            with caplog.at_level("WARNING"):
                agent.run("p")

        assert "Failed to start agent" in caplog.text


class TestOpenCodeDockerAgent:
    """Tests for OpenCodeDockerAgent."""

    def test_command_with_bd(self, tmp_path: Path):
        """Test the host bd directory is mounted into the container."""
        bd = tmp_path / "bin" / "bd"
        agent = OpenCodeDockerAgent(AgentConfig(workdir=tmp_path), bd_resolver=lambda: bd)

        cmd = agent.build_command("p")

        assert cmd[:4] == ["docker", "run", "--rm", "-i"]
        assert f"{tmp_path}:/workspace" in cmd
        assert f"{bd.parent}:/host-bin:ro" in cmd
        assert any(arg.startswith("PATH=/host-bin:") for arg in cmd)
        assert f"{PERMISSION_ENV}={ALLOW_ALL_PERMISSION}" in cmd
        assert cmd[-5:] == ["ghcr.io/anomalyco/opencode", "run", "-m", "opencode/grok-code", "p"]

    def test_command_without_bd(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        agent = OpenCodeDockerAgent(AgentConfig(workdir=tmp_path), bd_resolver=lambda: None)

        with caplog.at_level("WARNING"):
            cmd = agent.build_command("p")

        assert not any(":/host-bin:ro" in arg for arg in cmd)
        assert "bd not found" in caplog.text

    def test_run_has_no_cwd_or_env_override(self, tmp_path: Path):
        agent = OpenCodeDockerAgent(AgentConfig(workdir=tmp_path), bd_resolver=lambda: None)

        with patch("subprocess.Popen", return_value=popen_returning(0)) as mock_popen:
            agent.run("p")

        kwargs = mock_popen.call_args[1]
        assert kwargs["cwd"] is None
        assert kwargs["env"] is None


class TestCreateAgent:
    """Tests for create_agent."""

    def test_host(self, tmp_path: Path):
        assert isinstance(create_agent(AgentConfig(workdir=tmp_path)), OpenCodeAgent)

    def test_docker(self, tmp_path: Path):
        assert isinstance(create_agent(AgentConfig(workdir=tmp_path), docker=True), OpenCodeDockerAgent)


class TestEnsureLinuxBd:
    """Tests for downloading bd for the container."""

    def test_linux_arch(self):
        assert linux_arch("x86_64") == "amd64"
        assert linux_arch("aarch64") == "arm64"
        assert linux_arch("arm64") == "arm64"
        assert linux_arch("riscv64") is None

    def test_uses_cache(self, tmp_path: Path):
        """Test a cached binary is reused without network access."""
        with patch("junior.agent.linux_arch", return_value="amd64"):
            cached = tmp_path / "linux_amd64" / "bd"
            cached.parent.mkdir(parents=True)
            cached.write_text("#!/bin/sh\n")
            cached.chmod(0o755)

            client = MagicMock()
            assert ensure_linux_bd(cache_root=tmp_path, client=client) == cached
            client.get.assert_not_called()

    def test_downloads_latest_release(self, tmp_path: Path):
        """Test the release archive is fetched and bd extracted."""
        archive = io.BytesIO()
        with tarfile.open(fileobj=archive, mode="w:gz") as tar:
            payload = b"binary"
            info = tarfile.TarInfo("bd")
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))

        def handler(request: httpx.Request) -> httpx.Response:
            if "api.github.com" in str(request.url):
                return httpx.Response(200, json={"tag_name": "v1.2.3"})
            assert str(request.url).endswith("/v1.2.3/beads_1.2.3_linux_amd64.tar.gz")
            return httpx.Response(200, content=archive.getvalue())

        client = httpx.Client(transport=httpx.MockTransport(handler))
        with patch("junior.agent.linux_arch", return_value="amd64"):
            path = ensure_linux_bd(cache_root=tmp_path, client=client)

        assert path == tmp_path / "linux_amd64" / "bd"
        assert path.read_bytes() == b"binary"

    def test_download_failure(self, tmp_path: Path):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        with patch("junior.agent.linux_arch", return_value="amd64"):
            assert ensure_linux_bd(cache_root=tmp_path, client=client) is None

    def test_unsupported_arch(self, tmp_path: Path):
        with patch("junior.agent.linux_arch", return_value=None):
            assert ensure_linux_bd(cache_root=tmp_path) is None


class TestMockAgent:
    """Tests for MockAgent."""

    def test_records_calls(self):
        runs = []
        agent = MockAgent(on_run=runs.append)

        agent.run("a")
        agent.run("b")

        assert agent.call_count == 2
        assert agent.prompts == ["a", "b"]
        assert runs == [1, 2]


class TestSubprocessAgentBase:
    """Tests for the shared runner base."""

    def test_base_requires_build_command(self, tmp_path: Path):
        with pytest.raises(TypeError):
            _SubprocessAgent(AgentConfig(workdir=tmp_path))
