"""Tests for backend configuration, retry policy and command building."""

import sys

import pytest

from textual_acp.config import BackendConfig, BackendKind, RetryPolicy
from textual_acp.errors import ConfigError, ErrorKind, LaunchError
from textual_acp.launcher import build_command, command_line, launch_hint, spawn


class TestBackendConfig:
    """Tests for BackendConfig construction."""

    def test_defaults(self) -> None:
        config = BackendConfig.from_mapping({})
        assert config.kind is BackendKind.OPENCODE
        assert config.command == "opencode"
        assert config.backend_name == "opencode"

    def test_invalid_backend(self) -> None:
        """Unknown backends are rejected before anything is launched."""
        with pytest.raises(ConfigError, match="Invalid backend"):
            BackendConfig.from_mapping({"backend": "gemini"})

    def test_config_errors_are_not_retryable(self) -> None:
        with pytest.raises(ConfigError) as excinfo:
            BackendConfig.from_mapping({"backend": "gemini"})
        assert excinfo.value.kind is ErrorKind.CONFIG
        assert not excinfo.value.retryable

    def test_command_list_becomes_tuple(self) -> None:
        config = BackendConfig.from_mapping({"command": ["node", "agent.js"]})
        assert config.command == ("node", "agent.js")

    def test_invalid_command_list(self) -> None:
        with pytest.raises(ConfigError):
            BackendConfig.from_mapping({"command": ["node", ""]})

    def test_from_env(self) -> None:
        config = BackendConfig.from_env(
            {
                "TEXTUAL_ACP_BACKEND": "codex",
                "TEXTUAL_ACP_COMMAND": "node agent.js --fast",
                "TEXTUAL_ACP_CWD": "/tmp/project",
                "TEXTUAL_ACP_MODEL": "gpt-5",
            }
        )
        assert config.kind is BackendKind.CODEX
        assert config.command == ("node", "agent.js", "--fast")
        assert config.cwd == "/tmp/project"
        assert config.model == "gpt-5"
        assert config.agent is None

    def test_config_is_immutable(self) -> None:
        config = BackendConfig()
        with pytest.raises(AttributeError):
            config.model = "x"  # type: ignore[misc]


class TestRetryPolicy:
    """Tests for the handshake backoff."""

    def test_quadratic_delay(self) -> None:
        policy = RetryPolicy()
        assert [policy.delay(n) for n in (1, 2, 3)] == pytest.approx([0.2, 0.8, 1.8])

    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.setting_timeout == 5.0


class TestBuildCommand:
    """Tests for launcher command lines."""

    def test_opencode(self) -> None:
        assert build_command(BackendConfig()) == ("opencode", ["acp"])

    def test_codex(self) -> None:
        """Codex ignores the command and runs the adapter through bunx."""
        config = BackendConfig(kind=BackendKind.CODEX, command="ignored")
        assert build_command(config) == ("bunx", ["-y", "@zed-industries/codex-acp"])
        assert "bunx" in launch_hint(config)

    def test_argument_vector_is_verbatim(self) -> None:
        config = BackendConfig(command=("node", "agent.js"))
        assert build_command(config) == ("node", ["agent.js"])
        assert command_line(config) == "node agent.js"

    def test_python_script(self, tmp_path) -> None:
        """A non-executable .py agent runs with the current interpreter."""
        script = tmp_path / "agent.py"
        script.write_text("print('hi')\n")
        script.chmod(0o644)
        assert build_command(BackendConfig(command=str(script))) == (sys.executable, [str(script), "acp"])

    def test_empty_command(self) -> None:
        with pytest.raises(ConfigError):
            build_command(BackendConfig(command=""))

    @pytest.mark.asyncio
    async def test_spawn_missing_executable(self, tmp_path) -> None:
        """A missing executable is a launch error naming the backend."""
        config = BackendConfig(command=str(tmp_path / "no-such-agent"))
        with pytest.raises(LaunchError, match="backend=opencode"):
            await spawn(config, str(tmp_path))
