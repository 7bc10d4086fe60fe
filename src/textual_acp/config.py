"""Backend configuration, retry policy and logging switches."""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .errors import ConfigError

log = logging.getLogger(__name__)

# Raw JSON-RPC traffic goes to its own logger (controlled by TEXTUAL_ACP_LOG_WIRE)
wire_log = logging.getLogger("textual_acp.wire")

_logging_configured = False


class BackendKind(str, Enum):
    """Supported agent backends."""

    OPENCODE = "opencode"
    CODEX = "codex"


DEFAULT_COMMAND = "opencode"


@dataclass(frozen=True)
class BackendConfig:
    """Immutable per-process backend selection.

    ``command`` is either a program name (launched as ``<command> acp``) or an
    argument vector that is used verbatim.
    """

    kind: BackendKind = BackendKind.OPENCODE
    command: str | tuple[str, ...] = DEFAULT_COMMAND
    cwd: str | None = None
    agent: str | None = None
    model: str | None = None

    @property
    def backend_name(self) -> str:
        return self.kind.value

    @classmethod
    def from_mapping(cls, options: Mapping[str, object]) -> BackendConfig:
        """Build a config from user options, validating the backend kind.

        Args:
            options: Keys ``backend``, ``command``, ``cwd``, ``agent``, ``model``

        Raises:
            ConfigError: Unknown backend or malformed command
        """
        kind = _validate_backend(options.get("backend"))

        command: str | tuple[str, ...]
        raw_command = options.get("command")
        if raw_command is None or raw_command == "":
            command = DEFAULT_COMMAND
        elif isinstance(raw_command, str):
            command = raw_command
        elif isinstance(raw_command, (list, tuple)):
            if not raw_command or not all(isinstance(p, str) and p for p in raw_command):
                raise ConfigError(f"Invalid ACP command {raw_command!r}: expected non-empty strings")
            command = tuple(raw_command)
        else:
            raise ConfigError(f"Invalid ACP command {raw_command!r}")

        return cls(
            kind=kind,
            command=command,
            cwd=_optional_str(options.get("cwd")),
            agent=_optional_str(options.get("agent")),
            model=_optional_str(options.get("model")),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BackendConfig:
        """Build a config from ``TEXTUAL_ACP_*`` environment variables."""
        env = os.environ if environ is None else environ
        command: str | list[str] | None = env.get("TEXTUAL_ACP_COMMAND")
        if command and " " in command.strip():
            command = shlex.split(command)
        return cls.from_mapping(
            {
                "backend": env.get("TEXTUAL_ACP_BACKEND"),
                "command": command,
                "cwd": env.get("TEXTUAL_ACP_CWD"),
                "agent": env.get("TEXTUAL_ACP_AGENT"),
                "model": env.get("TEXTUAL_ACP_MODEL"),
            }
        )


def _validate_backend(backend: object) -> BackendKind:
    if backend is None or backend == "":
        return BackendKind.OPENCODE
    if isinstance(backend, BackendKind):
        return backend
    try:
        return BackendKind(str(backend))
    except ValueError:
        expected = " or ".join(f'"{k.value}"' for k in BackendKind)
        raise ConfigError(f"Invalid backend {backend!r} (expected {expected})") from None


def _optional_str(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class RetryPolicy:
    """Timing for handshake retries and per-call deadlines (seconds)."""

    max_attempts: int = 3
    base_delay: float = 0.2
    settle_delay: float = 0.1
    setting_timeout: float = 5.0
    stop_grace: float = 0.1

    def delay(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (quadratic)."""
        return self.base_delay * attempt * attempt


def configure_logging() -> None:
    """Enable file logging from ``TEXTUAL_ACP_LOGGING_LEVEL`` / ``TEXTUAL_ACP_LOG_WIRE``."""
    global _logging_configured
    if _logging_configured:
        return
    _logging_configured = True

    level_name = os.environ.get("TEXTUAL_ACP_LOGGING_LEVEL", "").upper()
    if level_name:
        logging.basicConfig(
            filename="textual_acp.log",
            level=getattr(logging, level_name, logging.DEBUG),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    wire_log.setLevel(logging.DEBUG)
    wire_log.propagate = False  # Don't flood the main log with payloads
    if os.environ.get("TEXTUAL_ACP_LOG_WIRE"):
        handler = logging.FileHandler("acp_wire.log", mode="w")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        wire_log.addHandler(handler)
