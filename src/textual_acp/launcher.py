"""Agent subprocess launcher.

Builds the command line for the configured backend and starts the agent
with piped stdio.
"""

from __future__ import annotations

import asyncio
import asyncio.subprocess as aio_subprocess
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Protocol

from .config import BackendConfig, BackendKind
from .errors import ConfigError, LaunchError

log = logging.getLogger(__name__)

CODEX_LAUNCHER = "bunx"
CODEX_ARGS = ["-y", "@zed-industries/codex-acp"]

# Default StreamReader limit is 64KB; session payloads can be much larger
STDOUT_LIMIT = 10 * 1024 * 1024


class ProcessLike(Protocol):
    """The parts of :class:`asyncio.subprocess.Process` a connection uses."""

    stdin: asyncio.StreamWriter | None
    stdout: asyncio.StreamReader | None
    returncode: int | None

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


Launcher = Callable[[BackendConfig, str], Awaitable[ProcessLike]]


def build_command(config: BackendConfig) -> tuple[str, list[str]]:
    """Return the executable and argument vector for a backend.

    Raises:
        ConfigError: Unsupported backend kind or empty command
    """
    if config.kind is BackendKind.CODEX:
        return CODEX_LAUNCHER, list(CODEX_ARGS)

    if config.kind is not BackendKind.OPENCODE:
        raise ConfigError(f"Unsupported backend: {config.kind!r}")

    command = config.command
    # Argument vector form bypasses the implicit "acp" argument
    if isinstance(command, tuple):
        if not command:
            raise ConfigError("ACP command vector is empty")
        return command[0], list(command[1:])

    if not command:
        raise ConfigError("ACP command is empty")

    # A local agent script that isn't executable runs with this interpreter
    program_path = Path(command)
    if program_path.suffix == ".py" and program_path.exists() and not os.access(program_path, os.X_OK):
        return sys.executable, [str(program_path), "acp"]

    return command, ["acp"]


def launch_hint(config: BackendConfig) -> str:
    """Hint appended to launch failures."""
    if config.kind is BackendKind.CODEX:
        return f' (ensure "{CODEX_LAUNCHER}" is available in $PATH and your OpenAI credentials are set)'
    return ""


def command_line(config: BackendConfig) -> str:
    program, args = build_command(config)
    return " ".join([program, *args])


async def spawn(config: BackendConfig, cwd: str) -> aio_subprocess.Process:
    """Start the agent subprocess for ``config`` in ``cwd``.

    Raises:
        ConfigError: The configuration cannot produce a command
        LaunchError: The process could not be started
    """
    program, args = build_command(config)
    log.info(f"Spawning ACP agent: {program} {' '.join(args)} (cwd={cwd})")

    try:
        proc = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=aio_subprocess.PIPE,
            stdout=aio_subprocess.PIPE,
            stderr=aio_subprocess.PIPE,
            cwd=cwd,
            limit=STDOUT_LIMIT,
        )
    except OSError as e:
        raise LaunchError(
            f"Failed to start ACP subprocess (backend={config.backend_name}): "
            f"{program} {' '.join(args)}: {e}{launch_hint(config)}"
        ) from e

    if proc.stdin is None or proc.stdout is None:
        proc.kill()
        raise LaunchError("Agent process does not expose stdio pipes")

    if proc.stderr is not None:
        asyncio.create_task(_log_stderr(proc.stderr, config.backend_name))

    return proc


async def _log_stderr(stream: asyncio.StreamReader, backend: str) -> None:
    """Drain agent stderr into the debug log."""
    try:
        while True:
            line = await stream.readline()
            if not line:
                break
            decoded = line.decode(errors="replace").strip()
            if decoded:
                log.debug(f"[{backend} stderr] {decoded}")
    except Exception as e:
        log.debug(f"Error reading stderr: {e}")
