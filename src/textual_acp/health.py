"""Environment checks for the configured backend."""

from __future__ import annotations

import shutil
from dataclasses import dataclass

from .config import BackendConfig, BackendKind
from .session_storage import git_toplevel


@dataclass
class HealthCheck:
    name: str
    ok: bool
    message: str
    required: bool = True

    @property
    def level(self) -> str:
        if self.ok:
            return "ok"
        return "error" if self.required else "warning"


def check_executable(name: str, description: str, required: bool = True) -> HealthCheck:
    if shutil.which(name):
        return HealthCheck(name, True, f"{description} is available", required)
    suffix = " (required)" if required else ""
    return HealthCheck(name, False, f"{description} is not available{suffix}", required)


def check_health(config: BackendConfig) -> list[HealthCheck]:
    """Check that the backend's executables (and optional tools) are installed."""
    checks: list[HealthCheck] = []
    if config.kind is BackendKind.CODEX:
        checks.append(check_executable("bunx", "bunx (required for codex backend)"))
        checks.append(check_executable("bun", "bun runtime", required=False))
    else:
        command = config.command[0] if isinstance(config.command, tuple) else config.command
        checks.append(check_executable(command, f"{command} (ACP backend)"))

    git = check_executable("git", "git (for project session persistence)", required=False)
    checks.append(git)
    if git.ok:
        if git_toplevel(config.cwd):
            checks.append(HealthCheck("git-repo", True, "Inside git repository", required=False))
        else:
            checks.append(
                HealthCheck(
                    "git-repo",
                    False,
                    "Not inside a git repository (sessions will be keyed by cwd)",
                    required=False,
                )
            )
    return checks


def healthy(checks: list[HealthCheck]) -> bool:
    """False when any required check failed."""
    return all(check.ok or not check.required for check in checks)


def format_checks(checks: list[HealthCheck]) -> str:
    icons = {"ok": "✅", "warning": "⚠️ ", "error": "❌"}
    return "\n".join(f"{icons[check.level]} {check.message}" for check in checks)
