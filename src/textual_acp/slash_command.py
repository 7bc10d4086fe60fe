"""Slash command management system with decorator support."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import ACPError, SessionError
from .health import check_health, format_checks
from .status import describe, render_status

if TYPE_CHECKING:
    from .app import ACPApp

# Handlers receive the app and everything after the command name
CommandHandler = Callable[["ACPApp", str], Awaitable[None]]


@dataclass
class SlashCommand:
    """A slash command definition."""

    name: str
    """The command name (without the leading /)."""

    description: str
    """A description of what the command does."""

    handler: CommandHandler | None = None
    """Async handler function for the command."""

    usage: str = ""
    """Argument synopsis shown in /help, e.g. ``<id>``."""

    hidden: bool = False
    """If True, command won't appear in /help but still works."""


@dataclass
class SlashCommandManager:
    """Manages slash commands - registration, lookup, and execution."""

    _commands: dict[str, SlashCommand] = field(default_factory=dict)

    def add(self, command: SlashCommand) -> None:
        self._commands[command.name.lower()] = command

    def remove(self, name: str) -> bool:
        """Remove a slash command by name. Returns True if removed."""
        return self._commands.pop(name.lower(), None) is not None

    def get(self, name: str) -> SlashCommand | None:
        return self._commands.get(name.lower())

    def all(self, include_hidden: bool = False) -> list[SlashCommand]:
        commands = list(self._commands.values())
        if not include_hidden:
            commands = [cmd for cmd in commands if not cmd.hidden]
        return sorted(commands, key=lambda c: c.name)

    async def execute(self, line: str, app: ACPApp) -> bool:
        """Run ``/name args``. Returns True if the command was found and executed."""
        name, _, args = line.strip().lstrip("/").partition(" ")
        command = self.get(name)
        if command and command.handler:
            await command.handler(app, args.strip())
            return True
        return False

    def help_text(self) -> str:
        lines = ["Available slash commands:"]
        for cmd in self.all(include_hidden=False):
            synopsis = f"/{cmd.name} {cmd.usage}".rstrip()
            lines.append(f"  {synopsis:<18} {cmd.description}")
        return "\n".join(lines)

    def slash_command(
        self,
        name_or_func: CommandHandler | str | None = None,
        *,
        description: str | None = None,
        usage: str = "",
        hidden: bool = False,
    ) -> CommandHandler | Callable[[CommandHandler], CommandHandler]:
        """Decorator to register a slash command.

        Usage:
            @manager.slash_command
            async def help(app: ACPApp, args: str) -> None:
                '''Show available commands.'''
                ...

            @manager.slash_command("quit", description="Exit the app")
            async def exit_handler(app: ACPApp, args: str) -> None:
                ...
        """
        name: str | None = None

        def decorator(fn: CommandHandler) -> CommandHandler:
            cmd_name = name if name else fn.__name__.rstrip("_")
            cmd_description = description if description else (fn.__doc__ or "").strip()
            self.add(
                SlashCommand(
                    name=cmd_name,
                    description=cmd_description,
                    handler=fn,
                    usage=usage,
                    hidden=hidden,
                )
            )
            return fn

        # Called as @slash_command (no parens)
        if callable(name_or_func):
            return decorator(name_or_func)

        if isinstance(name_or_func, str):
            name = name_or_func

        return decorator


# =============================================================================
# Default manager with built-in commands
# =============================================================================

_default_manager = SlashCommandManager()


def _resolve_session_id(app: ACPApp, ref: str) -> str:
    """Accept a session id or its 1-based position in /sessions."""
    if ref in app.sessions:
        return ref
    if ref.isdigit():
        listed = app.sessions.list_sessions()
        index = int(ref) - 1
        if 0 <= index < len(listed):
            return listed[index].id
    raise SessionError(f"Session not found: {ref}")


@_default_manager.slash_command
async def help(app: ACPApp, args: str) -> None:
    """Show available slash commands."""
    app.write_system(app.slash_commands.help_text())


@_default_manager.slash_command
async def new(app: ACPApp, args: str) -> None:
    """Start a new session (optionally named)."""
    app.new_session(args or None)


@_default_manager.slash_command
async def sessions(app: ACPApp, args: str) -> None:
    """List sessions, newest first."""
    listed = app.sessions.list_sessions()
    if not listed:
        app.write_system("No sessions")
        return
    lines = []
    for index, session in enumerate(listed, start=1):
        marker = "*" if session.id == app.sessions.active_session_id else " "
        lines.append(f"{marker} {index}. {session.display_name} [{session.status.value}] {session.id}")
    app.write_system("\n".join(lines))


@_default_manager.slash_command(usage="<id|n>")
async def switch(app: ACPApp, args: str) -> None:
    """Make another session active."""
    if not args:
        app.notify("Usage: /switch <id|n>", severity="warning")
        return
    try:
        session = app.sessions.switch_session(_resolve_session_id(app, args))
    except SessionError as e:
        app.notify(e.message, severity="error")
        return
    app.write_system(f"Switched to {session.display_name}")
    app.refresh_status()


@_default_manager.slash_command(usage="[id|n]")
async def delete(app: ACPApp, args: str) -> None:
    """Delete a session (the active one by default)."""
    try:
        session_id = _resolve_session_id(app, args) if args else app.sessions.active_session_id
        if session_id is None:
            raise SessionError("No active session")
        await app.sessions.delete_session(session_id)
    except SessionError as e:
        app.notify(e.message, severity="error")
        return
    app.write_system(f"Deleted {session_id}")
    app.refresh_status()


@_default_manager.slash_command(usage="<name>")
async def rename(app: ACPApp, args: str) -> None:
    """Rename the active session."""
    session = app.sessions.active_session
    if session is None or not args:
        app.notify("Usage: /rename <name> (needs an active session)", severity="warning")
        return
    app.sessions.rename_session(session.id, args)
    app.refresh_status()


@_default_manager.slash_command
async def status(app: ACPApp, args: str) -> None:
    """Show every session's connection state."""
    app.write_renderable(render_status(app.sessions.list_sessions(), app.sessions.active_session_id))
    session = app.sessions.active_session
    if session is not None:
        app.write_system(describe(session.connection.status()))
    for request in app.orchestrator.active_requests():
        app.write_system(app.orchestrator.request_summary(request.id))


@_default_manager.slash_command
async def cancel(app: ACPApp, args: str) -> None:
    """Ask the agent to stop the current turn."""
    app.action_cancel()


@_default_manager.slash_command
async def reconnect(app: ACPApp, args: str) -> None:
    """Restart the active session's agent process."""
    session = app.sessions.active_session
    if session is None:
        app.notify("No active session", severity="warning")
        return
    session.connection.disconnect()
    try:
        await session.connection.initialize()
    except ACPError as e:
        app.notify(f"Reconnect failed: {e.message}", severity="error")
        return
    app.write_system(f"Reconnected {session.display_name}")


@_default_manager.slash_command
async def health(app: ACPApp, args: str) -> None:
    """Check that the backend's tools are installed."""
    app.write_system(format_checks(check_health(app.config)))


@_default_manager.slash_command
async def quit(app: ACPApp, args: str) -> None:
    """Exit the application."""
    await app.action_quit()


def create_default_manager() -> SlashCommandManager:
    """Create a new SlashCommandManager with all built-in commands registered."""
    manager = SlashCommandManager()
    for cmd in _default_manager.all(include_hidden=True):
        manager.add(cmd)
    return manager
