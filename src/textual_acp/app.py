"""Terminal front end: a prompt, a streaming transcript and a status line.

    from textual_acp import ACPApp, BackendConfig

    ACPApp(BackendConfig.from_env()).run()
"""

from __future__ import annotations

import logging

from rich.console import RenderableType
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Input, RichLog, Static

from .config import BackendConfig, RetryPolicy, configure_logging
from .connection import SessionUpdate
from .errors import ACPError, SessionError
from .events import (
    MessageChunk,
    PlanChunk,
    ResponseAccumulator,
    StreamEvent,
    ThoughtChunk,
    ToolCallProgress,
    ToolCallStart,
    UnknownUpdate,
    to_event,
)
from .launcher import Launcher
from .orchestrator import ContextProvider, PromptOrchestrator
from .session_storage import SessionStorage
from .sessions import SessionManager
from .slash_command import SlashCommandManager, create_default_manager
from .status import describe

configure_logging()
log = logging.getLogger(__name__)


class ACPApp(App):
    """Chat with an ACP agent over one or more sessions."""

    CSS = """
    #transcript {
        height: 1fr;
        padding: 0 1;
        border: round $primary-darken-2;
    }
    #status {
        height: 1;
        padding: 0 1;
        color: $text-muted;
    }
    #prompt {
        border: round $surface-lighten-1;
    }
    #prompt:focus {
        border: round $primary;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel", "Cancel", show=True, priority=True),
        Binding("ctrl+n", "new_session", "New session", show=True),
        Binding("ctrl+q", "quit", "Quit", show=True, priority=True),
    ]

    def __init__(
        self,
        config: BackendConfig,
        store: SessionStorage | None = None,
        policy: RetryPolicy | None = None,
        launcher: Launcher | None = None,
        context_provider: ContextProvider | None = None,
        auto_approve: bool = False,
    ) -> None:
        super().__init__()
        self.config = config
        self.sessions = SessionManager(
            config,
            store=store,
            policy=policy,
            launcher=launcher,
            auto_approve=auto_approve,
        )
        self.orchestrator = PromptOrchestrator(self.sessions, context_provider=context_provider)
        self.slash_commands: SlashCommandManager = create_default_manager()
        self._responses = ResponseAccumulator()
        # Message text not yet written because its line is still streaming
        self._partial: dict[str, str] = {}
        self._shut_down = False

    def compose(self) -> ComposeResult:
        yield RichLog(id="transcript", wrap=True, markup=False, highlight=False)
        yield Static("", id="status")
        yield Input(placeholder="Ask the agent, or /help", id="prompt")
        yield Footer()

    def on_mount(self) -> None:
        self.sessions.on_update = self._on_background_update
        self.sessions.on_warning = self._on_session_warning
        restored = self.sessions.load_sessions()
        if restored:
            newest = self.sessions.list_sessions()[0]
            self.sessions.switch_session(newest.id)
            self.write_system(f"Restored {restored} session(s); they reconnect on first use")
            self.refresh_status()
        else:
            self.new_session()
        self.set_interval(1.0, self.refresh_status)
        self.query_one("#prompt", Input).focus()

    async def on_unmount(self) -> None:
        await self._shutdown_sessions()

    # ------------------------------------------------------------- transcript

    def write_renderable(self, renderable: RenderableType) -> None:
        self.query_one("#transcript", RichLog).write(renderable)

    def write_system(self, text: str) -> None:
        self.write_renderable(Text(text, style="dim"))

    def write_error(self, text: str) -> None:
        self.write_renderable(Text(text, style="bold red"))

    def refresh_status(self) -> None:
        session = self.sessions.active_session
        if session is None:
            line = "No active session (ctrl+n to start one)"
        else:
            line = f"{session.display_name} | {describe(session.connection.status())}"
            active = self.orchestrator.active_count()
            if active:
                line += f" | {active} request(s) running"
        self.query_one("#status", Static).update(line)

    def _show_event(self, event: StreamEvent) -> None:
        self._responses.add(event)
        if isinstance(event, MessageChunk):
            key = event.request_id or ""
            text = self._partial.pop(key, "") + event.text
            *lines, rest = text.split("\n")
            for line in lines:
                self.write_renderable(Text(line))
            if rest:
                self._partial[key] = rest
        elif isinstance(event, ThoughtChunk):
            self.write_renderable(Text(event.text, style="italic dim"))
        elif isinstance(event, PlanChunk):
            for entry in event.entries:
                self.write_renderable(Text(f"  [{entry.get('status')}] {entry.get('content')}", style="cyan"))
        elif isinstance(event, ToolCallStart):
            self.write_renderable(Text(f"⚙ {event.name or event.id}", style="green"))
        elif isinstance(event, ToolCallProgress):
            if event.status in ("completed", "failed"):
                style = "green" if event.status == "completed" else "red"
                self.write_renderable(Text(f"  {event.name or event.id}: {event.status}", style=style))
        elif isinstance(event, UnknownUpdate):
            log.debug(f"Ignoring update {event.kind}")

    def _flush_partial(self, request_id: str) -> None:
        rest = self._partial.pop(request_id, "")
        if rest:
            self.write_renderable(Text(rest))

    def _on_background_update(self, update: SessionUpdate) -> None:
        if update.session_key == self.sessions.active_session_id:
            self._show_event(to_event(update))

    def _on_session_warning(self, session_id: str, message: str) -> None:
        self.notify(message, severity="warning")

    # ---------------------------------------------------------------- prompts

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        content = event.value.strip()
        event.input.value = ""
        if not content:
            return

        if content.startswith("/"):
            if not await self.slash_commands.execute(content, self):
                name = content.lstrip("/").split()[0].lower() if content.strip("/") else ""
                self.notify(
                    f"Unknown command: /{name}. Type /help for available commands.",
                    severity="warning",
                )
            return

        self.send(content)

    def send(self, content: str) -> str | None:
        """Send a prompt to the active session. Returns the request id."""
        if self.sessions.active_session is None:
            self.new_session()
        self.write_renderable(Text(f"> {content}", style="bold"))
        try:
            request_id = self.orchestrator.send(
                content,
                on_update=self._show_event,
                on_complete=self._on_complete,
                on_error=self._on_error,
            )
        except (ValueError, SessionError) as e:
            self.notify(str(e), severity="error")
            return None
        self.refresh_status()
        return request_id

    def _on_complete(self, result: object, request_id: str) -> None:
        if self._shut_down:
            return
        self._flush_partial(request_id)
        text = self._responses.pop(request_id)
        stop_reason = result.get("stopReason") if isinstance(result, dict) else None
        self.write_system(f"[{stop_reason or 'done'}] {len(text)} chars")
        self.refresh_status()

    def _on_error(self, error: ACPError, request_id: str) -> None:
        if self._shut_down:
            return
        self._flush_partial(request_id)
        self._responses.pop(request_id)
        self.write_error(f"Error: {error.message}")
        self.refresh_status()

    # ---------------------------------------------------------------- actions

    def new_session(self, display_name: str | None = None) -> str:
        session_id = self.sessions.create_session(display_name)
        session = self.sessions.require(session_id)
        self.write_system(f"New session: {session.display_name}")
        self.refresh_status()
        return session_id

    def action_new_session(self) -> None:
        self.new_session()

    def action_cancel(self) -> None:
        """Cancel the active session's current turn."""
        if self.orchestrator.cancel():
            self.write_system("⚡ Cancel requested")
        else:
            self.notify("Nothing to cancel", severity="warning")

    async def action_quit(self) -> None:
        await self._shutdown_sessions()
        self.exit()

    async def _shutdown_sessions(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        await self.sessions.shutdown()
