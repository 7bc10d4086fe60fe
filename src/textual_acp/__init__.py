"""Agent Client Protocol client for the terminal.

    from textual_acp import ACPApp, BackendConfig

    ACPApp(BackendConfig(command="opencode")).run()

Or drive agents without a UI:

    sessions = SessionManager(BackendConfig.from_env())
    orchestrator = PromptOrchestrator(sessions)
    sessions.create_session()
    request_id = orchestrator.send("Explain this repo")
    result = await orchestrator.wait(request_id)
"""

from .app import ACPApp
from .config import BackendConfig, BackendKind, RetryPolicy
from .connection import ACPConnection, ConnectionState, SessionUpdate
from .errors import ACPError, ErrorKind
from .events import MessageChunk, PlanChunk, StreamEvent, ThoughtChunk, ToolCallProgress, ToolCallStart
from .host import HostEnvironment
from .orchestrator import PromptOrchestrator
from .prompt import EditorContext, SelectionRange
from .sessions import SessionManager
from .slash_command import SlashCommand, SlashCommandManager

__version__ = "0.1.0"
__all__ = [
    "ACPApp",
    "ACPConnection",
    "ACPError",
    "BackendConfig",
    "BackendKind",
    "ConnectionState",
    "EditorContext",
    "ErrorKind",
    "HostEnvironment",
    "MessageChunk",
    "PlanChunk",
    "PromptOrchestrator",
    "RetryPolicy",
    "SelectionRange",
    "SessionManager",
    "SessionUpdate",
    "SlashCommand",
    "SlashCommandManager",
    "StreamEvent",
    "ThoughtChunk",
    "ToolCallProgress",
    "ToolCallStart",
]
