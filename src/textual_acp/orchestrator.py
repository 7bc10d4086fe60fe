"""Send prompts to the active session and track them until they finish."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

from .connection import SessionUpdate
from .errors import ACPError, SessionError
from .events import StreamEvent, to_event
from .prompt import EditorContext
from .sessions import SessionManager

log = logging.getLogger(__name__)

# JSON type for prompt results
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

ContextProvider = Callable[[], Union[EditorContext, None]]
UpdateHandler = Callable[[StreamEvent], None]
CompleteHandler = Callable[[JSON, str], None]
ErrorHandler = Callable[[ACPError, str], None]

PREVIEW_LENGTH = 50


@dataclass
class ActiveRequest:
    """A prompt that has been sent and not yet answered."""

    id: str
    session_id: str
    started_at: float
    prompt: str
    file_path: str | None = None
    has_selection: bool = False


class PromptOrchestrator:
    """Routes prompts to the active session's connection.

    Args:
        sessions: Session multiplexer providing the active session
        context_provider: Returns the editor context to attach when a prompt
            doesn't carry one explicitly
    """

    def __init__(
        self,
        sessions: SessionManager,
        context_provider: ContextProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions = sessions
        self.context_provider = context_provider
        self._clock = clock
        self._counter = itertools.count(1)
        self._requests: dict[str, ActiveRequest] = {}
        self._tasks: dict[str, asyncio.Task[JSON]] = {}

    def _generate_id(self) -> str:
        return f"req-{int(self._clock())}-{next(self._counter)}"

    def send(
        self,
        text: str,
        context: EditorContext | None = None,
        on_update: UpdateHandler | None = None,
        on_complete: CompleteHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> str:
        """Start a prompt on the active session and return its request id.

        Must be called from a running event loop; the prompt itself runs as a task.

        Raises:
            ValueError: The prompt is empty
            SessionError: There is no active session
        """
        if not text or not text.strip():
            raise ValueError("Cannot send empty prompt")
        session = self.sessions.active_session
        if session is None:
            raise SessionError("No active session")

        if context is None and self.context_provider is not None:
            context = self.context_provider()

        request_id = self._generate_id()
        self._requests[request_id] = ActiveRequest(
            id=request_id,
            session_id=session.id,
            started_at=self._clock(),
            prompt=text,
            file_path=context.file_path if context else None,
            has_selection=bool(context and context.selection),
        )

        def forward(update: SessionUpdate) -> None:
            if on_update is not None:
                on_update(to_event(update))

        async def run() -> JSON:
            try:
                result = await session.connection.send_prompt(
                    text, context, on_update=forward, request_id=request_id
                )
            except ACPError as e:
                log.warning(f"Request {request_id} failed: {e.message}")
                if on_error is not None:
                    on_error(e, request_id)
                raise
            finally:
                self._requests.pop(request_id, None)
                self._tasks.pop(request_id, None)
            log.info(f"Request {request_id} completed: {result}")
            if on_complete is not None:
                on_complete(result, request_id)
            return result

        task = asyncio.create_task(run())
        # Failures are reported through on_error; mark them retrieved
        task.add_done_callback(_consume_exception)
        self._tasks[request_id] = task
        log.info(f"Sent request {request_id} to session {session.id}")
        return request_id

    def get_request(self, request_id: str) -> ActiveRequest | None:
        return self._requests.get(request_id)

    def active_requests(self) -> list[ActiveRequest]:
        return list(self._requests.values())

    def active_count(self) -> int:
        return len(self._requests)

    def request_summary(self, request_id: str) -> str:
        request = self._requests.get(request_id)
        if request is None:
            return f"Request not found: {request_id}"

        elapsed = int(self._clock() - request.started_at)
        preview = request.prompt[:PREVIEW_LENGTH]
        if len(request.prompt) > PREVIEW_LENGTH:
            preview += "..."
        parts = [
            f"ID: {request_id}",
            f"Elapsed: {elapsed}s",
            f"Prompt: {preview}",
            f"File: {request.file_path or '[none]'}",
        ]
        if request.has_selection:
            parts.append("Has selection: yes")
        return " | ".join(parts)

    def cancel(self, session_id: str | None = None) -> bool:
        """Ask the agent behind a session (the active one by default) to stop its turn."""
        session_id = session_id or self.sessions.active_session_id
        if session_id is None:
            return False
        connection = self.sessions.get_connection(session_id)
        if connection is None:
            return False
        return connection.cancel()

    async def wait(self, request_id: str) -> JSON:
        """Wait for a request to finish and return its result.

        Raises whatever the prompt raised; returns None for unknown or finished ids.
        """
        task = self._tasks.get(request_id)
        if task is None:
            return None
        return await task


def _consume_exception(task: asyncio.Task[JSON]) -> None:
    if not task.cancelled():
        task.exception()
