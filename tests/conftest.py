"""Pytest configuration and shared fixtures for textual-acp tests.

``FakeAgent`` stands in for an agent subprocess: it parses what the client
writes to stdin and answers on an in-memory stdout stream.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Union

import pytest

from textual_acp.config import BackendConfig, RetryPolicy
from textual_acp.errors import LaunchError

JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

# Returned by a handler to leave a request unanswered
NO_REPLY = object()


class AgentError(Exception):
    """Raised by a handler to answer with a JSON-RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


Handler = Callable[["FakeAgent", dict[str, JSON]], object]


def default_handlers() -> dict[str, object]:
    return {
        "initialize": {
            "protocolVersion": 1,
            "agentCapabilities": {"loadSession": False},
            "agentInfo": {"name": "fake-agent", "title": "Fake Agent", "version": "1.0"},
        },
        "session/new": {"sessionId": "acp-session-1"},
        "session/prompt": {"stopReason": "end_turn"},
    }


class FakeWriter:
    def __init__(self, agent: FakeAgent) -> None:
        self.agent = agent
        self.closed = False
        self._buffer = b""

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self._buffer += data
        while b"\n" in self._buffer:
            line, self._buffer = self._buffer.split(b"\n", 1)
            if line.strip():
                self.agent.receive(json.loads(line))

    async def drain(self) -> None:
        await asyncio.sleep(0)


class FakeAgent:
    """Scripted agent process.

    ``handlers`` maps a method to a result, or to a callable taking
    ``(agent, message)`` and returning a result, :data:`NO_REPLY`, or raising
    :class:`AgentError`.
    """

    def __init__(self, handlers: dict[str, object] | None = None) -> None:
        self.handlers = default_handlers()
        self.handlers.update(handlers or {})
        self.stdout = asyncio.StreamReader()
        self.stdin = FakeWriter(self)
        self.returncode: int | None = None
        self.received: list[dict[str, JSON]] = []
        self.killed = False
        self._exited = asyncio.Event()

    # -------------------------------------------------------------- process

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode if self.returncode is not None else 0

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdin.closed = True
        self.stdout.feed_eof()
        self._exited.set()

    # ----------------------------------------------------------------- wire

    def send(self, message: dict[str, JSON]) -> None:
        if not self.stdout.at_eof():
            self.stdout.feed_data((json.dumps(message) + "\n").encode())

    def feed_raw(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def respond(self, request_id: JSON, result: JSON = None) -> None:
        self.send({"jsonrpc": "2.0", "id": request_id, "result": result})

    def respond_error(self, request_id: JSON, code: int, message: str) -> None:
        self.send({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})

    def notify(self, method: str, params: JSON) -> None:
        self.send({"jsonrpc": "2.0", "method": method, "params": params})

    def session_update(self, update: dict[str, JSON], session_id: str = "acp-session-1") -> None:
        self.notify("session/update", {"sessionId": session_id, "update": update})

    def receive(self, message: dict[str, JSON]) -> None:
        self.received.append(message)
        method = message.get("method")
        if method is None or "id" not in message:
            return
        handler = self.handlers.get(method, NO_REPLY)
        if handler is NO_REPLY:
            return
        asyncio.get_running_loop().call_soon(self._answer, message, handler)

    def _answer(self, message: dict[str, JSON], handler: object) -> None:
        try:
            result = handler(self, message) if callable(handler) else handler
        except AgentError as e:
            self.respond_error(message["id"], e.code, e.message)
            return
        if result is not NO_REPLY:
            self.respond(message["id"], result)

    # --------------------------------------------------------------- assert

    def requests(self, method: str | None = None) -> list[dict[str, JSON]]:
        return [
            m for m in self.received if "id" in m and "method" in m and (method is None or m["method"] == method)
        ]

    def notifications(self, method: str | None = None) -> list[dict[str, JSON]]:
        return [
            m
            for m in self.received
            if "id" not in m and "method" in m and (method is None or m["method"] == method)
        ]

    def responses(self) -> list[dict[str, JSON]]:
        return [m for m in self.received if "method" not in m]


class FakeLauncher:
    """Launcher returning scripted outcomes, then fresh agents.

    Args:
        outcomes: Exceptions to raise or agents to return, in call order
        handlers: Handlers for agents created once ``outcomes`` runs out
    """

    def __init__(self, outcomes: list[object] | None = None, handlers: dict[str, object] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.handlers = handlers
        self.calls = 0
        self.cwds: list[str] = []
        self.agents: list[FakeAgent] = []

    async def __call__(self, config: BackendConfig, cwd: str) -> FakeAgent:
        self.calls += 1
        self.cwds.append(cwd)
        outcome = self.outcomes.pop(0) if self.outcomes else FakeAgent(self.handlers)
        if isinstance(outcome, BaseException):
            raise outcome
        assert isinstance(outcome, FakeAgent)
        self.agents.append(outcome)
        return outcome

    @property
    def agent(self) -> FakeAgent:
        return self.agents[-1]


class RecordingSleep:
    """Replaces asyncio.sleep: records delays and only yields."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def settle(rounds: int = 10) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def launch_failure() -> LaunchError:
    return LaunchError("Failed to start ACP subprocess (backend=opencode): boom")


@pytest.fixture
def config() -> BackendConfig:
    return BackendConfig(command="fake-agent")


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(settle_delay=0.0, setting_timeout=0.2, stop_grace=0.0)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
