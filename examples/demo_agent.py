#!/usr/bin/env python
"""Scripted agent for trying textual-acp without a real backend.

Each prompt produces a plan, a "thought", one fake tool call, and then the
prompt echoed back line by line.

Run with:
    textual-acp --command "python examples/demo_agent.py"
    textual-acp --command "python examples/demo_agent.py" --agent plan
"""

import asyncio
from uuid import uuid4

from acp import (
    Agent,
    InitializeResponse,
    NewSessionResponse,
    PromptResponse,
    plan_entry,
    run_agent,
    start_tool_call,
    text_block,
    tool_content,
    update_agent_message,
    update_agent_thought,
    update_plan,
    update_tool_call,
)
from acp.interfaces import Client
from acp.schema import AgentCapabilities, Implementation, SessionMode, SessionModeState, TextContentBlock

MODES = [
    SessionMode(id="echo", name="Echo", description="Repeat the prompt"),
    SessionMode(id="plan", name="Plan", description="Only show the plan"),
]


class DemoAgent(Agent):
    """Replays the same scripted turn for every prompt."""

    _conn: Client

    def __init__(self) -> None:
        self._modes: dict[str, str] = {}

    def on_connect(self, conn: Client) -> None:
        self._conn = conn

    async def initialize(self, protocol_version: int, **kwargs: object) -> InitializeResponse:
        return InitializeResponse(
            protocol_version=protocol_version,
            agent_capabilities=AgentCapabilities(),
            agent_info=Implementation(name="demo-agent", title="Demo", version="0.1.0"),
        )

    async def new_session(self, cwd: str, **kwargs: object) -> NewSessionResponse:
        session_id = uuid4().hex
        self._modes[session_id] = "echo"
        return NewSessionResponse(
            session_id=session_id,
            modes=SessionModeState(current_mode_id="echo", available_modes=MODES),
        )

    async def set_session_mode(self, mode_id: str, session_id: str, **kwargs: object) -> None:
        self._modes[session_id] = mode_id

    async def prompt(self, prompt: list, session_id: str, **kwargs: object) -> PromptResponse:
        text = "\n".join(block.text for block in prompt if isinstance(block, TextContentBlock))
        lines = text.splitlines() or [""]

        async def send(update: object) -> None:
            await self._conn.session_update(session_id=session_id, update=update)

        await send(
            update_plan(
                [
                    plan_entry("Read the prompt", status="completed"),
                    plan_entry(f"Echo {len(lines)} line(s)", status="pending"),
                ]
            )
        )
        if self._modes.get(session_id) == "plan":
            return PromptResponse(stop_reason="end_turn")

        await send(update_agent_thought(text_block(f"{len(text)} characters to repeat")))

        call_id = f"call_{uuid4().hex[:8]}"
        await send(start_tool_call(call_id, title="count lines", kind="think", status="in_progress"))
        await asyncio.sleep(0.2)
        await send(
            update_tool_call(
                call_id,
                status="completed",
                content=[tool_content(text_block(str(len(lines))))],
            )
        )

        for line in lines:
            await send(update_agent_message(text_block(f"{line}\n")))
            await asyncio.sleep(0.05)

        return PromptResponse(stop_reason="end_turn")


async def main() -> None:
    await run_agent(DemoAgent())


if __name__ == "__main__":
    asyncio.run(main())
