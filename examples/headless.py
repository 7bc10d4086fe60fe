#!/usr/bin/env python
"""Send one prompt to an ACP agent without the UI and print the streamed reply.

Run with:
    python examples/headless.py "Summarize README" --command "python examples/demo_agent.py"
    python examples/headless.py "Explain this function" --file src/app.py --lines 10-20
"""

import argparse
import asyncio
import shlex
import sys

from textual_acp import (
    BackendConfig,
    EditorContext,
    MessageChunk,
    PromptOrchestrator,
    SelectionRange,
    SessionManager,
    ThoughtChunk,
)
from textual_acp.errors import ACPError


def show(event: object) -> None:
    if isinstance(event, MessageChunk):
        print(event.text, end="", flush=True)
    elif isinstance(event, ThoughtChunk):
        print(f"\033[2m{event.text}\033[0m", file=sys.stderr)


async def main(args: argparse.Namespace) -> int:
    config = BackendConfig.from_env()
    if args.command:
        config = BackendConfig(kind=config.kind, command=tuple(shlex.split(args.command)))

    context = None
    if args.file:
        selection_range = None
        if args.lines:
            start, _, end = args.lines.partition("-")
            selection_range = SelectionRange(int(start), int(end or start))
        context = EditorContext(file_path=args.file, selection_range=selection_range)

    sessions = SessionManager(config)
    orchestrator = PromptOrchestrator(sessions)
    sessions.create_session("headless")
    try:
        request_id = orchestrator.send(args.prompt, context, on_update=show)
        result = await orchestrator.wait(request_id)
    except ACPError as e:
        print(f"\nerror: {e.message}", file=sys.stderr)
        return 1
    finally:
        await sessions.shutdown()

    print(f"\n[{result.get('stopReason') if isinstance(result, dict) else 'done'}]")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("prompt")
    parser.add_argument("--command", help="Agent command line")
    parser.add_argument("--file", help="File to reference in the prompt")
    parser.add_argument("--lines", help="Line range within --file, e.g. 10-20")
    sys.exit(asyncio.run(main(parser.parse_args())))
