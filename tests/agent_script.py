"""Minimal ACP agent over stdio, used by the end-to-end tests.

Answers initialize, session/new and session/prompt. A prompt's update and
response are written back to back in a single write. The ``test/crash``
request makes the process exit with status 3.
"""

import json
import sys


def write(*messages: dict) -> None:
    sys.stdout.write("".join(json.dumps(m) for m in messages) + "\n")
    sys.stdout.flush()


def main() -> None:
    for line in sys.stdin:
        if not line.strip():
            continue
        message = json.loads(line)
        method = message.get("method")
        if "id" not in message:
            continue

        if method == "initialize":
            write({"jsonrpc": "2.0", "id": message["id"], "result": {"protocolVersion": 1, "agentInfo": {"name": "script"}}})
        elif method == "session/new":
            write({"jsonrpc": "2.0", "id": message["id"], "result": {"sessionId": "script-session"}})
        elif method == "session/prompt":
            text = message["params"]["prompt"][0]["text"]
            update = {
                "jsonrpc": "2.0",
                "method": "session/update",
                "params": {
                    "sessionId": "script-session",
                    "update": {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": text[::-1]}},
                },
            }
            write(update, {"jsonrpc": "2.0", "id": message["id"], "result": {"stopReason": "end_turn"}})
        elif method == "test/crash":
            sys.exit(3)
        else:
            write({"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "Method not found"}})


if __name__ == "__main__":
    main()
