"""JSON-RPC 2.0 message types and newline-delimited framing.

Outbound messages are serialized as one JSON document followed by ``\\n``.
Inbound data is accumulated and re-parsed after every complete line; every
document that parses is yielded, so several messages arriving in one read
are split correctly and a document spread across several lines is
reassembled once its last line arrives.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Union

from .errors import ProtocolError

log = logging.getLogger(__name__)

# JSON type for params and results
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

JSONRPC_VERSION = "2.0"
MAX_BUFFER = 10 * 1024 * 1024


@dataclass
class ErrorObject:
    """JSON-RPC error member."""

    code: int | None
    message: str
    data: JSON = None

    def to_dict(self) -> dict[str, JSON]:
        error: dict[str, JSON] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass
class Request:
    """A call that expects a response. Sent by us, or by the agent to us."""

    id: int | str
    method: str
    params: JSON = None

    def to_dict(self) -> dict[str, JSON]:
        message: dict[str, JSON] = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class Response:
    """A result or error for a request."""

    id: int | str
    result: JSON = None
    error: ErrorObject | None = None

    def to_dict(self) -> dict[str, JSON]:
        message: dict[str, JSON] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        else:
            message["result"] = self.result
        return message


@dataclass
class Notification:
    """A message without id; no reply expected."""

    method: str
    params: JSON = None

    def to_dict(self) -> dict[str, JSON]:
        message: dict[str, JSON] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


Message = Request | Response | Notification


def encode(message: Message) -> bytes:
    """Serialize a message as a single newline-terminated JSON document."""
    return (json.dumps(message.to_dict(), separators=(",", ":"), ensure_ascii=False) + "\n").encode()


def decode(obj: object) -> Message:
    """Classify a parsed JSON document.

    Raises:
        ProtocolError: The document is not a JSON-RPC message
    """
    if not isinstance(obj, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(obj).__name__}")

    msg_id = obj.get("id")
    method = obj.get("method")

    if msg_id is not None and method is None:
        if "error" in obj and obj["error"] is not None:
            raw_error = obj["error"]
            if isinstance(raw_error, dict):
                code = raw_error.get("code")
                error = ErrorObject(
                    code=code if isinstance(code, int) else None,
                    message=str(raw_error.get("message") or "Unknown error"),
                    data=raw_error.get("data"),
                )
            else:
                error = ErrorObject(code=None, message=str(raw_error))
            return Response(id=msg_id, error=error)
        if "result" in obj:
            return Response(id=msg_id, result=obj["result"])
        raise ProtocolError(f"Response {msg_id!r} has neither result nor error")

    if isinstance(method, str):
        if msg_id is not None:
            return Request(id=msg_id, method=method, params=obj.get("params"))
        return Notification(method=method, params=obj.get("params"))

    raise ProtocolError(f"Unrecognized message: {obj!r:.200}")


class FrameDecoder:
    """Incremental reassembly of inbound JSON documents."""

    def __init__(self, max_buffer: int = MAX_BUFFER) -> None:
        self.max_buffer = max_buffer
        self._decoder = json.JSONDecoder()
        self._partial = ""  # bytes after the last newline
        self._buffer = ""  # complete lines not yet forming a document

    @property
    def pending(self) -> str:
        """Unparsed data held back (for diagnostics)."""
        return self._buffer + self._partial

    def reset(self) -> None:
        self._partial = ""
        self._buffer = ""

    def feed(self, data: bytes | str) -> list[Message]:
        """Accept a chunk of transport data and return every complete message."""
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        lines = (self._partial + data).split("\n")
        self._partial = lines.pop()

        messages: list[Message] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            self._append(line)
            messages.extend(self._drain())

        if len(self._buffer) + len(self._partial) > self.max_buffer:
            log.error(f"Discarding {len(self._buffer) + len(self._partial)} bytes of unparseable ACP output")
            self.reset()
        return messages

    def flush(self) -> list[Message]:
        """Parse whatever is left at end of stream."""
        tail = self._partial.strip()
        self._partial = ""
        if tail:
            self._append(tail)
        messages = self._drain()
        if self._buffer:
            log.warning(f"Discarding incomplete ACP message at end of stream: {self._buffer[:200]!r}")
            self._buffer = ""
        return messages

    def _append(self, line: str) -> None:
        self._buffer = f"{self._buffer}\n{line}" if self._buffer else line

    def _drain(self) -> list[Message]:
        messages: list[Message] = []
        pos = 0
        text = self._buffer
        while True:
            while pos < len(text) and text[pos].isspace():
                pos += 1
            if pos >= len(text):
                self._buffer = ""
                return messages
            try:
                obj, end = self._decoder.raw_decode(text, pos)
            except json.JSONDecodeError as e:
                if e.pos >= len(text):
                    # Ran out of input: wait for more lines
                    self._buffer = text[pos:]
                    return messages
                # Strings can't span lines, so this never becomes valid: drop the line
                newline = text.find("\n", pos)
                end = len(text) if newline == -1 else newline
                log.warning(f"Dropping non-JSON ACP output: {text[pos:end][:200]!r}")
                pos = end
                continue
            pos = end
            try:
                messages.append(decode(obj))
            except ProtocolError as e:
                log.warning(f"Dropping malformed ACP message: {e}")
