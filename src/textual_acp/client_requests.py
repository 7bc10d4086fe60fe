"""Answers to requests the agent sends to the client.

The client declares ``fs.readTextFile`` and ``fs.writeTextFile`` during the
handshake, so those two are served here. Permission requests are answered
from a policy; anything else is rejected with "method not found".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .errors import METHOD_NOT_FOUND_CODE, RemoteError

log = logging.getLogger(__name__)

# JSON type for request params and results
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

INVALID_PARAMS_CODE = -32602
INTERNAL_ERROR_CODE = -32603


class ClientRequestHandler:
    """Serves agent-to-client requests for one connection.

    Relative paths resolve against ``cwd``.
    """

    def __init__(self, cwd: str, auto_approve: bool = False) -> None:
        self.cwd = cwd
        self.auto_approve = auto_approve

    async def handle(self, method: str, params: JSON) -> JSON:
        """Return the result for ``method`` or raise :class:`RemoteError`."""
        args = params if isinstance(params, dict) else {}
        if method == "fs/read_text_file":
            return self.read_text_file(args)
        if method == "fs/write_text_file":
            return self.write_text_file(args)
        if method == "session/request_permission":
            return self.request_permission(args)
        log.warning(f"⚠️  Unsupported agent request: {method}")
        raise RemoteError(f"Method not found: {method}", code=METHOD_NOT_FOUND_CODE)

    def _resolve(self, args: dict[str, JSON]) -> Path:
        path = args.get("path")
        if not isinstance(path, str) or not path:
            raise RemoteError("Missing required parameter: path", code=INVALID_PARAMS_CODE)
        return Path(self.cwd) / path

    def read_text_file(self, args: dict[str, JSON]) -> JSON:
        full_path = self._resolve(args)
        log.info(f"📖 Reading file: {full_path}")
        if not full_path.is_file():
            raise RemoteError(f"File not found: {args.get('path')}", code=INVALID_PARAMS_CODE)

        try:
            content = full_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error(f"Failed to read file {full_path}: {e}")
            raise RemoteError(f"Failed to read file: {e}", code=INTERNAL_ERROR_CODE) from e

        # line is 1-based, limit is a line count
        line = args.get("line")
        limit = args.get("limit")
        if isinstance(line, int) or isinstance(limit, int):
            lines = content.splitlines(keepends=True)
            if isinstance(line, int) and 0 < line <= len(lines):
                lines = lines[line - 1 :]
            if isinstance(limit, int) and limit > 0:
                lines = lines[:limit]
            content = "".join(lines)

        return {"content": content}

    def write_text_file(self, args: dict[str, JSON]) -> JSON:
        full_path = self._resolve(args)
        content = args.get("content")
        if not isinstance(content, str):
            raise RemoteError("Missing required parameter: content", code=INVALID_PARAMS_CODE)

        log.info(f"📝 Writing file: {full_path}")
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_text(content, encoding="utf-8")
        except OSError as e:
            log.error(f"Failed to write file {full_path}: {e}")
            raise RemoteError(f"Failed to write file: {e}", code=INTERNAL_ERROR_CODE) from e
        return None

    def request_permission(self, args: dict[str, JSON]) -> JSON:
        options = args.get("options")
        if self.auto_approve and isinstance(options, list):
            for option in options:
                if isinstance(option, dict) and str(option.get("kind", "")).startswith("allow"):
                    log.info(f"✅ Auto-approving permission with option {option.get('optionId')}")
                    return {"outcome": {"outcome": "selected", "optionId": option.get("optionId")}}
        log.info("Declining permission request")
        return {"outcome": {"outcome": "cancelled"}}
