"""Tests for answering agent-to-client requests."""

import pytest

from textual_acp.client_requests import ClientRequestHandler
from textual_acp.errors import RemoteError

PERMISSION_OPTIONS = [
    {"optionId": "reject", "name": "Reject", "kind": "reject_once"},
    {"optionId": "allow", "name": "Allow", "kind": "allow_once"},
]


class TestFileSystem:
    """Tests for fs/read_text_file and fs/write_text_file."""

    @pytest.mark.asyncio
    async def test_read_whole_file(self, tmp_path) -> None:
        (tmp_path / "a.txt").write_text("hello\n")
        handler = ClientRequestHandler(str(tmp_path))
        assert await handler.handle("fs/read_text_file", {"path": "a.txt"}) == {"content": "hello\n"}

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path) -> None:
        handler = ClientRequestHandler(str(tmp_path))
        with pytest.raises(RemoteError) as excinfo:
            await handler.handle("fs/read_text_file", {"path": "missing.txt"})
        assert excinfo.value.code == -32602

    @pytest.mark.asyncio
    async def test_write_creates_directories(self, tmp_path) -> None:
        handler = ClientRequestHandler(str(tmp_path))
        result = await handler.handle("fs/write_text_file", {"path": "out/b.txt", "content": "data"})
        assert result is None
        assert (tmp_path / "out" / "b.txt").read_text() == "data"

    @pytest.mark.asyncio
    async def test_write_requires_content(self, tmp_path) -> None:
        handler = ClientRequestHandler(str(tmp_path))
        with pytest.raises(RemoteError):
            await handler.handle("fs/write_text_file", {"path": "b.txt"})


class TestPermissions:
    """Tests for session/request_permission."""

    @pytest.mark.asyncio
    async def test_declined_by_default(self, tmp_path) -> None:
        handler = ClientRequestHandler(str(tmp_path))
        result = await handler.handle("session/request_permission", {"options": PERMISSION_OPTIONS})
        assert result == {"outcome": {"outcome": "cancelled"}}

    @pytest.mark.asyncio
    async def test_auto_approve_picks_allow_option(self, tmp_path) -> None:
        handler = ClientRequestHandler(str(tmp_path), auto_approve=True)
        result = await handler.handle("session/request_permission", {"options": PERMISSION_OPTIONS})
        assert result == {"outcome": {"outcome": "selected", "optionId": "allow"}}


@pytest.mark.asyncio
async def test_unknown_method(tmp_path) -> None:
    handler = ClientRequestHandler(str(tmp_path))
    with pytest.raises(RemoteError) as excinfo:
        await handler.handle("terminal/create", {})
    assert excinfo.value.code == -32601
