"""End-to-end tests against a real agent subprocess."""

import sys
from pathlib import Path

import pytest

from textual_acp.config import BackendConfig, RetryPolicy
from textual_acp.connection import ACPConnection, ConnectionState
from textual_acp.errors import ErrorKind, RemoteError, RuntimeFault
from textual_acp.host import HostEnvironment

AGENT_SCRIPT = Path(__file__).parent / "agent_script.py"


@pytest.fixture
def connection(tmp_path: Path) -> ACPConnection:
    config = BackendConfig(command=(sys.executable, str(AGENT_SCRIPT)))
    host = HostEnvironment(cwd=lambda: str(tmp_path))
    return ACPConnection(config, host=host, policy=RetryPolicy(settle_delay=0.0, stop_grace=0.0))


class TestRealSubprocess:
    """Tests for a full conversation over pipes."""

    @pytest.mark.asyncio
    async def test_prompt_round_trip(self, connection: ACPConnection) -> None:
        """An update and its response arriving in one write are both delivered."""
        updates = []

        result = await connection.send_prompt("hello", on_update=updates.append, request_id="req-1")

        assert result == {"stopReason": "end_turn"}
        assert connection.acp_session_id == "script-session"
        assert [u.params["update"]["content"]["text"] for u in updates] == ["olleh"]
        assert updates[0].request_id == "req-1"
        assert connection.state is ConnectionState.READY
        await connection.close()

    @pytest.mark.asyncio
    async def test_unknown_method(self, connection: ACPConnection) -> None:
        await connection.initialize()
        with pytest.raises(RemoteError) as excinfo:
            await connection.request("test/unknown")
        assert excinfo.value.kind is ErrorKind.METHOD_NOT_FOUND
        await connection.close()

    @pytest.mark.asyncio
    async def test_crash_fails_pending_request(self, connection: ACPConnection) -> None:
        await connection.initialize()
        connection.host.shutdown()  # No reconnect after the crash

        with pytest.raises(RuntimeFault) as excinfo:
            await connection.request("test/crash")

        assert excinfo.value.exit_code == 3
        assert connection.state is ConnectionState.IDLE
        assert connection.pending_count == 0
        await connection.close()
