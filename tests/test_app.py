"""Tests for the terminal front end."""

import pytest
from conftest import NO_REPLY, FakeLauncher, settle
from textual.binding import Binding
from textual.widgets import Input

from textual_acp import ACPApp
from textual_acp.events import MessageChunk
from textual_acp.session_storage import SessionRecord, SessionStorage


class TestBindings:
    """Tests for the key bindings."""

    @pytest.fixture
    def bindings(self) -> dict[str, Binding]:
        """Get ACPApp bindings as a dict keyed by key."""
        return {b.key: b for b in ACPApp.BINDINGS if isinstance(b, Binding)}

    def test_ctrl_c_cancels(self, bindings: dict[str, Binding]) -> None:
        """Ctrl+C cancels the turn instead of quitting."""
        binding = bindings["ctrl+c"]
        assert binding.action == "cancel"
        assert binding.priority is True

    def test_ctrl_n_starts_session(self, bindings: dict[str, Binding]) -> None:
        assert bindings["ctrl+n"].action == "new_session"

    def test_ctrl_q_quits(self, bindings: dict[str, Binding]) -> None:
        assert bindings["ctrl+q"].action == "quit"


class TestApp:
    """Tests driving the app headlessly."""

    @pytest.mark.asyncio
    async def test_mount_creates_session(self, config, policy) -> None:
        app = ACPApp(config, policy=policy, launcher=FakeLauncher())
        async with app.run_test():
            assert len(app.sessions) == 1
            assert app.sessions.active_session is not None

    @pytest.mark.asyncio
    async def test_mount_restores_newest_session(self, config, policy, tmp_path) -> None:
        store = SessionStorage(db_path=tmp_path / "sessions.db", project="/project")
        store.save(SessionRecord("session-1-1", 1.0, "old"))
        store.save(SessionRecord("session-2-1", 2.0, "newer"))

        app = ACPApp(config, store=store, policy=policy, launcher=FakeLauncher())
        async with app.run_test():
            assert len(app.sessions) == 2
            assert app.sessions.active_session_id == "session-2-1"

    @pytest.mark.asyncio
    async def test_send_prompt(self, config, policy) -> None:
        """A prompt starts the agent and completes."""
        launcher = FakeLauncher()
        app = ACPApp(config, policy=policy, launcher=launcher)
        async with app.run_test() as pilot:
            request_id = app.send("hello")
            assert request_id is not None

            await app.orchestrator.wait(request_id)
            await pilot.pause()

            [prompt] = launcher.agent.requests("session/prompt")
            assert prompt["params"]["prompt"][0]["text"] == "hello"
            assert app.orchestrator.active_count() == 0

    @pytest.mark.asyncio
    async def test_partial_lines_are_buffered(self, config, policy) -> None:
        app = ACPApp(config, policy=policy, launcher=FakeLauncher())
        async with app.run_test():
            app._show_event(MessageChunk("first line\nsec", request_id="req-1"))
            assert app._partial == {"req-1": "sec"}

            app._show_event(MessageChunk("ond\n", request_id="req-1"))
            assert app._partial == {}

    @pytest.mark.asyncio
    async def test_cancel_action(self, config, policy) -> None:
        """Ctrl+C sends session/cancel for a running prompt."""
        launcher = FakeLauncher(handlers={"session/prompt": NO_REPLY})
        app = ACPApp(config, policy=policy, launcher=launcher)
        async with app.run_test() as pilot:
            app.send("long task")
            for _ in range(50):
                if launcher.agents and launcher.agent.requests("session/prompt"):
                    break
                await settle(1)

            await pilot.press("ctrl+c")
            await pilot.pause()

            assert len(launcher.agent.notifications("session/cancel")) == 1

    @pytest.mark.asyncio
    async def test_slash_command_from_input(self, config, policy) -> None:
        app = ACPApp(config, policy=policy, launcher=FakeLauncher())
        async with app.run_test() as pilot:
            app.query_one("#prompt", Input).value = "/new"
            await pilot.press("enter")
            await pilot.pause()

            assert len(app.sessions) == 2
