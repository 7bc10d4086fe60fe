"""One agent subprocess and its JSON-RPC channel.

An :class:`ACPConnection` spawns the agent lazily, performs the
``initialize`` handshake (with bounded, quadratically backed-off retries),
correlates responses to requests by id, fans out notifications to
subscribers and recovers from unexpected subprocess exits.

State machine::

    IDLE -> STARTING -> READY <-> STREAMING
      ^        |          |          |
      +--------+----------+----------+   (fault: subprocess exited)
    any -> STOPPING -> IDLE               (explicit disconnect)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Union

from acp import PROTOCOL_VERSION
from acp.schema import ClientCapabilities, FileSystemCapability, Implementation

from .client_requests import INTERNAL_ERROR_CODE, ClientRequestHandler
from .config import BackendConfig, RetryPolicy, wire_log
from .errors import (
    ACPError,
    CapabilityUnsupported,
    ErrorKind,
    HandshakeError,
    LaunchError,
    RemoteError,
    RequestTimeout,
    RuntimeFault,
    SessionError,
)
from .host import HostEnvironment
from .jsonrpc import (
    ErrorObject,
    FrameDecoder,
    Message,
    Notification,
    Request,
    Response,
    encode,
)
from .launcher import Launcher, ProcessLike, spawn
from .prompt import EditorContext, augment_prompt, prompt_content
from .status import ConnectionStatus

log = logging.getLogger(__name__)

# JSON type for params, results and capabilities
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

CLIENT_INFO = Implementation(name="textual-acp", title="Textual ACP", version="0.1.0")

READ_CHUNK = 64 * 1024

_SETTING_KEYS = {
    "mode": ("setMode", "set_mode"),
    "model": ("setModel", "set_model"),
}


class ConnectionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    STREAMING = "streaming"
    STOPPING = "stopping"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.STARTING, ConnectionState.STOPPING}),
    ConnectionState.STARTING: frozenset(
        {ConnectionState.READY, ConnectionState.IDLE, ConnectionState.STOPPING}
    ),
    ConnectionState.READY: frozenset(
        {ConnectionState.STREAMING, ConnectionState.IDLE, ConnectionState.STOPPING}
    ),
    ConnectionState.STREAMING: frozenset(
        {ConnectionState.READY, ConnectionState.IDLE, ConnectionState.STOPPING}
    ),
    ConnectionState.STOPPING: frozenset({ConnectionState.IDLE}),
}


@dataclass
class SessionUpdate:
    """A ``session/update`` notification tagged for the caller that caused it.

    The wire protocol doesn't echo the caller's request id, so the tags are
    attached by the prompt that was outstanding when the update arrived.
    """

    request_id: str | None
    session_key: str | None
    params: dict[str, JSON]

    @property
    def update(self) -> dict[str, JSON]:
        inner = self.params.get("update")
        return inner if isinstance(inner, dict) else self.params

    @property
    def kind(self) -> str | None:
        kind = self.update.get("sessionUpdate")
        return kind if isinstance(kind, str) else None


NotificationHandler = Callable[[Notification], None]
UpdateCallback = Callable[[SessionUpdate], None]


class Subscription:
    """Handle returned by :meth:`ACPConnection.subscribe`."""

    def __init__(self, connection: ACPConnection, handler: NotificationHandler) -> None:
        self._connection = connection
        self.handler = handler

    def close(self) -> None:
        self._connection._unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _initialize_params() -> dict[str, JSON]:
    capabilities = ClientCapabilities(
        fs=FileSystemCapability(read_text_file=True, write_text_file=True),
        terminal=False,
    ).model_dump(by_alias=True, exclude_none=True)
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "clientInfo": CLIENT_INFO.model_dump(by_alias=True, exclude_none=True),
        "capabilities": capabilities,
        # Agents following the published schema read this key
        "clientCapabilities": capabilities,
    }


class ACPConnection:
    """A single agent subprocess plus its protocol state.

    Args:
        config: Backend to launch
        host: Working directory provider and shutdown flag
        policy: Retry and timeout settings
        launcher: Coroutine function starting the process (defaults to :func:`spawn`)
        session_key: Logical session this connection belongs to, used to tag updates
        sleep: Delay coroutine (injectable for tests)
    """

    def __init__(
        self,
        config: BackendConfig,
        host: HostEnvironment | None = None,
        policy: RetryPolicy | None = None,
        launcher: Launcher | None = None,
        session_key: str | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        auto_approve: bool = False,
    ) -> None:
        self.config = config
        self.host = host or HostEnvironment()
        self.policy = policy or RetryPolicy()
        self.session_key = session_key
        self.auto_approve = auto_approve
        self._launcher: Launcher = launcher or spawn
        self._sleep = sleep

        self._proc: ProcessLike | None = None
        self._state = ConnectionState.IDLE
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[JSON]] = {}
        self._decoder = FrameDecoder()
        self._subscriptions: list[Subscription] = []
        self._prompts: set[int] = set()
        self._prompt_tokens = itertools.count(1)
        self._client_handler: ClientRequestHandler | None = None

        self._init_future: asyncio.Future[JSON] | None = None
        self._init_task: asyncio.Task[None] | None = None
        self._session_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[object]] = set()
        self._stopping = False

        self.agent_info: JSON = None
        self.agent_capabilities: JSON = None
        self.acp_session_id: str | None = None
        self.session_modes: JSON = None
        self.session_models: JSON = None
        self.last_error: str | None = None
        self.last_error_time: float | None = None

        # Observers; each call is isolated so a failing callback can't break cleanup
        self.on_notification: NotificationHandler | None = None
        self.on_connect: Callable[[], None] | None = None
        self.on_disconnect: Callable[[], None] | None = None
        self.on_error: Callable[[ACPError], None] | None = None
        self.on_warning: Callable[[str], None] | None = None

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, new: ConnectionState) -> None:
        if new is self._state:
            return
        if new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal connection transition {self._state.value} -> {new.value}")
        log.debug(f"[{self.session_key}] {self._state.value} -> {new.value}")
        self._state = new

    @property
    def initialized(self) -> bool:
        return self._state in (ConnectionState.READY, ConnectionState.STREAMING)

    @property
    def initializing(self) -> bool:
        return self._init_future is not None

    @property
    def is_running(self) -> bool:
        return self._proc is not None

    @property
    def is_connected(self) -> bool:
        return self.initialized and self._proc is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def outstanding_prompts(self) -> int:
        return len(self._prompts)

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            backend=self.config.backend_name,
            state=self._state.value,
            running=self.is_running,
            initialized=self.initialized,
            initializing=self.initializing,
            acp_session_id=self.acp_session_id,
            agent_info=self.agent_info,
            capabilities=self.agent_capabilities,
            pending_requests=len(self._pending),
            last_error=self.last_error,
            last_error_time=self.last_error_time,
        )

    def _record_error(self, error: ACPError) -> None:
        self.last_error = error.message
        self.last_error_time = time.time()

    def _safe_call(self, callback: Callable[..., object] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.exception(f"[{self.session_key}] ACP callback {callback!r} raised")

    def _warn(self, message: str) -> None:
        log.warning(f"[{self.session_key}] {message}")
        self._safe_call(self.on_warning, message)

    def _spawn_background(self, coro: Awaitable[object]) -> None:
        task: asyncio.Task[object] = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -------------------------------------------------------------- subprocess

    async def _start_process(self) -> None:
        if self._proc is not None:
            return
        cwd = self.config.cwd or self.host.cwd()
        try:
            proc = await self._launcher(self.config, cwd)
        except ACPError:
            raise
        except OSError as e:
            raise LaunchError(
                f"Failed to start ACP subprocess (backend={self.config.backend_name}): {e}"
            ) from e

        self._proc = proc
        self._decoder.reset()
        self._client_handler = ClientRequestHandler(cwd, auto_approve=self.auto_approve)
        self._reader_task = asyncio.create_task(self._read_loop(proc))

    async def _read_loop(self, proc: ProcessLike) -> None:
        stdout = proc.stdout
        if stdout is not None:
            try:
                while True:
                    chunk = await stdout.read(READ_CHUNK)
                    if not chunk:
                        break
                    if proc is not self._proc:
                        continue
                    for message in self._decoder.feed(chunk):
                        self._dispatch(message)
                if proc is self._proc:
                    for message in self._decoder.flush():
                        self._dispatch(message)
            except (ConnectionError, OSError) as e:
                log.debug(f"[{self.session_key}] stdout closed: {e}")

        try:
            code = await proc.wait()
        except ProcessLookupError:
            code = proc.returncode
        self._handle_exit(proc, code)

    def _handle_exit(self, proc: ProcessLike, code: int | None) -> None:
        if proc is not self._proc or self._stopping:
            log.debug(f"[{self.session_key}] Ignoring exit of stopped subprocess (code={code})")
            return

        error = RuntimeFault(code, self.config.backend_name)
        log.warning(f"[{self.session_key}] {error.message}")
        if code:
            self._record_error(error)

        self._proc = None
        self._teardown(error)
        self._set_state(ConnectionState.IDLE)
        self._safe_call(self.on_disconnect)

        if self.host.exiting:
            return
        if code and not self.initializing:
            log.info(f"[{self.session_key}] Reconnecting after unexpected exit")
            self._spawn_background(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.initialize()
        except ACPError as e:
            log.warning(f"[{self.session_key}] Automatic reconnect failed: {e.message}")

    def _teardown(self, error: ACPError) -> None:
        """Fail every pending request and forget agent-side state."""
        pending = self._pending
        self._pending = {}
        self._decoder.reset()
        self._prompts.clear()
        self.agent_info = None
        self.agent_capabilities = None
        self.acp_session_id = None
        self.session_modes = None
        self.session_models = None

        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    def _kill(self, error: ACPError) -> None:
        proc = self._proc
        self._proc = None
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        self._teardown(error)

    # ------------------------------------------------------------------ wire

    async def _write(self, message: Message) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise ACPError(
                f"Not connected to ACP (backend={self.config.backend_name})",
                kind=ErrorKind.NOT_CONNECTED,
            )
        data = encode(message)
        wire_log.debug(f"[{self.session_key}] → {data.decode().rstrip()}")
        try:
            proc.stdin.write(data)
            await proc.stdin.drain()
        except (ConnectionError, OSError, RuntimeError) as e:
            raise ACPError(
                f"Failed to send message to ACP agent (backend={self.config.backend_name}): {e}",
                kind=ErrorKind.SEND_FAILED,
            ) from e

    def _dispatch(self, message: Message) -> None:
        wire_log.debug(f"[{self.session_key}] ← {message}")
        if isinstance(message, Response):
            future = self._pending.pop(message.id, None) if isinstance(message.id, int) else None
            if future is None or future.done():
                log.debug(f"[{self.session_key}] Response for unknown request {message.id!r}")
                return
            if message.error is not None:
                future.set_exception(
                    RemoteError(message.error.message, code=message.error.code, data=message.error.data)
                )
            else:
                future.set_result(message.result)
        elif isinstance(message, Notification):
            self._safe_call(self.on_notification, message)
            for subscription in list(self._subscriptions):
                self._safe_call(subscription.handler, message)
        else:
            self._spawn_background(self._answer(message))

    async def _answer(self, request: Request) -> None:
        handler = self._client_handler
        try:
            if handler is None:
                raise RemoteError(f"Method not found: {request.method}", code=-32601)
            response = Response(id=request.id, result=await handler.handle(request.method, request.params))
        except RemoteError as e:
            response = Response(id=request.id, error=ErrorObject(code=e.code, message=e.message, data=e.data))
        except Exception as e:
            log.exception(f"[{self.session_key}] Failed to answer {request.method}")
            response = Response(id=request.id, error=ErrorObject(code=INTERNAL_ERROR_CODE, message=str(e)))
        try:
            await self._write(response)
        except ACPError as e:
            log.debug(f"[{self.session_key}] Could not answer {request.method}: {e.message}")

    async def request(self, method: str, params: JSON = None, timeout: float | None = None) -> JSON:
        """Send a request and wait for its result.

        Raises:
            RemoteError: The agent answered with an error
            RequestTimeout: No answer within ``timeout`` seconds
            ACPError: Not connected, send failure, or subprocess exit
        """
        if self._proc is None:
            raise ACPError(
                f"Not connected to ACP (backend={self.config.backend_name})",
                kind=ErrorKind.NOT_CONNECTED,
            )
        request_id = next(self._ids)
        future: asyncio.Future[JSON] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write(Request(id=request_id, method=method, params=params))
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(f"Timed out waiting for {method} response") from None
        finally:
            if self._pending.get(request_id) is future:
                del self._pending[request_id]

    def notify(self, method: str, params: JSON = None) -> bool:
        """Send a notification without waiting. Returns False when not connected."""
        proc = self._proc
        if proc is None or proc.stdin is None:
            return False
        data = encode(Notification(method=method, params=params))
        wire_log.debug(f"[{self.session_key}] → {data.decode().rstrip()}")
        try:
            proc.stdin.write(data)
        except (ConnectionError, OSError, RuntimeError) as e:
            log.warning(f"[{self.session_key}] Failed to send {method}: {e}")
            return False
        return True

    def subscribe(self, handler: NotificationHandler) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    # ------------------------------------------------------------- handshake

    def _check_exiting(self) -> None:
        if self.host.exiting:
            raise ACPError("Host is shutting down", kind=ErrorKind.SHUTTING_DOWN)

    async def initialize(self) -> JSON:
        """Start the agent if needed and complete the handshake.

        Concurrent callers share a single in-flight handshake and all receive
        its outcome. Returns the agent capabilities.
        """
        self._check_exiting()
        if self.initialized and self._proc is not None:
            return self.agent_capabilities

        if self._init_future is None:
            self._init_future = asyncio.get_running_loop().create_future()
            self._init_task = asyncio.create_task(self._run_initialize(self._init_future))
        return await asyncio.shield(self._init_future)

    async def _run_initialize(self, future: asyncio.Future[JSON]) -> None:
        attempt = 1
        try:
            while True:
                self._check_exiting()
                try:
                    capabilities = await self._attempt_handshake()
                except ACPError as e:
                    if e.retryable and attempt < self.policy.max_attempts:
                        delay = self.policy.delay(attempt)
                        log.warning(
                            f"[{self.session_key}] ACP start attempt {attempt}/{self.policy.max_attempts} "
                            f"failed: {e.message}; retrying in {delay:.2f}s"
                        )
                        self._kill(e)
                        await self._sleep(delay)
                        attempt += 1
                        continue
                    raise
                break
        except asyncio.CancelledError:
            # disconnect() already reset the connection and failed the future
            _fail(future, ACPError("Initialization cancelled", kind=ErrorKind.CANCELLED))
            raise
        except ACPError as e:
            self._finish_initialize(future, e)
        except Exception as e:
            log.exception(f"[{self.session_key}] Unexpected handshake failure")
            self._finish_initialize(future, HandshakeError(f"Handshake failed: {e}"))
        else:
            if self._init_future is future:
                self._init_future = None
                self._init_task = None
            if not future.done():
                future.set_result(capabilities)
            self._safe_call(self.on_connect)

    def _finish_initialize(self, future: asyncio.Future[JSON], error: ACPError) -> None:
        if self._init_future is future:
            self._init_future = None
            self._init_task = None
        quiet = error.kind in (ErrorKind.CANCELLED, ErrorKind.SHUTTING_DOWN)
        if not quiet:
            log.error(f"[{self.session_key}] ACP initialization failed: {error.message}")
            self._record_error(error)
        self._kill(error)
        self._set_state(ConnectionState.IDLE)
        _fail(future, error)
        if not quiet:
            self._safe_call(self.on_error, error)

    async def _attempt_handshake(self) -> JSON:
        self._set_state(ConnectionState.STARTING)
        await self._start_process()

        # Give the subprocess a moment before talking to it
        await self._sleep(self.policy.settle_delay)
        self._check_exiting()

        try:
            result = await self.request("initialize", _initialize_params())
        except RemoteError as e:
            raise HandshakeError(f"ACP initialize failed: {e.message}") from e
        if not isinstance(result, dict):
            raise HandshakeError("Invalid initialize response")

        self.agent_info = result.get("agentInfo")
        self.agent_capabilities = result.get("agentCapabilities")
        self.last_error = None
        self.last_error_time = None
        self._set_state(ConnectionState.READY)
        log.info(f"[{self.session_key}] Agent connected: {self.status().agent_name or self.config.backend_name}")
        return self.agent_capabilities

    # --------------------------------------------------------------- session

    def supports_session_setting(self, kind: str) -> bool | None:
        """True/False when the agent reports it, None when unknown."""
        caps = self.agent_capabilities
        if not isinstance(caps, dict):
            return None
        session_caps = caps.get("session")
        if not isinstance(session_caps, dict):
            return None
        for key in _SETTING_KEYS[kind]:
            value = session_caps.get(key)
            if value is True or value is False:
                return value
        return None

    async def create_session(
        self,
        cwd: str | None = None,
        agent: str | None = None,
        model: str | None = None,
    ) -> str:
        """Create an agent-side session, then apply the requested mode and model."""
        await self.initialize()

        result = await self.request(
            "session/new",
            {"cwd": cwd or self.host.cwd(), "mcpServers": []},
        )
        if not isinstance(result, dict) or not isinstance(result.get("sessionId"), str):
            raise SessionError("Invalid session response")

        session_id: str = result["sessionId"]
        self.acp_session_id = session_id
        self.session_modes = result.get("modes")
        self.session_models = result.get("models")
        log.info(f"[{self.session_key}] Created ACP session {session_id}")

        await self._apply_setting("mode", agent or self.config.agent, _current(self.session_modes, "currentModeId"))
        await self._apply_setting("model", model or self.config.model, _current(self.session_models, "currentModelId"))
        return session_id

    async def ensure_session(self) -> str:
        """Return the agent-side session id, creating the session if needed."""
        async with self._session_lock:
            if self.acp_session_id is None or self._proc is None:
                return await self.create_session()
            return self.acp_session_id

    async def _apply_setting(self, kind: str, value: str | None, current: str | None) -> None:
        if not value or value == current:
            return

        label = "agent mode" if kind == "mode" else "model"
        setter = self.set_mode if kind == "mode" else self.set_model
        try:
            await setter(value)
        except CapabilityUnsupported:
            self._warn(f"Backend does not support setting {label}; ignoring")
        except ACPError as e:
            self._warn(f"Failed to set {label}: {e.message}")

    async def _set_session_setting(self, kind: str, params: dict[str, JSON]) -> None:
        if not self.acp_session_id:
            raise SessionError("No active session")
        label = "agent mode" if kind == "mode" else "model"
        if self.supports_session_setting(kind) is False:
            raise CapabilityUnsupported(f"Backend does not support setting {label}")
        try:
            await self.request(
                f"session/set_{kind}",
                {"sessionId": self.acp_session_id, **params},
                timeout=self.policy.setting_timeout,
            )
        except RemoteError as e:
            if e.kind is ErrorKind.METHOD_NOT_FOUND:
                raise CapabilityUnsupported(f"Backend does not support setting {label}") from e
            raise

    async def set_mode(self, mode_id: str) -> None:
        """Select an agent mode.

        Raises:
            CapabilityUnsupported: The agent declares or reports the setting unimplemented
        """
        await self._set_session_setting("mode", {"modeId": mode_id})

    async def set_model(self, model_id: str) -> None:
        await self._set_session_setting("model", {"modelId": model_id})

    # ---------------------------------------------------------------- prompt

    async def send_prompt(
        self,
        text: str,
        context: EditorContext | None = None,
        on_update: UpdateCallback | None = None,
        request_id: str | None = None,
    ) -> JSON:
        """Send a prompt and stream its updates until the agent completes the turn.

        Args:
            text: The user's prompt
            context: File/selection to reference in the prompt
            on_update: Receives every ``session/update`` while the prompt is outstanding
            request_id: Caller's id used to tag updates

        Returns:
            The ``session/prompt`` result (e.g. ``{"stopReason": "end_turn"}``)
        """
        session_id = await self.ensure_session()

        def forward(notification: Notification) -> None:
            if notification.method != "session/update" or not isinstance(notification.params, dict):
                return
            if on_update is not None:
                on_update(SessionUpdate(request_id, self.session_key, dict(notification.params)))

        token = next(self._prompt_tokens)
        with self.subscribe(forward):
            self._prompts.add(token)
            if self._state is ConnectionState.READY:
                self._set_state(ConnectionState.STREAMING)
            try:
                return await self.request(
                    "session/prompt",
                    {"sessionId": session_id, "prompt": prompt_content(augment_prompt(text, context))},
                )
            finally:
                self._prompts.discard(token)
                if not self._prompts and self._state is ConnectionState.STREAMING:
                    self._set_state(ConnectionState.READY)

    def cancel(self) -> bool:
        """Ask the agent to stop the current turn. Doesn't wait for it to halt."""
        if not self.acp_session_id:
            return False
        return self.notify("session/cancel", {"sessionId": self.acp_session_id})

    # ------------------------------------------------------------ disconnect

    def disconnect(self) -> None:
        """Stop the subprocess deliberately: no retry, no error surfaced."""
        self._stopping = True
        init_future, init_task = self._init_future, self._init_task
        self._init_future = None
        self._init_task = None
        if init_task is not None and not init_task.done():
            init_task.cancel()
        if init_future is not None:
            _fail(init_future, ACPError("Disconnected during initialization", kind=ErrorKind.CANCELLED))
        if self._state is not ConnectionState.IDLE:
            self._set_state(ConnectionState.STOPPING)
        self._kill(ACPError("Disconnected", kind=ErrorKind.CANCELLED))
        self._set_state(ConnectionState.IDLE)
        self._safe_call(self.on_disconnect)

        try:
            asyncio.get_running_loop().call_later(self.policy.stop_grace, self._clear_stopping)
        except RuntimeError:
            self._stopping = False

    def _clear_stopping(self) -> None:
        self._stopping = False

    async def close(self) -> None:
        """Disconnect and wait for the reader to finish."""
        reader = self._reader_task
        self.disconnect()
        if reader is not None and not reader.done():
            try:
                await asyncio.wait_for(reader, timeout=2.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                reader.cancel()


def _fail(future: asyncio.Future[JSON], error: ACPError) -> None:
    if not future.done():
        future.set_exception(error)
        # Mark retrieved; callers await through a shield and may be gone
        future.exception()


def _current(options: JSON, key: str) -> str | None:
    if isinstance(options, dict):
        value = options.get(key)
        if isinstance(value, str):
            return value
    return None
