"""Error types raised by the ACP client.

Every failure is tagged with an :class:`ErrorKind` where it happens, so retry
decisions never depend on message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Union

# JSON type for error payloads
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]

METHOD_NOT_FOUND_CODE = -32601


class ErrorKind(str, Enum):
    """Failure categories."""

    CONFIG = "config"
    LAUNCH = "launch"
    NOT_CONNECTED = "not_connected"
    SEND_FAILED = "send_failed"
    SUBPROCESS_EXITED = "subprocess_exited"
    PROTOCOL = "protocol"
    HANDSHAKE = "handshake"
    REMOTE = "remote"
    METHOD_NOT_FOUND = "method_not_found"
    TIMEOUT = "timeout"
    CAPABILITY_UNSUPPORTED = "capability_unsupported"
    NO_SESSION = "no_session"
    SHUTTING_DOWN = "shutting_down"
    CANCELLED = "cancelled"


# Failures that tear down the subprocess and retry the handshake
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.LAUNCH,
        ErrorKind.NOT_CONNECTED,
        ErrorKind.SEND_FAILED,
        ErrorKind.SUBPROCESS_EXITED,
    }
)


class ACPError(Exception):
    """Base class for all ACP client errors."""

    kind: ErrorKind = ErrorKind.REMOTE

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        """Whether a handshake that failed with this error should be retried."""
        return self.kind in RETRYABLE_KINDS


class ConfigError(ACPError):
    """Invalid backend selection or launch configuration. Never retried."""

    kind = ErrorKind.CONFIG


class LaunchError(ACPError):
    """The agent subprocess could not be started."""

    kind = ErrorKind.LAUNCH


class ProtocolError(ACPError):
    """Malformed or unexpected wire message."""

    kind = ErrorKind.PROTOCOL


class HandshakeError(ACPError):
    """The initialize exchange failed."""

    kind = ErrorKind.HANDSHAKE


class RuntimeFault(ACPError):
    """The agent subprocess exited while in use."""

    kind = ErrorKind.SUBPROCESS_EXITED

    def __init__(self, exit_code: int | None, backend: str) -> None:
        if exit_code:
            message = f"ACP subprocess exited with code {exit_code} (backend={backend})"
        else:
            message = f"ACP subprocess exited (backend={backend})"
        super().__init__(message)
        self.exit_code = exit_code
        self.backend = backend


class RemoteError(ACPError):
    """The agent answered a request with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None, data: JSON = None) -> None:
        kind = ErrorKind.METHOD_NOT_FOUND if code == METHOD_NOT_FOUND_CODE else ErrorKind.REMOTE
        super().__init__(message, kind=kind)
        self.code = code
        self.data = data


class CapabilityUnsupported(ACPError):
    """The agent does not implement a session setting (mode or model)."""

    kind = ErrorKind.CAPABILITY_UNSUPPORTED


class RequestTimeout(ACPError):
    """A request did not get a response before its deadline."""

    kind = ErrorKind.TIMEOUT


class SessionError(ACPError):
    """No agent-side session, or an unknown logical session id."""

    kind = ErrorKind.NO_SESSION
