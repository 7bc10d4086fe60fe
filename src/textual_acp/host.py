"""Host environment signals consumed by connections."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

log = logging.getLogger(__name__)


class HostEnvironment:
    """Working directory provider plus the process-wide "exiting" flag.

    Once :meth:`shutdown` is called no connection retries or reconnects,
    even in the middle of a backoff.
    """

    def __init__(self, cwd: Callable[[], str] | None = None) -> None:
        self._cwd = cwd or os.getcwd
        self._exiting = False

    def cwd(self) -> str:
        return self._cwd()

    @property
    def exiting(self) -> bool:
        return self._exiting

    def shutdown(self) -> None:
        if not self._exiting:
            log.info("Host is shutting down; ACP retries disabled")
        self._exiting = True
