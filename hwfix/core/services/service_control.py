"""
ServiceController — systemd service lifecycle with ready polling.

Every operation returns the CommandResult; nothing raises. Callers
(steps) decide whether a failure is fatal.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from hwfix.adapters.base import CommandResult, Executor
from hwfix.core.models.service import ServiceHandle, ServiceScope

logger = logging.getLogger(__name__)


class ServiceController:
    """Wraps ``systemctl`` (and ``systemctl --user``)."""

    def __init__(
        self,
        runner: Executor,
        poll_interval: float = 0.5,
        default_timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._runner = runner
        self._poll_interval = poll_interval
        self._default_timeout = default_timeout
        self._sleep = sleep
        self._clock = clock

    def _systemctl(self, scope: ServiceScope, *args: str) -> CommandResult:
        argv = ["systemctl"]
        if scope == ServiceScope.USER:
            argv.append("--user")
        argv.extend(args)
        return self._runner.run(argv, timeout=60)

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self, handle: ServiceHandle) -> CommandResult:
        logger.info("Starting %s", handle)
        return self._systemctl(handle.scope, "start", handle.unit)

    def stop(self, handle: ServiceHandle) -> CommandResult:
        logger.info("Stopping %s", handle)
        return self._systemctl(handle.scope, "stop", handle.unit)

    def restart(self, handle: ServiceHandle) -> CommandResult:
        """Restart a service, falling back to daemon-reload + start.

        On first install the unit may not be loaded yet, so a failed
        restart is retried as a plain start after reloading units.
        """
        logger.info("Restarting %s", handle)
        result = self._systemctl(handle.scope, "restart", handle.unit)
        if result.ok:
            return result
        logger.debug("restart %s failed (%s); reloading and starting", handle, result.error)
        self.daemon_reload(handle.scope)
        return self._systemctl(handle.scope, "start", handle.unit)

    def enable(self, handle: ServiceHandle, now: bool = False) -> CommandResult:
        args = ["enable", handle.unit]
        if now:
            args.insert(1, "--now")
        return self._systemctl(handle.scope, *args)

    def disable(self, handle: ServiceHandle, now: bool = False) -> CommandResult:
        args = ["disable", handle.unit]
        if now:
            args.insert(1, "--now")
        return self._systemctl(handle.scope, *args)

    def reset_failed(self, handle: ServiceHandle) -> CommandResult:
        return self._systemctl(handle.scope, "reset-failed", handle.unit)

    def daemon_reload(self, scope: ServiceScope = ServiceScope.SYSTEM) -> CommandResult:
        return self._systemctl(scope, "daemon-reload")

    # ── Queries ─────────────────────────────────────────────────

    def is_active(self, handle: ServiceHandle) -> bool:
        return self._systemctl(handle.scope, "is-active", "--quiet", handle.unit).ok

    def is_enabled(self, handle: ServiceHandle) -> bool:
        return self._systemctl(handle.scope, "is-enabled", "--quiet", handle.unit).ok

    def wait_until_active(self, handle: ServiceHandle, timeout: float | None = None) -> bool:
        """Poll until the service is active. False on timeout, never raises."""
        timeout = self._default_timeout if timeout is None else timeout
        deadline = self._clock() + timeout
        while True:
            if self.is_active(handle):
                return True
            if self._clock() >= deadline:
                logger.warning("%s not active after %.1fs", handle, timeout)
                return False
            self._sleep(self._poll_interval)
