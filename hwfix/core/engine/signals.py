"""
Signal handling and child-process ownership.

``signal_guard()`` turns SIGINT/SIGTERM into ``UserAbort`` on the main
thread for the duration of a mutating run, so cleanup happens in the
ordinary ``try/finally`` and context-manager paths. ``signals_ignored()``
shields rollback from a second interrupt. ``ChildProcessSlot`` owns at
most one long-running child (the preview viewer) and terminates it on
every exit path.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType

from hwfix.adapters.base import ChildProcess, Executor
from hwfix.core.errors import UserAbort

logger = logging.getLogger(__name__)

GUARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _on_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


def _raise_abort(signum: int, frame: FrameType | None) -> None:
    raise UserAbort(signum)


@contextmanager
def signal_guard(signals: tuple[int, ...] = GUARDED_SIGNALS) -> Iterator[None]:
    """Raise UserAbort on ``signals`` inside the block.

    Previous handlers are reinstalled on exit. Off the main thread
    (where Python can't install handlers) this is a no-op.
    """
    if not _on_main_thread():
        yield
        return

    previous = {sig: signal.signal(sig, _raise_abort) for sig in signals}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@contextmanager
def signals_ignored(signals: tuple[int, ...] = GUARDED_SIGNALS) -> Iterator[None]:
    """Ignore ``signals`` inside the block (rollback must run to completion)."""
    if not _on_main_thread():
        yield
        return

    previous = {sig: signal.signal(sig, signal.SIG_IGN) for sig in signals}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class ChildProcessSlot:
    """Holds at most one child process and stops it on exit.

    Usage::

        with ChildProcessSlot(runner) as viewer:
            viewer.start(["qcam"])
            ...
    """

    def __init__(self, runner: Executor, grace: float = 3.0):
        self._runner = runner
        self._grace = grace
        self._proc: ChildProcess | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self, args: list[str]) -> ChildProcess:
        """Start ``args``, replacing any child already held."""
        self.stop()
        self._proc = self._runner.spawn(args)
        return self._proc

    def ensure(self, args: list[str]) -> ChildProcess:
        """Start ``args`` unless a child is already running."""
        if self.running:
            assert self._proc is not None
            return self._proc
        return self.start(args)

    def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self._grace)
        except Exception:
            logger.debug("Child did not exit after terminate; killing")
            proc.kill()
            proc.wait(timeout=self._grace)

    def __enter__(self) -> ChildProcessSlot:
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
