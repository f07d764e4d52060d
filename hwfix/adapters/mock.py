"""
Mock command runner — universal test double for external tools.

Returns success for every command unless configured otherwise.
Responses are matched by command prefix, longest prefix first, so
``set_failure("apt-get install")`` fails every apt install while
``apt-get remove`` still succeeds.
"""

from __future__ import annotations

from collections.abc import Callable

from hwfix.adapters.base import CommandResult, Executor

Responder = Callable[[list[str]], CommandResult]


class MockProcess:
    """Stand-in for a spawned child process."""

    def __init__(self, args: list[str]):
        self.args = args
        self.returncode: int | None = None
        self.terminated = False

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.terminated = True
        self.returncode = -9

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            self.returncode = 0
        return self.returncode


class _Once:
    """Responder consumed after a single use."""

    def __init__(self, responder: Responder):
        self._responder = responder

    def __call__(self, args: list[str]) -> CommandResult:
        return self._responder(args)


class MockCommandRunner(Executor):
    """Executor that records calls and returns programmed results."""

    def __init__(
        self,
        available: set[str] | None = None,
        default_output: str = "",
    ):
        # None means every binary is "installed"
        self._available = available
        self._default_output = default_output
        self._responses: dict[tuple[str, ...], list[Responder]] = {}
        self._call_log: list[list[str]] = []
        self._spawned: list[MockProcess] = []

    @property
    def call_log(self) -> list[list[str]]:
        """Every argv this mock has received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[str]:
        """Call log joined into strings, for readable assertions."""
        return [" ".join(args) for args in self._call_log]

    @property
    def spawned(self) -> list[MockProcess]:
        return self._spawned

    def called(self, prefix: str) -> bool:
        return any(c.startswith(prefix) for c in self.commands)

    # ── Programming ─────────────────────────────────────────────

    def set_response(
        self,
        prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        times: int | None = None,
    ) -> None:
        """Return a fixed result for commands starting with ``prefix``.

        With ``times``, the response is used that many times before
        falling through to the standing response (or the default).
        """
        def responder(args: list[str]) -> CommandResult:
            return CommandResult(args=args, returncode=returncode, stdout=stdout, stderr=stderr)

        if times is None:
            self.set_handler(prefix, responder)
            return
        queue = self._responses.setdefault(tuple(prefix.split()), [])
        for _ in range(times):
            queue.insert(0, _Once(responder))

    def set_failure(
        self,
        prefix: str,
        stderr: str = "Mock failure",
        returncode: int = 1,
        times: int | None = None,
    ) -> None:
        """Configure commands starting with ``prefix`` to fail."""
        self.set_response(prefix, returncode=returncode, stderr=stderr, times=times)

    def set_handler(self, prefix: str, handler: Responder) -> None:
        """Route commands starting with ``prefix`` to a callable (replaces any standing one)."""
        queue = self._responses.setdefault(tuple(prefix.split()), [])
        queue[:] = [r for r in queue if isinstance(r, _Once)]
        queue.append(handler)

    def set_available(self, *names: str) -> None:
        if self._available is None:
            self._available = set()
        self._available.update(names)

    # ── Executor ────────────────────────────────────────────────

    def which(self, name: str) -> str | None:
        if self._available is None or name in self._available:
            return f"/usr/bin/{name}"
        return None

    def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        self._call_log.append(list(args))

        for prefix in sorted(self._responses, key=len, reverse=True):
            if tuple(args[: len(prefix)]) != prefix:
                continue
            queue = self._responses[prefix]
            if not queue:
                continue
            responder = queue[0]
            if isinstance(responder, _Once):
                queue.pop(0)
            return responder(list(args))

        return CommandResult(args=list(args), returncode=0, stdout=self._default_output)

    def spawn(self, args: list[str]) -> MockProcess:
        self._call_log.append(list(args))
        proc = MockProcess(list(args))
        self._spawned.append(proc)
        return proc

    def reset(self) -> None:
        """Clear call log and programmed responses."""
        self._call_log.clear()
        self._responses.clear()
        self._spawned.clear()
