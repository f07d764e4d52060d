"""
Adapter base — the contract between hwfix and external tools.

Two seams live here:

    Executor        runs an external command and returns a CommandResult.
                    The only production implementation is
                    ``adapters.shell.command.CommandRunner``; tests use
                    ``adapters.mock.MockCommandRunner``.
    PackageBackend  one distro package manager (apt, dnf, pacman, zypper).
                    Selected once per run by distro family, never
                    re-branched inside steps.

Adapters NEVER raise for a failed command. Failures are captured in
the CommandResult and interpreted by the caller.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Protocol

from pydantic import BaseModel, Field

from hwfix.core.models.package import DistroFamily


class CommandResult(BaseModel):
    """Captured outcome of one external command."""

    args: list[str] = Field(default_factory=list)
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return " ".join(self.args)

    @property
    def error(self) -> str:
        """Best single-line description of why the command failed."""
        if self.timed_out:
            return f"{self.command}: timed out"
        detail = self.stderr.strip() or self.stdout.strip()
        if detail:
            return detail.splitlines()[-1]
        return f"{self.command}: exited with code {self.returncode}"


class ChildProcess(Protocol):
    """The subset of ``subprocess.Popen`` hwfix relies on."""

    def poll(self) -> int | None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def wait(self, timeout: float | None = None) -> int: ...


class Executor(ABC):
    """Runs external commands."""

    @abstractmethod
    def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command to completion. MUST NOT raise on failure."""

    @abstractmethod
    def which(self, name: str) -> str | None:
        """Resolve a binary on PATH."""

    @abstractmethod
    def spawn(self, args: list[str]) -> ChildProcess:
        """Start a long-running child process (e.g. a preview window)."""


# ── Package backends ────────────────────────────────────────────

# Patterns shared across package managers. Checked after the
# backend-specific ones.
_TRANSIENT_PATTERNS = (
    r"Could not resolve",
    r"Temporary failure",
    r"Failed to fetch",
    r"Curl error",
    r"failed retrieving file",
    r"Connection timed out",
    r"Could not get lock",
    r"Network is unreachable",
)

_PERMANENT_PATTERNS = (
    r"Unable to locate package",
    r"No match for argument",
    r"target not found",
    r"No provider of",
    r"has no installation candidate",
)


class PackageBackend(ABC):
    """One distro package manager.

    To add a backend:
        1. Subclass PackageBackend
        2. Implement the command builders and ``parse_installed``
        3. Register it in ``adapters.registry.BackendRegistry``
    """

    family: DistroFamily = DistroFamily.UNKNOWN
    binary: str = ""
    transient_patterns: tuple[str, ...] = ()
    permanent_patterns: tuple[str, ...] = ()

    def __init__(self, runner: Executor, timeout: float | None = None):
        self._runner = runner
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self.binary

    def is_available(self) -> bool:
        return self._runner.which(self.binary) is not None

    @abstractmethod
    def install_command(self, packages: list[str]) -> list[str]:
        """Argv that installs ``packages`` non-interactively."""

    @abstractmethod
    def remove_command(self, packages: list[str]) -> list[str]:
        """Argv that removes ``packages`` non-interactively."""

    @abstractmethod
    def query_command(self, package: str) -> list[str]:
        """Argv that reports whether ``package`` is installed."""

    def parse_installed(self, result: CommandResult) -> bool:
        return result.ok

    # ── Operations ──────────────────────────────────────────────

    def install(self, packages: list[str]) -> CommandResult:
        return self._runner.run(self.install_command(packages), timeout=self._timeout)

    def remove(self, packages: list[str]) -> CommandResult:
        return self._runner.run(self.remove_command(packages), timeout=self._timeout)

    def is_installed(self, package: str) -> bool:
        return self.parse_installed(self._runner.run(self.query_command(package)))

    def classify_failure(self, result: CommandResult) -> dict[str, Any]:
        """Classify a failed install from its output.

        Returns a dict with ``retriable`` (bool), ``reason`` and ``hint``.
        Unknown failures are treated as permanent.
        """
        text = f"{result.stderr}\n{result.stdout}"

        if result.timed_out:
            return {
                "retriable": True,
                "reason": "timeout",
                "hint": f"{self.binary} timed out. Check your network and retry.",
            }

        for pattern in self.permanent_patterns + _PERMANENT_PATTERNS:
            if re.search(pattern, text, re.IGNORECASE):
                return {
                    "retriable": False,
                    "reason": "missing_package",
                    "hint": "Package not found in the enabled repositories. "
                            "Enable the required repository or install it manually.",
                }

        for pattern in self.transient_patterns + _TRANSIENT_PATTERNS:
            if re.search(pattern, text, re.IGNORECASE):
                return {
                    "retriable": True,
                    "reason": "network",
                    "hint": "Repository or network error. Check connectivity and retry.",
                }

        return {
            "retriable": False,
            "reason": "unknown",
            "hint": f"See the {self.binary} output above.",
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} family={self.family.value!r}>"
