"""
Shell command runner — the one place hwfix spawns processes.

Every external tool (package managers, systemctl, modprobe, dkms,
git, the CCM preview viewer) is invoked through CommandRunner so
tests can swap in MockCommandRunner.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

from hwfix.adapters.base import ChildProcess, CommandResult, Executor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


class CommandRunner(Executor):
    """Execute commands with ``subprocess.run`` and capture output.

    Commands are always argv lists, never shell strings.
    """

    def __init__(self, default_timeout: float | None = DEFAULT_TIMEOUT):
        self._default_timeout = default_timeout

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        timeout = timeout if timeout is not None else self._default_timeout
        full_env = {**os.environ, **env} if env else None

        logger.debug("Executing: %s (cwd=%s)", " ".join(args), cwd or ".")
        start = time.monotonic()

        try:
            proc = subprocess.run(
                args,
                cwd=cwd,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", timeout, " ".join(args))
            return CommandResult(
                args=args,
                returncode=-1,
                stderr=f"Command timed out after {timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except FileNotFoundError:
            return CommandResult(
                args=args,
                returncode=127,
                stderr=f"{args[0]}: command not found",
            )
        except PermissionError as e:
            return CommandResult(args=args, returncode=126, stderr=str(e))

        result = CommandResult(
            args=args,
            returncode=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        if not result.ok:
            logger.debug("Command failed (%d): %s", result.returncode, result.error)
        return result

    def spawn(self, args: list[str]) -> ChildProcess:
        logger.debug("Spawning: %s", " ".join(args))
        return subprocess.Popen(
            args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
