"""
Error taxonomy for fix steps and the services they call.

Steps signal failure by raising one of these. The runner classifies
whatever comes out of ``apply()``/``revert()`` into a StepResult, so
nothing here escapes past the engine except ``UserAbort``.
"""

from __future__ import annotations


class HwfixError(Exception):
    """Base class for all hwfix errors.

    ``hint`` is a one-line remediation shown to the user next to the
    error classification.
    """

    kind = "error"

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class PreconditionNotMet(HwfixError):
    """Required hardware or software is absent. Skip, not fatal."""

    kind = "precondition"


class TransientFailure(HwfixError):
    """Network, repository or service-timing failure. Worth retrying."""

    kind = "transient"


class PermanentFailure(HwfixError):
    """Missing package, malformed target, failed build. Not retriable."""

    kind = "permanent"


class Unsupported(PermanentFailure):
    """No automated path on this distro; the user must act by hand."""

    kind = "unsupported"


class ProbeError(HwfixError):
    """The probing mechanism itself is inaccessible (e.g. permission denied)."""

    kind = "probe"


class ConfigError(HwfixError):
    """Raised when hwfix configuration is invalid or unreadable."""

    kind = "config"


class UserAbort(KeyboardInterrupt):
    """Interrupt or termination signal received while executing.

    Derives from KeyboardInterrupt so ``except Exception`` blocks in
    steps never swallow it.
    """

    kind = "abort"

    def __init__(self, signum: int | None = None):
        super().__init__(f"interrupted by signal {signum}" if signum else "interrupted")
        self.signum = signum


def classify(exc: BaseException) -> tuple[str, bool, str]:
    """Map an exception to ``(kind, retriable, hint)``."""
    if isinstance(exc, UserAbort):
        return "abort", False, ""
    if isinstance(exc, TransientFailure):
        return exc.kind, True, exc.hint
    if isinstance(exc, HwfixError):
        return exc.kind, False, exc.hint
    if isinstance(exc, PermissionError):
        return "permanent", False, "Run with sudo."
    return "permanent", False, ""
