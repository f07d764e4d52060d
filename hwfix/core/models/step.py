"""
Step and StepResult: the execution contract between fixes and the runner.

A Step is one named, idempotent, reversible unit of system change.
The runner asks it four questions (precondition, is_applied, apply,
revert) and records what happened as a StepResult.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from hwfix.core.context import RunContext


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepOutcome(str, Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    FAILED = "failed"
    REVERTED = "reverted"
    NOT_APPLIED = "not_applied"


class StepResult(BaseModel):
    """Outcome of running one step in one mode.

    The runner never lets a step exception escape; failures land here
    with their taxonomy kind and a remediation hint.
    """

    step_id: str
    description: str = ""
    ordinal: int = 0
    outcome: StepOutcome
    critical: bool = False

    detail: str = ""                 # skip reason or informational note
    error: str | None = None
    error_kind: str | None = None    # precondition, transient, permanent, ...
    hint: str = ""
    attempts: int = 0

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome != StepOutcome.FAILED

    @property
    def failed(self) -> bool:
        return self.outcome == StepOutcome.FAILED

    @property
    def changed(self) -> bool:
        """Whether this result mutated the system."""
        return self.outcome in (StepOutcome.APPLIED, StepOutcome.REVERTED)

    @classmethod
    def for_step(cls, step: Step, outcome: StepOutcome, **kwargs: Any) -> StepResult:
        return cls(
            step_id=step.id,
            description=step.description,
            ordinal=step.ordinal,
            critical=step.critical,
            outcome=outcome,
            **kwargs,
        )

    @classmethod
    def skip(cls, step: Step, reason: str = "", **kwargs: Any) -> StepResult:
        """Create a skip result."""
        return cls.for_step(step, StepOutcome.SKIPPED, detail=reason, **kwargs)

    @classmethod
    def failure(
        cls,
        step: Step,
        error: str,
        kind: str = "permanent",
        hint: str = "",
        **kwargs: Any,
    ) -> StepResult:
        """Create a failure result."""
        return cls.for_step(
            step,
            StepOutcome.FAILED,
            error=error,
            error_kind=kind,
            hint=hint,
            **kwargs,
        )


class Step(ABC):
    """Abstract base class for all fix steps.

    Subclasses implement ``is_applied``, ``apply`` and ``revert``, and
    may override ``precondition`` and ``paths``.

    Contract:
        - ``apply()`` that fails part-way must leave ``is_applied()``
          returning False. Paths returned by ``paths()`` are snapshotted
          before ``apply()`` and restored automatically if it raises.
        - ``revert()`` must be safe to call when ``apply()`` never ran
          or failed part-way.
    """

    id: str = ""
    description: str = ""
    critical: bool = False
    retriable: bool = False
    keep_on_revert: bool = False     # revert mode leaves this step's change in place
    triggers: tuple[str, ...] = ()

    def __init__(
        self,
        id: str | None = None,
        description: str | None = None,
        *,
        critical: bool | None = None,
        retriable: bool | None = None,
        keep_on_revert: bool | None = None,
        triggers: tuple[str, ...] | None = None,
    ):
        if id is not None:
            self.id = id
        if description is not None:
            self.description = description
        if critical is not None:
            self.critical = critical
        if retriable is not None:
            self.retriable = retriable
        if keep_on_revert is not None:
            self.keep_on_revert = keep_on_revert
        if triggers is not None:
            self.triggers = tuple(triggers)
        self.ordinal = 0

    def precondition(self, ctx: RunContext) -> bool:
        """Whether this step should run at all on this system."""
        return True

    def paths(self, ctx: RunContext) -> list[Path]:
        """Filesystem paths this step mutates (snapshotted before apply)."""
        return []

    @abstractmethod
    def is_applied(self, ctx: RunContext) -> bool:
        """Idempotency check. Must not mutate anything."""

    @abstractmethod
    def apply(self, ctx: RunContext) -> None:
        """Converge the system to this step's desired state."""

    @abstractmethod
    def revert(self, ctx: RunContext) -> None:
        """Undo ``apply()``."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} id={self.id!r}>"
