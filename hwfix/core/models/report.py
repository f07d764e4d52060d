"""
RunReport: the ordered record of one apply/revert/status invocation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from hwfix.core.models.step import StepOutcome, StepResult


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunMode(str, Enum):
    APPLY = "apply"
    REVERT = "revert"
    STATUS = "status"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


class RunState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    EXECUTING = "executing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


class SystemFingerprint(BaseModel):
    """What the run was executed against."""

    distro_id: str = ""
    distro_version: str = ""
    distro_family: str = "unknown"
    kernel: str = ""
    sys_vendor: str = ""
    product_name: str = ""
    hardware_ids: list[str] = Field(default_factory=list)


@dataclass
class RunReport:
    """Result of running a fix's steps in one mode."""

    run_id: str = ""
    fix: str = ""
    mode: RunMode = RunMode.APPLY
    results: list[StepResult] = field(default_factory=list)
    transitions: list[RunState] = field(default_factory=lambda: [RunState.IDLE])
    aborted: bool = False
    rolled_back: bool = False
    rollback_results: list[StepResult] = field(default_factory=list)
    fingerprint: SystemFingerprint = field(default_factory=SystemFingerprint)
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    notes: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None     # run-level refusal (precondition, missing stamp)

    @property
    def state(self) -> RunState:
        return self.transitions[-1]

    def transition(self, state: RunState) -> None:
        if state != self.transitions[-1]:
            self.transitions.append(state)

    def count(self, outcome: StepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return self.count(StepOutcome.FAILED)

    @property
    def changed(self) -> int:
        return sum(1 for r in self.results if r.changed)

    @property
    def outcome(self) -> RunOutcome:
        if self.aborted:
            return RunOutcome.ABORTED
        if self.failed or self.error:
            return RunOutcome.PARTIAL_FAILURE
        return RunOutcome.SUCCESS

    @property
    def exit_code(self) -> int:
        """CLI exit code: 0 success, 1 any failure, 2 aborted."""
        if self.mode == RunMode.STATUS:
            return 0
        if self.aborted:
            return 2
        return 0 if self.outcome == RunOutcome.SUCCESS else 1

    def get(self, step_id: str) -> StepResult | None:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

    def finish(self) -> None:
        self.ended_at = _now_iso()

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "fix": self.fix,
            "mode": self.mode.value,
            "outcome": self.outcome.value,
            "state": self.state.value,
            "transitions": [s.value for s in self.transitions],
            "rolled_back": self.rolled_back,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
            "fingerprint": self.fingerprint.model_dump(mode="json"),
            "summary": {o.value: self.count(o) for o in StepOutcome if self.count(o)},
            "results": [r.model_dump(mode="json") for r in self.results],
            "rollback": [r.model_dump(mode="json") for r in self.rollback_results],
            "notes": self.notes,
            "warnings": self.warnings,
        }
