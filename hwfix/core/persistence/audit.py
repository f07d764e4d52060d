"""
Audit ledger — append-only run history.

Every apply/revert/recover writes one entry to an NDJSON
(newline-delimited JSON) file under the state directory. ``status``
never writes. ``hwfix history`` and ``hwfix recover`` read it back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from hwfix.core.models.report import RunReport
from hwfix.core.models.step import StepOutcome

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """One finished run as recorded in the ledger."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    fix: str = ""
    mode: str = ""                 # apply, revert, recover, commit

    # Results
    outcome: str = ""              # success, partial_failure, aborted
    state: str = ""
    rolled_back: bool = False
    steps_total: int = 0
    steps_applied: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    duration_ms: int = 0

    # Errors (if any)
    errors: list[str] = Field(default_factory=list)

    # Extensible context (fingerprint, options, trigger notes)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, **context: Any) -> AuditEntry:
        errors = [f"{r.step_id}: {r.error}" for r in report.results if r.error]
        if report.error:
            errors.insert(0, report.error)
        return cls(
            run_id=report.run_id,
            fix=report.fix,
            mode=report.mode.value,
            outcome=report.outcome.value,
            state=report.state.value,
            rolled_back=report.rolled_back,
            steps_total=report.total,
            steps_applied=report.count(StepOutcome.APPLIED) + report.count(StepOutcome.REVERTED),
            steps_failed=report.failed,
            steps_skipped=report.count(StepOutcome.SKIPPED),
            duration_ms=_duration_ms(report.started_at, report.ended_at),
            errors=errors,
            context={
                "fingerprint": report.fingerprint.model_dump(mode="json"),
                "warnings": report.warnings,
                **context,
            },
        )


def _duration_ms(started: str, ended: str) -> int:
    if not started or not ended:
        return 0
    try:
        delta = datetime.fromisoformat(ended) - datetime.fromisoformat(started)
    except ValueError:
        return 0
    return int(delta.total_seconds() * 1000)


class AuditWriter:
    """The run ledger at ``path``: one JSON object per line, oldest first.

    Lines are only ever appended. A line that fails to parse is skipped
    on read, so one torn write never hides the rest of the history.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append ``entry``. An unwritable ledger is logged, never raised."""
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(record + "\n")
        except OSError as e:
            logger.error("Could not append to audit ledger %s: %s", self._path, e)
            return
        logger.debug("Audited %s run %s of %s", entry.mode, entry.run_id, entry.fix)

    def _lines(self) -> Iterator[tuple[int, str]]:
        """(line number, text) for every non-blank ledger line."""
        if not self._path.is_file():
            return
        try:
            with self._path.open(encoding="utf-8") as ledger:
                for number, raw in enumerate(ledger, start=1):
                    if raw.strip():
                        yield number, raw
        except OSError as e:
            logger.error("Could not read audit ledger %s: %s", self._path, e)

    def read_all(self) -> list[AuditEntry]:
        entries = []
        for number, raw in self._lines():
            try:
                entries.append(AuditEntry.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("Audit ledger line %d unreadable, skipped: %s", number, e)
        return entries

    def read_recent(self, n: int = 20, fix: str | None = None) -> list[AuditEntry]:
        """The last ``n`` entries, optionally only those of ``fix``."""
        entries = self.read_all()
        if fix:
            entries = [e for e in entries if e.fix == fix]
        return entries[-n:]

    def entry_count(self) -> int:
        return sum(1 for _ in self._lines())

    def run_ids(self) -> set[str]:
        """Ids of every run that reached the ledger (i.e. finished)."""
        return {e.run_id for e in self.read_all() if e.run_id}
