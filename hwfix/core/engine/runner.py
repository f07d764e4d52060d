"""
Step runner — executes a fix's ordered steps in one mode.

Modes:
    status  is_applied() for every step. Nothing is mutated.
    apply   forward order. skipped / already_applied / applied / failed.
            Declared paths are snapshotted before apply() and restored
            if it raises. A critical failure (once any retries are spent)
            stops forward progress and reverts every step applied in this
            run, newest first. A run that completes settles its backups.
    revert  reverse order. Every step is attempted; failures accumulate.

A UserAbort (SIGINT/SIGTERM, see engine.signals) during apply restores
the in-flight step's snapshots, reverts the steps applied so far and
restores any backup of this run still outstanding. The report then
records Aborted.

Step exceptions never escape the runner; they become StepResults.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from hwfix.core.context import RunContext
from hwfix.core.engine.signals import signals_ignored
from hwfix.core.errors import PreconditionNotMet, UserAbort, classify
from hwfix.core.models.report import RunMode, RunReport, RunState
from hwfix.core.models.step import Step, StepOutcome, StepResult
from hwfix.core.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)

ResultCallback = Callable[[StepResult], None]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class StepRunner:
    """Runs steps against a RunContext and fills a RunReport."""

    def __init__(
        self,
        ctx: RunContext,
        retry: RetryPolicy | None = None,
        on_result: ResultCallback | None = None,
    ):
        self._ctx = ctx
        self._retry = retry or RetryPolicy.once()
        self._on_result = on_result
        self._inflight_restored = False

    def run(self, steps: Sequence[Step], mode: RunMode, report: RunReport | None = None) -> RunReport:
        for ordinal, step in enumerate(steps, start=1):
            step.ordinal = ordinal

        if report is None:
            report = RunReport(
                run_id=self._ctx.run_id,
                fix=self._ctx.fix,
                mode=mode,
                fingerprint=self._ctx.fingerprint,
            )
        report.transition(RunState.EXECUTING)

        try:
            if mode == RunMode.STATUS:
                self._status(steps, report)
            elif mode == RunMode.APPLY:
                self._apply(steps, report)
            else:
                self._revert(steps, report)
        finally:
            report.finish()
        return report

    def _record(self, report: RunReport, result: StepResult) -> None:
        report.results.append(result)
        log = logger.error if result.failed else logger.info
        log("[%d] %s: %s%s", result.ordinal, result.step_id, result.outcome.value,
            f" ({result.error})" if result.error else "")
        if self._on_result is not None:
            self._on_result(result)

    # ── Status ──────────────────────────────────────────────────

    def _status(self, steps: Sequence[Step], report: RunReport) -> None:
        for step in steps:
            start = time.monotonic()
            try:
                applied = step.is_applied(self._ctx)
                applicable = step.precondition(self._ctx)
            except Exception as e:
                kind, _, hint = classify(e)
                self._record(report, StepResult.failure(
                    step, str(e), kind, hint, duration_ms=_elapsed_ms(start),
                ))
                continue
            outcome = StepOutcome.ALREADY_APPLIED if applied else StepOutcome.NOT_APPLIED
            self._record(report, StepResult.for_step(
                step,
                outcome,
                detail="" if applicable else "not applicable on this system",
                duration_ms=_elapsed_ms(start),
            ))
        report.transition(RunState.COMPLETED)

    # ── Apply ───────────────────────────────────────────────────

    def _apply(self, steps: Sequence[Step], report: RunReport) -> None:
        applied: list[Step] = []
        current: Step | None = None
        try:
            for step in steps:
                current = step
                self._inflight_restored = False
                result = self._apply_one(step)
                current = None
                self._record(report, result)

                if result.outcome == StepOutcome.APPLIED:
                    applied.append(step)
                elif result.failed and step.critical:
                    logger.error("Critical step '%s' failed; rolling back %d step(s)",
                                 step.id, len(applied))
                    with signals_ignored():
                        self._rollback(applied, report)
                    report.transition(RunState.ROLLED_BACK)
                    return

            self._ctx.backups.settle()
            report.transition(
                RunState.COMPLETED_WITH_ERRORS if report.failed else RunState.COMPLETED
            )

        except UserAbort as e:
            logger.warning("Interrupted (%s); undoing this run", e)
            report.aborted = True
            report.transition(RunState.ABORTED)
            if current is not None:
                report.results.append(StepResult.failure(
                    current, "interrupted", kind="abort",
                    hint="Changes made by this step were restored.",
                ))
            with signals_ignored():
                undone = self._rollback(applied, report)
            if undone or self._inflight_restored or report.rolled_back:
                report.rolled_back = True
                report.transition(RunState.ROLLED_BACK)
            else:
                report.transition(RunState.COMPLETED_WITH_ERRORS)

    def _apply_one(self, step: Step) -> StepResult:
        ctx = self._ctx
        start = time.monotonic()

        try:
            if not step.precondition(ctx):
                return StepResult.skip(step, "precondition not met", duration_ms=_elapsed_ms(start))
            if step.is_applied(ctx):
                return StepResult.for_step(
                    step, StepOutcome.ALREADY_APPLIED, duration_ms=_elapsed_ms(start),
                )
            paths = step.paths(ctx)
        except PreconditionNotMet as e:
            return StepResult.skip(step, str(e), hint=e.hint, duration_ms=_elapsed_ms(start))
        except Exception as e:
            kind, _, hint = classify(e)
            return StepResult.failure(step, str(e), kind, hint, duration_ms=_elapsed_ms(start))

        attempts = 0

        def attempt() -> None:
            nonlocal attempts
            attempts += 1
            try:
                with ctx.backups.guard(paths):
                    step.apply(ctx)
            except UserAbort:
                self._inflight_restored = bool(paths)
                raise

        try:
            if step.retriable:
                self._retry.call(attempt, label=step.id)
            else:
                attempt()
        except PreconditionNotMet as e:
            return StepResult.skip(step, str(e), hint=e.hint, attempts=attempts,
                                   duration_ms=_elapsed_ms(start))
        except Exception as e:
            kind, _, hint = classify(e)
            logger.debug("Step '%s' raised", step.id, exc_info=True)
            return StepResult.failure(step, str(e), kind, hint, attempts=attempts,
                                      duration_ms=_elapsed_ms(start))

        return StepResult.for_step(step, StepOutcome.APPLIED, attempts=attempts,
                                   duration_ms=_elapsed_ms(start))

    def _rollback(self, applied: list[Step], report: RunReport) -> bool:
        """Revert ``applied`` newest first, then restore leftover snapshots."""
        undone = False
        for step in reversed(applied):
            start = time.monotonic()
            try:
                step.revert(self._ctx)
            except Exception as e:
                kind, _, hint = classify(e)
                report.rollback_results.append(StepResult.failure(
                    step, str(e), kind, hint, duration_ms=_elapsed_ms(start),
                ))
                continue
            undone = True
            report.rollback_results.append(StepResult.for_step(
                step, StepOutcome.REVERTED, detail="rolled back", duration_ms=_elapsed_ms(start),
            ))

        leftover = self._ctx.backups.restore_outstanding(self._ctx.run_id)
        if leftover:
            logger.info("Restored %d leftover backup(s) of run %s", len(leftover), self._ctx.run_id)
        report.rolled_back = undone or bool(leftover) or bool(applied)
        return undone or bool(leftover)

    # ── Revert ──────────────────────────────────────────────────

    def _revert(self, steps: Sequence[Step], report: RunReport) -> None:
        try:
            for step in reversed(steps):
                self._record(report, self._revert_one(step))
        except UserAbort as e:
            logger.warning("Interrupted during revert (%s)", e)
            report.aborted = True
            report.transition(RunState.ABORTED)
            report.transition(RunState.COMPLETED_WITH_ERRORS)
            return

        report.transition(
            RunState.COMPLETED_WITH_ERRORS if report.failed else RunState.COMPLETED
        )

    def _revert_one(self, step: Step) -> StepResult:
        start = time.monotonic()
        try:
            if not step.is_applied(self._ctx):
                return StepResult.skip(step, "not applied", duration_ms=_elapsed_ms(start))
            if step.keep_on_revert:
                return StepResult.skip(step, "kept on revert", duration_ms=_elapsed_ms(start))
            step.revert(self._ctx)
        except Exception as e:
            kind, _, hint = classify(e)
            return StepResult.failure(step, str(e), kind, hint, duration_ms=_elapsed_ms(start))
        return StepResult.for_step(step, StepOutcome.REVERTED, duration_ms=_elapsed_ms(start))
