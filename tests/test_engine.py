"""
Tests for the step runner and post-run triggers.
"""

from pathlib import Path

import pytest

from hwfix.adapters.mock import MockCommandRunner
from hwfix.core.engine.runner import StepRunner
from hwfix.core.engine.triggers import DAEMON_RELOAD, INITRAMFS, REBOOT, TriggerBatch
from hwfix.core.errors import PermanentFailure, TransientFailure, UserAbort
from hwfix.core.models.report import RunMode, RunOutcome, RunReport, RunState
from hwfix.core.models.step import Step, StepOutcome
from hwfix.core.reliability.retry import RetryPolicy
from hwfix.fixes.steps import WriteFileStep


class RecordingStep(Step):
    """In-memory step that logs every apply/revert."""

    def __init__(self, id, log, fail=False, transient_failures=0, applicable=True, **kwargs):
        super().__init__(id, f"step {id}", **kwargs)
        self.log = log
        self.fail = fail
        self.transient_failures = transient_failures
        self.applicable = applicable
        self.applied = False

    def precondition(self, ctx):
        return self.applicable

    def is_applied(self, ctx):
        return self.applied

    def apply(self, ctx):
        self.log.append(("apply", self.id))
        if self.transient_failures:
            self.transient_failures -= 1
            raise TransientFailure("mirror timed out", hint="retry later")
        if self.fail:
            raise PermanentFailure(f"{self.id} broke", hint="fix it")
        self.applied = True

    def revert(self, ctx):
        self.log.append(("revert", self.id))
        self.applied = False


class ScribbleStep(Step):
    """Writes half a file, then raises ``exc``."""

    def __init__(self, id, path, exc, **kwargs):
        super().__init__(id, **kwargs)
        self.path = path
        self.exc = exc

    def paths(self, ctx):
        return [ctx.path(self.path)]

    def is_applied(self, ctx):
        return False

    def apply(self, ctx):
        ctx.path(self.path).write_text("half-written garbage")
        raise self.exc

    def revert(self, ctx):
        pass


def _ids(results):
    return [r.step_id for r in results]


# ── Apply ───────────────────────────────────────────────────────────


class TestApply:
    def test_all_steps_applied(self, ctx):
        log = []
        steps = [RecordingStep("a", log), RecordingStep("b", log)]
        report = StepRunner(ctx).run(steps, RunMode.APPLY)

        assert [r.outcome for r in report.results] == [StepOutcome.APPLIED, StepOutcome.APPLIED]
        assert [r.ordinal for r in report.results] == [1, 2]
        assert report.state == RunState.COMPLETED
        assert report.transitions == [RunState.IDLE, RunState.EXECUTING, RunState.COMPLETED]
        assert report.outcome == RunOutcome.SUCCESS
        assert report.exit_code == 0

    def test_second_apply_is_already_applied(self, ctx):
        log = []
        steps = [RecordingStep("a", log)]
        StepRunner(ctx).run(steps, RunMode.APPLY)
        report = StepRunner(ctx).run(steps, RunMode.APPLY)

        assert report.results[0].outcome == StepOutcome.ALREADY_APPLIED
        assert log == [("apply", "a")]

    def test_false_precondition_skips(self, ctx):
        log = []
        report = StepRunner(ctx).run([RecordingStep("a", log, applicable=False)], RunMode.APPLY)

        assert report.results[0].outcome == StepOutcome.SKIPPED
        assert log == []
        assert report.state == RunState.COMPLETED

    def test_critical_failure_rolls_back_in_reverse(self, ctx):
        log = []
        steps = [
            RecordingStep("a", log),
            RecordingStep("b", log),
            RecordingStep("c", log, fail=True, critical=True),
            RecordingStep("d", log),
        ]
        report = StepRunner(ctx).run(steps, RunMode.APPLY)

        reverts = [step_id for action, step_id in log if action == "revert"]
        assert reverts == ["b", "a"]
        assert ("apply", "d") not in log
        assert report.state == RunState.ROLLED_BACK
        assert report.rolled_back
        assert _ids(report.rollback_results) == ["b", "a"]
        assert all(r.outcome == StepOutcome.REVERTED for r in report.rollback_results)

        failed = report.get("c")
        assert failed.outcome == StepOutcome.FAILED
        assert failed.error_kind == "permanent"
        assert failed.hint == "fix it"
        assert report.exit_code == 1

    def test_noncritical_failure_continues(self, ctx):
        log = []
        steps = [RecordingStep("a", log, fail=True), RecordingStep("b", log)]
        report = StepRunner(ctx).run(steps, RunMode.APPLY)

        assert report.get("a").failed
        assert report.get("b").outcome == StepOutcome.APPLIED
        assert report.state == RunState.COMPLETED_WITH_ERRORS
        assert report.outcome == RunOutcome.PARTIAL_FAILURE
        assert not report.rolled_back

    def test_unexpected_exception_is_permanent(self, ctx):
        class Broken(RecordingStep):
            def apply(self, ctx):
                raise ValueError("unexpected")

        report = StepRunner(ctx).run([Broken("x", [])], RunMode.APPLY)

        assert report.results[0].error == "unexpected"
        assert report.results[0].error_kind == "permanent"

    def test_failed_apply_restores_declared_paths(self, ctx, put):
        target = put("/etc/example.conf", "original\n")
        step = ScribbleStep("scribble", "/etc/example.conf", PermanentFailure("disk full"))

        report = StepRunner(ctx).run([step], RunMode.APPLY)

        assert report.results[0].failed
        assert target.read_text() == "original\n"
        assert ctx.backups.outstanding() == []


# ── Retry ───────────────────────────────────────────────────────────


class TestRetry:
    def _policy(self, delays):
        return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=4.0, sleep=delays.append)

    def test_retriable_step_recovers(self, ctx):
        delays = []
        step = RecordingStep("net", [], transient_failures=2, retriable=True)
        report = StepRunner(ctx, retry=self._policy(delays)).run([step], RunMode.APPLY)

        assert report.results[0].outcome == StepOutcome.APPLIED
        assert report.results[0].attempts == 3
        assert len(delays) == 2
        assert delays[1] >= delays[0] >= 1.0

    def test_retries_exhausted(self, ctx):
        step = RecordingStep("net", [], transient_failures=5, retriable=True)
        report = StepRunner(ctx, retry=self._policy([])).run([step], RunMode.APPLY)

        result = report.results[0]
        assert result.failed
        assert result.error_kind == "transient"
        assert result.attempts == 3

    def test_critical_retriable_rolls_back_after_retries(self, ctx):
        log = []
        steps = [
            RecordingStep("a", log),
            RecordingStep("net", log, transient_failures=5, retriable=True, critical=True),
        ]
        report = StepRunner(ctx, retry=self._policy([])).run(steps, RunMode.APPLY)

        assert report.get("net").attempts == 3
        assert log[-1] == ("revert", "a")
        assert report.state == RunState.ROLLED_BACK

    def test_non_retriable_step_runs_once(self, ctx):
        log = []
        step = RecordingStep("once", log, transient_failures=1)
        report = StepRunner(ctx, retry=self._policy([])).run([step], RunMode.APPLY)

        assert report.results[0].failed
        assert log == [("apply", "once")]


# ── Abort ───────────────────────────────────────────────────────────


class TestAbort:
    def test_interrupt_mid_step_leaves_target_identical(self, ctx, put):
        target = put("/etc/example.conf", "original bytes\n")
        before = target.read_bytes()
        log = []
        steps = [
            RecordingStep("a", log),
            ScribbleStep("scribble", "/etc/example.conf", UserAbort(2)),
            RecordingStep("b", log),
        ]

        report = StepRunner(ctx).run(steps, RunMode.APPLY)

        assert target.read_bytes() == before
        assert report.aborted
        assert report.outcome == RunOutcome.ABORTED
        assert report.exit_code == 2
        assert RunState.ABORTED in report.transitions
        assert report.state == RunState.ROLLED_BACK
        assert ("revert", "a") in log
        assert ("apply", "b") not in log
        assert report.get("scribble").error_kind == "abort"
        assert ctx.backups.outstanding() == []

    def test_interrupt_with_nothing_to_undo(self, ctx):
        class Interrupting(RecordingStep):
            def apply(self, ctx):
                raise UserAbort(15)

        report = StepRunner(ctx).run([Interrupting("x", [])], RunMode.APPLY)

        assert report.aborted
        assert report.state == RunState.COMPLETED_WITH_ERRORS


# ── Status ──────────────────────────────────────────────────────────


class TestStatus:
    def test_status_never_mutates(self, ctx, put, system_root, state_dir, hash_tree):
        put("/etc/example.conf", "old\n")
        steps = [
            WriteFileStep("write", "/etc/example.conf", "new\n"),
            WriteFileStep("create", "/etc/other.conf", "x\n"),
        ]
        before = hash_tree(system_root)

        report = StepRunner(ctx).run(steps, RunMode.STATUS)

        assert hash_tree(system_root) == before
        assert not state_dir.exists()
        assert [r.outcome for r in report.results] == [StepOutcome.NOT_APPLIED] * 2
        assert report.exit_code == 0

    def test_status_reports_applied(self, ctx, put):
        put("/etc/example.conf", "new\n")
        report = StepRunner(ctx).run(
            [WriteFileStep("write", "/etc/example.conf", "new\n")], RunMode.STATUS,
        )
        assert report.results[0].outcome == StepOutcome.ALREADY_APPLIED

    def test_not_applicable_detail(self, ctx):
        report = StepRunner(ctx).run([RecordingStep("a", [], applicable=False)], RunMode.STATUS)
        assert report.results[0].detail == "not applicable on this system"


# ── Revert ──────────────────────────────────────────────────────────


class TestRevert:
    def test_reverse_order_and_skips(self, ctx):
        log = []
        a, b, c = RecordingStep("a", log), RecordingStep("b", log), RecordingStep("c", log)
        a.applied = c.applied = True

        report = StepRunner(ctx).run([a, b, c], RunMode.REVERT)

        assert log == [("revert", "c"), ("revert", "a")]
        assert _ids(report.results) == ["c", "b", "a"]
        assert report.get("b").outcome == StepOutcome.SKIPPED
        assert report.get("a").outcome == StepOutcome.REVERTED
        assert report.state == RunState.COMPLETED

    def test_keep_on_revert(self, ctx):
        log = []
        step = RecordingStep("pkg", log, keep_on_revert=True)
        step.applied = True

        report = StepRunner(ctx).run([step], RunMode.REVERT)

        assert log == []
        assert report.results[0].detail == "kept on revert"

    def test_failures_accumulate(self, ctx):
        class Stuck(RecordingStep):
            def revert(self, ctx):
                raise PermanentFailure("module in use")

        log = []
        stuck, other = Stuck("stuck", log), RecordingStep("other", log)
        stuck.applied = other.applied = True

        report = StepRunner(ctx).run([other, stuck], RunMode.REVERT)

        assert report.get("stuck").failed
        assert report.get("other").outcome == StepOutcome.REVERTED
        assert report.state == RunState.COMPLETED_WITH_ERRORS
        assert report.exit_code == 1


# ── Triggers ────────────────────────────────────────────────────────


class TestTriggers:
    def _report(self, *results):
        report = RunReport(run_id="r", fix="test")
        report.results.extend(results)
        return report

    def test_only_changed_steps_queue_triggers(self, ctx):
        log = []
        changed = RecordingStep("changed", log, triggers=(INITRAMFS, REBOOT))
        unchanged = RecordingStep("unchanged", log, triggers=(DAEMON_RELOAD,))
        unchanged.applied = True

        report = StepRunner(ctx).run([changed, unchanged], RunMode.APPLY)
        batch = TriggerBatch()
        batch.collect([changed, unchanged], report)

        assert batch.pending == [INITRAMFS, REBOOT]

    def test_run_once_in_order(self, ctx, runner: MockCommandRunner):
        batch = TriggerBatch()
        for name in (REBOOT, DAEMON_RELOAD, REBOOT):
            batch.add(name)
        report = self._report()

        batch.run(ctx, report)

        assert runner.commands == ["systemctl daemon-reload"]
        assert report.notes == ["Reboot required to apply all changes."]
        assert batch.pending == []

    def test_unknown_trigger(self):
        with pytest.raises(KeyError):
            TriggerBatch().add("format-disk")

    def test_initramfs_without_tool_warns(self, orchestrator):
        orchestrator.runner._available = set()
        ctx = orchestrator.build_context("test", "run-1")
        batch = TriggerBatch()
        batch.add(INITRAMFS)
        report = self._report()

        batch.run(ctx, report)

        assert any("initramfs" in w for w in report.warnings)

    def test_initramfs_uses_detected_tool(self, orchestrator, runner: MockCommandRunner):
        runner._available = {"dracut"}
        ctx = orchestrator.build_context("test", "run-1")
        batch = TriggerBatch()
        batch.add(INITRAMFS)
        report = self._report()

        batch.run(ctx, report)

        assert "dracut --force --regenerate-all" in runner.commands
        assert report.notes == ["initramfs rebuilt"]
