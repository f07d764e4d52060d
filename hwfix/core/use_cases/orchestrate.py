"""
Orchestrator — the apply / revert / status use cases.

This is the top-level vertical slice: resolve the fix and its options,
probe the system, build a RunContext, run the steps under a signal
guard, run the batched triggers, then persist the stamp and the audit
entry.

    idle -> probing -> executing -> completed
                                  | completed_with_errors
                                  | rolled_back
                                  | aborted

``status`` and ``apply --dry-run`` never write anything.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from hwfix.adapters.base import Executor
from hwfix.adapters.shell.command import CommandRunner
from hwfix.core.config.loader import Settings
from hwfix.core.context import RunContext
from hwfix.core.data.package_sets import load_package_sets
from hwfix.core.engine.runner import ResultCallback, StepRunner
from hwfix.core.engine.signals import signal_guard, signals_ignored
from hwfix.core.engine.triggers import TriggerBatch
from hwfix.core.errors import HwfixError
from hwfix.core.models.backup import Backup
from hwfix.core.models.report import RunMode, RunReport, RunState, SystemFingerprint
from hwfix.core.models.stamp import Stamp
from hwfix.core.models.step import Step, StepOutcome
from hwfix.core.persistence.audit import AuditEntry, AuditWriter
from hwfix.core.persistence.stamps import StampStore
from hwfix.core.reliability.retry import RetryPolicy
from hwfix.core.services.backup_store import BackupStore
from hwfix.core.services.kernel import KernelTools
from hwfix.core.services.packages import PackageInstaller
from hwfix.core.services.probe import Probe
from hwfix.core.services.service_control import ServiceController
from hwfix.fixes.base import Fix
from hwfix.fixes.registry import FIXES, get_fix

logger = logging.getLogger(__name__)


def generate_run_id() -> str:
    """Sortable, unique run id: UTC timestamp plus a short random suffix."""
    return f"{datetime.now(UTC).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


class Orchestrator:
    """Entry point for every hwfix operation."""

    def __init__(
        self,
        settings: Settings,
        runner: Executor | None = None,
        fixes: Mapping[str, Fix] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.runner = runner or CommandRunner(default_timeout=settings.command_timeout)
        self.fixes = dict(FIXES if fixes is None else fixes)
        self.probe = Probe(self.runner, settings.root)
        self.stamps = StampStore(settings.stamp_dir)
        self.audit = AuditWriter(settings.audit_path)
        self._sleep = sleep
        self._clock = clock

    # ── Wiring ──────────────────────────────────────────────────

    def fix(self, name: str) -> Fix:
        return get_fix(name, self.fixes)

    def build_context(
        self,
        fix: str,
        run_id: str,
        options: Mapping[str, Any] | None = None,
        force: bool = False,
        fingerprint: SystemFingerprint | None = None,
    ) -> RunContext:
        """Construct the per-run collaborators. Creates no files."""
        settings = self.settings
        family = self.probe.detect_distro_family()
        kernel = self.probe.kernel_release()
        return RunContext(
            fix=fix,
            run_id=run_id,
            settings=settings,
            runner=self.runner,
            probe=self.probe,
            packages=PackageInstaller(
                self.runner,
                family,
                load_package_sets(settings.package_sets),
                kernel=kernel,
                timeout=settings.command_timeout,
            ),
            services=ServiceController(
                self.runner,
                poll_interval=settings.poll_interval,
                default_timeout=settings.service_wait_timeout,
                sleep=self._sleep,
                clock=self._clock,
            ),
            backups=BackupStore(settings.backup_dir, fix, run_id),
            kernel=KernelTools(self.runner, kernel),
            family=family,
            fingerprint=fingerprint or SystemFingerprint(),
            options=dict(options or {}),
            force=force,
        )

    def retry_policy(self) -> RetryPolicy:
        retry = self.settings.retry
        return RetryPolicy(
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
            sleep=self._sleep,
        )

    def steps_for(self, fix: Fix, options: Mapping[str, Any]) -> list[Step]:
        """The fix's steps with config criticality overrides applied."""
        steps = fix.steps(options)
        for step in steps:
            step.critical = self.settings.is_critical(fix.name, step.id, step.critical)
        return steps

    # ── Apply ───────────────────────────────────────────────────

    def apply(
        self,
        fix_name: str,
        options: Mapping[str, Any] | None = None,
        force: bool = False,
        dry_run: bool = False,
        on_result: ResultCallback | None = None,
    ) -> RunReport:
        """Apply a fix.

        Raises:
            ConfigError: Unknown fix or invalid options.
        """
        fix = self.fix(fix_name)
        resolved = fix.resolve_options(options or {}, self.settings)
        run_id = generate_run_id()
        report = RunReport(
            run_id=run_id,
            fix=fix.name,
            mode=RunMode.STATUS if dry_run else RunMode.APPLY,
        )

        if not self._probe_requirements(fix, report, force):
            if not dry_run:
                self._write_audit(report, options=resolved, force=force)
            return report

        ctx = self.build_context(fix.name, run_id, resolved, force, report.fingerprint)
        steps = self.steps_for(fix, resolved)
        runner = StepRunner(ctx, retry=self.retry_policy(), on_result=on_result)

        if dry_run:
            runner.run(steps, RunMode.STATUS, report)
            report.notes.append("dry run: nothing was changed")
            return report

        logger.info("Applying %s (run %s)", fix.name, run_id)
        with signal_guard():
            runner.run(steps, RunMode.APPLY, report)
        self._after_run(ctx, steps, report)

        if report.rolled_back or report.aborted:
            logger.warning("%s not stamped: run ended %s", fix.name, report.state.value)
        else:
            self.stamps.write(Stamp(
                fix=fix.name,
                run_id=run_id,
                options=resolved,
                applied_steps=[
                    r.step_id for r in report.results
                    if r.outcome in (StepOutcome.APPLIED, StepOutcome.ALREADY_APPLIED)
                ],
                fingerprint=report.fingerprint,
            ))

        self._write_audit(report, options=resolved, force=force)
        return report

    def _probe_requirements(self, fix: Fix, report: RunReport, force: bool) -> bool:
        """Evaluate hardware gates. False means the run is refused."""
        report.transition(RunState.PROBING)
        try:
            matched, unmet = fix.check(self.probe)
            report.fingerprint = self.probe.fingerprint(matched)
        except HwfixError as e:
            report.error = f"[{e.kind}] {e}"
            if e.hint:
                report.warnings.append(f"hint: {e.hint}")
            report.transition(RunState.COMPLETED_WITH_ERRORS)
            report.finish()
            return False

        if not unmet:
            return True

        if force:
            for req in unmet:
                report.warnings.append(
                    f"WARN: {req.description} not found; continuing anyway (--force)"
                )
            return True

        missing = "; ".join(req.description for req in unmet)
        report.error = f"Required hardware not found: {missing}. Use --force to apply anyway."
        report.warnings.extend(f"hint: {req.hint}" for req in unmet if req.hint)
        report.transition(RunState.COMPLETED_WITH_ERRORS)
        report.finish()
        return False

    def _after_run(self, ctx: RunContext, steps: list[Step], report: RunReport) -> None:
        """Run batched triggers and fold context messages into the report."""
        batch = TriggerBatch()
        batch.collect(steps, report)
        with signals_ignored():
            batch.run(ctx, report)
        report.warnings.extend(w for w in ctx.warnings if w not in report.warnings)
        report.notes.extend(n for n in ctx.notes if n not in report.notes)

    # ── Revert ──────────────────────────────────────────────────

    def revert(
        self,
        fix_name: str,
        force: bool = False,
        on_result: ResultCallback | None = None,
    ) -> RunReport:
        """Undo a fix using the options it was applied with."""
        fix = self.fix(fix_name)
        run_id = generate_run_id()
        report = RunReport(run_id=run_id, fix=fix.name, mode=RunMode.REVERT)
        report.transition(RunState.PROBING)

        stamp = self.stamps.read(fix.name)
        if stamp is None and not force:
            report.error = f"{fix.name} is not installed (no stamp). Use --force to revert anyway."
            report.transition(RunState.COMPLETED_WITH_ERRORS)
            report.finish()
            return report

        options = stamp.options if stamp is not None else fix.resolve_options({}, self.settings)
        hardware_ids = stamp.fingerprint.hardware_ids if stamp is not None else []
        report.fingerprint = self.probe.fingerprint(hardware_ids)

        ctx = self.build_context(fix.name, run_id, options, force, report.fingerprint)
        steps = self.steps_for(fix, options)

        logger.info("Reverting %s (run %s)", fix.name, run_id)
        with signal_guard():
            StepRunner(ctx, on_result=on_result).run(steps, RunMode.REVERT, report)
        self._after_run(ctx, steps, report)

        if report.failed or report.aborted:
            logger.warning("%s: stamp kept, %d revert(s) failed", fix.name, report.failed)
        else:
            self.stamps.remove(fix.name)

        self._write_audit(report, options=options, force=force)
        return report

    # ── Status ──────────────────────────────────────────────────

    def status(self, fix_name: str) -> RunReport:
        """Per-step applied / not applied. Read-only."""
        fix = self.fix(fix_name)
        stamp = self.stamps.read(fix.name)
        options = stamp.options if stamp is not None else fix.resolve_options({}, self.settings)
        report = RunReport(run_id=generate_run_id(), fix=fix.name, mode=RunMode.STATUS)
        report.fingerprint = self.probe.fingerprint(
            stamp.fingerprint.hardware_ids if stamp is not None else []
        )
        if stamp is not None:
            report.notes.append(stamp.header)

        ctx = self.build_context(fix.name, report.run_id, options, fingerprint=report.fingerprint)
        return StepRunner(ctx).run(self.steps_for(fix, options), RunMode.STATUS, report)

    def status_all(self) -> list[RunReport]:
        return [self.status(name) for name in self.fixes]

    def installed(self) -> list[str]:
        return self.stamps.list_fixes()

    # ── Backups ─────────────────────────────────────────────────

    def commit(self, fix_name: str) -> list[Backup]:
        """Keep the fix's changes: drop every backup held for it."""
        fix = self.fix(fix_name)
        run_id = generate_run_id()
        discarded = BackupStore(self.settings.backup_dir, fix.name, run_id).discard_all()
        logger.info("Committed %s: discarded %d backup(s)", fix.name, len(discarded))
        self.audit.write(AuditEntry(
            run_id=run_id,
            fix=fix.name,
            mode="commit",
            outcome="success",
            state=RunState.COMPLETED.value,
            context={"discarded": [b.source for b in discarded]},
        ))
        return discarded

    def recover(self) -> dict[str, list[Backup]]:
        """Restore backups left behind by runs that never finished.

        A run that completes marks its backups finished in the manifest,
        and every run that ends (any outcome) writes an audit entry.
        Backups with neither come from a process that died mid-apply.
        Such a run's pending copies go back first, so a path an earlier
        run also holds returns to that earlier run's result.
        """
        finished = self.audit.run_ids()
        run_id = generate_run_id()
        recovered: dict[str, list[Backup]] = {}

        with signals_ignored():
            for fix in BackupStore.fixes_with_backups(self.settings.backup_dir):
                store = BackupStore(self.settings.backup_dir, fix, run_id)
                restored = []
                for dead in store.pending_runs():
                    if dead not in finished:
                        restored.extend(store.restore_outstanding(dead))
                for backup in reversed(store.outstanding()):
                    if backup.finished or backup.run_id in finished:
                        continue
                    store.restore(backup)
                    restored.append(backup)
                if restored:
                    recovered[fix] = restored
                    logger.info("Recovered %d backup(s) of %s", len(restored), fix)

        for fix, restored in recovered.items():
            self.audit.write(AuditEntry(
                run_id=run_id,
                fix=fix,
                mode="recover",
                outcome="success",
                state=RunState.COMPLETED.value,
                context={
                    "restored": [b.source for b in restored],
                    "runs": sorted({b.run_id for b in restored}),
                },
            ))
        return recovered

    def history(self, n: int = 20, fix: str | None = None) -> list[AuditEntry]:
        return self.audit.read_recent(n, fix=fix)

    # ── Persistence ─────────────────────────────────────────────

    def _write_audit(self, report: RunReport, **context: Any) -> None:
        self.audit.write(AuditEntry.from_report(report, notes=report.notes, **context))
