"""
Post-run triggers — actions batched until every step has run.

Steps name the follow-up actions their change needs (rebuild the
initramfs, reload systemd units, restart the user's WirePlumber,
reboot). The batch runs each requested trigger once, in a fixed
order, after the runner finishes. Trigger failures never fail the
run; they become warnings on the report.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from hwfix.core.context import RunContext
from hwfix.core.models.report import RunReport
from hwfix.core.models.service import ServiceHandle, ServiceScope
from hwfix.core.models.step import Step

logger = logging.getLogger(__name__)

DAEMON_RELOAD = "daemon-reload"
INITRAMFS = "initramfs"
WIREPLUMBER = "wireplumber"
REBOOT = "reboot"

# Execution order
ORDER = (DAEMON_RELOAD, INITRAMFS, WIREPLUMBER, REBOOT)


def _daemon_reload(ctx: RunContext, report: RunReport) -> None:
    result = ctx.services.daemon_reload()
    if not result.ok:
        report.warnings.append(f"WARN: systemctl daemon-reload failed: {result.error}")


def _initramfs(ctx: RunContext, report: RunReport) -> None:
    result = ctx.kernel.rebuild_initramfs()
    if result is None:
        report.warnings.append(
            "WARN: Could not detect an initramfs tool. Rebuild your initramfs manually."
        )
    elif not result.ok:
        report.warnings.append(f"WARN: initramfs rebuild failed: {result.error}")
    else:
        report.notes.append("initramfs rebuilt")


def _wireplumber(ctx: RunContext, report: RunReport) -> None:
    result = ctx.services.restart(ServiceHandle(name="wireplumber", scope=ServiceScope.USER))
    if not result.ok:
        report.warnings.append(
            "WARN: WirePlumber config written but the user service could not be restarted. "
            "Log out and back in for it to take effect."
        )


def _reboot(ctx: RunContext, report: RunReport) -> None:
    report.notes.append("Reboot required to apply all changes.")


HANDLERS: dict[str, Callable[[RunContext, RunReport], None]] = {
    DAEMON_RELOAD: _daemon_reload,
    INITRAMFS: _initramfs,
    WIREPLUMBER: _wireplumber,
    REBOOT: _reboot,
}


class TriggerBatch:
    """Collects trigger names and runs each once."""

    def __init__(self) -> None:
        self._pending: set[str] = set()

    @property
    def pending(self) -> list[str]:
        return [name for name in ORDER if name in self._pending]

    def add(self, name: str) -> None:
        if name not in HANDLERS:
            raise KeyError(f"Unknown trigger: {name}")
        self._pending.add(name)

    def collect(self, steps: Iterable[Step], report: RunReport) -> None:
        """Queue the triggers of every step that changed the system."""
        changed = {r.step_id for r in (*report.results, *report.rollback_results) if r.changed}
        for step in steps:
            if step.id in changed:
                for name in step.triggers:
                    self.add(name)

    def run(self, ctx: RunContext, report: RunReport) -> None:
        for name in self.pending:
            logger.info("Running trigger: %s", name)
            try:
                HANDLERS[name](ctx, report)
            except Exception as e:
                logger.debug("Trigger %s raised", name, exc_info=True)
                report.warnings.append(f"WARN: trigger {name} failed: {e}")
        self._pending.clear()
