"""
Run context — everything a step needs, passed explicitly.

One RunContext is built per apply/revert/status invocation and
threaded through the runner into every Step call. There is no
ambient global state: two contexts never share mutable data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hwfix.adapters.base import Executor
from hwfix.core.config.loader import Settings
from hwfix.core.models.package import DistroFamily
from hwfix.core.models.report import SystemFingerprint
from hwfix.core.services.backup_store import BackupStore
from hwfix.core.services.kernel import KernelTools
from hwfix.core.services.packages import PackageInstaller
from hwfix.core.services.probe import Probe
from hwfix.core.services.service_control import ServiceController


@dataclass
class RunContext:
    """Per-run collaborators and options."""

    fix: str
    run_id: str
    settings: Settings
    runner: Executor
    probe: Probe
    packages: PackageInstaller
    services: ServiceController
    backups: BackupStore
    kernel: KernelTools
    family: DistroFamily = DistroFamily.UNKNOWN
    fingerprint: SystemFingerprint = field(default_factory=SystemFingerprint)
    options: dict[str, Any] = field(default_factory=dict)
    force: bool = False
    warnings: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @property
    def root(self) -> Path:
        return self.probe.root

    @property
    def kernel_release(self) -> str:
        return self.kernel.kernel_release

    def path(self, system_path: str | Path) -> Path:
        """Map an absolute system path under the configured root."""
        return self.probe.path(system_path)

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def source_dir(self, fix: str | None = None) -> Path | None:
        """Payload directory configured for a fix (DKMS sources, scripts)."""
        return self.settings.source_dirs.get(fix or self.fix)

    def warn(self, message: str) -> None:
        """Record a non-fatal problem for the final report."""
        if message not in self.warnings:
            self.warnings.append(message)

    def note(self, message: str) -> None:
        if message not in self.notes:
            self.notes.append(message)
