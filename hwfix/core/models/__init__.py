"""
Domain models for hwfix.

All models are re-exported here for convenient access:

    from hwfix.core.models import Step, StepResult, RunReport, Backup
"""

from hwfix.core.models.backup import Backup, BackupManifest
from hwfix.core.models.package import DistroFamily, PackageResult, PackageSet
from hwfix.core.models.report import (
    RunMode,
    RunOutcome,
    RunReport,
    RunState,
    SystemFingerprint,
)
from hwfix.core.models.service import ServiceHandle, ServiceScope
from hwfix.core.models.stamp import Stamp
from hwfix.core.models.step import Step, StepOutcome, StepResult

__all__ = [
    # backup.py
    "Backup",
    "BackupManifest",
    # package.py
    "DistroFamily",
    "PackageResult",
    "PackageSet",
    # report.py
    "RunMode",
    "RunOutcome",
    "RunReport",
    "RunState",
    # service.py
    "ServiceHandle",
    "ServiceScope",
    # stamp.py
    "Stamp",
    # step.py
    "Step",
    "StepOutcome",
    "StepResult",
    "SystemFingerprint",
]
