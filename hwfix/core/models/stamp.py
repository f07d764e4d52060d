"""
Stamp: per-fix install marker. Its presence gates ``revert``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from hwfix.core.models.report import SystemFingerprint


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Stamp(BaseModel):
    """Records that a fix was applied, when, and with which options.

    Options are replayed on revert/status so the same step list is
    rebuilt (e.g. which CCM preset was written).
    """

    fix: str
    run_id: str = ""
    installed_at: str = Field(default_factory=_now_iso)
    options: dict[str, Any] = Field(default_factory=dict)
    applied_steps: list[str] = Field(default_factory=list)
    fingerprint: SystemFingerprint = Field(default_factory=SystemFingerprint)

    @property
    def header(self) -> str:
        return f"installed by hwfix on {self.installed_at}"
