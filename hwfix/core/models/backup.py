"""
Backup: a pre-mutation snapshot owned by the BackupStore.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Backup(BaseModel):
    """A snapshot of one path taken immediately before a step mutates it.

    ``kind == "absent"`` records that the path did not exist; restoring
    such a backup removes whatever the step created.
    """

    fix: str
    run_id: str
    source: str
    snapshot: str = ""
    kind: Literal["file", "dir", "absent"] = "file"
    captured_at: str = Field(default_factory=_now_iso)
    # Set once the owning run completes; recover leaves finished backups alone
    finished: bool = False


class BackupManifest(BaseModel):
    """Per-fix index of outstanding backups, persisted as manifest.json."""

    fix: str
    backups: list[Backup] = Field(default_factory=list)

    def find(self, source: str) -> Backup | None:
        for b in self.backups:
            if b.source == source:
                return b
        return None
