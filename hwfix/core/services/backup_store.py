"""
BackupStore — pre-mutation snapshots with restore/discard.

Layout under the backup root::

    <root>/<fix>/manifest.json                  outstanding backups for the fix
    <root>/<fix>/<run_id>/<path...>             snapshot copies
    <root>/<fix>/pending/<run_id>/manifest.json this run's copies of paths
    <root>/<fix>/pending/<run_id>/<path...>     an earlier run still holds

A path is snapshotted at most once per fix until that backup is
restored or discarded, so repeated requests keep the original
pre-change content. Restore and discard drop the snapshot and prune
empty directories: a fully reverted fix leaves nothing behind.

When a run mutates a path an earlier run already holds, the content it
found goes to the run's pending store. Rolling that run back restores
the pending copy and leaves the earlier backup outstanding. A run that
completes drops its pending copies and marks its own backups finished.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from hwfix.core.models.backup import Backup, BackupManifest

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"
PENDING_DIR = "pending"


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class BackupStore:
    """Backups for one fix, tagged with the current run id.

    ``run_dir`` scopes a store to a single run directory; the pending
    stores use it.
    """

    def __init__(self, backup_root: Path, fix: str, run_id: str, *, run_dir: Path | None = None):
        self._root = backup_root
        self._fix = fix
        self._run_id = run_id
        self._run_dir = run_dir

    @property
    def fix(self) -> str:
        return self._fix

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def fix_dir(self) -> Path:
        return self._run_dir or self._root / self._fix

    @property
    def manifest_path(self) -> Path:
        return self.fix_dir / MANIFEST_FILE

    @property
    def pending(self) -> BackupStore:
        return self.pending_for(self._run_id)

    def pending_for(self, run_id: str) -> BackupStore:
        """Store of ``run_id``'s copies of paths held by earlier runs."""
        main = self._root / self._fix
        return BackupStore(main, self._fix, run_id, run_dir=main / PENDING_DIR / run_id)

    def pending_runs(self) -> list[str]:
        """Run ids with pending copies, oldest first."""
        pending = self._root / self._fix / PENDING_DIR
        if not pending.is_dir():
            return []
        return sorted(p.parent.name for p in pending.glob(f"*/{MANIFEST_FILE}"))

    @staticmethod
    def fixes_with_backups(backup_root: Path) -> list[str]:
        """Fix names that have a manifest under ``backup_root``."""
        if not backup_root.is_dir():
            return []
        return sorted(p.parent.name for p in backup_root.glob(f"*/{MANIFEST_FILE}"))

    # ── Manifest I/O ────────────────────────────────────────────

    def _load(self) -> BackupManifest:
        path = self.manifest_path
        if not path.is_file():
            return BackupManifest(fix=self._fix)
        try:
            return BackupManifest.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Corrupt backup manifest %s: %s", path, e)
            raise

    def _save(self, manifest: BackupManifest) -> None:
        path = self.manifest_path
        if not manifest.backups:
            path.unlink(missing_ok=True)
            self._prune(self.fix_dir)
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(manifest.model_dump(mode="json"), indent=2) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".manifest_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _prune(self, start: Path) -> None:
        """Remove empty directories from ``start`` up to (and including) the fix dir."""
        current = start
        while current != self._root and self._root in current.parents:
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent

    # ── Queries ─────────────────────────────────────────────────

    def outstanding(self, run_id: str | None = None) -> list[Backup]:
        """Backups not yet restored or discarded, oldest first."""
        backups = self._load().backups
        if run_id is not None:
            backups = [b for b in backups if b.run_id == run_id]
        return backups

    def backups_for(self, path: Path) -> list[Backup]:
        backup = self._load().find(str(path))
        return [backup] if backup else []

    def find(self, path: Path) -> Backup | None:
        return self._load().find(str(path))

    def touched(self) -> list[Path]:
        """Paths this run has snapshotted and not yet settled."""
        backups = self.outstanding(self._run_id) + self.pending.outstanding()
        return [Path(b.source) for b in backups]

    # ── Operations ──────────────────────────────────────────────

    def snapshot(self, path: Path) -> Backup:
        """Copy ``path`` aside before it is mutated.

        Idempotent per path: an outstanding backup is returned as-is.
        """
        manifest = self._load()
        existing = manifest.find(str(path))
        if existing is not None:
            logger.debug("Backup of %s already held (run %s)", path, existing.run_id)
            return existing

        snap_dir = self._run_dir or self.fix_dir / self._run_id
        snap = snap_dir / str(path).lstrip("/")
        if path.is_symlink() or path.is_file():
            snap.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, snap, follow_symlinks=False)
            kind = "file"
        elif path.is_dir():
            snap.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(path, snap, symlinks=True)
            kind = "dir"
        else:
            snap = Path("")
            kind = "absent"

        backup = Backup(
            fix=self._fix,
            run_id=self._run_id,
            source=str(path),
            snapshot=str(snap) if kind != "absent" else "",
            kind=kind,
        )
        manifest.backups.append(backup)
        self._save(manifest)
        logger.debug("Snapshot %s (%s) -> %s", path, kind, backup.snapshot or "-")
        return backup

    def restore(self, backup: Backup) -> None:
        """Put the pre-change content back and drop the backup."""
        target = Path(backup.source)
        _remove_path(target)

        if backup.kind == "file":
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup.snapshot, target, follow_symlinks=False)
        elif backup.kind == "dir":
            shutil.copytree(backup.snapshot, target, symlinks=True)

        logger.info("Restored %s from backup (%s)", target, backup.kind)
        self._drop(backup)

    def restore_path(self, path: Path) -> bool:
        """Restore ``path`` to the content this run found, else the held backup.

        Returns False when nothing holds ``path``.
        """
        pending = self.pending
        backup = pending.find(path)
        if backup is not None:
            pending.restore(backup)
            self._prune(self.fix_dir)
            return True
        backup = self.find(path)
        if backup is None:
            return False
        self.restore(backup)
        return True

    def discard(self, backup: Backup) -> None:
        """Forget a backup: the change is committed."""
        logger.debug("Discarding backup of %s", backup.source)
        self._drop(backup)

    def restore_outstanding(self, run_id: str | None = None) -> list[Backup]:
        """Restore every outstanding backup, newest first.

        With ``run_id``, that run's pending copies are restored too.
        """
        restored = []
        if run_id is not None:
            pending = self.pending_for(run_id)
            for backup in reversed(pending.outstanding()):
                pending.restore(backup)
                restored.append(backup)
        for backup in reversed(self.outstanding(run_id)):
            self.restore(backup)
            restored.append(backup)
        if restored:
            self._prune(self.fix_dir)
        return restored

    def discard_all(self) -> list[Backup]:
        backups = self.outstanding()
        for backup in backups:
            self.discard(backup)
        return backups

    def settle(self) -> None:
        """Close out a completed run.

        Drops the run's pending copies; the earlier backups stay the
        revert target. Marks the run's own backups finished.
        """
        pending = self.pending
        for backup in pending.outstanding():
            pending.discard(backup)

        manifest = self._load()
        mine = [b for b in manifest.backups if b.run_id == self._run_id and not b.finished]
        if mine:
            for backup in mine:
                backup.finished = True
            self._save(manifest)
            logger.debug("Marked %d backup(s) of run %s finished", len(mine), self._run_id)

    def _drop(self, backup: Backup) -> None:
        if backup.snapshot:
            snap = Path(backup.snapshot)
            _remove_path(snap)
            self._prune(snap.parent)

        manifest = self._load()
        manifest.backups = [b for b in manifest.backups if b.source != backup.source]
        self._save(manifest)

    # ── Guard ───────────────────────────────────────────────────

    @contextmanager
    def guard(self, paths: Iterable[Path]) -> Iterator[list[Backup]]:
        """Snapshot ``paths`` and restore them if the block raises.

        Covers BaseException too, so an interrupt mid-mutation leaves
        the targets byte-identical to their pre-change content. A path
        already held by an earlier run keeps that backup; the content
        this run found goes to the pending store, and its current
        content to a scratch store for the duration of the block.
        """
        with tempfile.TemporaryDirectory(prefix="hwfix-guard-") as tmp:
            scratch = BackupStore(Path(tmp), self._fix, self._run_id)
            taken: list[tuple[BackupStore, Backup]] = []
            for path in paths:
                held = self.find(path)
                if held is None:
                    taken.append((self, self.snapshot(path)))
                    continue
                if held.run_id != self._run_id:
                    self.pending.snapshot(path)
                taken.append((scratch, scratch.snapshot(path)))
            try:
                yield [b for store, b in taken if store is self]
            except BaseException:
                for store, backup in reversed(taken):
                    try:
                        store.restore(backup)
                    except OSError as e:
                        logger.error("Failed to restore %s: %s", backup.source, e)
                raise
