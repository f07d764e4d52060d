"""
Stamp files — per-fix install markers.

A stamp is a text header line followed by a JSON body:

    installed by hwfix on 2026-01-01T12:00:00+00:00
    {"fix": "webcam", "options": {...}, ...}

Writes are atomic (write to temp file, then rename).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from hwfix.core.models.stamp import Stamp

logger = logging.getLogger(__name__)

STAMP_SUFFIX = ".stamp"
HEADER_PREFIX = "installed by hwfix on "


class StampStore:
    """Reads and writes ``<stamp_dir>/<fix>.stamp``."""

    def __init__(self, stamp_dir: Path):
        self._dir = stamp_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, fix: str) -> Path:
        return self._dir / f"{fix}{STAMP_SUFFIX}"

    def exists(self, fix: str) -> bool:
        return self.path_for(fix).is_file()

    def read(self, fix: str) -> Stamp | None:
        """Load a fix's stamp, or None if it was never applied.

        A stamp whose body can't be parsed still marks the fix as
        installed; it comes back with default options.
        """
        path = self.path_for(fix)
        if not path.is_file():
            return None

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot read stamp %s: %s", path, e)
            return Stamp(fix=fix)

        header, _, body = raw.partition("\n")
        installed_at = header.removeprefix(HEADER_PREFIX).strip()

        try:
            data = json.loads(body) if body.strip() else {}
            stamp = Stamp.model_validate({"fix": fix, **data})
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Corrupt stamp body in %s: %s", path, e)
            stamp = Stamp(fix=fix)

        if installed_at and header.startswith(HEADER_PREFIX):
            stamp.installed_at = installed_at
        return stamp

    def write(self, stamp: Stamp) -> Path:
        """Write a stamp (atomic)."""
        path = self.path_for(stamp.fix)
        path.parent.mkdir(parents=True, exist_ok=True)

        body = json.dumps(stamp.model_dump(mode="json"), indent=2, ensure_ascii=False)
        content = f"{stamp.header}\n{body}\n"

        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".stamp_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.debug("Stamp written: %s", path)
        return path

    def remove(self, fix: str) -> bool:
        path = self.path_for(fix)
        if not path.is_file():
            return False
        path.unlink()
        logger.debug("Stamp removed: %s", path)
        return True

    def list_fixes(self) -> list[str]:
        """Names of every fix that has a stamp."""
        if not self._dir.is_dir():
            return []
        return sorted(p.name.removesuffix(STAMP_SUFFIX) for p in self._dir.glob(f"*{STAMP_SUFFIX}"))
