"""
PackageInstaller — install/remove logical package sets.

Names are resolved through the PackageSet catalog for the distro
family the Probe detected, then handed to the family's backend.
Nothing here raises for an install problem: every outcome comes back
as a PackageResult, including "unsupported" when the family has no
backend or no mapping for the set.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from hwfix.adapters.base import Executor, PackageBackend
from hwfix.adapters.registry import BackendRegistry, default_registry
from hwfix.core.models.package import DistroFamily, PackageResult, PackageSet

logger = logging.getLogger(__name__)


class PackageInstaller:
    """Package operations for one distro family."""

    def __init__(
        self,
        runner: Executor,
        family: DistroFamily,
        catalog: Mapping[str, PackageSet],
        kernel: str = "",
        timeout: float | None = None,
        registry: BackendRegistry | None = None,
    ):
        self._family = family
        self._catalog = catalog
        self._kernel = kernel
        registry = registry or default_registry()
        self._backend: PackageBackend | None = registry.create(family, runner, timeout=timeout)

    @property
    def family(self) -> DistroFamily:
        return self._family

    @property
    def backend(self) -> PackageBackend | None:
        return self._backend

    def package_set(self, set_name: str) -> PackageSet:
        pset = self._catalog.get(set_name)
        if pset is None:
            raise KeyError(f"Unknown package set: {set_name}")
        return pset

    def resolve(self, set_name: str) -> list[str] | None:
        """Concrete package names for this family, or None if unsupported."""
        if self._backend is None:
            return None
        return self.package_set(set_name).for_family(self._family, self._kernel)

    def required(self, set_name: str) -> list[str]:
        """What the user needs installed, for messages."""
        return self.resolve(set_name) or self.package_set(set_name).required(self._kernel)

    # ── Queries ─────────────────────────────────────────────────

    def is_installed(self, package: str) -> bool:
        if self._backend is None:
            return False
        return self._backend.is_installed(package)

    def missing(self, set_name: str) -> list[str]:
        """Packages of the set that are not installed.

        On an unsupported family nothing can be verified, so the whole
        required list is reported.
        """
        names = self.resolve(set_name)
        if names is None:
            return self.required(set_name)
        return [n for n in names if not self.is_installed(n)]

    # ── Mutations ───────────────────────────────────────────────

    def install(self, set_name: str) -> PackageResult:
        names = self.resolve(set_name)
        if names is None:
            required = self.required(set_name)
            logger.warning(
                "No automated install for '%s' on %s; required: %s",
                set_name, self._family.value, " ".join(required),
            )
            return PackageResult.unsupported_for(set_name, required, self._family.value)

        assert self._backend is not None
        todo = [n for n in names if not self._backend.is_installed(n)]
        if not todo:
            logger.debug("Package set '%s' already installed", set_name)
            return PackageResult.success(set_name, names)

        logger.info("Installing %s (%s)", " ".join(todo), set_name)
        result = self._backend.install(todo)
        if result.ok:
            return PackageResult.success(set_name, todo, output=result.stdout)

        analysis = self._backend.classify_failure(result)
        logger.debug("Install of '%s' failed (%s): %s", set_name, analysis["reason"], result.error)
        return PackageResult.failure(
            set_name,
            todo,
            error=f"{self._backend.name} failed to install {' '.join(todo)}: {result.error}",
            retriable=analysis["retriable"],
            hint=analysis["hint"],
        )

    def remove(self, set_name: str) -> PackageResult:
        names = self.resolve(set_name)
        if names is None:
            required = self.required(set_name)
            return PackageResult.unsupported_for(set_name, required, self._family.value)

        assert self._backend is not None
        present = [n for n in names if self._backend.is_installed(n)]
        if not present:
            return PackageResult.success(set_name, [])

        logger.info("Removing %s (%s)", " ".join(present), set_name)
        result = self._backend.remove(present)
        if result.ok:
            return PackageResult.success(set_name, present, output=result.stdout)
        return PackageResult.failure(
            set_name,
            present,
            error=f"{self._backend.name} failed to remove {' '.join(present)}: {result.error}",
            hint=f"Remove manually: {' '.join(present)}",
        )
