"""
Backend registry — distro family to package backend.

The registry is the single point where the distro family selects a
backend. Steps and services never branch on the family themselves.
"""

from __future__ import annotations

import logging

from hwfix.adapters.base import Executor, PackageBackend
from hwfix.adapters.packages import AptBackend, DnfBackend, PacmanBackend, ZypperBackend
from hwfix.core.models.package import DistroFamily

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry of package backends keyed by distro family."""

    def __init__(self) -> None:
        self._backends: dict[DistroFamily, type[PackageBackend]] = {}

    def register(self, backend: type[PackageBackend]) -> None:
        family = backend.family
        if family in self._backends:
            logger.warning("Overwriting existing backend for %s", family.value)
        self._backends[family] = backend
        logger.debug("Registered backend: %s -> %s", family.value, backend.__name__)

    def unregister(self, family: DistroFamily) -> None:
        self._backends.pop(family, None)

    def families(self) -> list[DistroFamily]:
        return list(self._backends.keys())

    def create(
        self,
        family: DistroFamily,
        runner: Executor,
        timeout: float | None = None,
    ) -> PackageBackend | None:
        """Instantiate the backend for ``family``, or None if unsupported."""
        backend = self._backends.get(family)
        if backend is None:
            return None
        return backend(runner, timeout=timeout)


def default_registry() -> BackendRegistry:
    """Registry with every built-in backend."""
    registry = BackendRegistry()
    for backend in (AptBackend, DnfBackend, PacmanBackend, ZypperBackend):
        registry.register(backend)
    return registry
