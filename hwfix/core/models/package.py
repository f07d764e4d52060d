"""
Package models: distro families, package sets, install results.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DistroFamily(str, Enum):
    DEBIAN = "debian"
    FEDORA = "fedora"
    ARCH = "arch"
    SUSE = "suse"
    UNKNOWN = "unknown"


class PackageSet(BaseModel):
    """Logical dependency name mapped to concrete per-family packages.

    ``fallback`` is what the user is told to install when there is no
    mapping for the running family. Names may contain ``{kernel}``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    packages: dict[DistroFamily, list[str]] = Field(default_factory=dict)
    fallback: list[str] = Field(default_factory=list)

    def for_family(self, family: DistroFamily, kernel: str = "") -> list[str] | None:
        """Concrete package names for a family, or None if unmapped."""
        names = self.packages.get(family)
        if not names:
            return None
        return [n.replace("{kernel}", kernel) for n in names]

    def required(self, kernel: str = "") -> list[str]:
        """Package list reported when installation can't be automated."""
        names = self.fallback or next(iter(self.packages.values()), [])
        return [n.replace("{kernel}", kernel) for n in names]


class PackageResult(BaseModel):
    """Outcome of a PackageInstaller operation. Never raised, always returned."""

    set_name: str
    status: Literal["ok", "unsupported", "failed"] = "ok"
    packages: list[str] = Field(default_factory=list)
    retriable: bool = False
    error: str | None = None
    hint: str = ""
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def unsupported(self) -> bool:
        return self.status == "unsupported"

    @classmethod
    def success(cls, set_name: str, packages: list[str], output: str = "") -> PackageResult:
        return cls(set_name=set_name, status="ok", packages=packages, output=output)

    @classmethod
    def unsupported_for(cls, set_name: str, packages: list[str], family: str) -> PackageResult:
        return cls(
            set_name=set_name,
            status="unsupported",
            packages=packages,
            error=f"No automated install for '{set_name}' on distro family '{family}'",
            hint=f"Install manually: {' '.join(packages)}",
        )

    @classmethod
    def failure(
        cls,
        set_name: str,
        packages: list[str],
        error: str,
        retriable: bool = False,
        hint: str = "",
    ) -> PackageResult:
        return cls(
            set_name=set_name,
            status="failed",
            packages=packages,
            error=error,
            retriable=retriable,
            hint=hint,
        )
