"""
zypper backend (openSUSE, SLES).
"""

from __future__ import annotations

from hwfix.adapters.base import PackageBackend
from hwfix.core.models.package import DistroFamily


class ZypperBackend(PackageBackend):
    family = DistroFamily.SUSE
    binary = "zypper"
    transient_patterns = (r"Valid metadata not found", r"System management is locked")
    permanent_patterns = (r"'.*' not found in package names",)

    def install_command(self, packages: list[str]) -> list[str]:
        return ["zypper", "--non-interactive", "install", *packages]

    def remove_command(self, packages: list[str]) -> list[str]:
        return ["zypper", "--non-interactive", "remove", *packages]

    def query_command(self, package: str) -> list[str]:
        return ["rpm", "-q", package]
