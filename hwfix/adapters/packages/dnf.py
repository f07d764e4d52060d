"""
DNF backend (Fedora, RHEL and derivatives).
"""

from __future__ import annotations

from hwfix.adapters.base import PackageBackend
from hwfix.core.models.package import DistroFamily


class DnfBackend(PackageBackend):
    family = DistroFamily.FEDORA
    binary = "dnf"
    transient_patterns = (r"Cannot download repomd\.xml", r"Errors during downloading metadata")
    permanent_patterns = (r"Unable to find a match",)

    def install_command(self, packages: list[str]) -> list[str]:
        return ["dnf", "install", "-y", *packages]

    def remove_command(self, packages: list[str]) -> list[str]:
        return ["dnf", "remove", "-y", *packages]

    def query_command(self, package: str) -> list[str]:
        return ["rpm", "-q", package]
