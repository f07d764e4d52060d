"""
pacman backend (Arch Linux and derivatives).
"""

from __future__ import annotations

from hwfix.adapters.base import PackageBackend
from hwfix.core.models.package import DistroFamily


class PacmanBackend(PackageBackend):
    family = DistroFamily.ARCH
    binary = "pacman"
    transient_patterns = (r"failed to synchronize", r"could not lock database")

    def install_command(self, packages: list[str]) -> list[str]:
        return ["pacman", "-S", "--noconfirm", "--needed", *packages]

    def remove_command(self, packages: list[str]) -> list[str]:
        return ["pacman", "-R", "--noconfirm", *packages]

    def query_command(self, package: str) -> list[str]:
        return ["pacman", "-Q", package]
