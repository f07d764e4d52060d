"""
APT backend (Debian, Ubuntu and derivatives).
"""

from __future__ import annotations

from hwfix.adapters.base import CommandResult, PackageBackend
from hwfix.core.models.package import DistroFamily


class AptBackend(PackageBackend):
    family = DistroFamily.DEBIAN
    binary = "apt-get"
    transient_patterns = (r"Hash Sum mismatch", r"Release file .* is not valid yet")
    permanent_patterns = (r"E: Package '.*' has no installation candidate",)

    def install_command(self, packages: list[str]) -> list[str]:
        return ["apt-get", "install", "-y", *packages]

    def remove_command(self, packages: list[str]) -> list[str]:
        return ["apt-get", "remove", "-y", *packages]

    def query_command(self, package: str) -> list[str]:
        return ["dpkg-query", "-W", "-f=${Status}", package]

    def parse_installed(self, result: CommandResult) -> bool:
        # dpkg-query succeeds for removed-but-not-purged packages too
        return result.ok and "install ok installed" in result.stdout
