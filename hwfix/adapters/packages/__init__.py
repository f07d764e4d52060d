"""Distro package-manager backends."""

from hwfix.adapters.packages.apt import AptBackend
from hwfix.adapters.packages.dnf import DnfBackend
from hwfix.adapters.packages.pacman import PacmanBackend
from hwfix.adapters.packages.zypper import ZypperBackend

__all__ = ["AptBackend", "DnfBackend", "PacmanBackend", "ZypperBackend"]
