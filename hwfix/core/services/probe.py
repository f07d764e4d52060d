"""
Probe — read-only hardware and software state detection.

Every lookup is relative to a system root (``/`` in production, a
fixture tree in tests). Absence is a normal answer (None / False);
only failing to reach the probing mechanism itself, such as a
permission error on a sysfs table, raises ProbeError.

Nothing here mutates the system.
"""

from __future__ import annotations

import logging
import platform
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from hwfix.adapters.base import Executor
from hwfix.core.errors import ProbeError
from hwfix.core.models.package import DistroFamily
from hwfix.core.models.report import SystemFingerprint
from hwfix.core.models.service import ServiceScope

logger = logging.getLogger(__name__)


# ── Distro family map ───────────────────────────────────────────

_FAMILY_IDS: dict[DistroFamily, frozenset[str]] = {
    DistroFamily.DEBIAN: frozenset({"debian", "ubuntu", "linuxmint", "pop", "elementary", "zorin"}),
    DistroFamily.FEDORA: frozenset({"fedora", "rhel", "centos", "rocky", "almalinux", "nobara"}),
    DistroFamily.ARCH: frozenset({"arch", "manjaro", "endeavouros", "cachyos", "garuda"}),
    DistroFamily.SUSE: frozenset({"suse", "opensuse", "sles"}),
}

_OS_RELEASE_PATHS = ("etc/os-release", "usr/lib/os-release")

_LIBCAMERA_LIB_GLOBS = (
    "usr/local/lib/*/libcamera.so.*",
    "usr/local/lib/libcamera.so.*",
    "usr/lib64/libcamera.so.*",
    "usr/lib/*/libcamera.so.*",
    "usr/lib/libcamera.so.*",
)

LIBCAMERA_IPA_DIRS = (
    "/usr/local/share/libcamera/ipa/simple",
    "/usr/share/libcamera/ipa/simple",
)


def family_for(distro_id: str, id_like: str = "") -> DistroFamily:
    """Map os-release ID / ID_LIKE to a distro family."""
    candidates = [distro_id.lower(), *id_like.lower().split()]
    for candidate in candidates:
        if candidate.startswith("opensuse"):
            return DistroFamily.SUSE
        for family, ids in _FAMILY_IDS.items():
            if candidate in ids:
                return family
    return DistroFamily.UNKNOWN


def _normalize_module(name: str) -> str:
    return name.replace("-", "_")


@contextmanager
def _probing(what: str) -> Iterator[None]:
    """Turn access errors into ProbeError."""
    try:
        yield
    except PermissionError as e:
        raise ProbeError(f"Permission denied while probing {what}: {e}", hint="Run with sudo.") from e


class Probe:
    """Stateless, read-only system queries."""

    def __init__(self, runner: Executor, root: Path = Path("/")):
        self._runner = runner
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path(self, system_path: str | Path) -> Path:
        """Map an absolute system path into the probe root."""
        return self._root / str(system_path).lstrip("/")

    # ── Generic readers ─────────────────────────────────────────

    def read_first_line(self, path: str | Path) -> str | None:
        """First line of a sysfs/procfs/config file, stripped, or None if absent."""
        target = self.path(path)
        with _probing(str(path)):
            try:
                with target.open("r", encoding="utf-8", errors="replace") as f:
                    return f.readline().strip()
            except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
                return None

    def read_dmi(self, field: str) -> str | None:
        return self.read_first_line(f"/sys/class/dmi/id/{field}")

    def command_exists(self, name: str) -> bool:
        return self._runner.which(name) is not None

    # ── Distro ──────────────────────────────────────────────────

    def os_release(self) -> dict[str, str]:
        """Parsed os-release, or {} if missing."""
        for rel in _OS_RELEASE_PATHS:
            target = self._root / rel
            with _probing(rel):
                if not target.is_file():
                    continue
                text = target.read_text(encoding="utf-8", errors="replace")
            data: dict[str, str] = {}
            for line in text.splitlines():
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, _, value = line.partition("=")
                data[key.strip()] = value.strip().strip("\"'")
            return data
        return {}

    def detect_distro_family(self) -> DistroFamily:
        info = self.os_release()
        family = family_for(info.get("ID", ""), info.get("ID_LIKE", ""))
        logger.debug("Distro %r (like %r) -> %s", info.get("ID"), info.get("ID_LIKE"), family.value)
        return family

    def kernel_release(self) -> str:
        release = self.read_first_line("/proc/sys/kernel/osrelease")
        if release:
            return release
        if self._root == Path("/"):
            return platform.release()
        return ""

    # ── Buses ───────────────────────────────────────────────────

    def find_pci_device(self, vendor_device_id: str) -> Path | None:
        """Find a PCI device by ``vendor:device`` (hex, e.g. ``8086:7d19``)."""
        vendor, _, device = vendor_device_id.lower().partition(":")
        for dev in self._devices("/sys/bus/pci/devices"):
            if (self._hex_attr(dev / "vendor") == vendor
                    and self._hex_attr(dev / "device") == device):
                return dev
        return None

    def find_pci_by_class(self, class_prefix: str, vendor: str | None = None) -> Path | None:
        """Find a PCI device whose class code starts with ``class_prefix`` (e.g. ``0403``)."""
        for dev in self._devices("/sys/bus/pci/devices"):
            pci_class = self._hex_attr(dev / "class") or ""
            if not pci_class.startswith(class_prefix.lower()):
                continue
            if vendor and self._hex_attr(dev / "vendor") != vendor.lower():
                continue
            return dev
        return None

    def find_acpi_device_by_hid(self, hid: str) -> Path | None:
        for dev in self._devices("/sys/bus/acpi/devices"):
            if dev.name.split(":")[0] == hid:
                return dev
            if self._attr(dev / "hid") == hid:
                return dev
        return None

    def find_i2c_device_by_name(self, name: str) -> Path | None:
        for dev in self._devices("/sys/bus/i2c/devices"):
            if name in dev.name:
                return dev
            dev_name = self._attr(dev / "name")
            if dev_name and name in dev_name:
                return dev
        return None

    # ── Kernel modules ──────────────────────────────────────────

    def is_kernel_module_loaded(self, name: str) -> bool:
        wanted = _normalize_module(name)
        target = self.path("/proc/modules")
        with _probing("/proc/modules"):
            if not target.is_file():
                return False
            text = target.read_text(encoding="utf-8", errors="replace")
        return any(
            _normalize_module(line.split(" ", 1)[0]) == wanted
            for line in text.splitlines()
            if line
        )

    def is_kernel_module_available(self, name: str, release: str | None = None) -> Path | None:
        """Path of the module file under /lib/modules/<release>, or None."""
        release = release or self.kernel_release()
        if not release:
            return None
        mod_dir = self.path(f"/lib/modules/{release}")
        variants = {name, name.replace("-", "_"), name.replace("_", "-")}
        with _probing(str(mod_dir)):
            if not mod_dir.is_dir():
                return None
            for candidate in mod_dir.rglob("*.ko*"):
                if candidate.name.split(".ko", 1)[0] in variants:
                    return candidate
        return None

    # ── Services ────────────────────────────────────────────────

    def is_service_active(self, name: str, scope: ServiceScope = ServiceScope.SYSTEM) -> bool:
        unit = name if "." in name else f"{name}.service"
        args = ["systemctl"]
        if scope == ServiceScope.USER:
            args.append("--user")
        args += ["is-active", "--quiet", unit]
        return self._runner.run(args, timeout=10).ok

    # ── libcamera ───────────────────────────────────────────────

    def libcamera_version(self) -> tuple[int, int] | None:
        """(major, minor) of the installed libcamera shared library."""
        pattern = re.compile(r"libcamera\.so\.(\d+)\.(\d+)")
        for glob in _LIBCAMERA_LIB_GLOBS:
            with _probing(glob):
                for lib in sorted(self._root.glob(glob)):
                    match = pattern.search(lib.name)
                    if match:
                        return int(match.group(1)), int(match.group(2))
        return None

    def libcamera_ipa_dir(self) -> str | None:
        """System path of the simple-pipeline IPA tuning directory."""
        for system_dir in LIBCAMERA_IPA_DIRS:
            if self.path(system_dir).is_dir():
                return system_dir
        return None

    # ── Fingerprint ─────────────────────────────────────────────

    def fingerprint(self, hardware_ids: list[str] | None = None) -> SystemFingerprint:
        info = self.os_release()
        return SystemFingerprint(
            distro_id=info.get("ID", ""),
            distro_version=info.get("VERSION_ID", ""),
            distro_family=family_for(info.get("ID", ""), info.get("ID_LIKE", "")).value,
            kernel=self.kernel_release(),
            sys_vendor=self.read_dmi("sys_vendor") or "",
            product_name=self.read_dmi("product_name") or "",
            hardware_ids=list(hardware_ids or []),
        )

    # ── Helpers ─────────────────────────────────────────────────

    def _devices(self, bus_dir: str) -> list[Path]:
        target = self.path(bus_dir)
        with _probing(bus_dir):
            if not target.is_dir():
                return []
            return sorted(target.iterdir())

    def _attr(self, path: Path) -> str | None:
        with _probing(str(path)):
            try:
                return path.read_text(encoding="utf-8", errors="replace").strip()
            except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
                return None

    def _hex_attr(self, path: Path) -> str | None:
        value = self._attr(path)
        if value is None:
            return None
        return value.lower().removeprefix("0x")
