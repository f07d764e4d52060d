"""
Package set catalog — logical dependency names to per-family packages.

Loaded once per Orchestrator and never mutated. Config may add sets
or replace a family's list for an existing set.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from hwfix.core.models.package import DistroFamily, PackageSet

logger = logging.getLogger(__name__)

_D, _F, _A, _S = DistroFamily.DEBIAN, DistroFamily.FEDORA, DistroFamily.ARCH, DistroFamily.SUSE


PACKAGE_SETS: dict[str, PackageSet] = {
    s.name: s
    for s in (
        PackageSet(
            name="camera-hal",
            description="Intel IPU6 camera HAL and the v4l2 relay daemon",
            packages={_D: ["libcamhal-ipu6epmtl", "v4l2-relayd"]},
            fallback=["libcamhal-ipu6epmtl", "v4l2-relayd"],
        ),
        PackageSet(
            name="git",
            description="git, for sparse firmware checkouts",
            packages={_D: ["git"], _F: ["git"], _A: ["git"], _S: ["git"]},
        ),
        PackageSet(
            name="dkms",
            description="Dynamic Kernel Module Support",
            packages={_D: ["dkms"], _F: ["dkms"], _A: ["dkms"], _S: ["dkms"]},
        ),
        PackageSet(
            name="i2c-tools",
            description="I2C bus utilities used by the amplifier setup service",
            packages={_D: ["i2c-tools"], _F: ["i2c-tools"], _A: ["i2c-tools"], _S: ["i2c-tools"]},
        ),
        PackageSet(
            name="kernel-headers",
            description="Headers for the running kernel, needed by DKMS builds",
            packages={
                _D: ["linux-headers-{kernel}"],
                _F: ["kernel-devel-{kernel}"],
                _A: ["linux-headers"],
                _S: ["kernel-default-devel"],
            },
            fallback=["linux-headers-{kernel}"],
        ),
        PackageSet(
            name="qcam",
            description="libcamera test viewer, used for CCM preview",
            packages={_D: ["libcamera-tools"], _F: ["libcamera-qcam"], _A: ["libcamera-tools"]},
            fallback=["libcamera-tools"],
        ),
    )
}


def load_package_sets(
    overrides: Mapping[str, Mapping[DistroFamily, list[str]]] | None = None,
) -> dict[str, PackageSet]:
    """Build the catalog, applying per-family overrides from config."""
    catalog = dict(PACKAGE_SETS)
    for name, families in (overrides or {}).items():
        base = catalog.get(name) or PackageSet(name=name)
        merged = {**base.packages, **{DistroFamily(f): list(p) for f, p in families.items()}}
        catalog[name] = base.model_copy(update={"packages": merged})
        logger.debug("Package set '%s' overridden for %s", name, ", ".join(DistroFamily(f).value for f in families))
    return catalog
