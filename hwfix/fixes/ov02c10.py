"""
ov02c10-26mhz — patched OV02C10 sensor driver accepting a 26 MHz clock.

Some Book4/Book5 boards feed the sensor 26 MHz; the stock driver only
probes at 19.2 MHz.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hwfix.core.models.step import Step
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.steps import DkmsModuleStep, PackageStep

SENSOR_HID = "OVTI02C1"


class Ov02c10Fix(Fix):
    name = "ov02c10-26mhz"
    title = "OV02C10 26 MHz clock support"
    description = "Replace the ov02c10 sensor driver with a DKMS build that supports 26 MHz."

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                f"OV02C10 sensor ({SENSOR_HID}) in ACPI",
                lambda probe: probe.find_acpi_device_by_hid(SENSOR_HID) is not None,
                hardware_id=f"acpi:{SENSOR_HID}",
            ),
        ]

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        return [
            PackageStep("install-dkms", "dkms", keep_on_revert=True, critical=True),
            PackageStep("install-kernel-headers", "kernel-headers", keep_on_revert=True, critical=True),
            DkmsModuleStep(
                "build-dkms-module",
                "ov02c10",
                "1.0",
                reload=("ov02c10",),
                critical=True,
            ),
        ]
