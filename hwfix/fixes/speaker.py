"""
speaker — MAX98390 HDA speaker amplifiers (Galaxy Book4 Pro/Ultra).

Builds the out-of-tree side-codec driver with DKMS and installs the
boot-time services that bind the amplifiers on the I2C bus.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hwfix.core.engine.triggers import DAEMON_RELOAD, REBOOT
from hwfix.core.models.service import ServiceHandle
from hwfix.core.models.step import Step
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.steps import DkmsModuleStep, InstallFilesStep, PackageStep, ServiceStep, WriteFileStep

AMP_HID = "MAX98390"
DKMS_NAME = "max98390-hda"
DKMS_VERSION = "1.0"

SETUP_SERVICE = "max98390-hda-i2c-setup"
CHECK_SERVICE = "max98390-hda-check-upstream"

HELPER_FILES = (
    (f"{SETUP_SERVICE}.sh", f"/usr/local/sbin/{SETUP_SERVICE}.sh", 0o755),
    (f"{CHECK_SERVICE}.sh", f"/usr/local/sbin/{CHECK_SERVICE}.sh", 0o755),
    (f"{SETUP_SERVICE}.service", f"/etc/systemd/system/{SETUP_SERVICE}.service", 0o644),
    (f"{CHECK_SERVICE}.service", f"/etc/systemd/system/{CHECK_SERVICE}.service", 0o644),
)

MODULES_LOAD = """\
# MAX98390 HDA speaker amplifier driver (Galaxy Book4)
snd-hda-scodec-max98390
snd-hda-scodec-max98390-i2c
"""


class SpeakerFix(Fix):
    name = "speaker"
    title = "Speaker amplifiers (MAX98390)"
    description = "Build the MAX98390 HDA side-codec driver and its I2C setup services."

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                "MAX98390 amplifier (ACPI or I2C)",
                lambda probe: (
                    probe.find_acpi_device_by_hid(AMP_HID) is not None
                    or probe.find_i2c_device_by_name(AMP_HID) is not None
                ),
                hardware_id=f"acpi:{AMP_HID}",
                hint="This fix targets Galaxy Book4 models with MAX98390 HDA amplifiers.",
            ),
        ]

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        return [
            PackageStep("install-dkms", "dkms", keep_on_revert=True, critical=True),
            PackageStep("install-i2c-tools", "i2c-tools", keep_on_revert=True, critical=True),
            DkmsModuleStep("build-dkms-module", DKMS_NAME, DKMS_VERSION, critical=True),
            InstallFilesStep(
                "install-helper-scripts",
                HELPER_FILES,
                description="Install amplifier setup scripts and units",
                critical=True,
                triggers=(DAEMON_RELOAD,),
            ),
            ServiceStep(
                "enable-amp-services",
                [ServiceHandle(name=SETUP_SERVICE), ServiceHandle(name=CHECK_SERVICE)],
                start=False,
            ),
            WriteFileStep(
                "persist-module-autoload",
                "/etc/modules-load.d/max98390-hda.conf",
                MODULES_LOAD,
                description="Load the amplifier driver at boot",
                triggers=(REBOOT,),
            ),
        ]
