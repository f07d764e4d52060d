"""
mic — internal DMIC on Galaxy Book4/Book5 via Sound Open Firmware.

Pulls current SOF firmware from linux-firmware and forces
``snd-intel-dspcfg dsp_driver=3`` so the SOF driver claims the DSP.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hwfix.core.engine.triggers import INITRAMFS, REBOOT
from hwfix.core.models.step import Step
from hwfix.core.services.probe import Probe
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.steps import PackageStep, RemoveMatchingLinesStep, SparseFirmwareStep, WriteFileStep

LINUX_FIRMWARE_REPO = "https://gitlab.com/kernel-firmware/linux-firmware.git"
FIRMWARE_DIRS = {
    "intel/sof-ipc4": "/lib/firmware/intel/sof-ipc4",
    "intel/sof-ipc4-lib": "/lib/firmware/intel/sof-ipc4-lib",
    "intel/sof-ace-tplg": "/lib/firmware/intel/sof-ace-tplg",
    "intel/sof": "/lib/firmware/intel/sof",
    "intel/sof-tplg": "/lib/firmware/intel/sof-tplg",
}

DSP_CONF = "/etc/modprobe.d/sof-dsp-driver.conf"
DSP_CONF_CONTENT = """\
# SOF DSP driver for Samsung Galaxy Book4/Book5 internal mic (DMIC)
# dsp_driver=3 selects SOF (Sound Open Firmware)
options snd-intel-dspcfg dsp_driver=3
"""

INTEL_VENDOR = "8086"


def _intel_audio(probe: Probe) -> bool:
    return any(
        probe.find_pci_by_class(cls, vendor=INTEL_VENDOR) is not None
        for cls in ("0403", "0401")
    )


def _samsung(probe: Probe) -> bool:
    return "samsung" in (probe.read_dmi("sys_vendor") or "").lower()


class MicFix(Fix):
    name = "mic"
    title = "Internal microphone (SOF firmware)"
    description = "Update Intel SOF firmware and select the SOF DSP driver."

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                "Intel HDA audio controller",
                _intel_audio,
                hardware_id="pci:8086:audio",
            ),
            Requirement(
                "Samsung system vendor",
                _samsung,
                hint="This fix is intended for Samsung Galaxy Book4/Book5 laptops.",
            ),
        ]

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        return [
            PackageStep("install-git", "git", keep_on_revert=True, critical=True),
            SparseFirmwareStep(
                "update-sof-firmware",
                LINUX_FIRMWARE_REPO,
                FIRMWARE_DIRS,
                required="intel/sof-ipc4",
                description="Update SOF firmware from linux-firmware",
                critical=True,
                triggers=(REBOOT,),
            ),
            RemoveMatchingLinesStep(
                "remove-conflicting-dsp-options",
                "/etc/modprobe.d",
                r"snd-intel-dspcfg.*dsp_driver",
                exclude=(DSP_CONF,),
                critical=True,
            ),
            WriteFileStep(
                "write-dsp-driver-conf",
                DSP_CONF,
                DSP_CONF_CONTENT,
                description="Select the SOF DSP driver (dsp_driver=3)",
                critical=True,
                triggers=(INITRAMFS, REBOOT),
            ),
        ]
