"""
webcam — Galaxy Book4 (Intel IPU6, Meteor Lake) built-in camera.

The OV02C10 sensor sits behind the Intel Visual Sensing Controller.
Once the IVSC modules are loaded the proprietary camera HAL feeds a
v4l2loopback device through v4l2-relayd, and a WirePlumber rule marks
that device as a capture source so browsers list it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hwfix.core.engine.triggers import WIREPLUMBER
from hwfix.core.models.service import ServiceHandle
from hwfix.core.models.step import Step
from hwfix.core.services.probe import Probe
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.steps import (
    AptRepositoryStep,
    ModuleLoadStep,
    ModuleOptionsStep,
    PackageStep,
    ServiceStep,
    WriteFileStep,
)

IPU6_MTL_PCI_ID = "8086:7d19"
SENSOR_HID = "OVTI02C1"
IVSC_MODULES = ("mei-vsc", "mei-vsc-hw", "ivsc-ace", "ivsc-csi")
IVSC_FIRMWARE_DIR = "/lib/firmware/intel/vsc"
IVSC_FIRMWARE_GLOB = "ivsc_pkg_ovti02c1_0.bin*"

CAMERA_LABEL = "Intel MIPI Camera"

IVSC_AUTOLOAD = "".join(f"{m}\n" for m in IVSC_MODULES)

V4L2LOOPBACK_OPTIONS = (
    "# Loopback device fed by v4l2-relayd\n"
    f'options v4l2loopback devices=1 exclusive_caps=1 card_label="{CAMERA_LABEL}"\n'
)

RELAYD_CONFIG = """\
VIDEOSRC=icamerasrc buffer-count=7
FORMAT=NV12
WIDTH=1280
HEIGHT=720
FRAMERATE=30/1
CARD_LABEL=Intel MIPI Camera
"""

WIREPLUMBER_RULE = """\
monitor.v4l2.rules = [
  {
    matches = [
      {
        api.v4l2.cap.card = "Intel MIPI Camera"
      }
    ]
    actions = {
      update-props = {
        device.capabilities = ":video_capture:"
      }
    }
  }
]
"""


def _ivsc_firmware_present(probe: Probe) -> bool:
    fw_dir = probe.path(IVSC_FIRMWARE_DIR)
    return fw_dir.is_dir() and any(fw_dir.glob(IVSC_FIRMWARE_GLOB))


class WebcamFix(Fix):
    name = "webcam"
    title = "Galaxy Book4 webcam (IPU6 Meteor Lake)"
    description = (
        "Load the IVSC modules, install the IPU6 camera HAL and v4l2-relayd, "
        "and expose the relay device to PipeWire."
    )

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                f"Intel IPU6 Meteor Lake ({IPU6_MTL_PCI_ID})",
                lambda probe: probe.find_pci_device(IPU6_MTL_PCI_ID) is not None,
                hardware_id=f"pci:{IPU6_MTL_PCI_ID}",
                hint="This fix is designed for the Samsung Galaxy Book4.",
            ),
            Requirement(
                f"OV02C10 sensor ({SENSOR_HID}) in ACPI",
                lambda probe: probe.find_acpi_device_by_hid(SENSOR_HID) is not None,
                hardware_id=f"acpi:{SENSOR_HID}",
            ),
            Requirement(
                "IVSC firmware for OV02C10",
                _ivsc_firmware_present,
                hint=f"Expected {IVSC_FIRMWARE_DIR}/ivsc_pkg_ovti02c1_0.bin.zst",
            ),
            Requirement(
                "IVSC kernel modules",
                lambda probe: all(probe.is_kernel_module_available(m) for m in IVSC_MODULES),
                hint="On Ubuntu: sudo apt install linux-modules-ipu6-generic-hwe-24.04",
            ),
        ]

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        return [
            ModuleLoadStep(
                "load-ivsc-modules",
                IVSC_MODULES,
                reprobe=("ov02c10",),
                critical=True,
            ),
            WriteFileStep(
                "persist-ivsc-autoload",
                "/etc/modules-load.d/ivsc.conf",
                IVSC_AUTOLOAD,
                description="Load IVSC modules at boot",
                critical=True,
            ),
            AptRepositoryStep("add-ipu6-ppa", "ppa:oem-solutions-group/intel-ipu6"),
            PackageStep("install-camera-hal", "camera-hal"),
            ModuleOptionsStep(
                "configure-v4l2loopback",
                "v4l2loopback",
                "/etc/modprobe.d/v4l2loopback-ipu6.conf",
                V4L2LOOPBACK_OPTIONS,
                description=f"Name the loopback device '{CAMERA_LABEL}'",
            ),
            WriteFileStep(
                "write-relayd-config",
                "/etc/v4l2-relayd",
                RELAYD_CONFIG,
                description="Configure v4l2-relayd for icamerasrc at 1280x720",
            ),
            ServiceStep(
                "enable-relayd-service",
                [ServiceHandle(name="v4l2-relayd")],
            ),
            WriteFileStep(
                "wireplumber-camera-rule",
                "/etc/wireplumber/wireplumber.conf.d/50-v4l2-ipu6-camera.conf",
                WIREPLUMBER_RULE,
                description="Classify the relay device as a video capture source",
                triggers=(WIREPLUMBER,),
            ),
        ]
