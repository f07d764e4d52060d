"""
webcam-book5 — Galaxy Book5 (Intel IPU7, Lunar Lake) camera.

libcamera drives the sensor; the raw IPU7 ISYS nodes are hidden from
PipeWire and a CCM preset corrects the green cast.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from hwfix.core.config.loader import Settings
from hwfix.core.data.ccm_presets import DEFAULT_PRESET, DEFAULT_SENSOR, PRESETS
from hwfix.core.engine.triggers import WIREPLUMBER
from hwfix.core.models.step import Step
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.ccm import CcmPresetStep
from hwfix.fixes.steps import WriteFileStep

IPU7_LNL_PCI_ID = "8086:645d"

DISABLE_IPU7_RULE = """\
-- Disable raw V4L2 IPU7 ISYS capture nodes in PipeWire.
-- libcamera exposes the usable camera source.
table.insert(v4l2_monitor.rules, {
  matches = {
    {
      { "api.v4l2.cap.card", "matches", "ipu7" },
    },
  },
  apply_properties = {
    ["device.disabled"] = true,
  },
})
"""


class Book5Options(BaseModel):
    preset: int = Field(default=DEFAULT_PRESET, ge=1, le=len(PRESETS))
    sensor: str = DEFAULT_SENSOR


class WebcamBook5Fix(Fix):
    name = "webcam-book5"
    title = "Galaxy Book5 webcam (IPU7 Lunar Lake)"
    description = "Hide raw IPU7 V4L2 nodes from PipeWire and install a CCM preset."
    options_model = Book5Options

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                f"Intel IPU7 Lunar Lake ({IPU7_LNL_PCI_ID})",
                lambda probe: probe.find_pci_device(IPU7_LNL_PCI_ID) is not None,
                hardware_id=f"pci:{IPU7_LNL_PCI_ID}",
                hint="This fix is designed for the Samsung Galaxy Book5.",
            ),
        ]

    def option_defaults(self, settings: Settings) -> dict[str, Any]:
        return {"sensor": settings.ccm_sensor}

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        ccm = CcmPresetStep(
            options.get("preset", DEFAULT_PRESET),
            options.get("sensor", DEFAULT_SENSOR),
            id="write-ccm-preset",
        )
        return [
            WriteFileStep(
                "disable-ipu7-v4l2-nodes",
                "/etc/wireplumber/main.lua.d/50-disable-ipu7-v4l2.lua",
                DISABLE_IPU7_RULE,
                description="Hide raw IPU7 ISYS nodes from PipeWire",
                triggers=(WIREPLUMBER,),
            ),
            ccm,
        ]
