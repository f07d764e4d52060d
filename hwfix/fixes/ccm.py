"""
ccm — install a color correction preset into the libcamera tuning file.

The simple IPA reads ``<ipa_dir>/<sensor>.yaml``. Older libcamera
(< 0.6) names the tone-curve algorithm ``Lut``; the rendered file
follows the installed version.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from hwfix.core.config.loader import Settings
from hwfix.core.data.ccm_presets import DEFAULT_PRESET, DEFAULT_SENSOR, PRESETS, get_preset
from hwfix.core.models.step import Step
from hwfix.core.services.probe import Probe
from hwfix.fixes.base import Fix, Requirement
from hwfix.fixes.steps import WriteFileStep

logger = logging.getLogger(__name__)


def uses_lut(probe: Probe) -> bool:
    """Whether the installed libcamera predates the Lut -> Adjust rename."""
    version = probe.libcamera_version()
    return version is not None and version < (0, 6)


def tuning_file(probe: Probe, sensor: str) -> str | None:
    ipa_dir = probe.libcamera_ipa_dir()
    return f"{ipa_dir}/{sensor}.yaml" if ipa_dir else None


class CcmPresetStep(WriteFileStep):
    """Write one preset as the sensor's tuning file."""

    def __init__(self, preset: int, sensor: str = DEFAULT_SENSOR, id: str | None = None, **kwargs):
        self.preset = get_preset(preset)
        self.sensor = sensor
        super().__init__(
            id or f"write-preset-{preset}",
            lambda ctx: tuning_file(ctx.probe, self.sensor),
            lambda ctx: self.preset.render(use_lut=uses_lut(ctx.probe)),
            description=f"Write CCM preset {preset} ({self.preset.name}) for {sensor}",
            **kwargs,
        )


class CcmOptions(BaseModel):
    preset: int = Field(default=DEFAULT_PRESET, ge=1, le=len(PRESETS))
    sensor: str = DEFAULT_SENSOR


class CcmFix(Fix):
    name = "ccm"
    title = "Camera color correction preset"
    description = "Install a CCM preset into the libcamera simple IPA tuning file."
    options_model = CcmOptions

    def requirements(self) -> list[Requirement]:
        return [
            Requirement(
                "libcamera IPA data directory",
                lambda probe: probe.libcamera_ipa_dir() is not None,
                hint="Make sure libcamera is installed.",
            ),
        ]

    def option_defaults(self, settings: Settings) -> dict[str, Any]:
        return {"sensor": settings.ccm_sensor}

    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        return [
            CcmPresetStep(
                options.get("preset", DEFAULT_PRESET),
                options.get("sensor", DEFAULT_SENSOR),
                critical=True,
            ),
        ]
