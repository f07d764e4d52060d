"""
CCM presets — color correction matrices for the libcamera simple IPA.

Presets are numbered from 1, in the order the tuning session cycles
through them:

    1-3    baselines (no CCM, identity, installed default)
    4-7    anti-green (suppress the green tint)
    8-10   anti-green with a warm shift
    11-13  symmetric saturation boosts
    14-16  green boost / anti-purple
    17-18  reference matrices

Rows sum to roughly 1.0 so neutral greys stay neutral.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from hwfix.core.errors import PermanentFailure

DEFAULT_SENSOR = "ov02c10"
SENSORS = ("ov02c10", "ov02e10")

# Installed by the webcam-book5 fix
DEFAULT_PRESET = 18

_HEADER = "# SPDX-License-Identifier: CC0-1.0\n%YAML 1.1\n---\nversion: 1\n"


class CcmPreset(BaseModel):
    """One tuning-file variant."""

    model_config = ConfigDict(frozen=True)

    number: int
    name: str
    description: str
    ct: int | None = None
    matrix: tuple[float, ...] | None = None

    def render(self, use_lut: bool = False) -> str:
        """Full tuning-file YAML for this preset.

        libcamera before 0.6 calls the tone algorithm ``Lut`` instead
        of ``Adjust``.
        """
        lines = [_HEADER + "algorithms:", "  - BlackLevel:", "  - Awb:"]
        if self.matrix is not None:
            m = [_fmt(v) for v in self.matrix]
            lines += [
                "  - Ccm:",
                "      ccms:",
                f"        - ct: {self.ct}",
                f"          ccm: [ {m[0]}, {m[1]}, {m[2]},",
                f"                 {m[3]}, {m[4]}, {m[5]},",
                f"                 {m[6]}, {m[7]}, {m[8]} ]",
            ]
        lines += ["  - Lut:" if use_lut else "  - Adjust:", "  - Agc:", "..."]
        return "\n".join(lines) + "\n"


def _fmt(value: float) -> str:
    return f"{value:g}" if value != int(value) else f"{value:.1f}"


def _p(number, name, description, ct=None, matrix=None) -> CcmPreset:
    return CcmPreset(
        number=number,
        name=name,
        description=description,
        ct=ct,
        matrix=tuple(matrix) if matrix is not None else None,
    )


_OV2740 = (2.25, -1.00, -0.25, -0.45, 1.35, -0.20, 0.00, -0.60, 1.60)

PRESETS: tuple[CcmPreset, ...] = (
    _p(1, "No CCM (raw baseline)",
       "No color correction. Raw debayer + AWB only, very desaturated."),
    _p(2, "Identity CCM",
       "Identity matrix. CCM pipeline active but no color change.",
       5000, (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)),
    _p(3, "Current installed",
       "The installed default (OV2740 community matrix).",
       6500, _OV2740),
    _p(4, "Anti-green light",
       "Reduces green 10%. Subtle green tint correction.",
       5000, (1.1, 0.0, -0.1, 0.05, 0.9, 0.05, -0.1, 0.0, 1.1)),
    _p(5, "Anti-green medium",
       "Reduces green 20%, boosts R+B. Moderate green tint fix.",
       5000, (1.2, 0.0, -0.2, 0.1, 0.8, 0.1, -0.2, 0.0, 1.2)),
    _p(6, "Anti-green strong",
       "Reduces green 30%, strong R+B boost. For heavy green cast.",
       5000, (1.3, 0.0, -0.3, 0.15, 0.7, 0.15, -0.3, 0.0, 1.3)),
    _p(7, "Anti-green + saturation",
       "Reduces green, adds overall saturation boost.",
       5000, (1.3, -0.1, -0.2, 0.0, 0.85, 0.15, -0.2, -0.1, 1.3)),
    _p(8, "Warm anti-green light",
       "Reduces green, shifts slightly warm. Counters cool green cast.",
       5000, (1.15, -0.05, -0.1, 0.05, 0.9, 0.05, -0.15, -0.05, 1.2)),
    _p(9, "Warm anti-green medium",
       "Stronger warm shift + green reduction. Good for fluorescent lighting.",
       5000, (1.25, -0.1, -0.15, 0.1, 0.8, 0.1, -0.2, -0.1, 1.3)),
    _p(10, "Warm anti-green strong",
       "Heavy warm shift + green suppression. For very green/cool scenes.",
       5000, (1.35, -0.15, -0.2, 0.15, 0.7, 0.15, -0.25, -0.15, 1.4)),
    _p(11, "Symmetric light boost",
       "Equal 10% saturation boost on all channels. Mild color pop.",
       5000, (1.1, -0.05, -0.05, -0.05, 1.1, -0.05, -0.05, -0.05, 1.1)),
    _p(12, "Symmetric medium boost",
       "Equal 20% saturation boost. Stronger color pop.",
       5000, (1.2, -0.1, -0.1, -0.1, 1.2, -0.1, -0.1, -0.1, 1.2)),
    _p(13, "Symmetric strong boost",
       "Equal 40% saturation boost. Very vivid colors.",
       5000, (1.4, -0.2, -0.2, -0.2, 1.4, -0.2, -0.2, -0.2, 1.4)),
    _p(14, "Green boost (anti-purple) light",
       "Boosts green, reduces R+B. For purple/magenta cast.",
       5000, (1.05, -0.025, -0.025, -0.1, 1.3, -0.2, -0.025, -0.025, 1.05)),
    _p(15, "Green boost (anti-purple) medium",
       "Boosts green strongly. For moderate purple cast.",
       5000, (1.0, 0.0, 0.0, -0.2, 1.4, -0.2, 0.0, 0.0, 1.0)),
    _p(16, "Green boost (anti-purple) strong",
       "Boosts green heavily. For strong purple bias.",
       5000, (0.95, 0.025, 0.025, -0.25, 1.5, -0.25, 0.025, 0.025, 0.95)),
    _p(17, "Arch Wiki OV02C10",
       "Original Arch Wiki matrix for OV02C10. Conservative, natural.",
       5000, (1.05, -0.02, -0.01, -0.03, 0.92, -0.03, -0.01, -0.02, 1.05)),
    _p(18, "OV2740 community (current default)",
       "Strong matrix from OV2740 tuning. The installed default.",
       6500, _OV2740),
)


def get_preset(number: int) -> CcmPreset:
    """Look up a preset by its 1-based number."""
    if not 1 <= number <= len(PRESETS):
        raise PermanentFailure(
            f"Unknown CCM preset {number}",
            hint=f"Choose a preset between 1 and {len(PRESETS)} (see 'hwfix ccm presets').",
        )
    return PRESETS[number - 1]
