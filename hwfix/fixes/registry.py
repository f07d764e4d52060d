"""
Fix registry — the catalog of known fixes by name.
"""

from __future__ import annotations

from hwfix.core.errors import ConfigError
from hwfix.fixes.base import Fix
from hwfix.fixes.ccm import CcmFix
from hwfix.fixes.mic import MicFix
from hwfix.fixes.ov02c10 import Ov02c10Fix
from hwfix.fixes.speaker import SpeakerFix
from hwfix.fixes.webcam import WebcamFix
from hwfix.fixes.webcam_book5 import WebcamBook5Fix

FIXES: dict[str, Fix] = {
    fix.name: fix
    for fix in (
        WebcamFix(),
        WebcamBook5Fix(),
        MicFix(),
        SpeakerFix(),
        Ov02c10Fix(),
        CcmFix(),
    )
}


def get_fix(name: str, fixes: dict[str, Fix] | None = None) -> Fix:
    """Look up a fix by name.

    Raises:
        ConfigError: Unknown fix name.
    """
    catalog = FIXES if fixes is None else fixes
    try:
        return catalog[name]
    except KeyError:
        raise ConfigError(
            f"Unknown fix: {name}",
            hint=f"Available fixes: {', '.join(sorted(catalog))}",
        ) from None
