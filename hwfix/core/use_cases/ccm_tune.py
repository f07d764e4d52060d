"""
CCM tuning — cycle through the presets with a live camera preview.

Preview modes:
    relay   the user's camera-relay.service is running; each preset
            restarts it and a GStreamer window shows its output
    qcam    no relay; qcam opens libcamera directly

The tuning file is snapshotted before the first write. ``save`` keeps
the current preset and discards the snapshot; quitting, EOF, an
interrupt or an error restores the original file.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from hwfix.adapters.base import Executor
from hwfix.core.config.loader import Settings
from hwfix.core.data.ccm_presets import PRESETS, get_preset
from hwfix.core.engine.signals import ChildProcessSlot, signal_guard, signals_ignored
from hwfix.core.errors import PreconditionNotMet, UserAbort
from hwfix.core.models.service import ServiceHandle, ServiceScope
from hwfix.core.services.backup_store import BackupStore
from hwfix.core.services.probe import Probe
from hwfix.core.services.service_control import ServiceController
from hwfix.core.use_cases.orchestrate import generate_run_id
from hwfix.fixes.ccm import tuning_file, uses_lut
from hwfix.fixes.steps import write_text_atomic

logger = logging.getLogger(__name__)

RELAY = "relay"
QCAM = "qcam"

CAMERA_RELAY = ServiceHandle(name="camera-relay", scope=ServiceScope.USER)
VIEWER_COMMAND = ["gst-launch-1.0", "-q", "pipewiresrc", "!", "videoconvert", "!", "autovideosink"]
QCAM_COMMAND = ["qcam"]

BACKUP_NAME = "ccm-tune"

PROMPT = "[Enter/n] next  [p] previous  [1-18] jump  [s] save  [q] quit"


@dataclass
class TuneResult:
    """How a tuning session ended."""

    mode: str
    tuning_file: str
    preset: int | None = None      # preset kept on disk, if saved
    saved: bool = False
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "tuning_file": self.tuning_file,
            "preset": self.preset,
            "saved": self.saved,
            "aborted": self.aborted,
        }


def parse_command(raw: str) -> tuple[str, int | None]:
    """Map one line of input to ``(command, preset)``.

    Commands: next, prev, save, quit, jump, unknown.
    """
    text = raw.strip().lower()
    if text in ("", "n"):
        return "next", None
    if text == "p":
        return "prev", None
    if text == "s":
        return "save", None
    if text == "q":
        return "quit", None
    if text.isdigit() and 1 <= int(text) <= len(PRESETS):
        return "jump", int(text)
    return "unknown", None


class CcmTuneSession:
    """One interactive tuning session."""

    def __init__(
        self,
        settings: Settings,
        runner: Executor,
        sensor: str | None = None,
        prompt: Callable[[str], str] = input,
        echo: Callable[[str], None] = print,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.sensor = sensor or settings.ccm_sensor
        self.runner = runner
        self.probe = Probe(runner, settings.root)
        self.services = ServiceController(
            runner,
            poll_interval=settings.poll_interval,
            default_timeout=settings.service_wait_timeout,
            sleep=sleep,
        )
        self.backups = BackupStore(settings.backup_dir, BACKUP_NAME, generate_run_id())
        self.viewer = ChildProcessSlot(runner)
        self._prompt = prompt
        self._echo = echo
        self._sleep = sleep
        self.mode = ""

    def detect_mode(self) -> str:
        """Pick the preview mode.

        Raises:
            PreconditionNotMet: No IPA directory, or no way to preview.
        """
        if self.probe.libcamera_ipa_dir() is None:
            raise PreconditionNotMet(
                "Could not find libcamera IPA data directory",
                hint="Make sure libcamera is installed.",
            )
        if self.probe.is_service_active(CAMERA_RELAY.name, CAMERA_RELAY.scope):
            return RELAY
        if self.runner.which("qcam"):
            return QCAM
        raise PreconditionNotMet(
            "No camera-relay service running and qcam not found",
            hint="Start the relay (systemctl --user start camera-relay.service) "
                 "or install qcam (libcamera-tools).",
        )

    def target(self) -> Path:
        system_path = tuning_file(self.probe, self.sensor)
        if system_path is None:
            raise PreconditionNotMet("Could not find libcamera IPA data directory")
        return self.probe.path(system_path)

    def apply_preset(self, number: int) -> None:
        """Write preset ``number`` and refresh the preview."""
        preset = get_preset(number)
        write_text_atomic(self.target(), preset.render(use_lut=uses_lut(self.probe)))
        logger.info("Wrote CCM preset %d (%s)", number, preset.name)

        if self.mode == RELAY:
            self.viewer.stop()
            self.services.restart(CAMERA_RELAY)
            self._sleep(2)
            self.viewer.ensure(VIEWER_COMMAND)
        else:
            self.viewer.start(QCAM_COMMAND)
            self._sleep(3)

    def _show(self, number: int) -> None:
        preset = get_preset(number)
        self._echo(f"\n  [{number}/{len(PRESETS)}] {preset.name}")
        self._echo(f"      {preset.description}")

    def _loop(self) -> int | None:
        """Interactive loop. Returns the saved preset, or None."""
        current = 1
        self.apply_preset(current)
        while True:
            self._show(current)
            try:
                raw = self._prompt(PROMPT)
            except EOFError:
                raw = "q"
            command, number = parse_command(raw)

            if command == "save":
                return current
            if command == "quit":
                return None
            if command == "unknown":
                self._echo(f"  Unknown command: {raw.strip()!r}")
                continue

            if command == "next":
                current = current % len(PRESETS) + 1
            elif command == "prev":
                current = (current - 2) % len(PRESETS) + 1
            elif number is not None:
                current = number
            self.apply_preset(current)

    def run(self) -> TuneResult:
        self.mode = self.detect_mode()
        target = self.target()
        result = TuneResult(mode=self.mode, tuning_file=str(target))

        self.backups.snapshot(target)
        try:
            with signal_guard():
                result.preset = self._loop()
                result.saved = result.preset is not None
        except UserAbort:
            logger.warning("Tuning interrupted; restoring the original tuning file")
            result.aborted = True
        finally:
            with signals_ignored():
                self._finish(target, result.saved)
        return result

    def _finish(self, target: Path, saved: bool) -> None:
        self.viewer.stop()
        backup = self.backups.find(target)
        if backup is not None:
            if saved:
                self.backups.discard(backup)
            else:
                self.backups.restore(backup)
                self._echo("  Restored original tuning file.")
        if self.mode == RELAY:
            self.services.restart(CAMERA_RELAY)
