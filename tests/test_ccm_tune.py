"""
Tests for the interactive CCM tuning session.
"""

import pytest

from hwfix.adapters.mock import MockCommandRunner
from hwfix.core.data.ccm_presets import get_preset
from hwfix.core.errors import PreconditionNotMet, UserAbort
from hwfix.core.use_cases.ccm_tune import (
    QCAM,
    RELAY,
    CcmTuneSession,
    parse_command,
)

TUNING = "/usr/share/libcamera/ipa/simple/ov02c10.yaml"


class Script:
    """Feeds prompt answers in order; EOF once exhausted."""

    def __init__(self, *answers):
        self.answers = list(answers)

    def __call__(self, text):
        if not self.answers:
            raise EOFError
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


@pytest.fixture
def tuning(put):
    return put(TUNING, "original tuning\n")


def _session(settings, runner, *answers, echo=None):
    return CcmTuneSession(
        settings,
        runner,
        prompt=Script(*answers),
        echo=echo or (lambda _: None),
        sleep=lambda _: None,
    )


def _qcam_runner():
    runner = MockCommandRunner(available={"qcam"})
    runner.set_failure("systemctl --user is-active", returncode=3)
    return runner


# ── Command parsing ─────────────────────────────────────────────────


class TestParseCommand:
    @pytest.mark.parametrize("raw,expected", [
        ("", ("next", None)),
        ("n", ("next", None)),
        (" P ", ("prev", None)),
        ("s", ("save", None)),
        ("q", ("quit", None)),
        ("7", ("jump", 7)),
        ("18", ("jump", 18)),
        ("19", ("unknown", None)),
        ("0", ("unknown", None)),
        ("hello", ("unknown", None)),
    ])
    def test_parse(self, raw, expected):
        assert parse_command(raw) == expected


# ── Mode detection ──────────────────────────────────────────────────


class TestDetectMode:
    def test_no_ipa_dir(self, settings):
        with pytest.raises(PreconditionNotMet) as exc:
            _session(settings, MockCommandRunner()).detect_mode()
        assert exc.value.hint == "Make sure libcamera is installed."

    def test_relay_when_service_active(self, settings, tuning):
        assert _session(settings, MockCommandRunner()).detect_mode() == RELAY

    def test_qcam_fallback(self, settings, tuning):
        assert _session(settings, _qcam_runner()).detect_mode() == QCAM

    def test_no_preview_available(self, settings, tuning):
        runner = MockCommandRunner(available=set())
        runner.set_failure("systemctl --user is-active", returncode=3)
        with pytest.raises(PreconditionNotMet):
            _session(settings, runner).detect_mode()


# ── Session ─────────────────────────────────────────────────────────


class TestSession:
    def test_save_keeps_current_preset(self, settings, tuning):
        session = _session(settings, _qcam_runner(), "", "", "s")

        result = session.run()

        assert result.saved
        assert result.preset == 3
        assert result.mode == QCAM
        assert tuning.read_text() == get_preset(3).render()
        assert session.backups.outstanding() == []

    def test_quit_restores_original(self, settings, tuning):
        lines = []
        session = _session(settings, _qcam_runner(), "12", "q", echo=lines.append)

        result = session.run()

        assert not result.saved
        assert result.preset is None
        assert tuning.read_text() == "original tuning\n"
        assert "  Restored original tuning file." in lines

    def test_eof_is_quit(self, settings, tuning):
        result = _session(settings, _qcam_runner()).run()
        assert not result.saved
        assert tuning.read_text() == "original tuning\n"

    def test_interrupt_restores_and_stops_viewer(self, settings, tuning):
        runner = _qcam_runner()
        session = _session(settings, runner, "p", UserAbort(2))

        result = session.run()

        assert result.aborted
        assert tuning.read_text() == "original tuning\n"
        assert all(proc.terminated for proc in runner.spawned)
        assert not settings.backup_dir.exists() or not any(settings.backup_dir.rglob("*"))

    def test_prev_wraps_and_jump(self, settings, tuning):
        session = _session(settings, _qcam_runner(), "p", "5", "s")
        assert session.run().preset == 5

    def test_unknown_command_is_reported(self, settings, tuning):
        lines = []
        session = _session(settings, _qcam_runner(), "x", "s", echo=lines.append)
        assert session.run().preset == 1
        assert "  Unknown command: 'x'" in lines

    def test_relay_mode_restarts_relay(self, settings, tuning):
        runner = MockCommandRunner()
        session = _session(settings, runner, "s")

        result = session.run()

        assert result.mode == RELAY
        restarts = [c for c in runner.commands if c == "systemctl --user restart camera-relay.service"]
        assert len(restarts) == 2
        assert any(c.startswith("gst-launch-1.0") for c in runner.commands)

    def test_error_mid_session_restores(self, settings, tuning):
        session = _session(settings, _qcam_runner(), RuntimeError("broken terminal"))

        with pytest.raises(RuntimeError):
            session.run()

        assert tuning.read_text() == "original tuning\n"
