"""
Tests for CLI commands: apply, revert, status, catalog and global options.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from hwfix.core.data.ccm_presets import get_preset
from hwfix.core.errors import ProbeError
from hwfix.core.services.probe import Probe
from hwfix.main import cli

IPA_DIR = "usr/share/libcamera/ipa/simple"


@pytest.fixture
def config(tmp_path: Path, state_dir: Path) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(f"state_dir: {state_dir}\n")
    return path


@pytest.fixture
def invoke(config: Path, system_root: Path):
    """Run ``hwfix --config <config> --root <system_root> ARGS``."""
    def _invoke(*args: str):
        runner = CliRunner()
        return runner.invoke(
            cli,
            ["--config", str(config), "--root", str(system_root), *args],
            env={"HWFIX_STATE_DIR": None, "HWFIX_ROOT": None},
        )
    return _invoke


@pytest.fixture
def tuning(system_root: Path) -> Path:
    ipa = system_root / IPA_DIR
    ipa.mkdir(parents=True)
    path = ipa / "ov02c10.yaml"
    path.write_text("original\n")
    return path


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Galaxy Book hardware fixes" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "hwfix" in result.output

    def test_missing_config_file(self, tmp_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "none.yml"), "history"])
        assert result.exit_code == 1
        assert "ERROR: [config]" in result.output


# ── Apply / revert ──────────────────────────────────────────────────


class TestApplyCommand:
    def test_apply_preset(self, invoke, tuning, state_dir):
        result = invoke("apply", "ccm", "-o", "preset=5")

        assert result.exit_code == 0, result.output
        assert "write-preset-5: applied" in result.output
        assert "completed" in result.output
        assert tuning.read_text() == get_preset(5).render()
        assert (state_dir / "stamps" / "ccm.stamp").exists()

    def test_apply_json(self, invoke, tuning):
        result = invoke("apply", "ccm", "-o", "preset=2", "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["fix"] == "ccm"
        assert data["outcome"] == "success"
        assert data["results"][0]["outcome"] == "applied"

    def test_dry_run_changes_nothing(self, invoke, tuning, state_dir):
        result = invoke("apply", "ccm", "--dry-run")

        assert result.exit_code == 0
        assert "dry run" in result.output
        assert tuning.read_text() == "original\n"
        assert not state_dir.exists()

    def test_refused_without_ipa_dir(self, invoke):
        result = invoke("apply", "ccm")

        assert result.exit_code == 1
        assert "Required hardware not found" in result.output
        assert "Make sure libcamera is installed." in result.output

    def test_unknown_fix(self, invoke):
        result = invoke("apply", "toaster")

        assert result.exit_code == 1
        assert "Unknown fix: toaster" in result.output
        assert "hint: Available fixes:" in result.output

    def test_bad_option_pair(self, invoke, tuning):
        result = invoke("apply", "ccm", "-o", "preset")

        assert result.exit_code == 2
        assert "key=value" in result.output

    def test_invalid_option_value(self, invoke, tuning):
        result = invoke("apply", "ccm", "-o", "preset=99")

        assert result.exit_code == 1
        assert "Invalid options for ccm" in result.output
        assert tuning.read_text() == "original\n"


class TestRevertCommand:
    def test_apply_then_revert(self, invoke, tuning, state_dir):
        assert invoke("apply", "ccm", "-o", "preset=7").exit_code == 0

        result = invoke("revert", "ccm")

        assert result.exit_code == 0, result.output
        assert "write-preset-7: reverted" in result.output
        assert tuning.read_text() == "original\n"
        assert not (state_dir / "stamps" / "ccm.stamp").exists()

    def test_revert_without_stamp(self, invoke, tuning):
        result = invoke("revert", "ccm")

        assert result.exit_code == 1
        assert "ERROR: ccm is not installed" in result.output
        assert tuning.read_text() == "original\n"

    def test_uninstall_alias(self, invoke, tuning):
        invoke("apply", "ccm", "-o", "preset=4")
        result = invoke("uninstall", "ccm", "--json")

        assert result.exit_code == 0
        assert json.loads(result.output)["mode"] == "revert"


# ── Status / commit / recover / history ─────────────────────────────


class TestStatusCommand:
    def test_status_json_not_applied(self, invoke, tuning, state_dir):
        result = invoke("status", "ccm", "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["mode"] == "status"
        assert data["results"][0]["outcome"] == "not_applied"
        assert not state_dir.exists()

    def test_status_after_apply(self, invoke, tuning):
        invoke("apply", "ccm", "-o", "preset=5")

        result = invoke("status", "ccm")

        assert result.exit_code == 0
        assert "write-preset-5: Applied" in result.output
        assert "installed by hwfix on" in result.output


# ── Probe failures ──────────────────────────────────────────────────


class TestProbeFailure:
    @pytest.fixture(autouse=True)
    def denied(self, monkeypatch):
        def fail(*args, **kwargs):
            raise ProbeError("/sys/class/dmi: permission denied", hint="Run hwfix with sudo.")
        monkeypatch.setattr(Probe, "fingerprint", fail)

    @pytest.mark.parametrize("args", [
        ("status", "ccm"),
        ("revert", "ccm", "--force"),
        ("apply", "ccm", "-o", "preset=5"),
    ])
    def test_reported_without_traceback(self, invoke, tuning, args):
        result = invoke(*args)

        assert result.exit_code == 1
        assert "ERROR: [probe] /sys/class/dmi: permission denied" in result.output
        assert "hint: Run hwfix with sudo." in result.output
        assert "Traceback" not in result.output
        assert not isinstance(result.exception, ProbeError)


class TestCommitCommand:
    def test_commit_discards_backups(self, invoke, tuning, state_dir):
        invoke("apply", "ccm", "-o", "preset=3")

        result = invoke("commit", "ccm")

        assert result.exit_code == 0
        assert "ccm: 1 backup(s) discarded" in result.output
        assert not any((state_dir / "backups").rglob("*"))


class TestRecoverCommand:
    def test_nothing_to_recover(self, invoke):
        result = invoke("recover")
        assert result.exit_code == 0
        assert "Nothing to recover." in result.output

    def test_nothing_to_recover_json(self, invoke):
        result = invoke("recover", "--json")
        assert json.loads(result.output) == {}


class TestHistoryCommand:
    def test_empty(self, invoke):
        result = invoke("history")
        assert result.exit_code == 0
        assert "No runs recorded." in result.output

    def test_lists_runs(self, invoke, tuning):
        invoke("apply", "ccm", "-o", "preset=5")
        invoke("revert", "ccm")

        result = invoke("history", "--json")

        entries = json.loads(result.output)
        assert [e["mode"] for e in entries] == ["apply", "revert"]
        assert all(e["outcome"] == "success" for e in entries)

    def test_filter_by_fix(self, invoke, tuning):
        invoke("apply", "ccm", "-o", "preset=5")
        result = invoke("history", "--fix", "mic")
        assert "No runs recorded." in result.output


# ── Catalog ─────────────────────────────────────────────────────────


class TestFixesCommands:
    def test_list(self, invoke):
        result = invoke("fixes", "list")
        assert result.exit_code == 0
        assert "ccm" in result.output
        assert "webcam" in result.output

    def test_list_json_marks_installed(self, invoke, tuning):
        invoke("apply", "ccm", "-o", "preset=5")

        result = invoke("fixes", "list", "--json")

        installed = {f["name"]: f["installed"] for f in json.loads(result.output)}
        assert installed["ccm"] is True
        assert installed["mic"] is False

    def test_show(self, invoke):
        result = invoke("fixes", "show", "ccm", "-o", "preset=9")
        assert result.exit_code == 0
        assert "preset = 9" in result.output
        assert "write-preset-9" in result.output
        assert "[critical]" in result.output

    def test_show_json(self, invoke):
        result = invoke("fixes", "show", "ccm", "--json")
        data = json.loads(result.output)
        assert data["requirements"] == ["libcamera IPA data directory"]
        assert data["steps"][0]["critical"] is True

    def test_show_unknown(self, invoke):
        result = invoke("fixes", "show", "toaster")
        assert result.exit_code == 1
        assert "Unknown fix: toaster" in result.output


class TestCcmCommands:
    def test_presets(self, invoke):
        result = invoke("ccm", "presets")
        assert result.exit_code == 0
        assert "18." in result.output
        assert "(default)" in result.output

    def test_presets_json(self, invoke):
        data = json.loads(invoke("ccm", "presets", "--json").output)
        assert len(data) == 18
        assert data[0]["number"] == 1

    def test_ccm_apply(self, invoke, tuning):
        result = invoke("ccm", "apply", "6")

        assert result.exit_code == 0, result.output
        assert tuning.read_text() == get_preset(6).render()
