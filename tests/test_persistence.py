"""
Tests for stamp files and the audit ledger.
"""

import json

from hwfix.core.models.report import RunMode, RunReport, RunState
from hwfix.core.models.stamp import Stamp
from hwfix.core.models.step import StepOutcome, StepResult
from hwfix.core.persistence.audit import AuditEntry, AuditWriter
from hwfix.core.persistence.stamps import StampStore

# ── Stamps ──────────────────────────────────────────────────────────


class TestStampStore:
    def test_write_read_roundtrip(self, tmp_path):
        store = StampStore(tmp_path / "stamps")
        store.write(Stamp(fix="ccm", run_id="r1", options={"preset": 5}, installed_at="2026-01-01T12:00:00+00:00"))

        stamp = store.read("ccm")

        assert stamp.options == {"preset": 5}
        assert stamp.installed_at == "2026-01-01T12:00:00+00:00"
        assert store.path_for("ccm").read_text().splitlines()[0] == (
            "installed by hwfix on 2026-01-01T12:00:00+00:00"
        )

    def test_missing(self, tmp_path):
        assert StampStore(tmp_path).read("webcam") is None

    def test_header_only_stamp_still_installed(self, tmp_path):
        store = StampStore(tmp_path)
        store.path_for("mic").write_text("installed by hwfix on 2025-06-01\n")

        stamp = store.read("mic")

        assert stamp is not None
        assert stamp.options == {}
        assert stamp.installed_at == "2025-06-01"

    def test_corrupt_body(self, tmp_path):
        store = StampStore(tmp_path)
        store.path_for("mic").write_text("installed by hwfix on x\n{not json\n")
        assert store.read("mic").fix == "mic"

    def test_list_and_remove(self, tmp_path):
        store = StampStore(tmp_path / "stamps")
        assert store.list_fixes() == []
        store.write(Stamp(fix="webcam"))
        store.write(Stamp(fix="mic"))

        assert store.list_fixes() == ["mic", "webcam"]
        assert store.remove("mic")
        assert not store.remove("mic")
        assert store.list_fixes() == ["webcam"]

    def test_no_temp_files_left(self, tmp_path):
        store = StampStore(tmp_path)
        store.write(Stamp(fix="ccm"))
        assert [p.name for p in tmp_path.iterdir()] == ["ccm.stamp"]


# ── Audit ───────────────────────────────────────────────────────────


def _report():
    report = RunReport(run_id="r1", fix="ccm", mode=RunMode.APPLY)
    report.results.append(StepResult(step_id="a", outcome=StepOutcome.APPLIED))
    report.results.append(StepResult(step_id="b", outcome=StepOutcome.FAILED, error="boom"))
    report.transition(RunState.EXECUTING)
    report.transition(RunState.COMPLETED_WITH_ERRORS)
    report.finish()
    return report


class TestAudit:
    def test_entry_from_report(self):
        entry = AuditEntry.from_report(_report(), options={"preset": 5})

        assert entry.mode == "apply"
        assert entry.outcome == "partial_failure"
        assert entry.state == "completed_with_errors"
        assert entry.steps_applied == 1
        assert entry.steps_failed == 1
        assert entry.errors == ["b: boom"]
        assert entry.context["options"] == {"preset": 5}
        assert entry.context["fingerprint"]["distro_family"] == "unknown"

    def test_append_only(self, tmp_path):
        writer = AuditWriter(tmp_path / "state" / "audit.ndjson")
        writer.write(AuditEntry(run_id="r1", fix="ccm", mode="apply"))
        writer.write(AuditEntry(run_id="r2", fix="mic", mode="revert"))

        lines = writer.path.read_text().splitlines()
        assert [json.loads(line)["run_id"] for line in lines] == ["r1", "r2"]
        assert writer.entry_count() == 2
        assert writer.run_ids() == {"r1", "r2"}

    def test_read_recent_filters(self, tmp_path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(AuditEntry(run_id=f"r{i}", fix="ccm" if i % 2 else "mic"))

        assert [e.run_id for e in writer.read_recent(2)] == ["r3", "r4"]
        assert [e.run_id for e in writer.read_recent(fix="ccm")] == ["r1", "r3"]

    def test_corrupt_lines_skipped(self, tmp_path):
        path = tmp_path / "audit.ndjson"
        path.write_text('{"run_id": "ok"}\nnot json\n\n')
        assert [e.run_id for e in AuditWriter(path).read_all()] == ["ok"]

    def test_missing_ledger(self, tmp_path):
        writer = AuditWriter(tmp_path / "none.ndjson")
        assert writer.read_all() == []
        assert writer.entry_count() == 0

    def test_unwritable_ledger_is_not_fatal(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        AuditWriter(blocker / "audit.ndjson").write(AuditEntry(run_id="r"))
