"""End-to-end integration tests: replay files → normalizer → hints → report."""

from __future__ import annotations

import csv
import json

import pytest

from src.analyzer.hints import COMPOSITE_SHADOW_NTFS
from src.analyzer.pipeline import analyze, run_pipeline
from src.contracts.hint import Hint
from src.normalizer.pipeline import NormalizerPipeline, RawRecord
from src.shared.settings import Settings
from tests.conftest import make_event, make_xml, ts_offset

VOLSNAP_MSG = "The shadow copies of volume C: were aborted because of an IO failure"


@pytest.fixture
def replay_dir(tmp_path, disk7_xml):
    """An XML export with a storage incident plus a JSONL file with one bad line."""
    d = tmp_path / "logs"
    d.mkdir()
    docs = [
        disk7_xml,
        make_xml(
            provider="Microsoft-Windows-Ntfs",
            event_id=55,
            system_time="2026-02-26T10:10:00Z",
            data={"DriveName": "C:"},
        ),
        make_xml(
            provider="volsnap",
            event_id=14,
            level=3,
            system_time="2026-02-26T10:20:00Z",
            data={"Msg": VOLSNAP_MSG},
        ),
        make_xml(
            provider="Microsoft-Windows-Kernel-Boot",
            event_id=29,
            system_time="2026-02-26T10:30:00Z",
        ),
        make_xml(provider="Acme", event_id=1, level=4, system_time="2026-02-26T10:40:00Z"),
    ]
    (d / "System.xml").write_text("<Events>\n" + "\n".join(docs) + "\n</Events>\n", encoding="utf-8")
    (d / "extra.jsonl").write_text("{not json\n", encoding="utf-8")
    return d


# ═══════════════════════════════════════════════════════════════════════════
#  run_pipeline
# ═══════════════════════════════════════════════════════════════════════════


class TestRunPipeline:
    @pytest.fixture
    def result(self, replay_dir, tmp_path, rules_file):
        out = tmp_path / "out"
        settings = Settings(rules_path=str(rules_file))
        res = run_pipeline(str(replay_dir / "*"), str(out), settings)
        return res, out

    def test_counts(self, result):
        res, _ = result
        assert res["stats"]["total_records"] == 6
        assert res["stats"]["total_quarantined"] == 1
        assert res["stats"]["filtered_out"] == 1
        assert len(res["events"]) == 4

    def test_report_json(self, result):
        _, out = result
        doc = json.loads((out / "report.json").read_text(encoding="utf-8"))
        assert doc["total"] == 4
        assert doc["errors"] == 3
        assert doc["warnings"] == 1
        assert doc["scanned_records"] == 6
        assert doc["parsed_events"] == 5
        assert doc["performance_score"] == 55
        assert doc["risk_grade"] == "High"
        assert sum(b["errors"] for b in doc["timeline"]) == 3
        assert sum(b["warnings"] for b in doc["timeline"]) == 1

    def test_hints(self, result):
        res, _ = result
        by_msg = {h.message: h for h in res["report"].hints}
        bad_block = by_msg["Bad block detected on disk"]
        assert bad_block.evidence == ["\\Device\\Harddisk0\\DR0"]
        assert bad_block.probability == 75 + 5
        assert "Shadow copies aborted - may indicate underlying disk issues" in by_msg
        assert COMPOSITE_SHADOW_NTFS in by_msg
        # declarative rule from the rules file
        assert by_msg["Boot loader reported a failure"].category == "System"

    def test_hints_csv(self, result):
        res, out = result
        lines = (out / "hints.csv").read_text(encoding="utf-8").splitlines()
        assert lines[0] == Hint.csv_header()
        assert len(lines) == 1 + len(res["report"].hints)

    def test_quarantine_csv(self, result):
        _, out = result
        with (out / "quarantine.csv").open(encoding="utf-8", newline="") as fh:
            rows = list(csv.DictReader(fh))
        assert len(rows) == 1
        assert rows[0]["reason"] == "parse_error"
        assert rows[0]["raw"] == "{not json"

    def test_no_decode_keeps_payload(self, replay_dir, tmp_path):
        settings = Settings(rules_path=None, decode=False)
        res = run_pipeline(str(replay_dir / "System.xml"), str(tmp_path / "o"), settings)
        assert not any(e.decoded for e in res["events"])
        assert not (tmp_path / "o" / "quarantine.csv").exists()
        messages = {h.message for h in res["report"].hints}
        assert "Bad block detected on disk" in messages

    def test_retain_raw_only_shapes_output(self, replay_dir, tmp_path):
        out = tmp_path / "o"
        res = run_pipeline(str(replay_dir / "System.xml"), str(out), Settings(rules_path=None, retain_raw=False))
        by_msg = {h.message: h for h in res["report"].hints}
        assert by_msg["Bad block detected on disk"].evidence == ["\\Device\\Harddisk0\\DR0"]
        assert "Shadow copies aborted - may indicate underlying disk issues" in by_msg
        doc = json.loads((out / "report.json").read_text(encoding="utf-8"))
        assert doc["samples"]
        assert all("xml" not in s for s in doc["samples"])

    def test_samples_carry_raw_by_default(self, result):
        _, out = result
        doc = json.loads((out / "report.json").read_text(encoding="utf-8"))
        assert all(s["xml"].startswith("<Event") for s in doc["samples"])

    def test_no_input(self, tmp_path):
        res = run_pipeline(str(tmp_path / "missing" / "*.xml"), str(tmp_path / "o"), Settings(rules_path=None))
        assert res["events"] == []
        assert res["report"].total == 0
        assert (tmp_path / "o" / "report.json").exists()


# ═══════════════════════════════════════════════════════════════════════════
#  analyze (pure core)
# ═══════════════════════════════════════════════════════════════════════════


class TestAnalyze:
    def test_empty_batch(self):
        report = analyze([])
        assert report.total == 0
        assert report.hints == []
        assert report.performance_score == 0
        assert report.risk_grade == "Low"
        assert report.root_causes == ["General system instability indicated by error patterns"]

    def test_window_defaults_to_event_span(self):
        events = [make_event(timestamp=ts_offset(seconds=s)) for s in (600, 0, 1200)]
        report = analyze(events)
        assert report.window_start == ts_offset(seconds=0)
        assert report.window_end == ts_offset(seconds=1200)

    def test_explicit_record_counts(self):
        report = analyze([make_event()], scanned_records=10, parsed_events=8)
        assert (report.scanned_records, report.parsed_events) == (10, 8)

    def test_patterns_override(self):
        events = [make_event(content="link down"), make_event(content="LINK up")]
        report = analyze(events, patterns=["(?i)link", "(?i)down"])
        assert report.matched_terms == [("(?i)link", 2), ("(?i)down", 1)]

    def test_resolver_and_samples(self, disk7_xml):
        ev = NormalizerPipeline().normalize(RawRecord(payload=disk7_xml))
        names = {"\\Device\\Harddisk0\\DR0": "Samsung SSD 980"}
        report = analyze([ev] * 3, sample_count=2, resolve_device=names.get)
        assert report.by_device == [("Samsung SSD 980", 3)]
        assert len(report.samples) == 2
        assert report.by_provider == [("Disk", 3)]
        assert report.by_event_id == [(7, 3)]

    def test_to_json_round_trip_keys(self):
        doc = json.loads(analyze([make_event()]).to_json())
        assert "Bad block detected on disk" in {h["message"] for h in doc["hints"]}
        assert doc["samples"][0]["provider"] == "Disk"
