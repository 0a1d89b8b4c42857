"""Tests for src.analyzer.rules — declarative rule loading and validation."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from src.analyzer.rules import (
    DEFAULT_EVENT_PATTERNS,
    build_rule,
    compile_patterns,
    load_rules,
)

# ═══════════════════════════════════════════════════════════════════════════
#  build_rule
# ═══════════════════════════════════════════════════════════════════════════


class TestBuildRule:
    def test_full_rule(self):
        r = build_rule(
            {
                "provider": "Microsoft-Windows-Kernel-Boot",
                "event_id": "29",
                "contains_any": ["failure"],
                "regex": r"boot\s+loader",
                "category": "Boot",
                "severity": "HIGH",
                "message": "Boot loader reported a failure",
            }
        )
        assert r is not None
        assert r.event_id == 29
        assert r.severity == "high"
        assert r.contains_any == ("failure",)
        assert r.pattern is not None

    def test_defaults(self):
        r = build_rule({"provider": "Disk", "message": "m"})
        assert r is not None
        assert r.category == "General"
        assert r.severity == "medium"

    def test_missing_message_rejected(self):
        assert build_rule({"provider": "Disk"}) is None

    def test_not_a_mapping(self):
        assert build_rule(["provider", "Disk"]) is None

    def test_unknown_severity_coerced(self, caplog):
        with caplog.at_level(logging.WARNING):
            r = build_rule({"provider": "Disk", "message": "m", "severity": "urgent"})
        assert r is not None
        assert r.severity == "medium"
        assert "unknown severity" in caplog.text

    def test_bad_event_id_rejected(self):
        assert build_rule({"event_id": "seven", "message": "m"}) is None

    def test_no_filter_no_matcher_rejected(self):
        assert build_rule({"message": "m", "category": "General"}) is None

    def test_invalid_regex_only_matcher_drops_rule(self, caplog):
        with caplog.at_level(logging.WARNING):
            r = build_rule({"provider": "Disk", "regex": "([unclosed", "message": "m"})
        assert r is None
        assert "Invalid pattern" in caplog.text

    def test_invalid_regex_with_keywords_keeps_rule(self):
        r = build_rule({"regex": "([unclosed", "contains_any": ["reset"], "message": "m"})
        assert r is not None
        assert r.pattern is None
        assert r.matches("X", 1, "Device RESET")

    def test_contains_any_as_string(self):
        r = build_rule({"contains_any": "timeout", "message": "m"})
        assert r is not None
        assert r.contains_any == ("timeout",)


# ═══════════════════════════════════════════════════════════════════════════
#  load_rules
# ═══════════════════════════════════════════════════════════════════════════


class TestLoadRules:
    def test_yaml_file(self, rules_file):
        cfg = load_rules(rules_file)
        assert cfg.event_patterns == ["(?i)error", "(?i)timeout"]
        assert len(cfg.hint_rules) == 1
        assert cfg.hint_rules[0].message == "Boot loader reported a failure"

    def test_json_file(self, tmp_path):
        p = tmp_path / "rules.json"
        p.write_text(
            json.dumps({"hint_rules": [{"provider": "Disk", "event_id": 7, "message": "m"}]}),
            encoding="utf-8",
        )
        cfg = load_rules(p)
        assert cfg.event_patterns is None
        assert [r.event_id for r in cfg.hint_rules] == [7]

    def test_none_path(self):
        cfg = load_rules(None)
        assert cfg.hint_rules == []
        assert cfg.event_patterns is None

    def test_missing_file_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            cfg = load_rules(tmp_path / "nope.yaml")
        assert cfg.hint_rules == []
        assert "not loaded" in caplog.text

    def test_invalid_yaml_warns(self, tmp_path, caplog):
        p = tmp_path / "rules.yaml"
        p.write_text("hint_rules: [unclosed\n  - : :", encoding="utf-8")
        with caplog.at_level(logging.WARNING):
            cfg = load_rules(p)
        assert cfg.hint_rules == []
        assert "Failed to parse" in caplog.text

    def test_top_level_not_mapping(self, tmp_path):
        p = tmp_path / "rules.yaml"
        p.write_text("- a\n- b\n", encoding="utf-8")
        assert load_rules(p).hint_rules == []

    def test_shipped_rules_file(self):
        cfg = load_rules(Path(__file__).resolve().parent.parent / "config" / "rules.yaml")
        assert len(cfg.hint_rules) == 4
        boot = cfg.hint_rules[0]
        # filter-only rule: fires on provider + event id alone
        assert not boot.has_content_matcher
        assert boot.matches("Microsoft-Windows-Kernel-Boot", 29, "")
        cert = cfg.hint_rules[2]
        assert cert.matches("Schannel", 36882, "Certificate has expired")
        assert not cert.matches("Schannel", 36882, "handshake ok")

    def test_hint_rules_not_list(self, tmp_path):
        p = tmp_path / "rules.yaml"
        p.write_text("hint_rules: {provider: Disk}\n", encoding="utf-8")
        assert load_rules(p).hint_rules == []


# ═══════════════════════════════════════════════════════════════════════════
#  Patterns
# ═══════════════════════════════════════════════════════════════════════════


class TestPatterns:
    def test_invalid_pattern_skipped_only(self, caplog):
        with caplog.at_level(logging.WARNING):
            compiled = compile_patterns(["(?i)error", "([bad", "(?i)timeout"])
        assert [label for label, _ in compiled] == ["(?i)error", "(?i)timeout"]
        assert "([bad" in caplog.text

    @pytest.mark.parametrize("pattern", DEFAULT_EVENT_PATTERNS)
    def test_defaults_compile(self, pattern):
        assert len(compile_patterns([pattern])) == 1
