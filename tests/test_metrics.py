"""Tests for src.analyzer.metrics — score, grade, causes, timeline, tables."""

from __future__ import annotations

import re
from datetime import timedelta

import pytest

from src.analyzer.metrics import (
    MAX_RECOMMENDATIONS,
    classify_domain,
    compute_by_category,
    compute_perf_details,
    compute_performance_metrics,
    compute_risk_grade,
    compute_root_causes,
    compute_timeline,
    count_by_device,
    count_by_domain,
    count_matched_terms,
    generate_recommendations,
    top_counts,
)
from tests.conftest import BASE_TS, make_event, make_hint, make_xml, ts_offset

# ═══════════════════════════════════════════════════════════════════════════
#  compute_performance_metrics
# ═══════════════════════════════════════════════════════════════════════════


class TestPerformanceScore:
    def test_empty(self):
        assert compute_performance_metrics([]) == (0, [])

    def test_weights_times_counts(self):
        events = [
            make_event(provider="Disk", event_id=7),
            make_event(provider="Storport", event_id=129),
            make_event(provider="Storport", event_id=153),
        ]
        score, signals = compute_performance_metrics(events)
        assert score == 30 + 15 * 2
        assert signals == [("Disk bad blocks", 30), ("Storport resets/retries", 15)]

    def test_capped_at_100(self):
        events = [make_event(provider="Microsoft-Windows-WHEA-Logger", event_id=18)] * 4
        score, signals = compute_performance_metrics(events)
        assert score == 100
        assert signals == [("Hardware machine checks", 35)]

    def test_monotone_non_decreasing(self):
        pool = [
            make_event(provider="Disk", event_id=11),
            make_event(provider="Microsoft-Windows-Ntfs", event_id=55),
            make_event(provider="Service Control Manager", event_id=7000),
            make_event(provider="nvlddmkm", event_id=14),
            make_event(provider="Microsoft-Windows-DNS-Client", event_id=1014),
            make_event(provider="Disk", event_id=7),
        ]
        prev = 0
        for n in range(len(pool) + 1):
            score, _ = compute_performance_metrics(pool[:n])
            assert prev <= score <= 100
            prev = score

    def test_dns_by_content(self):
        ev = make_event(provider="Tcpip", event_id=4227, content="DNS server not responding")
        _, signals = compute_performance_metrics([ev])
        assert signals == [("DNS failures", 5)]

    def test_percent_degraded_signal(self):
        ev = make_event(
            provider="Microsoft-Windows-DiskDiagnosticDataCollector",
            event_id=2,
            content='<Data Name="PercentPerformanceDegraded">27</Data>',
        )
        score, signals = compute_performance_metrics([ev])
        assert score == 27
        assert signals == [("Disk performance degraded", 27)]


# ═══════════════════════════════════════════════════════════════════════════
#  compute_risk_grade
# ═══════════════════════════════════════════════════════════════════════════


class TestRiskGrade:
    @pytest.mark.parametrize(
        "score, expected",
        [(0, "Low"), (39, "Low"), (40, "Medium"), (59, "Medium"), (60, "High"), (80, "Critical")],
    )
    def test_thresholds(self, score, expected):
        assert compute_risk_grade(score, []) == expected

    def test_storage_high_lifts_to_high(self):
        hints = [make_hint(category="Storage", severity="high")]
        assert compute_risk_grade(40, hints) == "High"
        assert compute_risk_grade(39, hints) == "Low"

    def test_storage_high_keeps_critical(self):
        hints = [make_hint(category="Storage", severity="high")]
        assert compute_risk_grade(85, hints) == "Critical"

    def test_storage_medium_does_not_lift(self):
        hints = [make_hint(category="Storage", severity="medium")]
        assert compute_risk_grade(45, hints) == "Medium"


# ═══════════════════════════════════════════════════════════════════════════
#  Root causes / recommendations
# ═══════════════════════════════════════════════════════════════════════════


class TestRootCauses:
    def test_default(self):
        assert compute_root_causes([]) == ["General system instability indicated by error patterns"]

    def test_order_and_cap(self):
        hints = [
            make_hint(category="Policy", severity="medium"),
            make_hint(category="Network", severity="medium"),
            make_hint(category="Cooling", severity="medium"),
            make_hint(category="Hardware", severity="high"),
            make_hint(category="Storage", severity="high"),
        ]
        causes = compute_root_causes(hints)
        assert causes == [
            "Storage subsystem instability or failing disk",
            "Underlying hardware fault (CPU/Memory/Bus)",
            "Thermal issues causing throttling and errors",
            "Network/DNS misconfiguration or intermittent connectivity",
            "Policy/permission misconfiguration impacting services",
        ]

    def test_medium_storage_is_not_a_cause(self):
        causes = compute_root_causes([make_hint(category="Storage", severity="medium")])
        assert causes == ["General system instability indicated by error patterns"]


class TestRecommendations:
    def test_storage_adds_two(self):
        recs = generate_recommendations([make_hint(category="Storage")])
        assert recs == [
            "Back up important data immediately",
            "Run disk SMART and surface tests; replace drive if SMART shows failures",
        ]

    def test_machine_check_message_triggers_hardware_line(self):
        recs = generate_recommendations(
            [make_hint(category="General", message="Possible Machine Check event")]
        )
        assert recs == ["Run memory diagnostics and CPU stress test; ensure adequate cooling"]

    def test_all_categories_capped(self):
        hints = [
            make_hint(category=c)
            for c in ("Storage", "Hardware", "Thermal", "Network", "Services", "Permissions", "GPU")
        ]
        recs = generate_recommendations(hints)
        assert len(recs) == MAX_RECOMMENDATIONS
        assert recs[-1] == "Update GPU drivers; monitor for TDRs; consider lowering overclock"

    def test_none(self):
        assert generate_recommendations([make_hint(category="Application")]) == []


# ═══════════════════════════════════════════════════════════════════════════
#  Timeline / category breakdown / perf details
# ═══════════════════════════════════════════════════════════════════════════


class TestTimeline:
    def test_hourly_buckets(self):
        events = [
            make_event(level=2, timestamp=ts_offset(seconds=0)),
            make_event(level=3, timestamp=ts_offset(seconds=600)),
            make_event(level=2, timestamp=ts_offset(seconds=3700)),
            make_event(level=1, timestamp=ts_offset(seconds=3800)),
        ]
        tl = compute_timeline(events, BASE_TS, BASE_TS + timedelta(hours=3))
        assert [(b.key, b.errors, b.warnings) for b in tl] == [
            ("2026-02-26 10:00", 1, 1),
            ("2026-02-26 11:00", 1, 0),
        ]

    def test_daily_buckets_for_two_day_window(self):
        events = [
            make_event(level=2, timestamp=BASE_TS + timedelta(days=1)),
            make_event(level=3, timestamp=BASE_TS),
        ]
        tl = compute_timeline(events, BASE_TS, BASE_TS + timedelta(days=2))
        assert [b.key for b in tl] == ["2026-02-26", "2026-02-27"]

    def test_sums_match_totals(self):
        events = [
            make_event(level=lvl, timestamp=ts_offset(seconds=i * 900))
            for i, lvl in enumerate([1, 2, 2, 3, 4, 3, 2, 0])
        ]
        tl = compute_timeline(events, BASE_TS, BASE_TS + timedelta(hours=2))
        assert sum(b.errors for b in tl) == sum(1 for e in events if e.level == 2)
        assert sum(b.warnings for b in tl) == sum(1 for e in events if e.level == 3)


class TestByCategory:
    def test_sum_with_floor_of_one(self):
        hints = [
            make_hint(category="Storage", count=3),
            make_hint(category="Storage", message="other", count=0),
            make_hint(category="Network", count=4),
            make_hint(category="GPU", count=4),
        ]
        assert compute_by_category(hints) == [("GPU", 4), ("Network", 4), ("Storage", 4)]


class TestPerfDetails:
    def _ev(self, event_id, **data):
        xml = make_xml(provider="Microsoft-Windows-Diagnostics-Performance", event_id=event_id, data=data)
        return make_event(
            provider="Microsoft-Windows-Diagnostics-Performance", event_id=event_id, raw_xml=xml
        )

    def test_boot_logon_resume(self):
        events = [
            self._ev(100, BootDuration="30000"),
            self._ev(100, BootTime="45001"),
            self._ev(100, BootDuration="0"),
            self._ev(200, LogonDuration="abc"),
            self._ev(400, ResumeTime="1500"),
        ]
        details = compute_perf_details(events)
        assert [(d.name, d.avg_ms, d.max_ms, d.count) for d in details] == [
            ("Boot", 37500, 45001, 2),
            ("Resume", 1500, 1500, 1),
        ]


# ═══════════════════════════════════════════════════════════════════════════
#  Ranked tables
# ═══════════════════════════════════════════════════════════════════════════


class TestRankedTables:
    def test_top_counts_ties_by_key(self):
        assert top_counts(["b", "a", "c", "a", "b"], 2) == [("a", 2), ("b", 2)]
        assert top_counts([11, 7, 7], 5) == [(7, 2), (11, 1)]

    def test_count_by_device_first_key_wins(self):
        events = [
            make_event(raw_xml=make_xml(data={"DeviceName": "disk0", "Device": "x"})),
            make_event(raw_xml=make_xml(data={"TargetDevice": "disk0"})),
            make_event(raw_xml=make_xml(data={"InstancePath": "USB\\VID_1"})),
            make_event(content="no payload"),
        ]
        assert count_by_device(events, 10) == [("disk0", 2), ("USB\\VID_1", 1)]

    def test_count_by_device_with_resolver(self):
        events = [
            make_event(raw_xml=make_xml(data={"DeviceName": "disk0"})),
            make_event(raw_xml=make_xml(data={"DeviceName": "disk1"})),
        ]
        names = {"disk0": "Samsung SSD 980"}
        assert count_by_device(events, 10, names.get) == [("Samsung SSD 980", 1), ("disk1", 1)]

    def test_count_by_domain(self):
        events = [
            make_event(provider="Disk", event_id=7),
            make_event(provider="Microsoft-Windows-Ntfs", event_id=55),
            make_event(provider="Display", event_id=4101),
        ]
        assert count_by_domain(events, 5) == [("Storage", 2), ("GPU", 1)]

    def test_matched_terms(self):
        events = [
            make_event(content="Disk error"),
            make_event(content="request timeout"),
            make_event(content="ERROR again"),
        ]
        patterns = [(p, re.compile(p)) for p in ("(?i)error", "(?i)timeout", "(?i)never")]
        assert count_matched_terms(events, patterns) == [("(?i)error", 2), ("(?i)timeout", 1)]


class TestClassifyDomain:
    @pytest.mark.parametrize(
        "provider, channel, event_id, content, expected",
        [
            ("DistributedCOM", "System", 10016, "Access denied to CLSID", "Permissions"),
            ("Microsoft-Windows-Time-Service", "System", 0, "Time service NTP sync failed", "Time Sync"),
            ("Schannel", "System", 36887, "TLS handshake failure certificate", "TLS/Certificates"),
            ("WindowsUpdateClient", "Setup", 0, "Update servicing failed", "Updates"),
            ("Disk", "System", 7, "", "Storage"),
            ("Acme", "System", 157, "", "Storage"),
            ("Display", "System", 4101, "", "GPU"),
            ("Tcpip", "System", 4227, "connection lost", "Network"),
            ("Service Control Manager", "System", 7000, "", "Services"),
            ("Microsoft-Windows-WHEA-Logger", "System", 17, "", "Hardware"),
            ("Microsoft-Windows-Kernel-Power", "System", 41, "", "CPU/Power"),
            ("Microsoft-Windows-Kernel-PnP", "System", 219, "", "USB/Devices"),
            ("Microsoft-Windows-Security-Auditing", "Security", 4625, "", "Security/Auth"),
            ("Microsoft-Windows-TaskScheduler", "Operational", 101, "", "Scheduler"),
            ("Acme", "Application", 1, "hello", "General"),
        ],
    )
    def test_classify(self, provider, channel, event_id, content, expected):
        assert classify_domain(provider, channel, event_id, content) == expected
