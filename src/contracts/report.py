"""Report aggregate — the read-only result of one analysis invocation."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.contracts.event import TS_FORMAT, CanonicalEvent
from src.contracts.hint import Hint


@dataclass(slots=True, frozen=True)
class TimelineBucket:
    key: str        # "YYYY-MM-DD" or "YYYY-MM-DD HH:00"
    errors: int
    warnings: int


@dataclass(slots=True, frozen=True)
class PerfDetail:
    """Boot / logon / resume duration statistics (milliseconds)."""

    name: str
    avg_ms: int
    max_ms: int
    count: int


@dataclass(slots=True)
class ReportSummary:
    """Everything a renderer needs; built once from events and hints."""

    window_start: datetime
    window_end: datetime
    total: int = 0
    errors: int = 0
    warnings: int = 0
    scanned_records: int = 0
    parsed_events: int = 0
    by_provider: list[tuple[str, int]] = field(default_factory=list)
    by_channel: list[tuple[str, int]] = field(default_factory=list)
    by_event_id: list[tuple[int, int]] = field(default_factory=list)
    by_device: list[tuple[str, int]] = field(default_factory=list)
    by_domain: list[tuple[str, int]] = field(default_factory=list)
    matched_terms: list[tuple[str, int]] = field(default_factory=list)
    samples: list[CanonicalEvent] = field(default_factory=list)
    hints: list[Hint] = field(default_factory=list)
    performance_score: int = 0
    degradation_signals: list[tuple[str, int]] = field(default_factory=list)
    perf_details: list[PerfDetail] = field(default_factory=list)
    risk_grade: str = "Low"
    root_causes: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    by_category: list[tuple[str, int]] = field(default_factory=list)
    timeline: list[TimelineBucket] = field(default_factory=list)
    include_raw_samples: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_start": self.window_start.strftime(TS_FORMAT),
            "window_end": self.window_end.strftime(TS_FORMAT),
            "total": self.total,
            "errors": self.errors,
            "warnings": self.warnings,
            "scanned_records": self.scanned_records,
            "parsed_events": self.parsed_events,
            "by_provider": [list(p) for p in self.by_provider],
            "by_channel": [list(p) for p in self.by_channel],
            "by_event_id": [list(p) for p in self.by_event_id],
            "by_device": [list(p) for p in self.by_device],
            "by_domain": [list(p) for p in self.by_domain],
            "matched_terms": [list(p) for p in self.matched_terms],
            "samples": [e.to_dict(include_raw=self.include_raw_samples) for e in self.samples],
            "hints": [h.to_dict() for h in self.hints],
            "performance_score": self.performance_score,
            "degradation_signals": [list(s) for s in self.degradation_signals],
            "perf_details": [
                {"name": p.name, "avg_ms": p.avg_ms, "max_ms": p.max_ms, "count": p.count}
                for p in self.perf_details
            ],
            "risk_grade": self.risk_grade,
            "root_causes": list(self.root_causes),
            "recommendations": list(self.recommendations),
            "by_category": [list(c) for c in self.by_category],
            "timeline": [
                {"key": b.key, "errors": b.errors, "warnings": b.warnings}
                for b in self.timeline
            ],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)
