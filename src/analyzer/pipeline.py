"""Pipeline — orchestrator: load records -> normalise -> correlate -> score -> report.

``analyze`` is the pure core: a finite list of CanonicalEvents in, one
ReportSummary out, no I/O. ``run_pipeline`` wraps it with the replay loader,
the rules file and the report writers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.analyzer.device_map import BdfKey, parse_bdf_overrides
from src.analyzer.hints import generate_hints
from src.analyzer.metrics import (
    DeviceResolver,
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
from src.analyzer.reporter import write_hints_csv, write_quarantine_csv, write_report_json
from src.analyzer.rules import DEFAULT_EVENT_PATTERNS, compile_patterns, load_rules
from src.contracts.event import CanonicalEvent
from src.contracts.report import ReportSummary
from src.contracts.rule import DeclarativeRule
from src.normalizer.filters import select_samples
from src.normalizer.pipeline import NormalizerPipeline
from src.shared.settings import Settings

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Pure core
# ═══════════════════════════════════════════════════════════════════════════


def _window(
    events: Sequence[CanonicalEvent],
    since: datetime | None,
    until: datetime | None,
) -> tuple[datetime, datetime]:
    if events:
        first, last = events[0].timestamp, events[0].timestamp
        for e in events:
            first = min(first, e.timestamp)
            last = max(last, e.timestamp)
    else:
        first = last = datetime.now(UTC)
    return since or first, until or last


def analyze(
    events: Sequence[CanonicalEvent],
    *,
    rules: Iterable[DeclarativeRule] = (),
    patterns: list[str] | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    top: int = 20,
    sample_count: int = 20,
    per_channel_sample_limit: int | None = None,
    per_provider_sample_limit: int | None = None,
    bdf_overrides: Mapping[BdfKey, str] | None = None,
    resolve_device: DeviceResolver | None = None,
    scanned_records: int | None = None,
    parsed_events: int | None = None,
    include_raw_samples: bool = False,
) -> ReportSummary:
    """Build the full report for one finite batch of events.

    *patterns* defaults to :data:`DEFAULT_EVENT_PATTERNS`. When *since* /
    *until* are omitted the window is the span of the events themselves.
    *include_raw_samples* only affects the JSON form of the samples; the
    engine always reads the raw payload when an event carries one.
    """
    events = list(events)
    start, end = _window(events, since, until)

    hints = generate_hints(events, rules, bdf_overrides=bdf_overrides)
    score, signals = compute_performance_metrics(events)

    report = ReportSummary(
        window_start=start,
        window_end=end,
        total=len(events),
        errors=sum(1 for e in events if e.level == 2),
        warnings=sum(1 for e in events if e.level == 3),
        scanned_records=scanned_records if scanned_records is not None else len(events),
        parsed_events=parsed_events if parsed_events is not None else len(events),
        by_provider=top_counts((e.provider for e in events), top),
        by_channel=top_counts((e.channel for e in events), top),
        by_event_id=top_counts((e.event_id for e in events), top),
        by_device=count_by_device(events, top, resolve_device),
        by_domain=count_by_domain(events, top),
        matched_terms=count_matched_terms(
            events,
            compile_patterns(patterns if patterns is not None else DEFAULT_EVENT_PATTERNS),
        ),
        samples=select_samples(
            events, sample_count, per_channel_sample_limit, per_provider_sample_limit
        ),
        hints=hints,
        performance_score=score,
        degradation_signals=signals,
        perf_details=compute_perf_details(events),
        risk_grade=compute_risk_grade(score, hints),
        root_causes=compute_root_causes(hints),
        recommendations=generate_recommendations(hints),
        by_category=compute_by_category(hints),
        timeline=compute_timeline(events, start, end),
        include_raw_samples=include_raw_samples,
    )
    log.info(
        "Analysed %d events: score=%d grade=%s hints=%d",
        report.total,
        report.performance_score,
        report.risk_grade,
        len(hints),
    )
    return report


# ═══════════════════════════════════════════════════════════════════════════
#  File-based run
# ═══════════════════════════════════════════════════════════════════════════


def run_pipeline(
    input_path: str,
    out_dir: str = "out",
    settings: Settings | None = None,
    *,
    resolve_device: DeviceResolver | None = None,
) -> dict[str, Any]:
    """Execute the full analysis pipeline and write outputs.

    Returns
    -------
    dict with keys: events, quarantine, stats, report.
    """
    settings = settings or Settings()

    normalizer = NormalizerPipeline(
        decode=settings.decode,
        event_filter=settings.event_filter(),
    )
    norm = normalizer.run(input_path)
    if not norm.events:
        log.warning("No events left after normalisation of %s; report will be empty.", input_path)

    rules_cfg = load_rules(settings.rules_path)
    if settings.patterns is not None:
        patterns = settings.patterns
    elif rules_cfg.event_patterns is not None:
        patterns = rules_cfg.event_patterns
    else:
        patterns = None

    report = analyze(
        norm.events,
        rules=rules_cfg.hint_rules,
        patterns=patterns,
        since=settings.since_dt,
        until=settings.until_dt,
        top=settings.top,
        sample_count=settings.sample_count,
        per_channel_sample_limit=settings.per_channel_sample_limit,
        per_provider_sample_limit=settings.per_provider_sample_limit,
        bdf_overrides=parse_bdf_overrides(settings.bdf_overrides),
        resolve_device=resolve_device,
        scanned_records=norm.scanned_records,
        parsed_events=norm.parsed_events,
        include_raw_samples=settings.retain_raw,
    )

    # ── write outputs ────────────────────────────────────────────────────
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    write_report_json(report, str(out / "report.json"))
    write_hints_csv(report.hints, str(out / "hints.csv"))
    if norm.quarantine:
        write_quarantine_csv(norm.quarantine, str(out / "quarantine.csv"))

    log.info("Pipeline complete. Outputs in %s/", out_dir)
    return {
        "events": norm.events,
        "quarantine": norm.quarantine,
        "stats": norm.stats,
        "report": report,
    }
