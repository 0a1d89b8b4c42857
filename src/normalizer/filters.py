"""Post-parse filters: record selection and report sampling.

These run *after* raw records have been parsed into CanonicalEvents but
*before* the batch is handed to the analyzer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from src.contracts.event import CanonicalEvent

log = logging.getLogger(__name__)

# Provider whose crash records repeat verbatim; capped in samples
_DUP_LIMITED_PROVIDER = "Application Error"
_MAX_SAMPLE_DUPS = 3


@dataclass(slots=True)
class EventFilter:
    """Selection criteria applied to a normalised batch.

    Level window: by default Critical..Warning (1..3); ``include_info`` adds
    Information (4); ``no_level_filter`` accepts every level; ``min_level`` /
    ``max_level`` narrow further.
    """

    min_level: int | None = None
    max_level: int | None = None
    include_info: bool = False
    no_level_filter: bool = False
    providers: list[str] = field(default_factory=list)
    exclude_providers: list[str] = field(default_factory=list)
    include_event_ids: list[int] = field(default_factory=list)
    exclude_event_ids: list[int] = field(default_factory=list)
    since: datetime | None = None
    until: datetime | None = None

    def pass_level(self, level: int) -> bool:
        if self.min_level is not None and level < self.min_level:
            return False
        if self.max_level is not None and level > self.max_level:
            return False
        if self.no_level_filter:
            return True
        upper = 4 if self.include_info else 3
        return 1 <= level <= upper

    def pass_provider(self, provider: str) -> bool:
        p = provider.lower()
        if self.providers:
            return any(x.lower() == p for x in self.providers)
        if self.exclude_providers:
            return not any(x.lower() == p for x in self.exclude_providers)
        return True

    def pass_event_id(self, event_id: int) -> bool:
        if self.include_event_ids:
            return event_id in self.include_event_ids
        if self.exclude_event_ids:
            return event_id not in self.exclude_event_ids
        return True

    def pass_window(self, ts: datetime) -> bool:
        if self.since is not None and ts < self.since:
            return False
        if self.until is not None and ts > self.until:
            return False
        return True

    def accepts(self, event: CanonicalEvent) -> bool:
        return (
            self.pass_level(event.level)
            and self.pass_provider(event.provider)
            and self.pass_event_id(event.event_id)
            and self.pass_window(event.timestamp)
        )


def apply_filter(events: Iterable[CanonicalEvent], flt: EventFilter) -> list[CanonicalEvent]:
    """Return the events accepted by *flt*, order preserved."""
    batch = list(events)
    kept = [e for e in batch if flt.accepts(e)]
    if len(kept) != len(batch):
        log.info("Filter kept %d of %d events", len(kept), len(batch))
    return kept


def _event_cause(event: CanonicalEvent) -> str:
    c = event.content.strip()
    if c.startswith("<") or "<EventData>" in c:
        return f"{event.provider} {event.event_id}"
    return c


def select_samples(
    events: list[CanonicalEvent],
    sample_count: int,
    per_channel_limit: int | None = None,
    per_provider_limit: int | None = None,
) -> list[CanonicalEvent]:
    """Pick the newest *sample_count* events for display.

    Per-channel and per-provider caps are applied before truncation;
    ``Application Error`` records with the same cause and message are kept at
    most three times.
    """
    samples = sorted(events, key=lambda e: e.timestamp, reverse=True)

    if per_channel_limit is not None or per_provider_limit is not None:
        cl = per_channel_limit if per_channel_limit is not None else len(samples)
        pl = per_provider_limit if per_provider_limit is not None else len(samples)
        ch_cnt: dict[str, int] = {}
        pr_cnt: dict[str, int] = {}
        limited: list[CanonicalEvent] = []
        for e in samples:
            cc = ch_cnt.get(e.channel, 0)
            pc = pr_cnt.get(e.provider, 0)
            if cc < cl and pc < pl:
                ch_cnt[e.channel] = cc + 1
                pr_cnt[e.provider] = pc + 1
                limited.append(e)
        samples = limited

    samples = samples[:sample_count]

    seen: dict[tuple[str, str], int] = {}
    result: list[CanonicalEvent] = []
    removed = 0
    for e in samples:
        if e.provider == _DUP_LIMITED_PROVIDER:
            key = (_event_cause(e), e.content.replace("\n", " "))
            c = seen.get(key, 0)
            if c >= _MAX_SAMPLE_DUPS:
                removed += 1
                continue
            seen[key] = c + 1
        result.append(e)

    if removed:
        log.debug("Sample selection dropped %d repeated crash records", removed)
    return result
