"""Конвеєр нормалізації: сирі записи -> парсинг -> декодування -> фільтрація.

Raw records arrive as rendered event XML (plus a channel hint) from whatever
acquired them, or as already-normalised dicts from a replayed snapshot. Records
that cannot be parsed are quarantined with a reason; the batch always goes on.
"""

from __future__ import annotations

import dataclasses
import glob
import json
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.contracts.event import CanonicalEvent
from src.normalizer.decoder import decode_event
from src.normalizer.filters import EventFilter, apply_filter
from src.normalizer.parser import parse_event_xml, parse_system_time

log = logging.getLogger(__name__)

_EVENT_DOC_RE = re.compile(r"<Event[\s>].*?</Event>", re.DOTALL)


@dataclass(slots=True)
class RawRecord:
    """One record as handed over by an acquisition collaborator."""

    payload: str
    channel: str = ""
    origin: str = ""


@dataclass
class NormalizationResult:
    events: list[CanonicalEvent] = field(default_factory=list)
    quarantine: list[dict[str, Any]] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def scanned_records(self) -> int:
        return self.stats.get("total_records", 0)

    @property
    def parsed_events(self) -> int:
        return self.stats.get("total_parsed", 0)


def event_from_dict(row: dict[str, Any]) -> CanonicalEvent | None:
    """Build an event from a replayed snapshot row. None if unusable."""
    ts = parse_system_time(str(row.get("time") or row.get("timestamp") or ""))
    if ts is None:
        return None
    try:
        level = int(row.get("level", 0) or 0)
        event_id = int(row.get("event_id", 0) or 0)
    except (TypeError, ValueError):
        return None
    return CanonicalEvent(
        timestamp=ts,
        level=level,
        channel=str(row.get("channel", "")),
        provider=str(row.get("provider", "")),
        event_id=event_id,
        content=str(row.get("content", "")),
        raw_xml=row.get("xml") or None,
    )


class NormalizerPipeline:
    """Оркестратор нормалізації."""

    def __init__(
        self,
        decode: bool = True,
        event_filter: EventFilter | None = None,
    ) -> None:
        self.decode = decode
        self.event_filter = event_filter

    # ── Single record ────────────────────────────────────────────────────

    def normalize(self, record: RawRecord) -> CanonicalEvent | None:
        """Parse one raw record and apply decoder enrichment.

        The raw payload always stays on the event; a decoded message replaces
        only the display content.
        """
        event = parse_event_xml(record.payload, record.channel)
        if event is None:
            return None
        event = dataclasses.replace(event, raw_xml=record.payload)
        if self.decode:
            msg = decode_event(event.provider, event.event_id, record.payload)
            if msg is not None:
                return event.with_content(msg)
        return event

    # ── Batch ────────────────────────────────────────────────────────────

    def run_records(self, records: Iterable[RawRecord | CanonicalEvent]) -> NormalizationResult:
        """Normalise a finite batch. Unparseable records are quarantined."""
        result = NormalizationResult(
            stats={
                "total_records": 0,
                "total_parsed": 0,
                "total_quarantined": 0,
                "by_source": {},
            }
        )
        stats = result.stats

        for idx, rec in enumerate(records, 1):
            stats["total_records"] += 1
            origin = rec.origin if isinstance(rec, RawRecord) else "snapshot"
            src_stats = stats["by_source"].setdefault(
                origin or "<memory>", {"records": 0, "parsed": 0, "quarantined": 0}
            )
            src_stats["records"] += 1

            event = rec if isinstance(rec, CanonicalEvent) else self.normalize(rec)
            if event is None:
                stats["total_quarantined"] += 1
                src_stats["quarantined"] += 1
                result.quarantine.append(
                    {
                        "origin": origin,
                        "record_no": idx,
                        "raw": rec.payload[:512],
                        "reason": "parse_error",
                    }
                )
                log.debug("Record %d from %s dropped: parse_error", idx, origin or "<memory>")
                continue
            stats["total_parsed"] += 1
            src_stats["parsed"] += 1
            result.events.append(event)

        result.events.sort(key=lambda e: e.timestamp)

        if self.event_filter is not None:
            before = len(result.events)
            result.events = apply_filter(result.events, self.event_filter)
            stats["filtered_out"] = before - len(result.events)

        log.info(
            "Normalised %d of %d records (%d quarantined)",
            stats["total_parsed"],
            stats["total_records"],
            stats["total_quarantined"],
        )
        return result

    def run(self, input_glob: str) -> NormalizationResult:
        """Normalise every replay file matching *input_glob*."""
        files = sorted(glob.glob(input_glob))
        if not files:
            log.warning("No files match pattern: %s", input_glob)
            return self.run_records([])
        return self.run_records(r for fpath in files for r in self._read_file(fpath))

    # ── Replay loaders ───────────────────────────────────────────────────

    def _read_file(self, fpath: str) -> Iterator[RawRecord | CanonicalEvent]:
        p = Path(fpath)
        log.info("Reading %s", fpath)
        if p.suffix.lower() in (".jsonl", ".ndjson"):
            yield from self._read_jsonl(p)
        else:
            yield from self._read_xml(p)

    @staticmethod
    def _read_xml(p: Path) -> Iterator[RawRecord]:
        """An ``.xml`` export holding one or more ``<Event>`` documents."""
        text = p.read_text(encoding="utf-8", errors="replace")
        docs = _EVENT_DOC_RE.findall(text)
        if not docs and text.strip():
            docs = [text]
        for doc in docs:
            yield RawRecord(payload=doc, channel=p.stem, origin=str(p))

    @staticmethod
    def _read_jsonl(p: Path) -> Iterator[RawRecord | CanonicalEvent]:
        """JSONL lines: ``{"xml", "channel"}`` records or snapshot event rows."""
        with p.open(encoding="utf-8", errors="replace") as fh:
            for line_no, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError as exc:
                    log.warning("Skipping JSONL line %d of %s: %s", line_no, p.name, exc)
                    yield RawRecord(payload=line, origin=str(p))
                    continue
                if not isinstance(obj, dict):
                    yield RawRecord(payload=line, origin=str(p))
                    continue
                if "xml" in obj and "provider" not in obj:
                    yield RawRecord(
                        payload=str(obj["xml"]),
                        channel=str(obj.get("channel", "")),
                        origin=str(p),
                    )
                    continue
                event = event_from_dict(obj)
                if event is None:
                    yield RawRecord(payload=line, origin=str(p))
                else:
                    yield event
