"""Record parser: rendered event XML → CanonicalEvent.

Two tiers:
  - a strict forward walk over the markup (``XMLPullParser``) that binds the
    System fields and the EventData name/value pairs
  - a tolerant literal scan used when the strict walk fails or yields nothing

Nothing in this module raises for malformed input; failures are reported as
``None`` (or an empty map for payload extraction).
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from datetime import UTC, datetime

from src.contracts.event import CanonicalEvent

log = logging.getLogger(__name__)

# ── Fallback payload scan ────────────────────────────────────────────────────
_DATA_PAIR_RE = re.compile(r'<Data\s[^>]*?Name="([^"]*)"[^>]*>(.*?)</Data>', re.DOTALL)

_NAIVE_TS_RE = re.compile(r"^(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})(?:\.(\d+))?$")


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on tag names."""
    return tag.rsplit("}", 1)[-1]


# ── Timestamp parsing ────────────────────────────────────────────────────────


def _parse_rfc3339(s: str) -> datetime | None:
    if "T" not in s and "t" not in s:
        return None
    if not (s.endswith(("Z", "z")) or re.search(r"[+-]\d{2}:?\d{2}$", s)):
        return None
    text = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
    # fromisoformat accepts at most 6 fractional digits on older interpreters
    m = re.match(r"^(.*\.\d{6})\d+(.*)$", text)
    if m:
        text = m.group(1) + m.group(2)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_system_time(s: str) -> datetime | None:
    """Parse an event creation time. Returns a UTC datetime or None.

    Tried in order: RFC3339; the same string with the date/time separator
    replaced by ``T`` and a ``Z`` appended when no offset is present; a naive
    ``YYYY-MM-DD HH:MM:SS[.fraction]`` assumed to be UTC.
    """
    s = (s or "").strip()
    if not s:
        return None

    dt = _parse_rfc3339(s)
    if dt is None:
        alt = s.replace(" ", "T")
        if not alt.endswith("Z") and "+" not in alt:
            alt += "Z"
        dt = _parse_rfc3339(alt)
    if dt is None:
        m = _NAIVE_TS_RE.match(s)
        if m:
            try:
                dt = datetime.strptime(m.group(1), "%Y-%m-%d %H:%M:%S")
                if m.group(2):
                    dt = dt.replace(microsecond=int(m.group(2)[:6].ljust(6, "0")))
            except ValueError:
                dt = None
    if dt is None:
        log.debug("Unparseable timestamp: %r", s)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# ── Payload map ──────────────────────────────────────────────────────────────


def event_data_pairs(xml: str) -> dict[str, str]:
    """Strict EventData extraction: ``<Data Name="k">v</Data>`` inside EventData.

    Stops at the first markup error and keeps what was collected so far.
    """
    out: dict[str, str] = {}
    parser = ET.XMLPullParser(events=("start", "end"))
    in_event_data = False
    try:
        parser.feed(xml)
        for kind, elem in parser.read_events():
            name = _local(elem.tag)
            if kind == "start":
                if name == "EventData":
                    in_event_data = True
                continue
            if name == "EventData":
                in_event_data = False
            elif name == "Data" and in_event_data:
                key = elem.get("Name")
                value = (elem.text or "").strip()
                if key is not None and value:
                    out[key] = value
    except ET.ParseError as exc:
        log.debug("Strict payload parse stopped: %s", exc)
    return out


def event_data_pairs_fallback(xml: str) -> dict[str, str]:
    """Tolerant scan for literal ``Name="...">...</Data>`` pairs anywhere."""
    return {name: value for name, value in _DATA_PAIR_RE.findall(xml)}


def event_data_pairs_or_fallback(xml: str) -> dict[str, str]:
    pairs = event_data_pairs(xml)
    if pairs:
        return pairs
    return event_data_pairs_fallback(xml)


# ── Field extraction helpers (fallback tier) ─────────────────────────────────


def _extract_between(hay: str, start: str, end: str) -> str | None:
    s = hay.find(start)
    if s < 0:
        return None
    s += len(start)
    e = hay.find(end, s)
    if e < 0:
        return None
    return hay[s:e]


def _extract_attr(xml: str, tag: str, attr: str) -> str | None:
    open_tag = f"<{tag} "
    s = xml.find(open_tag)
    if s < 0:
        return None
    rest = xml[s + len(open_tag):]
    key = f'{attr}="'
    k = rest.find(key)
    if k < 0:
        return None
    after = rest[k + len(key):]
    e = after.find('"')
    if e < 0:
        return None
    return after[:e]


def _to_int(text: str | None) -> int | None:
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def event_data_text(xml: str) -> str:
    """Inner markup of ``<EventData>``, or the whole document when absent."""
    inner = _extract_between(xml, "<EventData>", "</EventData>")
    return inner if inner is not None else xml


# ── Strict tier ──────────────────────────────────────────────────────────────


def _parse_strict(xml: str, channel: str) -> CanonicalEvent | None:
    parser = ET.XMLPullParser(events=("start", "end"))
    ts: datetime | None = None
    level: int | None = None
    provider = ""
    event_id: int | None = None
    channel_s = ""
    try:
        parser.feed(xml)
        parser.close()
        for kind, elem in parser.read_events():
            name = _local(elem.tag)
            if kind == "start":
                if name == "TimeCreated":
                    parsed = parse_system_time(elem.get("SystemTime", ""))
                    if parsed is not None:
                        ts = parsed
                elif name == "Provider":
                    provider = elem.get("Name", provider)
                continue
            text = (elem.text or "").strip()
            if name == "Level":
                level = _to_int(text) if level is None else level
            elif name == "EventID":
                event_id = _to_int(text)
            elif name == "Channel":
                channel_s = text
    except ET.ParseError as exc:
        log.debug("Strict parse failed: %s", exc)
        return None

    if ts is None:
        return None
    return CanonicalEvent(
        timestamp=ts,
        level=level or 0,
        channel=channel_s or channel,
        provider=provider,
        event_id=event_id or 0,
        content=event_data_text(xml),
    )


# ── Fallback tier ────────────────────────────────────────────────────────────


def _parse_fallback(xml: str, channel: str) -> CanonicalEvent | None:
    raw_ts = _extract_attr(xml, "TimeCreated", "SystemTime")
    if raw_ts is None:
        raw_ts = _extract_between(xml, '<TimeCreated SystemTime="', '"')
    ts = parse_system_time(raw_ts) if raw_ts is not None else None
    if ts is None:
        return None

    level = _to_int(_extract_between(xml, "<Level>", "</Level>")) or 0
    provider = _extract_attr(xml, "Provider", "Name") or ""

    event_id = 0
    raw_id = _extract_between(xml, "<EventID", "</EventID>")
    if raw_id is not None:
        # drop the Qualifiers="..." attribute part
        if ">" in raw_id:
            raw_id = raw_id[raw_id.rfind(">") + 1:]
        event_id = _to_int(raw_id) or 0

    channel_s = _extract_between(xml, "<Channel>", "</Channel>") or channel
    return CanonicalEvent(
        timestamp=ts,
        level=level,
        channel=channel_s,
        provider=provider,
        event_id=event_id,
        content=event_data_text(xml),
    )


# ── Main parse function ──────────────────────────────────────────────────────


def parse_event_xml(xml: str, channel: str = "") -> CanonicalEvent | None:
    """Parse one rendered event document.

    Returns:
        CanonicalEvent — on success
        None — when no creation time can be recovered by either tier
    """
    if not xml or not xml.strip():
        return None
    event = _parse_strict(xml, channel)
    if event is not None:
        return event
    return _parse_fallback(xml, channel)
