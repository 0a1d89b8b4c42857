"""Shared fixtures for the log health analyzer tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from src.contracts.event import CanonicalEvent
from src.contracts.hint import Hint

BASE_TS = datetime(2026, 2, 26, 10, 0, 0, tzinfo=UTC)

# ── Helper: create CanonicalEvent with sensible defaults ────────────────


def make_event(
    *,
    timestamp: datetime | None = None,
    level: int = 2,
    channel: str = "System",
    provider: str = "Disk",
    event_id: int = 7,
    content: str = "",
    raw_xml: str | None = None,
    decoded: bool = False,
) -> CanonicalEvent:
    return CanonicalEvent(
        timestamp=timestamp or BASE_TS,
        level=level,
        channel=channel,
        provider=provider,
        event_id=event_id,
        content=content,
        raw_xml=raw_xml,
        decoded=decoded,
    )


def make_xml(
    *,
    provider: str = "Disk",
    event_id: int | str = 7,
    level: int | str = 2,
    channel: str = "System",
    system_time: str = "2026-02-26T10:00:00.000000000Z",
    data: dict[str, str] | None = None,
    qualifiers: str | None = None,
    namespace: bool = True,
) -> str:
    """Render a Windows-style event document."""
    ns = ' xmlns="http://schemas.microsoft.com/win/2004/08/events/event"' if namespace else ""
    q = f' Qualifiers="{qualifiers}"' if qualifiers is not None else ""
    items = "".join(f'<Data Name="{k}">{v}</Data>' for k, v in (data or {}).items())
    return (
        f"<Event{ns}>"
        "<System>"
        f'<Provider Name="{provider}"/>'
        f"<EventID{q}>{event_id}</EventID>"
        f"<Level>{level}</Level>"
        f'<TimeCreated SystemTime="{system_time}"/>'
        f"<Channel>{channel}</Channel>"
        "</System>"
        f"<EventData>{items}</EventData>"
        "</Event>"
    )


def make_hint(
    *,
    category: str = "Storage",
    severity: str = "high",
    message: str = "Bad block detected on disk",
    count: int = 1,
    evidence: list[str] | None = None,
    probability: int = 75,
) -> Hint:
    return Hint(
        category=category,
        severity=severity,
        message=message,
        evidence=list(evidence or []),
        count=count,
        probability=probability,
    )


# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(base: datetime = BASE_TS, seconds: int = 0) -> datetime:
    """Return *base* shifted by *seconds*."""
    return base + timedelta(seconds=seconds)


# ── Record fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def disk7_xml() -> str:
    return make_xml(
        provider="Disk",
        event_id=7,
        data={"DeviceName": "\\Device\\Harddisk0\\DR0"},
    )


@pytest.fixture
def rules_file(tmp_path):
    """A small rules file with one valid and one broken rule."""
    p = tmp_path / "rules.yaml"
    p.write_text(
        "event_patterns:\n"
        '  - "(?i)error"\n'
        '  - "(?i)timeout"\n'
        "hint_rules:\n"
        '  - provider: "Microsoft-Windows-Kernel-Boot"\n'
        "    event_id: 29\n"
        '    category: "System"\n'
        '    severity: "high"\n'
        '    message: "Boot loader reported a failure"\n'
        '  - category: "General"\n'
        '    severity: "low"\n',
        encoding="utf-8",
    )
    return p
