"""Canonical event data-class — the single record form used past the normalizer."""

from __future__ import annotations

import csv
import dataclasses
import io
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.contracts.enums import level_name

CSV_COLUMNS: list[str] = [
    "timestamp",
    "level",
    "channel",
    "provider",
    "event_id",
    "content",
]

TS_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(slots=True, frozen=True)
class CanonicalEvent:
    """One normalised system-log record.

    Immutable once built. ``content`` starts as the raw payload text and may be
    replaced once by a decoded message (see :meth:`with_content`).
    """

    # ── mandatory ──
    timestamp: datetime     # always UTC
    level: int              # 1=Critical 2=Error 3=Warning 4=Information 0=other
    channel: str
    provider: str
    event_id: int
    content: str

    # ── optional ──
    raw_xml: str | None = None     # kept for analysis; written out only on request
    decoded: bool = False

    def __post_init__(self) -> None:
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        else:
            ts = ts.astimezone(UTC)
        object.__setattr__(self, "timestamp", ts)
        if not isinstance(self.level, int) or not 0 <= self.level <= 4:
            object.__setattr__(self, "level", 0)

    @property
    def level_name(self) -> str:
        return level_name(self.level)

    def with_content(self, message: str, raw_xml: str | None = None) -> CanonicalEvent:
        """Return a copy whose display content is *message*.

        The display content can be replaced only once; a second replacement
        raises ``ValueError``.
        """
        if self.decoded:
            raise ValueError("display content was already replaced")
        return dataclasses.replace(
            self,
            content=message,
            raw_xml=raw_xml if raw_xml is not None else self.raw_xml,
            decoded=True,
        )

    # ── serialisation ─────────────────────────────────────────────────────

    def to_dict(self, include_raw: bool = False) -> dict[str, Any]:
        doc = {
            "time": self.timestamp.strftime(TS_FORMAT),
            "level": self.level,
            "severity": self.level_name,
            "channel": self.channel,
            "provider": self.provider,
            "event_id": self.event_id,
            "content": self.content,
        }
        if include_raw and self.raw_xml is not None:
            doc["xml"] = self.raw_xml
        return doc

    def to_json(self) -> str:
        """Return compact JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    def to_csv_row(self) -> str:
        """Return a single CSV line (no trailing newline)."""
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(
            [
                self.timestamp.strftime(TS_FORMAT),
                self.level,
                self.channel,
                self.provider,
                self.event_id,
                self.content.replace("\n", " "),
            ]
        )
        return buf.getvalue().rstrip("\r\n")

    @staticmethod
    def csv_header() -> str:
        return ",".join(CSV_COLUMNS)
