"""Hint data-class — a deduplicated, scored diagnostic finding."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Any

HINT_CSV_COLUMNS = [
    "category",
    "severity",
    "message",
    "count",
    "probability",
    "evidence",
]

MAX_EVIDENCE = 3


@dataclass(slots=True)
class Hint:
    """Finding produced by the correlation engine.

    Identity is ``(category, severity, message)``. ``count`` is the number of
    contributing matches, ``evidence`` holds at most three example strings in
    arrival order and ``probability`` (5..95) is set once when the pass is
    finalised.
    """

    category: str
    severity: str       # high | medium | low
    message: str
    evidence: list[str] = field(default_factory=list)
    count: int = 0
    probability: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.category, self.severity, self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "severity": self.severity,
            "message": self.message,
            "evidence": list(self.evidence),
            "count": self.count,
            "probability": self.probability,
        }

    # ── serialisation ────────────────────────────────────────────────────

    def to_csv_row(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(
            [
                self.category,
                self.severity,
                self.message,
                self.count,
                self.probability,
                "; ".join(self.evidence),
            ]
        )
        return buf.getvalue().rstrip("\r\n")

    @staticmethod
    def csv_header() -> str:
        return ",".join(HINT_CSV_COLUMNS)
