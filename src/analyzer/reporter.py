"""Звітування: запис JSON-звіту, CSV з підказками та карантину."""

from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from src.contracts.hint import Hint
from src.contracts.report import ReportSummary

log = logging.getLogger(__name__)

QUARANTINE_CSV_COLUMNS = ["origin", "record_no", "reason", "raw"]


def _atomic_write(path: str, content: str) -> None:
    """Атомарно записує content у файл path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        # Clean up temp file on any failure
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ═══════════════════════════════════════════════════════════════════════════
#  JSON report
# ═══════════════════════════════════════════════════════════════════════════


def write_report_json(report: ReportSummary, path: str) -> None:
    _atomic_write(path, report.to_json() + "\n")
    log.info(
        "Wrote report → %s (score=%d, grade=%s, hints=%d)",
        path,
        report.performance_score,
        report.risk_grade,
        len(report.hints),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  CSV writers
# ═══════════════════════════════════════════════════════════════════════════


def write_hints_csv(hints: list[Hint], path: str) -> None:
    lines = [Hint.csv_header()]
    for h in hints:
        lines.append(h.to_csv_row())
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote hints → %s (%d rows)", path, len(hints))


def write_quarantine_csv(rows: list[dict[str, Any]], path: str) -> None:
    """Записує відхилені записи нормалізатора (один рядок на запис)."""
    buf = io.StringIO()
    writer = csv.DictWriter(
        buf, fieldnames=QUARANTINE_CSV_COLUMNS, extrasaction="ignore", lineterminator="\n"
    )
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    _atomic_write(path, buf.getvalue())
    log.info("Wrote quarantine → %s (%d rows)", path, len(rows))
