"""Aggregator / Scorer — derive report figures from events and Hints.

Performance score
─────────────────
    ``score = min(100, SUM(weight * count))`` over a fixed signal table,
    plus the first DiskDiagnostic ``PercentPerformanceDegraded`` value.

    ================================  ======  ================================
    signal                            weight  events
    ================================  ======  ================================
    Disk bad blocks                   30      Disk 7
    Disk/controller errors            25      Disk 11 / 51 / 157
    NTFS corruption                   25      Ntfs 55 / 57 / 140
    Storport resets/retries           15      Storport 129 / 153
    Hardware machine checks           35      WHEA-Logger 18
    CPU frequency limited             10      Kernel-Processor-Power 37
    GPU driver timeout/reset          10      Display 4101, nvlddmkm, amdkmdag
    DNS failures                      5       DNS-Client, or "dns" in content
    Service failures                  10      SCM / Services
    ================================  ======  ================================

Risk grade
──────────
    >= 80 Critical, >= 60 High, >= 40 Medium, else Low.  A Storage/high Hint
    with score >= 40 lifts the grade to at least High.

Ranked tables (``top_counts`` and friends) sort by count descending, ties by
key ascending.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Hashable, Iterable, Sequence
from datetime import datetime
from typing import TypeVar

from src.contracts.enums import Category, HintSeverity, RiskGrade
from src.contracts.event import CanonicalEvent
from src.contracts.hint import Hint
from src.contracts.report import PerfDetail, TimelineBucket
from src.normalizer.parser import event_data_pairs_or_fallback

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

DeviceResolver = Callable[[str], str | None]

MAX_ROOT_CAUSES = 5
MAX_RECOMMENDATIONS = 8

DEVICE_KEYS = ["DeviceName", "TargetDevice", "Device", "InstancePath", "PhysicalDeviceObjectName"]

_PERCENT_DEGRADED_RE = re.compile(r"(?i)PercentPerformanceDegraded\D*(\d+)")


def _payload(e: CanonicalEvent) -> dict[str, str]:
    return event_data_pairs_or_fallback(e.raw_xml if e.raw_xml else e.content)


# ═══════════════════════════════════════════════════════════════════════════
#  Performance score
# ═══════════════════════════════════════════════════════════════════════════


def _is(provider: str, *ids: int) -> Callable[[CanonicalEvent], bool]:
    return lambda e: e.provider == provider and (not ids or e.event_id in ids)


_SIGNALS: list[tuple[str, int, Callable[[CanonicalEvent], bool]]] = [
    ("Disk bad blocks", 30, _is("Disk", 7)),
    ("Disk/controller errors", 25, _is("Disk", 11, 51, 157)),
    ("NTFS corruption", 25, _is("Microsoft-Windows-Ntfs", 55, 57, 140)),
    ("Storport resets/retries", 15, _is("Storport", 129, 153)),
    ("Hardware machine checks", 35, _is("Microsoft-Windows-WHEA-Logger", 18)),
    ("CPU frequency limited", 10, _is("Microsoft-Windows-Kernel-Processor-Power", 37)),
    (
        "GPU driver timeout/reset",
        10,
        lambda e: (e.provider == "Display" and e.event_id == 4101)
        or e.provider in ("nvlddmkm", "amdkmdag"),
    ),
    (
        "DNS failures",
        5,
        lambda e: e.provider == "Microsoft-Windows-DNS-Client" or "dns" in e.content.lower(),
    ),
    (
        "Service failures",
        10,
        lambda e: e.provider in ("Service Control Manager", "Microsoft-Windows-Services"),
    ),
]


def _percent_degraded(events: Sequence[CanonicalEvent]) -> int | None:
    for e in events:
        if e.provider.startswith("Microsoft-Windows-DiskDiagnostic") and (
            "PercentPerformanceDegraded" in e.content
        ):
            m = _PERCENT_DEGRADED_RE.search(e.content)
            if m is None:
                return None
            return int(m.group(1))
    return None


def compute_performance_metrics(
    events: Sequence[CanonicalEvent],
) -> tuple[int, list[tuple[str, int]]]:
    """Return ``(score, signals)``; *signals* lists ``(name, weight)`` that fired."""
    signals: list[tuple[str, int]] = []
    score = 0
    for name, weight, pred in _SIGNALS:
        count = sum(1 for e in events if pred(e))
        if count > 0:
            signals.append((name, weight))
            score += weight * count

    degraded = _percent_degraded(events)
    if degraded is not None:
        signals.append(("Disk performance degraded", degraded))
        score += degraded

    return min(score, 100), signals


def compute_risk_grade(score: int, hints: Iterable[Hint]) -> str:
    if score >= 80:
        grade = RiskGrade.CRITICAL
    elif score >= 60:
        grade = RiskGrade.HIGH
    elif score >= 40:
        grade = RiskGrade.MEDIUM
    else:
        grade = RiskGrade.LOW

    storage_high = any(
        h.category == Category.STORAGE.value and h.severity == HintSeverity.HIGH.value
        for h in hints
    )
    if storage_high and score >= 40 and grade is not RiskGrade.CRITICAL:
        grade = RiskGrade.HIGH
    return grade.value


# ═══════════════════════════════════════════════════════════════════════════
#  Root causes and recommendations
# ═══════════════════════════════════════════════════════════════════════════


def _has_category(hints: Sequence[Hint], *categories: Category) -> bool:
    names = {c.value for c in categories}
    return any(h.category in names for h in hints)


def _has_high(hints: Sequence[Hint], category: Category) -> bool:
    return any(
        h.category == category.value and h.severity == HintSeverity.HIGH.value for h in hints
    )


def compute_root_causes(hints: Sequence[Hint]) -> list[str]:
    causes: list[str] = []
    if _has_high(hints, Category.STORAGE):
        causes.append("Storage subsystem instability or failing disk")
    if _has_high(hints, Category.HARDWARE):
        causes.append("Underlying hardware fault (CPU/Memory/Bus)")
    if _has_category(hints, Category.THERMAL, Category.COOLING):
        causes.append("Thermal issues causing throttling and errors")
    if _has_category(hints, Category.NETWORK):
        causes.append("Network/DNS misconfiguration or intermittent connectivity")
    if _has_category(hints, Category.POLICY, Category.PERMISSIONS):
        causes.append("Policy/permission misconfiguration impacting services")
    if not causes:
        causes.append("General system instability indicated by error patterns")
    return causes[:MAX_ROOT_CAUSES]


def generate_recommendations(hints: Sequence[Hint]) -> list[str]:
    recs: list[str] = []
    if _has_category(hints, Category.STORAGE):
        recs.append("Back up important data immediately")
        recs.append("Run disk SMART and surface tests; replace drive if SMART shows failures")
    if _has_category(hints, Category.HARDWARE) or any(
        "machine check" in h.message.lower() for h in hints
    ):
        recs.append("Run memory diagnostics and CPU stress test; ensure adequate cooling")
    if _has_category(hints, Category.COOLING, Category.THERMAL):
        recs.append(
            "Clean dust and verify fans; consider repasting CPU/GPU if temperatures remain high"
        )
    if _has_category(hints, Category.NETWORK):
        recs.append("Check DNS settings; test with public DNS; inspect NIC drivers")
    if _has_category(hints, Category.SERVICES):
        recs.append("Review failing services; check dependencies and startup type")
    if _has_category(hints, Category.POLICY, Category.PERMISSIONS):
        recs.append("Review Group Policy and DCOM permissions; align with security baselines")
    if _has_category(hints, Category.GPU):
        recs.append("Update GPU drivers; monitor for TDRs; consider lowering overclock")
    return recs[:MAX_RECOMMENDATIONS]


# ═══════════════════════════════════════════════════════════════════════════
#  Timeline / categories / perf details
# ═══════════════════════════════════════════════════════════════════════════


def compute_timeline(
    events: Iterable[CanonicalEvent],
    since: datetime,
    until: datetime,
) -> list[TimelineBucket]:
    """Error/warning counts per day (window >= 2 days) or per hour."""
    daily = (until - since).days >= 2
    fmt = "%Y-%m-%d" if daily else "%Y-%m-%d %H:00"
    buckets: dict[str, list[int]] = {}
    for e in events:
        slot = buckets.setdefault(e.timestamp.strftime(fmt), [0, 0])
        if e.level == 2:
            slot[0] += 1
        elif e.level == 3:
            slot[1] += 1
    return [TimelineBucket(key=k, errors=v[0], warnings=v[1]) for k, v in sorted(buckets.items())]


def compute_by_category(hints: Iterable[Hint]) -> list[tuple[str, int]]:
    totals: Counter[str] = Counter()
    for h in hints:
        totals[h.category] += max(h.count, 1)
    return _ranked(totals)


def compute_perf_details(events: Iterable[CanonicalEvent]) -> list[PerfDetail]:
    """Boot / Logon / Resume durations from Diagnostics-Performance events."""
    phases: dict[int, tuple[str, tuple[str, ...]]] = {
        100: ("Boot", ("BootDuration", "BootTime")),
        200: ("Logon", ("LogonDuration",)),
        400: ("Resume", ("ResumeDuration", "ResumeTime")),
    }
    samples: dict[str, list[int]] = {"Boot": [], "Logon": [], "Resume": []}
    for e in events:
        if e.provider != "Microsoft-Windows-Diagnostics-Performance":
            continue
        phase = phases.get(e.event_id)
        if phase is None:
            continue
        name, keys = phase
        pairs = _payload(e)
        raw = next((pairs[k] for k in keys if k in pairs), "")
        if raw.isdigit() and int(raw) > 0:
            samples[name].append(int(raw))

    out: list[PerfDetail] = []
    for name, values in samples.items():
        if values:
            out.append(
                PerfDetail(
                    name=name,
                    avg_ms=sum(values) // len(values),
                    max_ms=max(values),
                    count=len(values),
                )
            )
    return out


# ═══════════════════════════════════════════════════════════════════════════
#  Ranked tables
# ═══════════════════════════════════════════════════════════════════════════


def _ranked(counts: Counter[K], top: int | None = None) -> list[tuple[K, int]]:
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked if top is None else ranked[:top]


def top_counts(values: Iterable[K], top: int) -> list[tuple[K, int]]:
    return _ranked(Counter(values), top)


def count_by_device(
    events: Iterable[CanonicalEvent],
    top: int,
    resolve: DeviceResolver | None = None,
) -> list[tuple[str, int]]:
    """Events per device, using the first non-empty device key of the payload.

    *resolve* maps a raw device id to a display name; ids it does not know
    (or every id, when no resolver is given) are shown as-is.
    """
    counts: Counter[str] = Counter()
    for e in events:
        pairs = _payload(e)
        for k in DEVICE_KEYS:
            v = pairs.get(k)
            if v:
                name = resolve(v) if resolve is not None else None
                counts[name or v] += 1
                break
    return _ranked(counts, top)


def classify_domain(provider: str, channel: str, event_id: int, content: str) -> str:
    """Coarse subsystem an event belongs to (first match wins)."""
    p = provider.lower()
    ch = channel.lower()
    ct = content.lower()

    if (
        any(s in p for s in ("disk", "ntfs", "storport", "volmgr", "volsnap"))
        or "storage" in ch
        or event_id in (7, 11, 51, 55, 57, 129, 140, 153, 157)
    ):
        return "Storage"
    if any(s in p for s in ("display", "nvlddmkm", "amdkmdag")) or "graphics" in ch or "tdr" in ct:
        return "GPU"
    if (
        "dns" in p
        or "network" in p
        or "network" in ch
        or any(s in ct for s in ("connect", "link", "timeout"))
    ):
        return "Network"
    # Time-Service would otherwise land in Services
    if "w32time" in p or "time-service" in p:
        return "Time Sync"
    if "service" in p or "services" in ch:
        return "Services"
    if "whea" in p or "hardware" in p:
        return "Hardware"
    if "processor-power" in p or "power" in p:
        return "CPU/Power"
    if "access denied" in ct or "distributedcom" in p or event_id in (10016, 10010):
        return "Permissions"
    if "time service" in ct or "ntp" in ct:
        return "Time Sync"
    if "schannel" in p or any(s in ct for s in ("certificate", "tls", "ssl")):
        return "TLS/Certificates"
    if "windowsupdateclient" in p or "setup" in ch or "update" in ct or "servicing" in ct:
        return "Updates"
    if "usbhub" in p or "kernel-pnp" in p or "usb" in ct or "device" in ct:
        return "USB/Devices"
    if "security" in ch or "security" in p or "logon" in ct or "audit failure" in ct:
        return "Security/Auth"
    if "taskscheduler" in p:
        return "Scheduler"
    return "General"


def count_by_domain(events: Iterable[CanonicalEvent], top: int) -> list[tuple[str, int]]:
    return top_counts(
        (classify_domain(e.provider, e.channel, e.event_id, e.content) for e in events), top
    )


def count_matched_terms(
    events: Sequence[CanonicalEvent],
    patterns: Iterable[tuple[str, re.Pattern[str]]],
) -> list[tuple[str, int]]:
    """Number of events whose content matches each compiled pattern (zeros dropped)."""
    counts: Counter[str] = Counter()
    for label, rx in patterns:
        n = sum(1 for e in events if rx.search(e.content))
        if n > 0:
            counts[label] = n
    return _ranked(counts)
