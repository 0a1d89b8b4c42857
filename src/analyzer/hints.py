"""Correlation engine — CanonicalEvent stream → deduplicated, scored Hints.

One forward pass over a finite batch. For every event the lower-cased content
and the payload map are computed once, then four rule sets run in fixed order:

  1. provider rules      — ``PROVIDER_RULES[provider]`` (aliases share a list)
  2. cross-cutting rules — ``CROSS_CUTTING_RULES``, run for every event
  3. SMART wording       — ``smart_hint_from_text``
  4. declarative rules   — loaded by :mod:`src.analyzer.rules`

All of them go through ``_evaluate`` and push into one ``HintAccumulator``,
so a key ``(category, severity, message)`` yields exactly one Hint whatever
rule produced it. A single event may feed several categories.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from src.analyzer.device_map import (
    BdfKey,
    classify_bdf_platform,
    classify_instance_id,
    smart_hint_from_text,
)
from src.contracts.enums import Category, text_of
from src.contracts.event import CanonicalEvent
from src.contracts.hint import MAX_EVIDENCE, Hint
from src.contracts.rule import DeclarativeRule
from src.normalizer.parser import event_data_pairs_or_fallback, event_data_text

log = logging.getLogger(__name__)

HIGH = "high"
MEDIUM = "medium"

_BASE_PROBABILITY = {"high": 75, "medium": 50}
_OTHER_BASE_PROBABILITY = 25

COMPOSITE_SHADOW_NTFS = "Shadow copies aborted and NTFS corruption detected (sequence)"


# ═══════════════════════════════════════════════════════════════════════════
#  Accumulator
# ═══════════════════════════════════════════════════════════════════════════


class HintAccumulator:
    """Per-pass map of Hint by key. Discarded after :meth:`finalize`."""

    def __init__(self) -> None:
        self._acc: dict[tuple[str, str, str], Hint] = {}

    def __len__(self) -> int:
        return len(self._acc)

    def push(
        self,
        category: str | Enum,
        severity: str | Enum,
        message: str,
        evidence: str | None = None,
    ) -> Hint:
        key = (text_of(category), text_of(severity), message)
        hint = self._acc.get(key)
        if hint is None:
            hint = Hint(category=key[0], severity=key[1], message=key[2])
            self._acc[key] = hint
        hint.count += 1
        if evidence and len(hint.evidence) < MAX_EVIDENCE:
            hint.evidence.append(evidence)
        return hint

    def finalize(self) -> list[Hint]:
        """Compute probabilities and return hints in deterministic order."""
        out = list(self._acc.values())
        for h in out:
            h.probability = hint_probability(h)
        out.sort(key=lambda h: (-h.count, h.category, h.message))
        return out


def hint_probability(hint: Hint) -> int:
    base = _BASE_PROBABILITY.get(hint.severity, _OTHER_BASE_PROBABILITY)
    if hint.count >= 5:
        bump = 15
    elif hint.count >= 3:
        bump = 10
    elif hint.count >= 2:
        bump = 5
    else:
        bump = 0
    evb = 5 if hint.evidence else 0
    return max(5, min(95, base + bump + evb))


# ═══════════════════════════════════════════════════════════════════════════
#  Per-event view
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class EventView:
    """Values computed once per event and shared by every rule."""

    event: CanonicalEvent
    text: str
    content_lower: str
    provider_lower: str
    payload: dict[str, str]
    bdf_overrides: Mapping[BdfKey, str] | None = None

    @classmethod
    def of(
        cls,
        event: CanonicalEvent,
        bdf_overrides: Mapping[BdfKey, str] | None = None,
    ) -> EventView:
        source = event.raw_xml if event.raw_xml else event.content
        text = event.content
        # a decoded message replaced the payload text; keep matching on both
        if event.decoded and event.raw_xml:
            text = f"{event.content}\n{event_data_text(event.raw_xml)}"
        return cls(
            event=event,
            text=text,
            content_lower=text.lower(),
            provider_lower=event.provider.lower(),
            payload=event_data_pairs_or_fallback(source),
            bdf_overrides=bdf_overrides,
        )

    @property
    def event_id(self) -> int:
        return self.event.event_id

    def get(self, *keys: str) -> str:
        """First present payload value among *keys* (empty string if none)."""
        for k in keys:
            if k in self.payload:
                return self.payload[k]
        return ""

    def has(self, *needles: str) -> bool:
        """True if the lower-cased content contains any of *needles*."""
        return any(n in self.content_lower for n in needles)


Rule = Callable[[EventView, HintAccumulator], None]


def _with_class(message: str, instance_id: str) -> str:
    if instance_id:
        cls = classify_instance_id(instance_id)
        if cls is not None:
            return f"{message} [{cls}]"
    return message


# ═══════════════════════════════════════════════════════════════════════════
#  Provider rules
# ═══════════════════════════════════════════════════════════════════════════


def _application_error(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 1000:
        ev = v.get("FaultingApplicationName") or v.get("FaultingModuleName")
        acc.push(Category.APPLICATION, HIGH, "Application crash detected", ev)


def _acpi_fan(v: EventView, acc: HintAccumulator) -> None:
    if not v.has("fan"):
        return
    inst = v.get("DeviceInstanceId")
    if v.has("fail", "stalled", "not detected"):
        msg = _with_class("CPU/Chassis fan failure detected", inst)
        acc.push(Category.COOLING, HIGH, msg, inst)
    elif v.has("rpm", "tachometer"):
        acc.push(Category.COOLING, MEDIUM, "Fan speed low or unstable", inst)
    else:
        acc.push(Category.COOLING, MEDIUM, "Fan-related event reported", inst)


def _acpi_thermal(v: EventView, acc: HintAccumulator) -> None:
    if v.has("thermal zone", "temperature", "overheat", "critical"):
        ev = v.get("CurrentTemperature") or v.get("DeviceInstanceId")
        acc.push(Category.THERMAL, MEDIUM, "Thermal zone or sensor reports high temperature", ev)


def _dns_client(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 1014 or v.has("name resolution", "dns"):
        acc.push(Category.NETWORK, MEDIUM, "DNS name resolution failure", v.get("QueryName"))


def _time_service(v: EventView, acc: HintAccumulator) -> None:
    if v.has("failed", "no response", "synchronize"):
        acc.push(Category.SYSTEM, MEDIUM, "System time synchronization failed", v.get("SourceType"))


def _group_policy(v: EventView, acc: HintAccumulator) -> None:
    if v.has("failed", "could not apply", "processing aborted"):
        ev = v.get("GPOID") or v.get("DCName")
        acc.push(Category.POLICY, MEDIUM, "Group Policy processing failure", ev)


def _whea_errors(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 18:
        src = v.get("ErrorSource")
        apic = v.get("ApicId", "ProcessorAPICID")
        ev = f"{src} APIC {apic}" if apic else src
        acc.push(Category.HARDWARE, HIGH, "Uncorrected hardware error detected (machine check)", ev)
    elif v.event_id == 17:
        ev = v.get("Component") or v.get("DeviceId")
        acc.push(Category.HARDWARE, MEDIUM, "Corrected hardware error reported", ev)
    elif v.event_id in (19, 20):
        acc.push(Category.HARDWARE, MEDIUM, "Hardware error reported by WHEA", v.get("ErrorSource"))


def _whea_bdf(v: EventView, acc: HintAccumulator) -> None:
    bus = v.payload.get("Bus")
    dev = v.payload.get("Device")
    func = v.payload.get("Function")
    cls = classify_bdf_platform(bus, dev, func, v.bdf_overrides)
    if cls is not None:
        bdf = f"B:{bus or ''} D:{dev or ''} F:{func or ''}"
        acc.push(Category.HARDWARE, MEDIUM, f"{cls} ({bdf})")


def _service_failure(v: EventView, acc: HintAccumulator) -> None:
    if not v.has("failed to start", "start pending timed out", "terminated unexpectedly"):
        return
    svc = v.get("ServiceName", "param1")
    msg = f"Service failure: {svc}" if svc else "Service start/termination failure"
    sev = HIGH if v.has("failed", "terminated") else MEDIUM
    acc.push(Category.SERVICES, sev, msg, svc)


def _disk(v: EventView, acc: HintAccumulator) -> None:
    dev = v.get("DeviceName", "param1")
    if v.event_id == 7:
        acc.push(Category.STORAGE, HIGH, "Bad block detected on disk", dev)
    elif v.event_id == 11:
        acc.push(Category.STORAGE, HIGH, "Disk or controller error", dev)
    elif v.event_id == 51:
        acc.push(Category.STORAGE, MEDIUM, "Paging I/O error indicates unstable storage path")
    elif v.event_id == 157:
        acc.push(Category.STORAGE, HIGH, "Disk was surprise removed (connection/port)", dev)


_NTFS_HINTS = {
    55: "File system corruption detected (NTFS)",
    57: "Delayed write failed",
    140: "Failed to flush data to transaction log (NTFS)",
}


def _ntfs(v: EventView, acc: HintAccumulator) -> None:
    msg = _NTFS_HINTS.get(v.event_id)
    if msg is not None:
        acc.push(Category.STORAGE, HIGH, msg)


def _storport(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 129:
        acc.push(Category.STORAGE, MEDIUM, "Reset to device implies storage connectivity issue")
    elif v.event_id == 153:
        acc.push(Category.STORAGE, MEDIUM, "I/O operation retried by Storport")


def _volmgr(v: EventView, acc: HintAccumulator) -> None:
    if v.has("failed to flush data to the transaction log"):
        acc.push(Category.STORAGE, HIGH, "Volume manager flush failure - potential corruption")


def _volsnap(v: EventView, acc: HintAccumulator) -> None:
    if "shadow copies of volume" in v.content_lower and "were aborted" in v.content_lower:
        acc.push(Category.STORAGE, MEDIUM, "Shadow copies aborted - may indicate underlying disk issues")


def _disk_diagnostic(v: EventView, acc: HintAccumulator) -> None:
    ev = v.get("Reason") or v.get("PercentPerformanceDegraded")
    acc.push(Category.STORAGE, HIGH, "Windows detected disk reliability issue", ev)


def _kernel_pnp(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 219:
        dev = v.get("DeviceInstanceId")
        msg = _with_class("Driver failed to load for a device (Kernel-PnP 219)", dev)
        acc.push(Category.PERIPHERAL, MEDIUM, msg, dev)


def _user_pnp(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 2003 or v.has("driver install failed", "device install failed"):
        dev = v.get("DeviceInstanceID", "DeviceInstanceId")
        acc.push(Category.PERIPHERAL, MEDIUM, _with_class("Device installation failed", dev), dev)


def _kernel_power(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 41:
        acc.push(Category.POWER, HIGH, "Unexpected shutdown or power loss detected")


def _eventlog(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 6008:
        acc.push(Category.POWER, HIGH, "Previous system shutdown was unexpected")


def _processor_power(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 37:
        acc.push(Category.THERMAL, MEDIUM, "CPU frequency limited by firmware (thermal/power)")


def _display(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 4101:
        acc.push(Category.GPU, MEDIUM, "Display driver stopped responding and recovered")


def _dxgkrnl(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id in (2, 3):
        acc.push(Category.GPU, MEDIUM, "Video scheduler or graphics kernel reported a fault")


def _gpu_driver(v: EventView, acc: HintAccumulator) -> None:
    acc.push(Category.GPU, MEDIUM, "GPU driver timeout or reset detected")


def _usb(v: EventView, acc: HintAccumulator) -> None:
    if v.has("enumeration failed", "descriptor request failed", "port reset failed"):
        acc.push(Category.PERIPHERAL, MEDIUM, "USB device enumeration or port failure")


def _cdrom(v: EventView, acc: HintAccumulator) -> None:
    if v.event_id == 11 or v.has("controller error"):
        acc.push(Category.STORAGE, MEDIUM, "CD/DVD device or controller error")


def _netlogon(v: EventView, acc: HintAccumulator) -> None:
    if v.has("domain controller", "logon failure", "could not establish a secure connection"):
        dc = v.get("DnsHostName", "DCName")
        acc.push(Category.NETWORK, MEDIUM, "Domain logon or secure channel issue", dc)


def _memory_diagnostics(v: EventView, acc: HintAccumulator) -> None:
    errs = v.get("TestResult", "FailureCount")
    if errs and errs != "0":
        acc.push(Category.MEMORY, HIGH, "Memory diagnostics reported errors", errs)


def _registry(groups: Iterable[tuple[Sequence[str], Sequence[Rule]]]) -> dict[str, list[Rule]]:
    out: dict[str, list[Rule]] = {}
    for names, rules in groups:
        for name in names:
            out.setdefault(name, []).extend(rules)
    return out


PROVIDER_RULES: dict[str, list[Rule]] = _registry(
    [
        (["Application Error"], [_application_error]),
        (
            [
                "Microsoft-Windows-Kernel-Acpi",
                "Microsoft-Windows-ACPI",
                "ACPI",
                "Microsoft-Windows-Thermal",
            ],
            [_acpi_fan, _acpi_thermal],
        ),
        (["Microsoft-Windows-DNS-Client"], [_dns_client]),
        (["Microsoft-Windows-Time-Service", "W32Time"], [_time_service]),
        (["Microsoft-Windows-GroupPolicy"], [_group_policy]),
        (["Microsoft-Windows-WHEA-Logger"], [_whea_errors, _whea_bdf]),
        (["Service Control Manager", "Microsoft-Windows-Services"], [_service_failure]),
        (["Disk"], [_disk]),
        (["Microsoft-Windows-Ntfs"], [_ntfs]),
        (["Storport"], [_storport]),
        (["volmgr"], [_volmgr]),
        (["volsnap"], [_volsnap]),
        (
            ["Microsoft-Windows-DiskDiagnostic", "Microsoft-Windows-DiskDiagnosticDataCollector"],
            [_disk_diagnostic],
        ),
        (["Microsoft-Windows-Kernel-PnP"], [_kernel_pnp]),
        (["Microsoft-Windows-UserPnp"], [_user_pnp]),
        (["Microsoft-Windows-Kernel-Power"], [_kernel_power]),
        (["Microsoft-Windows-EventLog", "EventLog"], [_eventlog]),
        (["Microsoft-Windows-Kernel-Processor-Power"], [_processor_power]),
        (["Display"], [_display]),
        (["Microsoft-Windows-DxgKrnl"], [_dxgkrnl]),
        (["nvlddmkm", "amdkmdag"], [_gpu_driver]),
        (["USBHUB", "USBHUB3", "USBXHCI", "usbhub", "usbstor", "USB"], [_usb]),
        (["cdrom"], [_cdrom]),
        (["Netlogon", "NETLOGON"], [_netlogon]),
        (["Microsoft-Windows-MemoryDiagnostics-Results"], [_memory_diagnostics]),
    ]
)


# ═══════════════════════════════════════════════════════════════════════════
#  Cross-cutting rules
# ═══════════════════════════════════════════════════════════════════════════


def _permissions(v: EventView, acc: HintAccumulator) -> None:
    if v.has("access denied", "permission", "privilege"):
        acc.push(Category.PERMISSIONS, MEDIUM, "Access denied or insufficient permissions detected")


def _dcom_permissions(v: EventView, acc: HintAccumulator) -> None:
    if v.event.provider == "DistributedCOM" and v.has("do not grant") and v.has("permission settings"):
        acc.push(Category.PERMISSIONS, MEDIUM, "DCOM permission misconfiguration")


def _network(v: EventView, acc: HintAccumulator) -> None:
    if v.has(
        "dns",
        "name resolution",
        "tcp",
        "connection timed out",
        "reset by peer",
        "dhcp",
        "media disconnected",
    ):
        acc.push(Category.NETWORK, MEDIUM, "Network connectivity or name resolution issue")


def _updates(v: EventView, acc: HintAccumulator) -> None:
    if v.has("windows update", "wuau", "failed to install update", "download error"):
        acc.push(Category.UPDATES, MEDIUM, "Windows Update reported a failure")


def _low_disk(v: EventView, acc: HintAccumulator) -> None:
    if v.has("low disk space", "not enough space", "quota exceeded"):
        acc.push(Category.STORAGE, MEDIUM, "Low disk space or quota exceeded")


def _bugcheck(v: EventView, acc: HintAccumulator) -> None:
    if v.has("bugcheck", "stop code"):
        acc.push(Category.POWER, HIGH, "System crash (BugCheck) indicated")


_STORAGE_DRIVERS = ("iastor", "storahci", "nvme")


def _storage_controller(v: EventView, acc: HintAccumulator) -> None:
    if any(d in v.provider_lower for d in _STORAGE_DRIVERS) and v.has(
        "reset to device", "i/o was retried"
    ):
        acc.push(
            Category.STORAGE, MEDIUM, "Storage controller reported resets/retries (path instability)"
        )


def _optical(v: EventView, acc: HintAccumulator) -> None:
    if "cdrom" in v.provider_lower and (
        v.event_id == 11 or v.has("controller error", "device not ready")
    ):
        acc.push(Category.STORAGE, MEDIUM, "Optical drive or controller error")


_SLOW_PHASES = {
    100: "Slow startup detected (Diagnostics-Performance 100)",
    200: "Slow logon detected (Diagnostics-Performance 200)",
    400: "Slow resume from standby detected (Diagnostics-Performance 400)",
}


def _diagnostics_performance(v: EventView, acc: HintAccumulator) -> None:
    if v.event.provider == "Microsoft-Windows-Diagnostics-Performance":
        msg = _SLOW_PHASES.get(v.event_id)
        if msg is not None:
            acc.push(Category.PERFORMANCE, MEDIUM, msg)


def _instability(v: EventView, acc: HintAccumulator) -> None:
    if v.has("retry", "reset", "corrupt", "degraded", "unexpected"):
        acc.push(
            Category.GENERAL, MEDIUM, "System reported error patterns indicating instability"
        )


def _smart(v: EventView, acc: HintAccumulator) -> None:
    found = smart_hint_from_text(v.content_lower)
    if found is not None:
        sev, msg = found
        acc.push(Category.STORAGE, sev, msg)


CROSS_CUTTING_RULES: list[Rule] = [
    _permissions,
    _dcom_permissions,
    _network,
    _updates,
    _low_disk,
    _bugcheck,
    _storage_controller,
    _optical,
    _diagnostics_performance,
    _instability,
]

SMART_RULES: list[Rule] = [_smart]


# ═══════════════════════════════════════════════════════════════════════════
#  Declarative rules
# ═══════════════════════════════════════════════════════════════════════════


def declarative(rule: DeclarativeRule) -> Rule:
    """Wrap an external rule so it runs through the same evaluation path."""

    def _apply(v: EventView, acc: HintAccumulator) -> None:
        e = v.event
        if rule.matches(e.provider, e.event_id, v.text, v.content_lower):
            acc.push(rule.category, rule.severity, rule.message)

    return _apply


# ═══════════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════════


def _evaluate(rules: Iterable[Rule], view: EventView, acc: HintAccumulator) -> None:
    for rule in rules:
        rule(view, acc)


def _shadow_copy_and_ntfs(events: Sequence[CanonicalEvent]) -> bool:
    has_abort = any(
        e.provider.lower() == "volsnap" and "aborted" in e.content.lower() for e in events
    )
    has_ntfs_55 = any(
        e.provider.lower() == "microsoft-windows-ntfs" and e.event_id == 55 for e in events
    )
    return has_abort and has_ntfs_55


def generate_hints(
    events: Sequence[CanonicalEvent],
    rules: Iterable[DeclarativeRule] = (),
    *,
    bdf_overrides: Mapping[BdfKey, str] | None = None,
) -> list[Hint]:
    """Run one correlation pass over *events*.

    Parameters
    ──────────
    events
        Finite, already-normalised batch.
    rules
        Validated declarative rules (see :func:`src.analyzer.rules.load_rules`).
    bdf_overrides
        Exact ``(bus, dev, func) -> label`` table for WHEA PCI locations.

    Returns
    ───────
    Hints sorted by count descending, then category and message ascending.
    """
    external = [declarative(r) for r in rules]
    acc = HintAccumulator()

    for e in events:
        view = EventView.of(e, bdf_overrides)
        _evaluate(PROVIDER_RULES.get(e.provider, ()), view, acc)
        _evaluate(CROSS_CUTTING_RULES, view, acc)
        _evaluate(SMART_RULES, view, acc)
        _evaluate(external, view, acc)

    if _shadow_copy_and_ntfs(events):
        acc.push(Category.STORAGE, HIGH, COMPOSITE_SHADOW_NTFS)

    hints = acc.finalize()
    log.info(
        "Correlation produced %d hints from %d events (%d external rules)",
        len(hints),
        len(events),
        len(external),
    )
    return hints
