"""Decoder — provider + event id → human-readable message.

Each handler reads specific payload keys (with fallback chains such as
``ServiceName`` → ``param1``) and may branch on the event id. Handlers are
pure; an unknown provider decodes to ``None``.
"""

from __future__ import annotations

from collections.abc import Callable

from src.normalizer.parser import event_data_pairs_or_fallback

Handler = Callable[[int, dict[str, str], str], str | None]


def _first(pairs: dict[str, str], *keys: str) -> str:
    """Value of the first key present in *pairs* (empty string if none)."""
    for k in keys:
        if k in pairs:
            return pairs[k]
    return ""


# ═══════════════════════════════════════════════════════════════════════════
#  Handlers
# ═══════════════════════════════════════════════════════════════════════════

_SCM_MESSAGES = {
    7000: "Service failed to start",
    7001: "Service dependent failed to start",
    7009: "Service start timed out",
    7011: "Service hung or timeout occurred",
    7023: "Service terminated with error",
    7031: "Service terminated unexpectedly",
    7034: "Service terminated unexpectedly",
}


def _scm(event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    svc = _first(pairs, "ServiceName", "param1")
    if event_id in _SCM_MESSAGES:
        return f"{_SCM_MESSAGES[event_id]}: {svc}"
    if svc:
        return f"SCM {event_id} {svc}"
    return None


def _disk(event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    dev = _first(pairs, "DeviceName", "param1")
    if event_id == 7:
        return f"Bad block detected on {dev}"
    if event_id == 11:
        return f"Disk or controller error on {dev}"
    if event_id == 51:
        return "Paging I/O error indicates unstable storage path"
    if event_id == 157:
        return f"Disk was surprise removed: {dev}"
    if "DeviceName" in pairs or "param1" in pairs:
        return f"Disk {dev}"
    return None


def _dcom(_event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    clsid = pairs.get("CLSID", "")
    appid = pairs.get("APPID", "")
    if clsid or appid:
        return f"DCOM CLSID={clsid} APPID={appid}"
    return None


def _schannel(_event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    code = pairs.get("ErrorCode", "")
    return f"Schannel ErrorCode={code}" if code else None


def _wer(_event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    bug = pairs.get("BugcheckCode", "")
    return f"BugCheck {bug}" if bug else None


_NTFS_MESSAGES = {
    55: "File system corruption detected (NTFS)",
    57: "Delayed write failed (NTFS)",
    140: "Failed to flush data to transaction log (NTFS)",
}


def _ntfs(event_id: int, _pairs: dict[str, str], _raw: str) -> str | None:
    return _NTFS_MESSAGES.get(event_id)


def _kernel_power(event_id: int, _pairs: dict[str, str], _raw: str) -> str | None:
    if event_id == 41:
        return "Unexpected shutdown or power loss detected"
    return None


def _eventlog(event_id: int, _pairs: dict[str, str], _raw: str) -> str | None:
    if event_id == 6008:
        return "Previous system shutdown was unexpected"
    return None


def _whea(event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    if event_id == 18:
        src = pairs.get("ErrorSource", "")
        apic = _first(pairs, "ApicId", "ProcessorAPICID")
        ev = f"{src} APIC {apic}" if apic else src
        return f"Uncorrected hardware error ({ev})"
    if event_id == 17:
        ev = pairs.get("Component", "") or pairs.get("DeviceId", "")
        return f"Corrected hardware error ({ev})"
    if event_id in (19, 20):
        return f"Hardware error reported by WHEA ({pairs.get('ErrorSource', '')})"
    return None


def _display(event_id: int, _pairs: dict[str, str], _raw: str) -> str | None:
    if event_id == 4101:
        return "Display driver stopped responding and recovered"
    return None


def _volmgr(_event_id: int, _pairs: dict[str, str], raw: str) -> str | None:
    if "failed to flush data to the transaction log" in raw.lower():
        return "Volume manager flush failure - potential corruption"
    return None


def _volsnap(_event_id: int, _pairs: dict[str, str], raw: str) -> str | None:
    c = raw.lower()
    if "shadow copies of volume" in c and "were aborted" in c:
        return "Shadow copies aborted - may indicate underlying disk issues"
    return None


def _dns_client(event_id: int, pairs: dict[str, str], _raw: str) -> str | None:
    if event_id != 1014:
        return None
    q = pairs.get("QueryName", "")
    if not q:
        return "DNS name resolution failure"
    return f"DNS name resolution failure: {q}"


HANDLERS: dict[str, Handler] = {
    "Service Control Manager": _scm,
    "Disk": _disk,
    "DistributedCOM": _dcom,
    "Schannel": _schannel,
    "Microsoft-Windows-WER-SystemErrorReporting": _wer,
    "Microsoft-Windows-Ntfs": _ntfs,
    "Microsoft-Windows-Kernel-Power": _kernel_power,
    "EventLog": _eventlog,
    "Microsoft-Windows-WHEA-Logger": _whea,
    "Display": _display,
    "volmgr": _volmgr,
    "volsnap": _volsnap,
    "Microsoft-Windows-DNS-Client": _dns_client,
}


# ═══════════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════════


def decode_event(provider: str, event_id: int, raw_payload: str) -> str | None:
    """Decode a record into a readable message, or None if unhandled."""
    handler = HANDLERS.get(provider)
    if handler is None:
        return None
    return handler(event_id, event_data_pairs_or_fallback(raw_payload), raw_payload)
