"""Device / hardware classifier — static tables and string heuristics.

Turns PnP instance ids, PCI bus/device/function triples and free text into
short labels used in hint messages. Best-effort, not authoritative.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

log = logging.getLogger(__name__)

BdfKey = tuple[str, str, str]

# Checked in order, case-insensitive prefix match
_INSTANCE_PREFIXES: list[tuple[str, str]] = [
    ("nvme\\", "NVMe drive"),
    ("scsi\\disk", "SATA/SAS disk"),
    ("usb\\vid_", "USB device"),
    ("acpi\\pnp0c0b", "ACPI fan"),
    ("acpi\\pnp0c0a", "ACPI thermal zone"),
]

VENDOR_HEX: dict[str, str] = {
    "10de": "NVIDIA GPU",
    "1002": "AMD GPU",
    "8086": "Intel controller/device",
    "144d": "Samsung NVMe",
    "1bb1": "Western Digital NVMe",
    "1987": "Phison NVMe",
    "1c5c": "SK hynix NVMe",
    "1344": "Micron NVMe",
    "10ec": "Realtek controller/device",
    "14e4": "Broadcom controller/device",
    "1b21": "ASMedia controller/device",
    "197b": "JMicron controller/device",
    "126f": "Silicon Motion NVMe",
    "15b7": "SanDisk NVMe",
    "1e0f": "KIOXIA NVMe",
    "1e49": "Solidigm NVMe",
    "1d97": "ADATA NVMe",
    "1022": "AMD controller/device",
}

_HEX_DIGITS = frozenset("0123456789abcdef")


# ═══════════════════════════════════════════════════════════════════════════
#  Instance ids
# ═══════════════════════════════════════════════════════════════════════════


def classify_vendor_hex(vendor_hex: str) -> str | None:
    return VENDOR_HEX.get(vendor_hex.lower())


def _take_hex4(s: str, marker: str) -> str | None:
    p = s.find(marker)
    if p < 0:
        return None
    sub = s[p + len(marker):p + len(marker) + 4]
    if len(sub) == 4 and all(c in _HEX_DIGITS for c in sub):
        return sub
    return None


def parse_pci_ven_dev(id_lower: str) -> tuple[str | None, str | None]:
    """Extract the 4-hex-digit tokens after ``ven_`` and ``dev_``."""
    return _take_hex4(id_lower, "ven_"), _take_hex4(id_lower, "dev_")


def classify_instance_id(instance_id: str) -> str | None:
    """Short label for a PnP device instance id, or None."""
    id_lower = instance_id.lower()
    for prefix, label in _INSTANCE_PREFIXES:
        if id_lower.startswith(prefix):
            return label
    vendor, device = parse_pci_ven_dev(id_lower)
    if vendor is None:
        return None
    base = classify_vendor_hex(vendor) or "PCI device"
    if device is not None:
        return f"{base} device 0x{device}"
    return base


# ═══════════════════════════════════════════════════════════════════════════
#  PCI bus / device / function
# ═══════════════════════════════════════════════════════════════════════════


def _num(s: str | None) -> int | None:
    if s is None:
        return None
    try:
        return int(s.strip())
    except ValueError:
        return None


def classify_bdf(bus: str | None, dev: str | None, func: str | None) -> str | None:
    b, d, f = _num(bus), _num(dev), _num(func)
    if b is None or d is None:
        return None
    if b == 1 and d == 0:
        return "Likely discrete GPU (PEG root path)"
    if b >= 1 and d <= 3 and f == 0:
        return "Device on CPU PCIe lanes (GPU/NVMe)"
    if 16 <= d <= 31:
        return "PCIe root/downstream port"
    if f == 0 and d <= 7:
        return "Onboard controller/device"
    return None


def classify_bdf_platform(
    bus: str | None,
    dev: str | None,
    func: str | None,
    overrides: Mapping[BdfKey, str] | None = None,
) -> str | None:
    """Like :func:`classify_bdf`, but an exact operator override wins."""
    if overrides and bus is not None and dev is not None and func is not None:
        label = overrides.get((bus, dev, func))
        if label is not None:
            return label
    return classify_bdf(bus, dev, func)


def parse_bdf_overrides(table: str | Mapping[str, str] | None) -> dict[BdfKey, str]:
    """Build an override table from ``"1:0:0=Discrete GPU;0:2:0=iGPU"``.

    A mapping of ``"bus:dev:func" -> label`` is accepted as well (the YAML
    settings form). Keys must be strings: an unquoted YAML key such as
    ``1:0:0`` arrives as a sexagesimal integer and is rejected with a warning.
    Malformed entries are skipped.
    """
    if not table:
        return {}
    items: list[tuple[str, str]] = []
    if isinstance(table, str):
        for entry in table.split(";"):
            if "=" not in entry:
                continue
            key, label = entry.split("=", 1)
            items.append((key, label))
    else:
        for key, label in table.items():
            if not isinstance(key, str):
                log.warning(
                    "Ignoring BDF override key %r: not a string (quote it, e.g. \"1:0:0\")", key
                )
                continue
            items.append((key, str(label)))

    out: dict[BdfKey, str] = {}
    for key, label in items:
        parts = key.strip().split(":")
        if len(parts) != 3:
            log.warning("Ignoring malformed BDF override %r", key)
            continue
        out[(parts[0], parts[1], parts[2])] = label.strip()
    return out


# ═══════════════════════════════════════════════════════════════════════════
#  SMART wording
# ═══════════════════════════════════════════════════════════════════════════


def smart_hint_from_text(text: str) -> tuple[str, str] | None:
    """(severity, message) for SMART-style wording, first match wins."""
    t = text.lower()
    if "smart" in t and ("pred fail" in t or "failed" in t or "bad" in t):
        return ("high", "SMART indicates predicted disk failure")
    if "reallocated" in t or "pending sector" in t or "uncorrectable" in t:
        return ("medium", "SMART attributes suggest media degradation")
    if "temperature" in t and ("high" in t or "overheat" in t or "critical" in t):
        return ("medium", "SMART reports high temperature")
    return None
