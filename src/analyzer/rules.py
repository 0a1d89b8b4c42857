"""Rule registry — load and validate externally declared hint rules.

Reads a rules file (YAML; JSON works too) of the form::

    event_patterns: ["(?i)error", "(?i)timeout"]
    hint_rules:
      - provider: "Microsoft-Windows-Kernel-Boot"
        event_id: 29
        contains_any: ["failure"]
        regex: "boot\\s+loader"
        category: "Boot"
        severity: "high"
        message: "Boot loader reported a failure"

A missing or broken file never stops a run: the problem is logged and the
analysis proceeds with zero external rules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.contracts.rule import DeclarativeRule
from src.shared.config_loader import ConfigError, load_config

log = logging.getLogger(__name__)

_VALID_SEVERITIES = {"high", "medium", "low"}


@dataclass
class RulesConfig:
    event_patterns: list[str] | None = None
    hint_rules: list[DeclarativeRule] = field(default_factory=list)


def load_rules(path: str | Path | None) -> RulesConfig:
    """Load the rules file at *path*. Any failure yields an empty config."""
    if path is None:
        return RulesConfig()
    try:
        raw = load_config(path)
    except FileNotFoundError as exc:
        log.warning("Rules file not loaded: %s", exc)
        return RulesConfig()
    except (OSError, ConfigError) as exc:
        log.warning("Failed to parse rules file %s: %s", path, exc)
        return RulesConfig()
    if not isinstance(raw, dict):
        log.warning("Rules file %s: top level must be a mapping, got %s", path, type(raw).__name__)
        return RulesConfig()

    patterns = raw.get("event_patterns")
    if patterns is not None and not isinstance(patterns, list):
        log.warning("Rules file %s: event_patterns must be a list; ignored", path)
        patterns = None

    rules: list[DeclarativeRule] = []
    raw_rules = raw.get("hint_rules") or []
    if not isinstance(raw_rules, list):
        log.warning("Rules file %s: hint_rules must be a list; ignored", path)
        raw_rules = []
    for idx, item in enumerate(raw_rules, 1):
        rule = build_rule(item, idx)
        if rule is not None:
            rules.append(rule)

    log.info("Loaded %d hint rules from %s", len(rules), path)
    return RulesConfig(
        event_patterns=[str(p) for p in patterns] if patterns is not None else None,
        hint_rules=rules,
    )


def build_rule(raw: Any, idx: int = 0) -> DeclarativeRule | None:
    """Validate one rule mapping. Returns None (and logs) if unusable."""
    if not isinstance(raw, dict):
        log.warning("Hint rule #%d is not a mapping; skipped", idx)
        return None
    message = raw.get("message")
    if not message:
        log.warning("Hint rule #%d has no message; skipped", idx)
        return None

    severity = str(raw.get("severity") or "medium").lower()
    if severity not in _VALID_SEVERITIES:
        log.warning("Hint rule #%d: unknown severity %r, using 'medium'", idx, severity)
        severity = "medium"

    event_id = raw.get("event_id")
    if event_id is not None:
        try:
            event_id = int(event_id)
        except (TypeError, ValueError):
            log.warning("Hint rule #%d: event_id %r is not a number; skipped", idx, event_id)
            return None

    contains_any = raw.get("contains_any") or []
    if isinstance(contains_any, str):
        contains_any = [contains_any]
    contains = tuple(str(k) for k in contains_any if str(k))

    regex = raw.get("regex") or None
    if regex is not None and compile_pattern(str(regex)) is None and not contains:
        log.warning("Hint rule #%d: its only matcher failed to compile; skipped", idx)
        return None

    provider = raw.get("provider") or None
    if provider is None and event_id is None and not contains and regex is None:
        log.warning("Hint rule #%d has neither filters nor matchers; skipped", idx)
        return None

    return DeclarativeRule(
        message=str(message),
        category=str(raw.get("category") or "General"),
        severity=severity,
        provider=str(provider) if provider is not None else None,
        event_id=event_id,
        contains_any=contains,
        regex=str(regex) if regex is not None else None,
    )


def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as exc:
        log.warning("Invalid pattern %r skipped: %s", pattern, exc)
        return None


def compile_patterns(patterns: list[str]) -> list[tuple[str, re.Pattern[str]]]:
    """Compile keyword patterns, dropping only the ones that fail."""
    out: list[tuple[str, re.Pattern[str]]] = []
    for p in patterns:
        rx = compile_pattern(p)
        if rx is not None:
            out.append((p, rx))
    return out


DEFAULT_EVENT_PATTERNS: list[str] = [
    "(?i)error",
    "(?i)fail",
    "(?i)exception",
    "(?i)timeout",
    "(?i)bugcheck",
    "(?i)crash",
    "(?i)access denied",
    "(?i)disk",
    "(?i)io error",
    "(?i)network",
    "(?i)service",
    "(?i)reset",
    "(?i)retry",
    "(?i)corrupt",
    "(?i)degraded",
    "(?i)unexpected",
    "(?i)dcom",
    "(?i)dns",
    "(?i)w32time",
    "(?i)group policy",
    "(?i)usb",
    "(?i)cdrom",
    "(?i)netlogon",
]
