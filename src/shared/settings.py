"""Налаштування запуску: YAML-файл -> Settings.

Every key is optional; unknown keys are logged and ignored. CLI flags are
applied on top by :mod:`src.analyzer.cli`.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from src.normalizer.filters import EventFilter
from src.normalizer.parser import parse_system_time
from src.shared.config_loader import load_config

log = logging.getLogger(__name__)


@dataclass
class Settings:
    # ── input / output ──
    input: str = "data/*.jsonl"
    out_dir: str = "out"
    rules_path: str | None = "config/rules.yaml"

    # ── report shape ──
    top: int = 20
    sample_count: int = 20
    per_channel_sample_limit: int | None = None
    per_provider_sample_limit: int | None = None
    patterns: list[str] | None = None

    # ── record selection ──
    include_info: bool = False
    no_level_filter: bool = False
    min_level: int | None = None
    max_level: int | None = None
    providers: list[str] = field(default_factory=list)
    exclude_providers: list[str] = field(default_factory=list)
    include_event_ids: list[int] = field(default_factory=list)
    exclude_event_ids: list[int] = field(default_factory=list)
    since: str | None = None
    until: str | None = None

    # ── normalizer ──
    decode: bool = True
    retain_raw: bool = True     # raw XML in report samples

    # ── classifier ──
    bdf_overrides: str | dict[str, str] | None = None

    # ── logging ──
    log_level: str = "INFO"
    log_format: str = "text"
    log_path: str | None = None

    @property
    def since_dt(self) -> datetime | None:
        return _window_bound("since", self.since)

    @property
    def until_dt(self) -> datetime | None:
        return _window_bound("until", self.until)

    def event_filter(self) -> EventFilter:
        return EventFilter(
            min_level=self.min_level,
            max_level=self.max_level,
            include_info=self.include_info,
            no_level_filter=self.no_level_filter,
            providers=list(self.providers),
            exclude_providers=list(self.exclude_providers),
            include_event_ids=list(self.include_event_ids),
            exclude_event_ids=list(self.exclude_event_ids),
            since=self.since_dt,
            until=self.until_dt,
        )


def _window_bound(name: str, value: str | None) -> datetime | None:
    if not value:
        return None
    ts = parse_system_time(str(value))
    if ts is None:
        log.warning("Ignoring unparseable %s=%r", name, value)
    return ts


_FIELDS = {f.name for f in dataclasses.fields(Settings)}


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """Build Settings from a mapping, dropping keys Settings does not know."""
    known: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _FIELDS:
            known[key] = value
        else:
            log.warning("Unknown settings key %r ignored", key)
    for key in ("include_event_ids", "exclude_event_ids"):
        if key in known:
            known[key] = [int(v) for v in known[key] or []]
    for key in ("providers", "exclude_providers"):
        if key in known:
            known[key] = [str(v) for v in known[key] or []]
    return Settings(**known)


def load_settings(path: str | Path | None = None) -> Settings:
    """Defaults when *path* is None; otherwise the YAML file must exist."""
    if path is None:
        return Settings()
    raw = load_config(path)
    if not isinstance(raw, dict):
        log.warning("Settings file %s is not a mapping; using defaults", path)
        return Settings()
    return settings_from_dict(raw)
