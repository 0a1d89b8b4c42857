"""Завантаження конфігурацій: YAML або JSON -> dict."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Файл існує, але його вміст не вдалося розібрати."""


def load_config(path: str | Path) -> Any:
    """Зчитує файл конфігурації та повертає розібраний вміст.

    ``.json`` files go through :mod:`json`; everything else is read as YAML.
    An empty document yields an empty dict. The top-level type is not checked
    here; callers decide what shape they accept.

    Raises:
        FileNotFoundError: Якщо файл не знайдено.
        ConfigError: Якщо вміст не є коректним YAML/JSON.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text) if text.strip() else None
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"{p}: {exc}") from exc
    if data is None:
        return {}
    log.debug("Loaded config %s (%s)", p.name, type(data).__name__)
    return data
