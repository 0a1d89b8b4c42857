"""Declarative hint rule supplied from an external rules file."""

from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class DeclarativeRule:
    """Externally declared matcher that produces a hint.

    Matching: provider and event-id filters are AND-ed; the ``contains_any``
    substrings (case-insensitive) and the regex are OR-ed. A rule declaring no
    content matcher fires on its filters alone. A regex that does not compile
    never matches; the rule then relies on ``contains_any`` only.
    """

    message: str
    category: str = "General"
    severity: str = "medium"
    provider: str | None = None
    event_id: int | None = None
    contains_any: tuple[str, ...] = ()
    regex: str | None = None
    pattern: re.Pattern[str] | None = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.regex is None:
            return
        try:
            object.__setattr__(self, "pattern", re.compile(self.regex))
        except re.error:
            object.__setattr__(self, "pattern", None)

    @property
    def has_content_matcher(self) -> bool:
        return bool(self.contains_any) or self.regex is not None

    def matches(self, provider: str, event_id: int, content: str, content_lower: str | None = None) -> bool:
        if self.provider is not None and provider != self.provider:
            return False
        if self.event_id is not None and event_id != self.event_id:
            return False
        if not self.has_content_matcher:
            return True
        lowered = content_lower if content_lower is not None else content.lower()
        if any(k.lower() in lowered for k in self.contains_any):
            return True
        return self.pattern is not None and self.pattern.search(content) is not None
