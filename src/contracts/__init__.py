"""Data contracts — canonical structures shared by all modules."""

from src.contracts.enums import Category, HintSeverity, Level, RiskGrade
from src.contracts.event import CanonicalEvent
from src.contracts.hint import Hint
from src.contracts.report import PerfDetail, ReportSummary, TimelineBucket
from src.contracts.rule import DeclarativeRule

__all__ = [
    "CanonicalEvent",
    "Category",
    "DeclarativeRule",
    "Hint",
    "HintSeverity",
    "Level",
    "PerfDetail",
    "ReportSummary",
    "RiskGrade",
    "TimelineBucket",
]
