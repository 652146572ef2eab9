"""Item lifecycle tracking.

This module provides:
- Transition detection between adjacent scrape cycles
- Rule-based classification of detected changes
- Windowed reports over recorded transitions
- Explicit retention of snapshot and transition history
"""

from shelfwatch.tracker.classifier import (
    DEFAULT_DISAPPEARANCE,
    DISAPPEARANCE_RULES,
    DisappearanceContext,
    DisappearanceRule,
    TransitionClassifier,
    parse_due_date,
)
from shelfwatch.tracker.detector import TransitionDetector
from shelfwatch.tracker.reports import TransitionReports
from shelfwatch.tracker.retention import (
    RetentionPolicy,
    RetentionResult,
    apply_retention,
)


__all__ = [
    # Classification
    "DEFAULT_DISAPPEARANCE",
    "DISAPPEARANCE_RULES",
    "DisappearanceContext",
    "DisappearanceRule",
    "TransitionClassifier",
    "parse_due_date",
    # Detection
    "TransitionDetector",
    # Reports
    "TransitionReports",
    # Retention
    "RetentionPolicy",
    "RetentionResult",
    "apply_retention",
]
