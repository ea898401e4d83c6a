"""Confidence learning loop."""

from .confidence import (
    Adjustment,
    ConfidenceLearner,
    LearningReport,
    CONFIDENCE_BRANCH,
    adjust_confidence,
    approval_rate,
)

__all__ = [
    "Adjustment",
    "ConfidenceLearner",
    "LearningReport",
    "CONFIDENCE_BRANCH",
    "adjust_confidence",
    "approval_rate",
]
