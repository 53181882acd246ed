from .classifier import ClassificationResult, IssueClassifier
from .estimator import (
    FALLBACK_ESTIMATE,
    ChatCompletionEstimator,
    RootCauseEstimate,
    RootCauseEstimator,
    StaticEstimator,
)
from .evidence import EvidenceReport, EvidenceValidator
from .signals import PatternAnalysis, SignalLibrary

__all__ = [
    "ChatCompletionEstimator",
    "ClassificationResult",
    "EvidenceReport",
    "EvidenceValidator",
    "FALLBACK_ESTIMATE",
    "IssueClassifier",
    "PatternAnalysis",
    "RootCauseEstimate",
    "RootCauseEstimator",
    "SignalLibrary",
    "StaticEstimator",
]
