"""Multi-signal issue classifier."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..models import CATEGORY_ORDER, Category, Recommendation, RecommendedAction
from ..utils.config_manager import ClassifierConfig
from ..utils.logging_config import get_logger, log_exception
from .estimator import FALLBACK_ESTIMATE, RootCauseEstimate, RootCauseEstimator
from .evidence import EvidenceReport, EvidenceValidator
from .signals import PatternAnalysis, SignalLibrary

logger = get_logger(__name__)

_CATEGORY_RECOMMENDATIONS: dict[Category, Recommendation] = {
    Category.HUMAN_ERROR: Recommendation(
        RecommendedAction.USER_EDUCATION_RESPONSE,
        "High probability of user configuration or understanding issue",
        "low",
        "automated_education_response",
    ),
    Category.ADMIN_CONFIG: Recommendation(
        RecommendedAction.ADMIN_INVESTIGATION,
        "High probability of configuration or administrative issue",
        "high",
        "admin_review_required",
    ),
    Category.CODE_BUG: Recommendation(
        RecommendedAction.AI_CODE_ANALYSIS_APPROVED,
        "High probability of actual code bug with sufficient evidence",
        "high",
        "ai_code_generation_approved",
    ),
    Category.INFRASTRUCTURE: Recommendation(
        RecommendedAction.INFRASTRUCTURE_CHECK,
        "High probability of infrastructure or third-party issue",
        "high",
        "devops_investigation",
    ),
}

EMERGENCY_RECOMMENDATION = Recommendation(
    RecommendedAction.EMERGENCY_HUMAN_REVIEW,
    "Urgency marker present but issue unclear; requires human judgment",
    "urgent",
    "emergency_human_review",
)

HUMAN_REVIEW_RECOMMENDATION = Recommendation(
    RecommendedAction.HUMAN_INVESTIGATION_REQUIRED,
    "Ambiguous case; requires human judgment",
    "medium",
    "human_review_then_decision",
)


@dataclass(frozen=True)
class ClassificationResult:
    classification_id: str
    probabilities: Mapping[Category, float]
    confidence: float
    recommendation: Recommendation
    reasoning: tuple[str, ...]
    patterns: PatternAnalysis
    estimate: RootCauseEstimate
    evidence: EvidenceReport
    context: Mapping[str, Any] = field(default_factory=dict)

    @property
    def top_category(self) -> Category:
        return argmax_category(self.probabilities)

    def to_dict(self) -> dict[str, Any]:
        return {
            "classification_id": self.classification_id,
            "probabilities": {c.value: round(v, 2) for c, v in self.probabilities.items()},
            "confidence": self.confidence,
            "recommendation": self.recommendation.to_dict(),
            "reasoning": list(self.reasoning),
            "patterns": self.patterns.to_dict(),
            "estimate": self.estimate.to_dict(),
            "evidence": self.evidence.to_dict(),
        }


def argmax_category(probabilities: Mapping[Category, float]) -> Category:
    best = CATEGORY_ORDER[0]
    for category in CATEGORY_ORDER[1:]:
        if probabilities.get(category, 0.0) > probabilities.get(best, 0.0):
            best = category
    return best


class IssueClassifier:
    """Combines pattern scoring, root-cause estimation and evidence validation."""

    def __init__(
        self,
        estimator: RootCauseEstimator | None = None,
        config: ClassifierConfig | None = None,
        signals: SignalLibrary | None = None,
        evidence: EvidenceValidator | None = None,
    ) -> None:
        self.config = config or ClassifierConfig()
        self.estimator = estimator
        self.signals = signals or SignalLibrary()
        self.evidence = evidence or EvidenceValidator(threshold=self.config.evidence_threshold)

    def classify(
        self,
        report_text: str,
        user_context: Mapping[str, Any] | None = None,
        has_urgency_marker: bool = False,
    ) -> ClassificationResult:
        context = dict(user_context or {})
        patterns = self.signals.analyze(report_text)
        estimate = self._estimate(report_text, context)
        evidence = self.evidence.validate(report_text)

        weights = self.config.weights
        probabilities = {
            category: estimate.probabilities.get(category, 0.0) * weights.root_cause
            + patterns.percentages.get(category, 0.0) * weights.patterns
            for category in CATEGORY_ORDER
        }
        evidence_cap = self.config.valid_evidence_cap if evidence.is_valid else self.config.invalid_evidence_cap
        confidence = min(estimate.confidence, patterns.confidence, evidence_cap)

        recommendation = self.recommend(probabilities, confidence, has_urgency_marker)
        result = ClassificationResult(
            classification_id=uuid.uuid4().hex,
            probabilities=probabilities,
            confidence=confidence,
            recommendation=recommendation,
            reasoning=self._reasoning(patterns, estimate, evidence),
            patterns=patterns,
            estimate=estimate,
            evidence=evidence,
            context=context,
        )
        logger.info(
            "Classified report as %s (confidence %.2f, top %s)",
            recommendation.action.value,
            confidence,
            result.top_category.value,
        )
        return result

    def recommend(
        self,
        probabilities: Mapping[Category, float],
        confidence: float,
        has_urgency_marker: bool,
    ) -> Recommendation:
        if has_urgency_marker and confidence < self.config.emergency_confidence:
            return EMERGENCY_RECOMMENDATION
        top = argmax_category(probabilities)
        if probabilities.get(top, 0.0) < self.config.min_probability or confidence < self.config.min_confidence:
            return HUMAN_REVIEW_RECOMMENDATION
        return _CATEGORY_RECOMMENDATIONS[top]

    def _estimate(self, text: str, context: Mapping[str, Any]) -> RootCauseEstimate:
        if self.estimator is None:
            return FALLBACK_ESTIMATE
        try:
            estimate = self.estimator.estimate(text, context)
        except Exception as exc:
            log_exception(logger, "Root-cause estimator raised", exc)
            return FALLBACK_ESTIMATE
        if not isinstance(estimate, RootCauseEstimate):
            logger.warning("Root-cause estimator returned no usable estimate; using fallback")
            return FALLBACK_ESTIMATE
        return estimate

    @staticmethod
    def _reasoning(
        patterns: PatternAnalysis,
        estimate: RootCauseEstimate,
        evidence: EvidenceReport,
    ) -> tuple[str, ...]:
        lines = [
            f"Pattern confidence: {patterns.confidence * 100:.1f}%",
            f"AI analysis confidence: {estimate.confidence * 100:.1f}%",
            f"Technical evidence: {'Sufficient' if evidence.is_valid else 'Insufficient'}",
            f"Matched patterns: {len(patterns.matches)}",
        ]
        if evidence.missing:
            lines.append(f"Missing: {', '.join(evidence.missing)}")
        if estimate.source == "fallback":
            lines.append("Root-cause estimator unavailable; fallback distribution used")
        return tuple(lines)
