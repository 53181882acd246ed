"""Technical-evidence validation for report text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .signals import normalize_text


@dataclass(frozen=True)
class EvidenceSignal:
    name: str
    weight: float
    pattern: str
    missing_label: str


DEFAULT_EVIDENCE_SIGNALS: tuple[EvidenceSignal, ...] = (
    EvidenceSignal(
        "reproduction_steps",
        0.4,
        r"steps?.*reproduce|to reproduce|how to replicate|when (?:i )?click(?:ed|ing)?\b"
        r"|after click(?:ing)?\b|\bi clicked\b|\bi tried to\b"
        r"|when i (?:try|tried|open|opened|submit|submitted)\b|(?:^|\s)\d+[.)]\s",
        "reproduction steps",
    ),
    EvidenceSignal(
        "error_message",
        0.3,
        r"error|exception|failed|failure|timeout|timed out|crash|\b[45]\d{2}\b",
        "error details",
    ),
    EvidenceSignal(
        "expected_behavior",
        0.3,
        r"expected|should|supposed to|want(?:ed)? to|trying to|where to|how (?:do|can) i",
        "expected behavior",
    ),
    EvidenceSignal(
        "actual_behavior",
        0.3,
        r"actual(?:ly)?|instead|can'?t find|cannot|can not|doesn'?t|does not|won'?t"
        r"|\breturns?\b|\bshows?\b|getting|nothing happens",
        "actual behavior",
    ),
)

VAGUE_LANGUAGE = r"\bi think\b|\bmaybe\b|might be|not sure|sometimes|occasionally"


@dataclass(frozen=True)
class EvidenceReport:
    is_valid: bool
    score: float
    present: tuple[str, ...]
    missing: tuple[str, ...]
    vague_language: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.is_valid,
            "score": self.score,
            "present": list(self.present),
            "missing": list(self.missing),
            "vague_language": self.vague_language,
        }


class EvidenceValidator:
    """Scores how much concrete technical evidence a report carries.

    A report is valid when the weighted sum of present evidence reaches the
    threshold and it contains no vague-language marker.
    """

    def __init__(
        self,
        signals: Sequence[EvidenceSignal] = DEFAULT_EVIDENCE_SIGNALS,
        threshold: float = 0.6,
        vague_pattern: str = VAGUE_LANGUAGE,
    ) -> None:
        self.threshold = threshold
        self._signals = tuple((signal, re.compile(signal.pattern, re.IGNORECASE)) for signal in signals)
        self._vague = re.compile(vague_pattern, re.IGNORECASE)

    def validate(self, text: str) -> EvidenceReport:
        normalized = normalize_text(text)
        score = 0.0
        present: list[str] = []
        missing: list[str] = []
        for signal, pattern in self._signals:
            if pattern.search(normalized):
                score += signal.weight
                present.append(signal.name)
            else:
                missing.append(signal.missing_label)

        vague = bool(self._vague.search(normalized))
        if vague:
            missing.append("contains vague language")

        # Rounding keeps 0.3 + 0.3 from landing just under a 0.6 threshold.
        score = round(min(score, 1.0), 6)
        return EvidenceReport(
            is_valid=score >= self.threshold and not vague,
            score=score,
            present=tuple(present),
            missing=tuple(missing),
            vague_language=vague,
        )
