"""Lexical signal library used for pattern scoring.

The library is a plain data table: category -> signal type -> regex sources.
Weights are per signal type and live in a separate table, so adding a signal
is an edit to :data:`DEFAULT_SIGNALS` rather than to the scoring code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from ..models import CATEGORY_ORDER, Category

DEFAULT_SIGNALS: dict[Category, dict[str, tuple[str, ...]]] = {
    Category.HUMAN_ERROR: {
        "confusion_language": (
            r"i don'?t understand", r"confusing", r"unclear", r"how do i",
            r"where is", r"can'?t find", r"don'?t know how to", r"help me",
            r"what does.*mean", r"how to", r"tutorial", r"\bguide\b",
            r"instructions", r"explain", r"show me", r"walk me through",
            r"please help", r"where (?:to|do i|can i)\b",
        ),
        "user_action_timing": (
            r"suddenly", r"out of nowhere", r"randomly", r"for no reason",
            r"just now", r"this morning", r"\btoday\b", r"yesterday",
            r"after i\b", r"when i tried", r"after clicking", r"after changing",
            r"right after", r"immediately after", r"as soon as",
        ),
        "user_actions": (
            r"i clicked", r"i tried to", r"i attempted", r"i changed",
            r"i updated", r"i deleted", r"i added", r"i removed",
            r"i entered", r"i selected", r"i uploaded", r"i downloaded",
            r"i logged in", r"i signed up", r"i filled out", r"i submitted",
        ),
        "environment_issues": (
            r"on my phone", r"mobile", r"iphone", r"android", r"tablet",
            r"browser", r"chrome", r"safari", r"firefox", r"\bedge\b",
            r"internet", r"wifi", r"connection", r"\bslow\b", r"loading",
            r"cache", r"cookies", r"incognito", r"private mode",
        ),
        "account_issues": (
            r"forgot password", r"can'?t remember", r"lost password",
            r"account locked", r"banned", r"suspended", r"expired",
            r"subscription", r"billing", r"payment", r"credit card",
            r"profile incomplete", r"verification", r"email not verified",
        ),
    },
    Category.CODE_BUG: {
        "technical_errors": (
            r"error code", r"error \d+", r"\d{3}\s*error", r"http.*error",
            r"exception", r"stack trace", r"console error", r"javascript error",
            r"syntax error", r"runtime error", r"compilation error",
            r"null reference", r"undefined", r"cannot read property",
            r"\b[45]\d{2}\b", r"returns?\b.*\berror",
        ),
        "system_failures": (
            r"timeout", r"timed out", r"failed to load", r"won'?t load",
            r"page crash", r"browser crash", r"app crash", r"freezes",
            r"infinite loop", r"endless loading", r"stuck loading",
            r"memory leak", r"performance issue", r"very slow",
        ),
        "api_database_issues": (
            r"\bapi\b.*error", r"\bapi\b.*fail", r"server error", r"database error",
            r"connection failed", r"network error", r"request failed",
            r"response error", r"query failed", r"data not saving",
        ),
        "consistency_patterns": (
            r"always happens", r"every time", r"consistently", r"reproducible",
            r"all users", r"everyone", r"multiple people", r"widespread",
            r"across all browsers", r"on all devices", r"systematic",
        ),
        "ui_bugs": (
            r"button.*not.*working", r"click.*not.*responding", r"unclickable",
            r"layout.*broken", r"css.*issue", r"styling.*problem",
            r"text overlapping", r"images not loading", r"responsive",
            r"mobile.*view", r"dropdown.*broken", r"form.*not.*submitting",
            r"button.*(?:error|fail|broken)",
        ),
        "encoding_formatting_bugs": (
            r"symbols.*not.*generating", r"characters.*not.*displaying", r"encoding.*issue",
            r"apostrophe.*not.*working", r"ampersand.*not.*working", r"special.*characters",
            r"text.*formatting.*broken", r"character.*encoding", r"utf.*8",
            r"symbols.*glitchy", r"characters.*glitchy", r"formatting.*glitchy",
            r"email.*subject.*glitchy", r"template.*rendering", r"html.*entities",
            r"escape.*characters", r"unicode.*issue", r"charset.*problem",
        ),
    },
    Category.ADMIN_CONFIG: {
        "system_changes": (
            r"since the update", r"after maintenance", r"since deployment",
            r"after the release", r"new version", r"upgrade", r"migration",
            r"configuration", r"settings changed", r"admin panel",
            r"backend change", r"server update", r"database migration",
        ),
        "permission_issues": (
            r"permission denied", r"access denied", r"unauthorized",
            r"can'?t access", r"locked out", r"restricted", r"forbidden",
            r"admin.*removed", r"privileges.*revoked", r"role.*changed",
            r"account.*disabled", r"user.*suspended",
        ),
        "communication_systems": (
            r"email.*not.*sent", r"notification.*missing", r"alert.*not.*received",
            r"campaign.*stopped", r"mailing.*list", r"unsubscribed",
            r"email.*service", r"smtp.*error", r"delivery.*failed",
        ),
        "data_mapping_issues": (
            r"wrong.*name.*email", r"incorrect.*host.*name", r"different.*name.*appears",
            r"wrong.*user.*data", r"profile.*mix.*up", r"wrong.*information.*email",
            r"template.*variable", r"email.*template.*wrong", r"substitution.*error",
            r"wrong.*recipient.*data", r"email.*shows.*wrong", r"name.*mismatch",
            r"role.*listed.*as", r"admin.*instead.*of", r"profile.*incorrect",
            r"user.*details.*wrong", r"email.*personalization", r"merge.*field",
        ),
    },
    Category.INFRASTRUCTURE: {
        "service_outages": (
            r"\boutage\b", r"(?:site|server|service|app) (?:is )?down\b",
            r"service unavailable", r"bad gateway", r"gateway timeout",
            r"\b50[234]\b", r"\bdns\b", r"\bssl\b", r"certificate",
            r"\bcdn\b", r"nobody can (?:log ?in|access)",
        ),
    },
}

DEFAULT_WEIGHTS: dict[str, float] = {
    "technical_errors": 3.0,
    "system_failures": 2.5,
    "user_actions": 2.0,
    "confusion_language": 1.8,
    "permission_issues": 2.2,
    "system_changes": 1.9,
    "data_mapping_issues": 2.5,
    "encoding_formatting_bugs": 2.8,
    "service_outages": 2.4,
}

_CONFIDENCE_STEPS: tuple[tuple[float, float], ...] = (
    (10.0, 0.9),
    (7.0, 0.8),
    (5.0, 0.7),
    (3.0, 0.6),
    (1.0, 0.5),
)

_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})


def normalize_text(text: str) -> str:
    """Lowercase, fold curly quotes and collapse whitespace."""

    return " ".join(text.translate(_QUOTES).lower().split())


def pattern_confidence(total_score: float) -> float:
    """Map a total weighted score onto the pattern confidence step function."""

    for floor, confidence in _CONFIDENCE_STEPS:
        if total_score >= floor:
            return confidence
    return 0.3


@dataclass(frozen=True)
class SignalMatch:
    category: Category
    signal_type: str
    pattern: str
    matched: str


@dataclass(frozen=True)
class PatternAnalysis:
    """Result of scoring one report against the signal library."""

    raw_scores: Mapping[Category, float]
    percentages: Mapping[Category, float]
    total_score: float
    confidence: float
    matches: tuple[SignalMatch, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "raw_scores": {c.value: v for c, v in self.raw_scores.items()},
            "percentages": {c.value: v for c, v in self.percentages.items()},
            "total_score": self.total_score,
            "confidence": self.confidence,
            "matches": [
                {"category": m.category.value, "type": m.signal_type, "pattern": m.pattern, "match": m.matched}
                for m in self.matches
            ],
        }


class SignalLibrary:
    """Compiled signal table plus per-type weights."""

    def __init__(
        self,
        signals: Mapping[Category, Mapping[str, Sequence[str]]] | None = None,
        weights: Mapping[str, float] | None = None,
        default_weight: float = 1.0,
    ) -> None:
        table = signals if signals is not None else DEFAULT_SIGNALS
        self._weights = dict(DEFAULT_WEIGHTS if weights is None else weights)
        self._default_weight = default_weight
        self._compiled: dict[Category, dict[str, tuple[re.Pattern[str], ...]]] = {
            category: {
                signal_type: tuple(re.compile(source, re.IGNORECASE) for source in sources)
                for signal_type, sources in groups.items()
            }
            for category, groups in table.items()
        }

    def weight_for(self, signal_type: str) -> float:
        return self._weights.get(signal_type, self._default_weight)

    def analyze(self, text: str) -> PatternAnalysis:
        normalized = normalize_text(text)
        raw = {category: 0.0 for category in CATEGORY_ORDER}
        matches: list[SignalMatch] = []

        for category, groups in self._compiled.items():
            for signal_type, patterns in groups.items():
                hits = 0
                for pattern in patterns:
                    found = pattern.search(normalized)
                    if found:
                        hits += 1
                        matches.append(SignalMatch(category, signal_type, pattern.pattern, found.group(0)))
                if hits:
                    raw[category] += hits * self.weight_for(signal_type)

        total = sum(raw.values())
        if total > 0:
            percentages = {category: score / total * 100 for category, score in raw.items()}
        else:
            percentages = {category: 0.0 for category in raw}

        return PatternAnalysis(
            raw_scores=raw,
            percentages=percentages,
            total_score=total,
            confidence=pattern_confidence(total),
            matches=tuple(matches),
        )
