from __future__ import annotations

import pytest

from bug_router.classification.signals import (
    DEFAULT_WEIGHTS,
    SignalLibrary,
    normalize_text,
    pattern_confidence,
)
from bug_router.models import Category


def test_normalize_text_folds_quotes_case_and_whitespace() -> None:
    assert normalize_text("I  CAN’T\n\tFind It") == "i can't find it"


@pytest.mark.parametrize(
    "total, expected",
    [
        (0.0, 0.3),
        (0.99, 0.3),
        (1.0, 0.5),
        (3.0, 0.6),
        (5.4, 0.7),
        (7.0, 0.8),
        (9.99, 0.8),
        (10.0, 0.9),
        (42.0, 0.9),
    ],
)
def test_pattern_confidence_steps(total: float, expected: float) -> None:
    assert pattern_confidence(total) == expected


def test_code_bug_report_scores_only_code_signals() -> None:
    analysis = SignalLibrary().analyze("Login button returns 500 error when clicked")

    assert analysis.raw_scores[Category.CODE_BUG] == pytest.approx(10.0)
    assert analysis.raw_scores[Category.HUMAN_ERROR] == 0.0
    assert analysis.percentages[Category.CODE_BUG] == pytest.approx(100.0)
    assert analysis.confidence == 0.9
    assert {m.signal_type for m in analysis.matches} == {"technical_errors", "ui_bugs"}


def test_confusion_report_scores_human_error() -> None:
    analysis = SignalLibrary().analyze("I can't find where to create a job post, please help")

    assert analysis.raw_scores[Category.HUMAN_ERROR] == pytest.approx(3 * DEFAULT_WEIGHTS["confusion_language"])
    assert analysis.percentages[Category.HUMAN_ERROR] == pytest.approx(100.0)
    assert analysis.confidence == 0.7


def test_no_matches_gives_zero_percentages() -> None:
    analysis = SignalLibrary().analyze("zzz qqq")

    assert analysis.total_score == 0.0
    assert all(value == 0.0 for value in analysis.percentages.values())
    assert analysis.confidence == 0.3
    assert analysis.matches == ()


def test_percentages_sum_to_hundred_when_mixed() -> None:
    analysis = SignalLibrary().analyze("Permission denied with error code 403 after the release, how do i fix?")

    assert analysis.total_score > 0
    assert sum(analysis.percentages.values()) == pytest.approx(100.0)


def test_unweighted_signal_types_use_default_weight() -> None:
    library = SignalLibrary(
        signals={Category.INFRASTRUCTURE: {"custom": (r"kaboom",)}},
        weights={},
        default_weight=1.5,
    )

    analysis = library.analyze("Everything went KABOOM")

    assert library.weight_for("custom") == 1.5
    assert analysis.raw_scores[Category.INFRASTRUCTURE] == pytest.approx(1.5)
    assert analysis.confidence == 0.5


def test_infrastructure_outage_signals() -> None:
    analysis = SignalLibrary().analyze("The site is down, we get a 502 bad gateway")

    assert analysis.raw_scores[Category.INFRASTRUCTURE] >= 3 * DEFAULT_WEIGHTS["service_outages"]


def test_to_dict_uses_category_values() -> None:
    data = SignalLibrary().analyze("exception in stack trace").to_dict()

    assert set(data["raw_scores"]) == {c.value for c in Category}
    assert data["matches"][0]["category"] == "code_bug"
