"""Tests for the chat-completions root-cause estimator.

HTTP traffic is intercepted with ``responses``.
"""

from __future__ import annotations

import json

import pytest
import responses

from bug_router.classification.estimator import (
    FALLBACK_ESTIMATE,
    GITHUB_MODELS_URL,
    ChatCompletionEstimator,
    RootCauseEstimate,
    extract_json,
)
from bug_router.models import Category

VALID_REPLY = {
    "humanError": {"probability": 10, "reasons": ["clear error code"]},
    "adminConfig": {"probability": 5, "reasons": []},
    "codeBug": {"probability": 80, "reasons": ["500 from login endpoint"]},
    "infrastructure": {"probability": 5},
    "confidence": 0.85,
    "reasoning": "Server error on a specific action",
}


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def estimator() -> ChatCompletionEstimator:
    return ChatCompletionEstimator("ghp_test_token_123", model="gpt-4o")


def test_from_api_payload_converts_wire_names() -> None:
    estimate = RootCauseEstimate.from_api_payload(VALID_REPLY)

    assert estimate.probabilities[Category.CODE_BUG] == 80.0
    assert estimate.probabilities[Category.INFRASTRUCTURE] == 5.0
    assert estimate.reasons[Category.CODE_BUG] == ("500 from login endpoint",)
    assert estimate.reasons[Category.INFRASTRUCTURE] == ()
    assert estimate.confidence == 0.85


@pytest.mark.parametrize(
    "mutation",
    [
        lambda data: data.pop("codeBug"),
        lambda data: data.pop("confidence"),
        lambda data: data.__setitem__("confidence", 1.5),
        lambda data: data["humanError"].__setitem__("probability", 120),
    ],
)
def test_from_api_payload_rejects_malformed_replies(mutation) -> None:
    data = json.loads(json.dumps(VALID_REPLY))
    mutation(data)

    with pytest.raises(ValueError, match="Malformed root-cause estimate"):
        RootCauseEstimate.from_api_payload(data)


def test_extract_json_handles_fences_and_chatter() -> None:
    fenced = "Here you go:\n```json\n{\"confidence\": 0.5}\n```"
    chatty = "Sure! {\"confidence\": 0.4} Hope that helps."

    assert extract_json(fenced) == {"confidence": 0.5}
    assert extract_json(chatty) == {"confidence": 0.4}
    with pytest.raises(ValueError):
        extract_json("no json here")


@responses.activate
def test_estimate_posts_prompt_and_parses_reply(estimator: ChatCompletionEstimator) -> None:
    responses.add(responses.POST, GITHUB_MODELS_URL, json=_completion(json.dumps(VALID_REPLY)), status=200)

    estimate = estimator.estimate("Login button returns 500 error", {"user_type": "expert"})

    assert estimate is not None
    assert estimate.source == "gpt-4o"
    assert estimate.probabilities[Category.CODE_BUG] == 80.0

    request = responses.calls[0].request
    assert request.headers["Authorization"] == "Bearer ghp_test_token_123"
    body = json.loads(request.body)
    assert body["model"] == "gpt-4o"
    assert "Login button returns 500 error" in body["messages"][1]["content"]
    assert "User Type: expert" in body["messages"][1]["content"]


@responses.activate
def test_estimate_returns_none_on_http_error(estimator: ChatCompletionEstimator) -> None:
    responses.add(responses.POST, GITHUB_MODELS_URL, json={"error": "rate limited"}, status=429)

    assert estimator.estimate("anything", {}) is None


@responses.activate
def test_estimate_returns_none_on_unparseable_content(estimator: ChatCompletionEstimator) -> None:
    responses.add(responses.POST, GITHUB_MODELS_URL, json=_completion("I am not sure."), status=200)

    assert estimator.estimate("anything", {}) is None


@responses.activate
def test_estimate_returns_none_on_missing_choices(estimator: ChatCompletionEstimator) -> None:
    responses.add(responses.POST, GITHUB_MODELS_URL, json={"choices": []}, status=200)

    assert estimator.estimate("anything", {}) is None


def test_fallback_distribution() -> None:
    assert FALLBACK_ESTIMATE.probabilities[Category.HUMAN_ERROR] == 40.0
    assert sum(FALLBACK_ESTIMATE.probabilities.values()) == 100.0
    assert FALLBACK_ESTIMATE.confidence == 0.3
    assert FALLBACK_ESTIMATE.source == "fallback"
