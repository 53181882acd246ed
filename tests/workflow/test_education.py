from __future__ import annotations

from bug_router.workflow.education import (
    GENERIC_RESPONSE,
    EducationResponder,
    EducationTopic,
    extract_title,
)


def test_navigation_question_gets_navigation_guide() -> None:
    response = EducationResponder().respond("I can't find where to create a job post, please help")

    assert response.topic == "navigation"
    assert "Post a Job" in response.text


def test_password_question() -> None:
    response = EducationResponder().respond("I forgot my password and can't log in")

    assert response.topic == "password"


def test_unmatched_question_gets_generic_reply() -> None:
    response = EducationResponder().respond("zzz")

    assert response.topic == "generic"
    assert response.text == GENERIC_RESPONSE


def test_ties_go_to_earliest_topic() -> None:
    topics = (
        EducationTopic("first", (r"widget",), "first reply"),
        EducationTopic("second", (r"widget",), "second reply"),
    )

    assert EducationResponder(topics).respond("my widget").topic == "first"


def test_context_tips_are_appended() -> None:
    response = EducationResponder().respond(
        "browser shows a blank page", {"user_type": "expert", "tech_level": "beginner"}
    )

    assert response.topic == "browser"
    assert "Expert tip" in response.text
    assert "platform tour" in response.text


def test_extract_title() -> None:
    assert extract_title("Login: button   broken!") == "Login button broken"
    assert len(extract_title("word " * 40)) == 50
    assert extract_title("!!!") == "General Help Request"
