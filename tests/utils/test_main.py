from __future__ import annotations

import json

import pytest

import main


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    for name in ("GITHUB_TOKEN", "CLICKUP_API_TOKEN", "SLACK_BOT_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def test_classify_json_output(capsys) -> None:
    code = main.main(["--output", "json", "classify", "Login button returns 500 error when clicked"])

    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["recommendation"]["action"] == "human-investigation-required"
    assert data["estimate"]["source"] == "fallback"


def test_classify_urgent_text_output(capsys) -> None:
    code = main.main(["classify", "--urgent", "everything is on fire"])

    assert code == 0
    assert "emergency-human-review" in capsys.readouterr().out


def test_health_without_secrets(capsys) -> None:
    code = main.main(["--output", "json", "health"])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["status"] == "degraded"


def test_missing_explicit_config_exits_2(capsys) -> None:
    assert main.main(["--config", "missing.yaml", "health"]) == 2
    assert "not found" in capsys.readouterr().err


def test_process_and_stuck_use_configured_store(tmp_path, capsys) -> None:
    (tmp_path / "config.yaml").write_text(f"tracking:\n  db_path: {tmp_path / 'cli.db'}\n", encoding="utf-8")

    code = main.main([
        "--output", "json", "process",
        "--text", "Checkout page crashes", "--author", "U1", "--channel", "C1",
    ])
    result = json.loads(capsys.readouterr().out)

    # No ticketing is configured, so the human-review workflow reports a partial success.
    assert code == 1
    assert result["status"] == "partial"
    assert result["state"] == "analyzed"

    assert main.main(["stuck"]) == 0
    assert "No stuck issues." in capsys.readouterr().out


def test_process_rejects_empty_text(tmp_path, capsys) -> None:
    (tmp_path / "config.yaml").write_text(f"tracking:\n  db_path: {tmp_path / 'cli.db'}\n", encoding="utf-8")

    code = main.main(["process", "--text", " ", "--author", "U1", "--channel", "C1"])

    assert code == 2
    assert "empty" in capsys.readouterr().err


def test_pr_command_on_unknown_issue_exits_1(tmp_path, capsys) -> None:
    (tmp_path / "config.yaml").write_text(f"tracking:\n  db_path: {tmp_path / 'cli.db'}\n", encoding="utf-8")

    assert main.main(["pr", "nope", "--review"]) == 1
    assert "No issue record" in capsys.readouterr().err
