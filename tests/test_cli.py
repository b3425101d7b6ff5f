from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner, Result

from radial.main import radial

pytestmark = [
    allure.epic("Tracker CLI"),
    allure.feature("Commands & Exit Codes"),
]


def _invoke(db_path: Path, *args: str, input_text: str | None = None) -> Result:
    return CliRunner().invoke(radial, [*args, "--db-path", str(db_path)], input=input_text)


def _json(result: Result) -> dict:
    return json.loads(result.stdout)


def test_init_creates_store_in_working_directory(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    result = runner.invoke(radial, ["init", "--stealth"])
    assert result.exit_code == 0, result.output
    assert (tmp_path / ".radial" / "radial.db").exists()
    assert (tmp_path / ".radial" / ".gitignore").read_text(encoding="utf-8") == "*\n"

    created = runner.invoke(radial, ["goal", "create", "Discovered", "--json"])
    assert created.exit_code == 0, created.output
    assert json.loads(created.stdout)["description"] == "Discovered"


def test_commands_fail_before_init(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(radial, ["goal", "list", "--json"])
    assert result.exit_code == 7
    assert json.loads(result.stdout)["error"]["code"] == "storage"


def test_ship_v1_workflow_through_cli(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"

    goal = _json(_invoke(db_path, "goal", "create", "Ship v1", "--json"))
    assert goal["state"] == "pending"
    goal_id = goal["id"]

    write_tests = _json(_invoke(db_path, "task", "create", goal_id, "write tests", "--json"))
    assert write_tests["state"] == "pending"
    assert write_tests["contract"] is None

    deploy = _json(
        _invoke(
            db_path,
            "task",
            "create",
            goal_id,
            "deploy",
            "--blocked-by",
            write_tests["id"],
            "--json",
        ),
    )
    assert deploy["state"] == "blocked"
    assert deploy["blocked_by"] == [write_tests["id"]]

    no_contract = _invoke(db_path, "task", "start", write_tests["id"])
    assert no_contract.exit_code == 4

    edited = _invoke(
        db_path,
        "edit",
        "task",
        write_tests["id"],
        "--receives",
        "codebase",
        "--produces",
        "test suite",
        "--verify",
        "pytest passes",
    )
    assert edited.exit_code == 0, edited.output

    started = _invoke(db_path, "task", "start", write_tests["id"])
    assert started.exit_code == 0, started.output
    assert f"Started task: {write_tests['id']}" in started.stdout

    completed = _json(
        _invoke(
            db_path,
            "task",
            "complete",
            write_tests["id"],
            "--result",
            "done",
            "--artifacts",
            "tests/test_a.py, tests/test_b.py",
            "--tokens",
            "1200",
            "--json",
        ),
    )
    assert completed["unblocked"] == [deploy["id"]]
    assert completed["task"]["result"] == {
        "summary": "done",
        "artifacts": ["tests/test_a.py", "tests/test_b.py"],
    }
    assert completed["task"]["metrics"]["tokens"] == 1200
    assert completed["goal"]["state"] == "in_progress"

    shown = _json(_invoke(db_path, "show", deploy["id"], "--json"))
    assert shown["kind"] == "task"
    assert shown["task"]["state"] == "pending"

    ready = _json(_invoke(db_path, "ready", goal_id, "--json"))
    assert ready == []

    listed = _json(_invoke(db_path, "task", "list", goal_id, "--json"))
    assert [task["id"] for task in listed] == [write_tests["id"], deploy["id"]]

    goal_view = _json(_invoke(db_path, "show", goal_id, "--json"))
    assert goal_view["kind"] == "goal"
    assert goal_view["goal"]["metrics"]["task_count"] == 2
    assert goal_view["goal"]["metrics"]["tasks_completed"] == 1
    assert goal_view["goal"]["metrics"]["total_tokens"] == 1200


def test_not_found_error_is_structured_json(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    goal = _json(_invoke(db_path, "goal", "create", "Ship v1", "--json"))
    typo = goal["id"][:-1] + ("x" if goal["id"][-1] != "x" else "y")

    result = _invoke(db_path, "task", "list", typo, "--json")

    assert result.exit_code == 3
    error = _json(result)["error"]
    assert error["code"] == "not_found"
    assert f"Did you mean: {goal['id']}" in error["message"]


def test_text_errors_use_distinct_exit_codes(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    goal = _json(_invoke(db_path, "goal", "create", "Ship v1", "--json"))

    assert _invoke(db_path, "task", "start", "missing0").exit_code == 3
    bad_blocker = _invoke(db_path, "task", "create", goal["id"], "x", "--blocked-by", "zzzzzzzz")
    assert bad_blocker.exit_code == 6


def test_malformed_environment_is_a_clean_usage_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("RADIAL_BUSY_TIMEOUT_MS", "abc")

    result = _invoke(tmp_path / "cli.db", "goal", "list")
    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)
    assert "Invalid integer value for RADIAL_BUSY_TIMEOUT_MS" in result.output


def test_human_readable_views(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    goal = _json(_invoke(db_path, "goal", "create", "Ship v1", "--json"))
    task = _json(
        _invoke(
            db_path,
            "task",
            "create",
            goal["id"],
            "write tests",
            "--receives",
            "code",
            "--json",
        ),
    )
    _invoke(db_path, "task", "comment", task["id"], "looking into it")

    listed = _invoke(db_path, "list")
    assert listed.exit_code == 0, listed.output
    assert goal["id"] in listed.stdout
    assert task["id"] in listed.stdout

    status = _invoke(db_path, "status", "--task", task["id"])
    assert "Receives: code" in status.stdout
    assert "looking into it" in status.stdout

    ready = _invoke(db_path, "ready", goal["id"])
    assert "1 task(s) ready:" in ready.stdout

    goals = _invoke(db_path, "goal", "list")
    assert "Ship v1" in goals.stdout


def test_clean_requires_confirmation(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _invoke(db_path, "goal", "create", "Open goal")

    aborted = _invoke(db_path, "clean", "--force", input_text="n\n")
    assert aborted.exit_code == 1
    assert "Open goal" in _invoke(db_path, "goal", "list").stdout

    nothing = _invoke(db_path, "clean", "--yes")
    assert "No completed goals to clean." in nothing.stdout

    forced = _invoke(db_path, "clean", "--force", "--yes")
    assert "Cleaned 1 goal(s)." in forced.stdout
    assert "No goals found." in _invoke(db_path, "goal", "list").stdout


def test_prep_prints_guide() -> None:
    result = CliRunner().invoke(radial, ["prep"])
    assert result.exit_code == 0
    assert "rd preparation" in result.stdout
    assert "Only `failed` tasks can be retried." in result.stdout
