import json
import logging
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog
from click.testing import CliRunner

from sparcflow.backends.base import AgentBackend, BackendExecutionError
from sparcflow.cli import cli
from sparcflow.config import load_config, save_config


class FailingBackend(AgentBackend):
    name = "failing"

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, context
        raise BackendExecutionError("no capacity", backend=self.name, retriable=False)
        yield ""  # pragma: no cover


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _init_quiet(runner: CliRunner, repo: Path) -> None:
    result = runner.invoke(cli, ["init", "--backend", "template"])
    assert result.exit_code == 0, result.output
    config = load_config(repo / "sparcflow.toml")
    config.logging.level = "WARNING"
    save_config(repo / "sparcflow.toml", config)


def test_cli_full_lifecycle_commands(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)
    assert (tmp_path / ".nys").is_dir()

    run_result = runner.invoke(
        cli, ["run", "t1", "--title", "X", "--description", "build X"]
    )
    assert run_result.exit_code == 0, run_result.output
    assert '"phase": "completion"' in run_result.output
    assert '"status": "completed"' in run_result.output
    assert (tmp_path / ".nys" / "t1-state.json").exists()
    requirements = (tmp_path / ".nys" / "t1" / "requirements.md").read_text(encoding="utf-8")
    assert "Core functionality for: build X" in requirements

    status_result = runner.invoke(cli, ["status", "t1"])
    assert status_result.exit_code == 0
    assert '"status": "completed"' in status_result.output
    assert '"progress": 100' in status_result.output

    resume_result = runner.invoke(cli, ["resume", "t1"])
    assert resume_result.exit_code == 0
    assert '"progress": 100' in resume_result.output

    metrics_result = runner.invoke(cli, ["metrics"])
    assert metrics_result.exit_code == 0
    assert '"total_nodes": 9' in metrics_result.output
    assert '"primary": "template"' in metrics_result.output

    first_reset = runner.invoke(cli, ["reset", "t1"])
    assert first_reset.exit_code == 0
    assert "Reset workflow t1" in first_reset.output
    second_reset = runner.invoke(cli, ["reset", "t1"])
    assert second_reset.exit_code == 0
    assert "No workflow state for t1" in second_reset.output

    missing = runner.invoke(cli, ["status", "t1"])
    assert missing.exit_code != 0
    assert "No workflow state found for t1" in missing.output


def test_run_build_mode_and_full_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    result = runner.invoke(
        cli, ["run", "b1", "--mode", "build", "--input", "add caching", "--full"]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["state"]["currentMode"] == "build"
    assert payload["state"]["currentPhase"] == "testing"
    assert set(payload["artifacts"]) == {"implementation", "tests"}
    assert payload["performance"]["node_count"] == 2


def test_run_reports_phase_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("sparcflow.cli._build_backend", lambda config, store: FailingBackend())
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    run_result = runner.invoke(cli, ["run", "t2", "--description", "build Y"])
    assert run_result.exit_code == 0, run_result.output
    assert "no capacity" in run_result.output
    assert '"phase": "specification"' in run_result.output

    status_result = runner.invoke(cli, ["status", "t2"])
    assert '"status": "error"' in status_result.output


def test_resume_without_record_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    result = runner.invoke(cli, ["resume", "ghost"])

    assert result.exit_code != 0
    assert "No workflow state found for ghost" in result.output


def test_invalid_issue_id_maps_to_click_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    result = runner.invoke(cli, ["status", "../escape"])

    assert result.exit_code != 0
    assert "Invalid issue id" in result.output


def test_backend_command_updates_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    result = runner.invoke(cli, ["backend", "openai"])

    assert result.exit_code == 0
    assert "Primary backend set to openai" in result.output
    assert load_config(tmp_path / "sparcflow.toml").backend.primary == "openai"


def test_metrics_report_decisions_from_earlier_runs(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    _init_quiet(runner, tmp_path)

    run_result = runner.invoke(cli, ["run", "t1", "--description", "build X"])
    assert run_result.exit_code == 0, run_result.output

    result = runner.invoke(cli, ["metrics"])

    assert result.exit_code == 0, result.output
    engine = json.loads(result.output)["engine"]
    assert engine["orchestrator_metrics"]["decision_count"] == 5.0
    assert "avg_decision_confidence" in engine["orchestrator_metrics"]
    assert [entry["decision"] for entry in engine["decision_history"]] == [
        "specification",
        "pseudocode",
        "architecture",
        "refinement",
        "completion",
    ]
    assert {entry["issue_id"] for entry in engine["decision_history"]} == {"t1"}
