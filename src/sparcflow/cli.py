from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from sparcflow.backends import (
    AgentBackend,
    OpenAIBackend,
    ResilientBackend,
    RetryPolicy,
    TemplateBackend,
)
from sparcflow.config import BackendName, SparcflowConfig, load_config, save_config
from sparcflow.engine import WorkflowEngine, WorkflowOutput, derive_status
from sparcflow.errors import SparcflowError
from sparcflow.logging_setup import setup_logging
from sparcflow.orchestrator import RuleBasedOrchestrator
from sparcflow.phases import build_phase_nodes
from sparcflow.state import WorkflowInput, WorkflowStore

BACKEND_CHOICES = ["openai", "template"]
MODE_CHOICES = ["design", "build", "debug"]


@dataclass(slots=True)
class Runtime:
    root: Path
    config_path: Path
    config: SparcflowConfig
    store: WorkflowStore
    engine: WorkflowEngine


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _state_dir(root: Path, config: SparcflowConfig) -> Path:
    state_dir = Path(config.project.state_dir)
    if not state_dir.is_absolute():
        state_dir = root / state_dir
    return state_dir


def _build_single_backend(backend_name: BackendName, config: SparcflowConfig) -> AgentBackend:
    if backend_name == "openai":
        return OpenAIBackend(
            model=config.agents.model,
            temperature=config.agents.temperature,
            max_tokens=config.agents.max_tokens,
        )
    return TemplateBackend()


def _build_backend(config: SparcflowConfig, store: WorkflowStore) -> AgentBackend:
    primary_name = config.backend.primary
    fallback_name = config.backend.fallback
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.backend.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=primary_name,
        primary_backend=_build_single_backend(primary_name, config),
        fallback_name=fallback_name,
        fallback_backend=_build_single_backend(fallback_name, config),
        retry_policy=policy,
        event_hook=store.record_event,
    )


def _load_runtime(root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    setup_logging(config.logging)
    try:
        store = WorkflowStore(
            _state_dir(root, config),
            on_persistence_error=config.workflow.on_persistence_error,
        )
    except (OSError, SparcflowError) as exc:
        raise click.ClickException(str(exc)) from exc
    backend = _build_backend(config, store)
    engine = WorkflowEngine(
        store,
        build_phase_nodes(backend, model=config.agents.model),
        RuleBasedOrchestrator(),
        max_iterations=config.workflow.max_iterations,
        node_timeout_seconds=config.workflow.node_timeout_seconds,
    )
    return Runtime(
        root=root,
        config_path=config_path,
        config=config,
        store=store,
        engine=engine,
    )


def _summarize(output: WorkflowOutput) -> dict[str, Any]:
    state = output.state
    return {
        "issue_id": state.issue_id,
        "mode": state.current_mode,
        "phase": state.current_phase,
        "progress": state.progress,
        "status": derive_status(state),
        "artifacts": state.present_artifacts(),
        "transitions": [transition.to_dict() for transition in state.metadata.transitions],
        "errors": [error.to_dict() for error in state.metadata.errors],
        "performance": output.performance,
        "decisions": len(output.decisions),
    }


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


@click.group()
def cli() -> None:
    """SPARC workflow CLI."""


@cli.command("init")
@click.option("--backend", type=click.Choice(BACKEND_CHOICES), default=None)
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def init_command(backend: str | None, config_value: str) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
    save_config(config_path, config)

    state_dir = _state_dir(root, config)
    state_dir.mkdir(parents=True, exist_ok=True)

    click.echo(f"Initialized sparcflow in {root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.primary}")
    click.echo(f"State directory: {state_dir}")


@cli.command("run")
@click.argument("issue_id")
@click.option("--mode", type=click.Choice(MODE_CHOICES), default=None)
@click.option("--title", default="", show_default=False)
@click.option("--description", default="", show_default=False)
@click.option("--input", "user_input", default=None, help="Defaults to the description.")
@click.option("--full", is_flag=True, default=False, help="Print the full workflow output.")
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def run_command(
    issue_id: str,
    mode: str | None,
    title: str,
    description: str,
    user_input: str | None,
    full: bool,
    config_value: str,
) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, _resolve_config_path(root, config_value))
    workflow_input = WorkflowInput(
        issue_id=issue_id,
        mode=mode or runtime.config.workflow.default_mode,  # type: ignore[arg-type]
        user_input=user_input if user_input is not None else (description or title),
        issue_title=title,
        issue_description=description,
    )
    try:
        output = asyncio.run(runtime.engine.execute_workflow(workflow_input))
    except (SparcflowError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(output.to_dict() if full else _summarize(output))


@cli.command("resume")
@click.argument("issue_id")
@click.option("--full", is_flag=True, default=False, help="Print the full workflow output.")
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def resume_command(issue_id: str, full: bool, config_value: str) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, _resolve_config_path(root, config_value))
    try:
        output = asyncio.run(runtime.engine.resume_workflow(issue_id))
    except SparcflowError as exc:
        raise click.ClickException(str(exc)) from exc
    if output is None:
        raise click.ClickException(f"No workflow state found for {issue_id}")
    _echo_json(output.to_dict() if full else _summarize(output))


@cli.command("status")
@click.argument("issue_id")
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def status_command(issue_id: str, config_value: str) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, _resolve_config_path(root, config_value))
    try:
        status = asyncio.run(runtime.engine.get_workflow_status(issue_id))
    except SparcflowError as exc:
        raise click.ClickException(str(exc)) from exc
    if status is None:
        raise click.ClickException(f"No workflow state found for {issue_id}")
    _echo_json(status.to_dict())


@cli.command("reset")
@click.argument("issue_id")
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def reset_command(issue_id: str, config_value: str) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, _resolve_config_path(root, config_value))
    try:
        removed = asyncio.run(runtime.engine.reset_workflow(issue_id))
    except SparcflowError as exc:
        raise click.ClickException(str(exc)) from exc
    if removed:
        click.echo(f"Reset workflow {issue_id}")
    else:
        click.echo(f"No workflow state for {issue_id}")


@cli.command("metrics")
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def metrics_command(config_value: str) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, _resolve_config_path(root, config_value))
    try:
        backend_metrics = runtime.store.get_metrics()
        engine_metrics = runtime.engine.get_workflow_metrics()
    except SparcflowError as exc:
        raise click.ClickException(str(exc)) from exc
    events = backend_metrics.get("backend_events", [])
    _echo_json(
        {
            "engine": engine_metrics,
            "backend": {
                "primary": runtime.config.backend.primary,
                "fallback": runtime.config.backend.fallback,
                "retry_count": int(backend_metrics.get("backend_retry_count", 0)),
                "fallback_count": int(backend_metrics.get("backend_fallback_count", 0)),
                "recent_events": events[-10:] if isinstance(events, list) else [],
            },
        }
    )


@cli.command("backend")
@click.argument("backend_name", type=click.Choice(BACKEND_CHOICES))
@click.option("--config", "config_value", default="sparcflow.toml", show_default=True)
def backend_command(backend_name: str, config_value: str) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    config.backend.primary = backend_name  # type: ignore[assignment]
    save_config(config_path, config)
    click.echo(f"Primary backend set to {backend_name}")
