from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

BackendName = Literal["openai", "template"]
ModeName = Literal["design", "build", "debug"]
PersistenceErrorPolicy = Literal["log", "raise"]


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"
    state_dir: str = ".nys"


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "openai"
    fallback: BackendName = "template"
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 90.0


@dataclass(slots=True)
class AgentsConfig:
    model: str = "gpt-4o"
    temperature: float = 0.0
    max_tokens: int = 2000


@dataclass(slots=True)
class WorkflowConfig:
    max_iterations: int = 10
    node_timeout_seconds: float = 300.0
    on_persistence_error: PersistenceErrorPolicy = "log"
    default_mode: ModeName = "design"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    file: str = ""
    rotation_max_mb: int = 5
    rotation_backups: int = 3


@dataclass(slots=True)
class SparcflowConfig:
    project: ProjectConfig
    backend: BackendConfig
    agents: AgentsConfig
    workflow: WorkflowConfig
    logging: LoggingConfig

    @classmethod
    def default(cls) -> SparcflowConfig:
        return cls.from_dict({})

    @classmethod
    def from_dict(cls, data: dict) -> SparcflowConfig:
        return cls(
            project=ProjectConfig(**data.get("project", {})),
            backend=BackendConfig(**data.get("backend", {})),
            agents=AgentsConfig(**data.get("agents", {})),
            workflow=WorkflowConfig(**data.get("workflow", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        return {
            "project": {
                "name": self.project.name,
                "state_dir": self.project.state_dir,
            },
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "agents": {
                "model": self.agents.model,
                "temperature": self.agents.temperature,
                "max_tokens": self.agents.max_tokens,
            },
            "workflow": {
                "max_iterations": self.workflow.max_iterations,
                "node_timeout_seconds": self.workflow.node_timeout_seconds,
                "on_persistence_error": self.workflow.on_persistence_error,
                "default_mode": self.workflow.default_mode,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "rotation_max_mb": self.logging.rotation_max_mb,
                "rotation_backups": self.logging.rotation_backups,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: SparcflowConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("project", "backend", "agents", "workflow", "logging"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SparcflowConfig:
    if not path.exists():
        return SparcflowConfig.default()
    return SparcflowConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: SparcflowConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
