import tomllib
from pathlib import Path

from sparcflow import __version__
from sparcflow.config import SparcflowConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "sparcflow.toml"
    config = SparcflowConfig.default()
    config.project.name = "sparc-test"
    config.project.state_dir = "state"
    config.backend.primary = "template"
    config.backend.max_retries = 3
    config.agents.model = "gpt-4o-mini"
    config.agents.temperature = 0.25
    config.workflow.max_iterations = 4
    config.workflow.on_persistence_error = "raise"
    config.workflow.default_mode = "build"
    config.logging.level = "DEBUG"
    config.logging.file = "logs/sparc.log"

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.project.name == "sparc-test"
    assert loaded.project.state_dir == "state"
    assert loaded.backend.primary == "template"
    assert loaded.backend.fallback == "template"
    assert loaded.backend.max_retries == 3
    assert loaded.agents.model == "gpt-4o-mini"
    assert loaded.agents.temperature == 0.25
    assert loaded.workflow.max_iterations == 4
    assert loaded.workflow.on_persistence_error == "raise"
    assert loaded.workflow.default_mode == "build"
    assert loaded.logging.level == "DEBUG"
    assert loaded.logging.file == "logs/sparc.log"


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config.project.state_dir == ".nys"
    assert config.backend.primary == "openai"
    assert config.workflow.max_iterations == 10
    assert config.workflow.on_persistence_error == "log"


def test_toml_dump_contains_every_section() -> None:
    rendered = dumps_toml(SparcflowConfig.default())

    for section in ("[project]", "[backend]", "[agents]", "[workflow]", "[logging]"):
        assert section in rendered
    assert "retry_backoff_seconds = 0.5" in rendered
    assert "node_timeout_seconds = 300.0" in rendered
    assert 'on_persistence_error = "log"' in rendered
    assert tomllib.loads(rendered)["workflow"]["max_iterations"] == 10


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
