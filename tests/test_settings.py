"""Tests for settings loading."""

from agentflow.settings import CliSettings, Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.branch_strategy == "sequential"
    assert settings.promote_outputs is True
    assert settings.strict_liveness is True
    assert settings.default_flow_type == "context_pass"
    assert settings.dag_directory == "./data/designed_dags"


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("AGENTFLOW_BRANCH_STRATEGY", "concurrent")
    monkeypatch.setenv("AGENTFLOW_STRICT_LIVENESS", "false")
    monkeypatch.setenv("AGENTFLOW_LOG_LEVEL", "DEBUG")

    settings = Settings(_env_file=None)

    assert settings.branch_strategy == "concurrent"
    assert settings.strict_liveness is False
    assert settings.log_level == "DEBUG"


def test_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("AGENTFLOW_TELEMETRY_EXPORTER=otlp\nUNRELATED_KEY=1\n")

    settings = Settings(_env_file=env_file)

    assert settings.telemetry_exporter == "otlp"


def test_cli_arguments_win_over_environment(monkeypatch):
    monkeypatch.setenv("AGENTFLOW_DAG_DIRECTORY", "/from/env")

    settings = CliSettings.from_args(["--command", "show", "--dag_file", "x.json", "--dag_directory", "/from/cli"])

    assert settings.command == "show"
    assert settings.dag_file == "x.json"
    assert settings.dag_directory == "/from/cli"


def test_cli_defaults():
    settings = CliSettings.from_args([])

    assert settings.command == "validate"
    assert settings.dag_file is None
