"""Engine settings configuration."""

from typing import List, Literal, Optional, Sequence, Union

from pydantic_settings import BaseSettings, CliSettingsSource, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings.

    Values come from (highest to lowest priority) constructor arguments,
    ``AGENTFLOW_*`` environment variables, the ``.env`` file and defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = "agentflow"

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # Path to log file (None disables file logging)
    log_show_path: bool = True
    log_show_time: bool = True
    log_rich_tracebacks: bool = True
    log_file_rotation: str = "10 MB"
    log_file_retention: str = "7 days"

    # Telemetry configuration
    telemetry_enabled: bool = False
    telemetry_exporter: Literal["console", "otlp", "none"] = "console"
    telemetry_otlp_endpoint: str = "http://localhost:4317"
    telemetry_service_name: str = "agentflow-dag"

    # DAG storage
    dag_directory: str = "./data/designed_dags"

    # Executor configuration
    branch_strategy: Literal["sequential", "concurrent"] = "sequential"
    promote_outputs: bool = True  # Merge mapping outputs into the top-level context
    strict_liveness: bool = True  # Fail the run when deferred nodes never become executable
    default_flow_type: Literal[
        "llm_call", "context_pass", "execute_agents", "sdk_agent", "validation", "autonomous_decision"
    ] = "context_pass"


class CliSettings(Settings):
    """Settings for the ``agentflow`` command line.

    CLI arguments take priority over every other source.
    """

    command: Literal["validate", "show", "list"] = "validate"
    dag_file: Optional[str] = None

    @classmethod
    def from_args(cls, args: Optional[Sequence[str]] = None) -> "CliSettings":
        """Parse CLI arguments (``sys.argv[1:]`` if None) into settings.

        Args:
            args: Argument list to parse

        Returns:
            CliSettings instance
        """
        parse_args: Union[List[str], bool] = list(args) if args is not None else True
        cli_source = CliSettingsSource(
            cls,
            cli_parse_args=parse_args,
            cli_prog_name="agentflow",
        )
        return cls(_cli_settings_source=cli_source)
