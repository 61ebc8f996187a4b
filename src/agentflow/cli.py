"""Command line for inspecting DAG documents.

Usage:
    agentflow --command list
    agentflow --command validate --dag_file research.json
    agentflow --command show --dag_file ./my_dag.json
"""

from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console

from .graph.dag import AgentDAG, validate_definition
from .graph.errors import DAGConfigurationError
from .graph.loader import list_saved_dags, load_dag
from .graph.models import DAGDefinition
from .logging_config import level_rows, log_metrics, log_tree, log_with_table, setup_logging_from_settings
from .settings import CliSettings


def _load(settings: CliSettings) -> DAGDefinition:
    if not settings.dag_file:
        raise DAGConfigurationError(["--dag_file is required for this command"])
    # An existing path wins over a name inside the DAG directory
    directory = "." if Path(settings.dag_file).is_file() else settings.dag_directory
    return load_dag(settings.dag_file, directory)


def validate_command(settings: CliSettings, console: Console) -> int:
    definition = _load(settings)
    result = validate_definition(definition)

    status = "[bold green]valid[/bold green]" if result.valid else "[bold red]invalid[/bold red]"
    console.print(f"DAG [cyan]{definition.name}[/cyan] ({definition.id}) is {status}")
    for error in result.errors:
        console.print(f"  [red]✗ {error}[/red]")
    for warning in result.warnings:
        console.print(f"  [yellow]⚠ {warning}[/yellow]")
    if result.metrics is not None:
        log_metrics(result.metrics.to_dict(), title="Complexity", console=console)

    return 0 if result.valid else 1


def show_command(settings: CliSettings, console: Console) -> int:
    dag = AgentDAG(_load(settings))
    console.print(dag.visualize(), markup=False, highlight=False)
    log_tree(level_rows(dag.get_execution_order()), title="Execution Levels", console=console)
    return 0


def list_command(settings: CliSettings, console: Console) -> int:
    files = list_saved_dags(settings.dag_directory)
    if not files:
        console.print(f"[yellow]No saved DAGs in {settings.dag_directory}[/yellow]")
        return 0

    rows = []
    for filename in files:
        try:
            definition = load_dag(filename, settings.dag_directory)
            rows.append({
                "file": filename,
                "name": definition.name,
                "nodes": len(definition.nodes),
                "edges": len(definition.edges),
            })
        except DAGConfigurationError as e:
            rows.append({"file": filename, "name": f"(unreadable: {e.errors[0]})", "nodes": "-", "edges": "-"})
    log_with_table(rows, title=f"Saved DAGs ({settings.dag_directory})", console=console)
    return 0


COMMANDS = {
    "validate": validate_command,
    "show": show_command,
    "list": list_command,
}


def main(argv: Optional[Sequence[str]] = None, console: Optional[Console] = None) -> int:
    """Run the CLI.

    Args:
        argv: Arguments to parse (``sys.argv[1:]`` if None)
        console: Console for command output (creates new if None)

    Returns:
        Process exit code
    """
    load_dotenv()
    settings = CliSettings.from_args(argv)
    setup_logging_from_settings(settings)
    console = console or Console()

    try:
        return COMMANDS[settings.command](settings, console)
    except DAGConfigurationError as e:
        logger.error(f"[CLI] {settings.command} failed")
        for error in e.errors:
            console.print(f"  [red]✗ {error}[/red]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
