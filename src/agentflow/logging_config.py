"""Rich logging configuration for the DAG engine.

Loguru is the only logger; ``setup_rich_logging`` points it at a rich
console and, optionally, a rotating file. The ``log_*`` helpers render run
statistics, saved DAG listings and execution levels for the CLI.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.traceback import install as install_rich_traceback
from rich.tree import Tree

from .settings import Settings

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
MISSING = "-"


def setup_rich_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    show_path: bool = True,
    show_time: bool = True,
    rich_tracebacks: bool = True,
    console: Optional[Console] = None,
    file_rotation: str = "10 MB",
    file_retention: str = "7 days"
) -> Console:
    """Route loguru through a rich console.

    The console sink honours ``level``; the file sink, when given, always
    records DEBUG so that scheduler decisions ([DEPS], [CONDITION]) can be
    inspected after a run.

    Args:
        level: Console logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path of a rotating DEBUG log file
        show_path: Show the emitting module in console logs
        show_time: Show timestamps in console logs
        rich_tracebacks: Render exceptions with rich
        console: Rich Console to log to (stderr console if None)
        file_rotation: Rotation threshold for the log file
        file_retention: How long rotated log files are kept

    Returns:
        Console instance used for logging
    """
    console = console or Console(stderr=True)
    if rich_tracebacks:
        install_rich_traceback(console=console, show_locals=False, word_wrap=True)

    logger.remove()
    handler = RichHandler(
        console=console,
        rich_tracebacks=rich_tracebacks,
        markup=False,
        show_time=show_time,
        show_path=show_path,
    )
    logger.add(handler, format="{message}", level=level)

    if log_file:
        logger.add(
            log_file,
            rotation=file_rotation,
            retention=file_retention,
            compression="zip",
            format=FILE_FORMAT,
            level="DEBUG",
        )
        logger.debug(f"[LOGGING] Writing DEBUG log to {log_file}")

    return console


def setup_logging_from_settings(settings: Optional[Settings] = None, console: Optional[Console] = None) -> Console:
    """Configure logging from :class:`Settings`."""
    settings = settings or Settings()
    return setup_rich_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        show_path=settings.log_show_path,
        show_time=settings.log_show_time,
        rich_tracebacks=settings.log_rich_tracebacks,
        console=console,
        file_rotation=settings.log_file_rotation,
        file_retention=settings.log_file_retention,
    )


def _cell(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, bool):
        return "✓" if value else "✗"
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, Mapping):
        return ", ".join(f"{key}={_cell(inner)}" for key, inner in value.items()) or MISSING
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(_cell(item) for item in value) or MISSING
    return str(value)


def log_with_table(rows: Sequence[Mapping[str, Any]], title: str = "", console: Optional[Console] = None):
    """Print rows as a table.

    Columns are the union of the row keys in first-seen order; a row that
    lacks a column shows ``-``. Columns holding only numbers are right-aligned.

    Args:
        rows: Row mappings (e.g. one per saved DAG)
        title: Table title
        console: Console instance (creates new if None)
    """
    console = console or Console()
    if not rows:
        console.print("[yellow]No data to display[/yellow]")
        return

    columns: Dict[str, None] = {}
    for row in rows:
        columns.update(dict.fromkeys(str(key) for key in row))

    table = Table(title=title, show_header=True, header_style="bold magenta")
    for column in columns:
        numeric = all(
            isinstance(row.get(column), (int, float)) and not isinstance(row.get(column), bool)
            for row in rows if column in row
        )
        table.add_column(column, style="cyan", justify="right" if numeric else "left")

    for row in rows:
        table.add_row(*[_cell(row.get(column)) for column in columns])

    console.print(table)


def log_metrics(metrics: Mapping[str, Any], title: str = "Metrics", console: Optional[Console] = None):
    """Print a metrics mapping (statistics, complexity) as a two-column table.

    Keys are shown in Title Case; floats with three decimals; nested
    mappings such as per agent kind counts inline as ``key=value`` pairs.

    Args:
        metrics: Metric name to value
        title: Title for the metrics display
        console: Console instance (creates new if None)
    """
    console = console or Console()
    table = Table(title=title, show_header=True, header_style="bold green")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    for key, value in metrics.items():
        table.add_row(key.replace("_", " ").title(), _cell(value))

    console.print(table)


def _grow(tree: Tree, data: Any) -> None:
    if isinstance(data, Mapping):
        for key, value in data.items():
            if isinstance(value, (Mapping, list, tuple)):
                _grow(tree.add(f"[bold cyan]{key}[/bold cyan]"), value)
            else:
                tree.add(f"[cyan]{key}[/cyan]: [yellow]{_cell(value)}[/yellow]")
    elif isinstance(data, (list, tuple)):
        for index, item in enumerate(data):
            if isinstance(item, (Mapping, list, tuple)):
                _grow(tree.add(f"[bold cyan]{index}[/bold cyan]"), item)
            else:
                tree.add(f"[yellow]{item}[/yellow]")
    else:
        tree.add(f"[yellow]{_cell(data)}[/yellow]")


def log_tree(data: Any, title: str = "Data Structure", console: Optional[Console] = None):
    """Print nested data, e.g. execution levels mapped to node ids, as a tree.

    Args:
        data: Nested mappings and lists
        title: Tree title
        console: Console instance (creates new if None)
    """
    console = console or Console()
    tree = Tree(f"[bold magenta]{title}[/bold magenta]")
    _grow(tree, data)
    console.print(tree)


def level_rows(levels: List[List[str]]) -> Dict[str, List[str]]:
    """Name execution levels for display: ``{"Level 1": [...], ...}``."""
    return {f"Level {index}": list(level) for index, level in enumerate(levels, 1)}
