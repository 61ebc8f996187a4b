"""Saving and loading DAG documents as JSON files."""

import json
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ..settings import Settings
from .dag import AgentDAG
from .errors import DAGConfigurationError
from .models import DAGDefinition


PathLike = Union[str, Path]


def _directory(directory: Optional[PathLike]) -> Path:
    if directory is None:
        directory = Settings().dag_directory
    return Path(directory)


def load_dag(filename: PathLike, directory: Optional[PathLike] = None) -> DAGDefinition:
    """Load a saved DAG document.

    Args:
        filename: File name inside ``directory`` (or an absolute path)
        directory: DAG directory (``Settings.dag_directory`` if None)

    Returns:
        Parsed DAG definition

    Raises:
        DAGConfigurationError: If the file is missing or not a valid DAG document
    """
    path = _directory(directory) / filename
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DAGConfigurationError([f"Cannot read DAG file {path}: {e}"]) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DAGConfigurationError([f"Invalid JSON in {path}: {e}"]) from e
    if not isinstance(data, dict):
        raise DAGConfigurationError([f"DAG document in {path} must be a JSON object"])

    definition = DAGDefinition.from_dict(data)
    logger.info(f"[LOADER] Loaded DAG '{definition.name}' from {path}")
    return definition


def load_agent_dag(filename: PathLike, directory: Optional[PathLike] = None) -> AgentDAG:
    """Load and validate a saved DAG."""
    return AgentDAG(load_dag(filename, directory))


def save_dag(
    dag: Union[AgentDAG, DAGDefinition],
    filename: PathLike,
    directory: Optional[PathLike] = None
) -> Path:
    """Save a DAG document as indented JSON, creating the directory.

    Returns:
        Path of the written file
    """
    definition = dag.definition if isinstance(dag, AgentDAG) else dag
    target_dir = _directory(directory)
    target_dir.mkdir(parents=True, exist_ok=True)

    path = target_dir / filename
    path.write_text(definition.to_json(indent=2), encoding="utf-8")
    logger.info(f"[LOADER] Saved DAG '{definition.name}' to {path}")
    return path


def list_saved_dags(directory: Optional[PathLike] = None) -> List[str]:
    """Sorted ``.json`` file names in the DAG directory; empty if it does not exist."""
    target_dir = _directory(directory)
    if not target_dir.is_dir():
        logger.debug(f"[LOADER] DAG directory not found: {target_dir}")
        return []
    return sorted(p.name for p in target_dir.iterdir() if p.is_file() and p.suffix == ".json")
