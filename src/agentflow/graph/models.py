"""Pydantic models for the DAG definition document.

The document format is the one produced by the DAG designer:

    {
      "id": "...", "name": "...", "description": "...", "version": "1.0.0",
      "nodes": [{"id": "entry", "type": "entry", "agentName": "UserInput"}, ...],
      "edges": [{"id": "e1", "from": "entry", "to": "a", "flowType": "context_pass"}, ...],
      "entryNode": "entry",
      "exitNodes": ["exit"]
    }

Edge conditions are double-encoded: the ``condition`` field holds a JSON
string such as ``"{\\"type\\": \\"result\\", \\"expression\\": \\"success===true\\"}"``.
Both the encoded string and an already decoded object are accepted, and the
encoded form is written back on serialization.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from .errors import DAGConfigurationError


class NodeType(str, Enum):
    """Kind of node in the graph."""
    ENTRY = "entry"
    EXIT = "exit"
    AGENT = "agent"              # LLM-backed generic agent
    SDK_AGENT = "sdk_agent"      # SDK agent with tool/file access
    TOOL_AGENT = "tool_agent"    # Tool/service executing agent


class FlowType(str, Enum):
    """How output is handed from one node to the next."""
    LLM_CALL = "llm_call"
    CONTEXT_PASS = "context_pass"
    EXECUTE_AGENTS = "execute_agents"
    SDK_AGENT = "sdk_agent"
    VALIDATION = "validation"
    AUTONOMOUS_DECISION = "autonomous_decision"

    @property
    def is_conditional(self) -> bool:
        """True for conditional branch edges."""
        return self is FlowType.AUTONOMOUS_DECISION


class EdgeConditionSpec(BaseModel):
    """Decoded edge condition."""
    type: str = "result"
    expression: str = ""


class DAGNodeSpec(BaseModel):
    """A node as it appears in the document."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: NodeType = NodeType.AGENT
    agent_name: str = Field(alias="agentName")
    prompt: Optional[str] = None
    step_config: Optional[Dict[str, Any]] = Field(default=None, alias="stepConfig")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class DAGEdgeSpec(BaseModel):
    """An edge as it appears in the document."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    from_node: str = Field(alias="from")
    to_node: str = Field(alias="to")
    flow_type: FlowType = Field(default=FlowType.CONTEXT_PASS, alias="flowType")
    # Decoded condition, or the raw string when it could not be decoded
    condition: Optional[Union[EdgeConditionSpec, str]] = None
    execution_hint: Optional[str] = Field(default=None, alias="executionHint")
    priority: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("condition", mode="before")
    @classmethod
    def _decode_condition(cls, value: Any) -> Any:
        """Decode the double-encoded JSON condition string."""
        if value is None or isinstance(value, (dict, EdgeConditionSpec)):
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"[MODELS] Condition is not valid JSON, keeping raw text: {value!r}")
                return value
            if isinstance(decoded, dict):
                return decoded
            logger.warning(f"[MODELS] Condition JSON is not an object, keeping raw text: {value!r}")
            return value
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_serializer("condition")
    def _encode_condition(self, condition: Optional[Union[EdgeConditionSpec, str]]) -> Optional[str]:
        if condition is None:
            return None
        if isinstance(condition, EdgeConditionSpec):
            return json.dumps(condition.model_dump())
        return condition

    @property
    def is_conditional(self) -> bool:
        return self.flow_type.is_conditional


class DAGDefinition(BaseModel):
    """Complete DAG document."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str = ""
    version: str = "1.0.0"
    nodes: List[DAGNodeSpec] = Field(default_factory=list)
    edges: List[DAGEdgeSpec] = Field(default_factory=list)
    entry_node: str = Field(alias="entryNode")
    exit_nodes: List[str] = Field(default_factory=list, alias="exitNodes")
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DAGDefinition":
        """Parse a document dictionary.

        Raises:
            DAGConfigurationError: If the document does not match the schema
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DAGConfigurationError(_format_validation_errors(e), dag_name=data.get("name")) from e

    @classmethod
    def from_json(cls, text: str) -> "DAGDefinition":
        """Parse a JSON document.

        Raises:
            DAGConfigurationError: If the text is not a valid DAG document
        """
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise DAGConfigurationError(_format_validation_errors(e)) from e

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase document form."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def _format_validation_errors(error: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]
