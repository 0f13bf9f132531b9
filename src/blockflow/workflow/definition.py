"""Workflow definition models: nodes, edges and run settings.

Definitions are immutable once built; the engine never mutates them. Input
accepts camelCase keys (``sourcePort``, ``errorHandling``) as well as
snake_case.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..errors import ConfigurationError, WorkflowValidationError
from ..utils.retry import RetryPolicy
from .dag import plan_execution

logger = logging.getLogger(__name__)

DEFAULT_PORT = "out"

ErrorHandling = Literal["continue", "stop"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class EdgeAdapter(_Frozen):
    """Transform applied to an edge's payload before it is merged into the target input.

    - ``map``: ``{target_field: "dotted.path" | "{{template}}"}``
    - ``template``: ``{target_field: "{{template}}" | literal}``
    - ``function``: ``"package.module:callable"`` called as ``fn(output, context)``
    """
    type: Literal["map", "template", "function"]
    mapping: Optional[Dict[str, Any]] = None
    template: Optional[Dict[str, Any]] = None
    function: Optional[str] = None

    @model_validator(mode="after")
    def validate_payload(self) -> "EdgeAdapter":
        if self.type == "function" and self.function and ":" not in self.function:
            raise ValueError(
                f"function adapter must be a 'module:callable' path, got '{self.function}'"
            )
        return self


class NodeDefinition(_Frozen):
    """One block instance within a workflow."""
    id: str
    type: str
    name: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout: Optional[float] = None  # seconds, overrides workflow/engine default
    retry: Optional[RetryPolicy] = None

    @field_validator("id", "type")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(f"timeout must be positive, got {v}")
        return v

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def display_name(self) -> str:
        return self.name or self.id


def generated_edge_id(data: Dict[str, Any]) -> str:
    port = data.get("sourcePort") or data.get("source_port") or DEFAULT_PORT
    if port == DEFAULT_PORT:
        return f"{data['source']}->{data['target']}"
    return f"{data['source']}:{port}->{data['target']}"


class EdgeDefinition(_Frozen):
    """Directed data-flow link; the target depends on the source."""
    id: Optional[str] = None  # Defaults to "<source>-><target>" or "<source>:<port>-><target>"
    source: str
    target: str
    source_port: str = Field(default=DEFAULT_PORT, alias="sourcePort")
    adapter: Optional[EdgeAdapter] = None

    @model_validator(mode="before")
    @classmethod
    def default_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id") and data.get("source") and data.get("target"):
            data = {**data, "id": generated_edge_id(data)}
        return data

    def select_port(self, output: Any) -> Any:
        """Pick the part of ``output`` this edge carries.

        The default port carries the whole output; a named port selects
        ``output[port]`` when present, otherwise falls back to the whole output.
        """
        if self.source_port == DEFAULT_PORT:
            return output
        if isinstance(output, dict) and self.source_port in output:
            return output[self.source_port]
        return output


class WorkflowSettings(_Frozen):
    """Run-wide settings; unset values fall back to the engine config."""
    timeout: Optional[float] = None  # per-node default, seconds
    retry: Optional[RetryPolicy] = None
    error_handling: Optional[ErrorHandling] = Field(default=None, alias="errorHandling")
    retry_on_any_failure: bool = Field(default=False, alias="retryOnAnyFailure")


class WorkflowDefinition(_Frozen):
    """Immutable description of a workflow: nodes, edges, settings."""
    id: str = "workflow"
    name: Optional[str] = None
    version: str = "1.0.0"
    description: str = ""
    nodes: List[NodeDefinition] = Field(default_factory=list)
    edges: List[EdgeDefinition] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @model_validator(mode="before")
    @classmethod
    def accept_globals(cls, data: Any) -> Any:
        # Older definitions carry run settings under "globals"
        if isinstance(data, dict) and "settings" not in data and "globals" in data:
            data = {**data, "settings": data["globals"]}
        return data

    @model_validator(mode="before")
    @classmethod
    def assign_edge_ids(cls, data: Any) -> Any:
        # Generated ids get a "#n" suffix on collision; explicit ids must stay unique
        if not isinstance(data, dict) or not isinstance(data.get("edges"), list):
            return data
        edges = data["edges"]
        taken = {e.get("id") for e in edges if isinstance(e, dict) and e.get("id")}
        taken.update(e.id for e in edges if isinstance(e, EdgeDefinition))
        assigned = []
        for edge in edges:
            if isinstance(edge, dict) and not edge.get("id") and edge.get("source") and edge.get("target"):
                base = generated_edge_id(edge)
                edge_id, n = base, 2
                while edge_id in taken:
                    edge_id, n = f"{base}#{n}", n + 1
                taken.add(edge_id)
                edge = {**edge, "id": edge_id}
            assigned.append(edge)
        return {**data, "edges": assigned}

    @model_validator(mode="after")
    def validate_structure(self) -> "WorkflowDefinition":
        errors = self.structural_errors()
        if errors:
            raise ValueError("; ".join(errors))
        return self

    def structural_errors(self) -> List[str]:
        """Duplicate ids, dangling edges and self-loops (cycles are checked by the planner)."""
        errors: List[str] = []
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id: '{node.id}'")
            seen.add(node.id)

        edge_ids = set()
        for edge in self.edges:
            if edge.source not in seen:
                errors.append(f"Edge '{edge.id}' references non-existent source node '{edge.source}'")
            if edge.target not in seen:
                errors.append(f"Edge '{edge.id}' references non-existent target node '{edge.target}'")
            if edge.source == edge.target:
                errors.append(f"Edge '{edge.id}' is a self-loop on node '{edge.source}'")
            if edge.id in edge_ids:
                errors.append(f"Duplicate edge id: '{edge.id}'")
            edge_ids.add(edge.id)
        return errors

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def get_node(self, node_id: str) -> NodeDefinition:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def incoming_edges(self, node_id: str) -> List[EdgeDefinition]:
        """Edges targeting ``node_id`` in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> List[EdgeDefinition]:
        return [e for e in self.edges if e.source == node_id]

    def validate_dag(self) -> None:
        """Raise ``CycleDetectedError`` if the graph has a cycle."""
        plan_execution(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Build and validate a definition, raising ``WorkflowValidationError``."""
        if not isinstance(data, dict):
            raise WorkflowValidationError(
                f"Workflow definition must be a mapping, got {type(data).__name__}"
            )
        try:
            workflow = cls.model_validate(data)
        except ValidationError as e:
            errors = [_format_validation_error(err) for err in e.errors()]
            raise WorkflowValidationError(
                f"Invalid workflow definition: {'; '.join(errors)}", errors
            ) from e
        workflow.validate_dag()
        return workflow


def _format_validation_error(err: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()))
    message = err.get("msg", "invalid value")
    # Drop pydantic's "Value error, " prefix on custom validator messages
    message = message.removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


def load_workflow(path: Union[str, Path]) -> WorkflowDefinition:
    """Load a workflow definition from a YAML or JSON file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Workflow file not found: {path}")

    with open(path) as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    logger.debug(f"Loaded workflow definition from {path}")
    return WorkflowDefinition.from_dict(data or {})
