"""Dependency analysis and layered scheduling for workflow graphs."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List

from ..errors import CycleDetectedError

if TYPE_CHECKING:
    from .definition import WorkflowDefinition

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlan:
    """Layered execution order for a workflow.

    Nodes within one layer have no dependency on each other and may run
    concurrently; every dependency of a node sits in an earlier layer.
    """
    layers: List[List[str]]
    dependencies: Dict[str, List[str]] = field(default_factory=dict)  # node -> upstream node ids
    dependents: Dict[str, List[str]] = field(default_factory=dict)  # node -> downstream node ids

    @property
    def order(self) -> List[str]:
        """Flattened topological order."""
        return [node_id for layer in self.layers for node_id in layer]

    @property
    def sources(self) -> List[str]:
        """Nodes with no incoming edges; they receive the workflow input."""
        return [n for n in self.order if not self.dependencies.get(n)]

    @property
    def sinks(self) -> List[str]:
        """Nodes with no outgoing edges; their outputs form the run output."""
        return [n for n in self.order if not self.dependents.get(n)]

    def layer_of(self, node_id: str) -> int:
        for index, layer in enumerate(self.layers):
            if node_id in layer:
                return index
        raise KeyError(node_id)


def plan_execution(workflow: "WorkflowDefinition") -> ExecutionPlan:
    """Kahn's algorithm, one layer per round of zero-indegree nodes.

    Within a layer nodes keep their declaration order, so planning is
    deterministic. Raises ``CycleDetectedError`` naming the nodes that could
    not be scheduled.
    """
    node_ids = [node.id for node in workflow.nodes]
    dependencies: Dict[str, List[str]] = {n: [] for n in node_ids}
    dependents: Dict[str, List[str]] = {n: [] for n in node_ids}

    for edge in workflow.edges:
        # Parallel edges between the same pair count once
        if edge.source not in dependencies[edge.target]:
            dependencies[edge.target].append(edge.source)
            dependents[edge.source].append(edge.target)

    indegree = {n: len(dependencies[n]) for n in node_ids}
    layers: List[List[str]] = []
    ready = [n for n in node_ids if indegree[n] == 0]
    scheduled = 0

    while ready:
        layers.append(ready)
        scheduled += len(ready)
        next_ready = []
        for node_id in ready:
            for downstream in dependents[node_id]:
                indegree[downstream] -= 1
                if indegree[downstream] == 0:
                    next_ready.append(downstream)
        ready = sorted(next_ready, key=node_ids.index)

    if scheduled != len(node_ids):
        remaining = [n for n in node_ids if indegree[n] > 0]
        raise CycleDetectedError(remaining)

    logger.debug(f"Planned {len(node_ids)} nodes in {len(layers)} layers")
    return ExecutionPlan(layers=layers, dependencies=dependencies, dependents=dependents)
