"""Result envelopes produced by blocks and the orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class NodeStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    NEVER_RUN = "never_run"  # Not eligible: an upstream node did not complete, or the run stopped


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NodeResult:
    """Stable result envelope every block returns.

    ``error`` is set if and only if ``status`` is ``failed``.
    """
    status: NodeStatus
    output: Any = None
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None  # "<kind>:<ExceptionClass>"
    retry_count: int = 0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        self.status = NodeStatus(self.status)
        if self.status == NodeStatus.FAILED and not self.error:
            self.error = "Unknown error"
        elif self.status != NodeStatus.FAILED:
            self.error = None
            self.error_type = None

    @classmethod
    def completed(cls, output: Any = None, **kwargs) -> "NodeResult":
        return cls(status=NodeStatus.COMPLETED, output=output, **kwargs)

    @classmethod
    def failed(cls, error: str, error_type: Optional[str] = None, **kwargs) -> "NodeResult":
        return cls(status=NodeStatus.FAILED, error=error, error_type=error_type, **kwargs)

    @classmethod
    def never_run(cls, reason: str) -> "NodeResult":
        return cls(status=NodeStatus.NEVER_RUN, metadata={"reason": reason})

    @property
    def is_completed(self) -> bool:
        return self.status == NodeStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "output": self.output,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "error": self.error,
            "error_type": self.error_type,
            "retry_count": self.retry_count,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "metadata": self.metadata,
            "logs": self.logs,
        }


@dataclass
class TimelineEvent:
    """One entry in a run's timeline."""
    event: str  # e.g. workflow_started, node_started, node_completed, node_failed
    timestamp: str = field(default_factory=utc_now)
    node_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": self.timestamp,
            "node_id": self.node_id,
            "details": self.details,
        }


@dataclass
class WorkflowExecutionResult:
    """Aggregate outcome of one workflow run."""
    execution_id: str
    workflow_id: str
    status: RunStatus
    input: Any = None
    output: Dict[str, Any] = field(default_factory=dict)  # sink node id -> output
    node_results: Dict[str, NodeResult] = field(default_factory=dict)
    timeline: List[TimelineEvent] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    execution_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def nodes_with_status(self, status: NodeStatus) -> List[str]:
        return [node_id for node_id, r in self.node_results.items() if r.status == status]

    @property
    def failed_nodes(self) -> List[str]:
        return self.nodes_with_status(NodeStatus.FAILED)

    @property
    def never_run_nodes(self) -> List[str]:
        return self.nodes_with_status(NodeStatus.NEVER_RUN)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "node_results": {k: v.to_dict() for k, v in self.node_results.items()},
            "timeline": [e.to_dict() for e in self.timeline],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "metadata": self.metadata,
        }
