"""Workflow engine: definitions, DAG planning, merging, conditions and orchestration."""

from .adapters import apply_edge_adapter
from .conditions import Condition, ConditionEvaluator, evaluate_condition, evaluate_conditions
from .context import ContextFactory, ExecutionContext, ExecutionMode, ProgressUpdate
from .dag import ExecutionPlan, plan_execution
from .definition import (
    EdgeAdapter,
    EdgeDefinition,
    NodeDefinition,
    WorkflowDefinition,
    WorkflowSettings,
    load_workflow,
)
from .merge import deep_merge, fold_merge, smart_merge
from .orchestrator import WorkflowOrchestrator
from .results import NodeResult, NodeStatus, RunStatus, TimelineEvent, WorkflowExecutionResult
from .templating import interpolate, interpolate_object

__all__ = [
    "apply_edge_adapter",
    "Condition",
    "ConditionEvaluator",
    "evaluate_condition",
    "evaluate_conditions",
    "ContextFactory",
    "ExecutionContext",
    "ExecutionMode",
    "ProgressUpdate",
    "ExecutionPlan",
    "plan_execution",
    "EdgeAdapter",
    "EdgeDefinition",
    "NodeDefinition",
    "WorkflowDefinition",
    "WorkflowSettings",
    "load_workflow",
    "deep_merge",
    "fold_merge",
    "smart_merge",
    "WorkflowOrchestrator",
    "NodeResult",
    "NodeStatus",
    "RunStatus",
    "TimelineEvent",
    "WorkflowExecutionResult",
    "interpolate",
    "interpolate_object",
]
