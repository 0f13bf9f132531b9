"""Blockflow: a pluggable DAG workflow engine."""

from .blocks import BaseBlock, Block, BlockRegistry, create_default_registry
from .core.config import EngineConfig, load_config
from .workflow import (
    ContextFactory,
    ExecutionContext,
    ExecutionMode,
    NodeResult,
    NodeStatus,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowOrchestrator,
    load_workflow,
)

__version__ = "0.1.0"

__all__ = [
    "BaseBlock",
    "Block",
    "BlockRegistry",
    "create_default_registry",
    "EngineConfig",
    "load_config",
    "ContextFactory",
    "ExecutionContext",
    "ExecutionMode",
    "NodeResult",
    "NodeStatus",
    "WorkflowDefinition",
    "WorkflowExecutionResult",
    "WorkflowOrchestrator",
    "load_workflow",
]
