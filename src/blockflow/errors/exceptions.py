"""Exception hierarchy shared by blocks, the registry and the orchestrator."""

from typing import Any, Dict, List, Optional


class BlockflowError(Exception):
    """Base class for all engine errors."""

    kind = "error"


class ConfigurationError(BlockflowError):
    """A block or workflow is misconfigured (missing/invalid field).

    Fatal to the node that raised it and never retried.
    """

    kind = "configuration"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class TransientError(BlockflowError):
    """Network, timeout or rate-limit failure that may succeed on retry."""

    kind = "transient"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BlockTimeoutError(TransientError):
    """Operation exceeded its time limit."""

    def __init__(self, timeout: float, operation: str = "operation"):
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class ItemError(BlockflowError):
    """Failure of a single item inside a per-item loop.

    Recorded alongside successful items; never aborts the enclosing node.
    """

    kind = "item"

    def __init__(self, index: int, message: str, item: Any = None):
        self.index = index
        self.item = item
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "error": str(self)}


class RegistryError(BlockflowError):
    """Block registry misuse. Always fatal, never retried."""

    kind = "registry"


class DuplicateBlockError(RegistryError):
    """A block type key was registered twice."""

    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Block type already registered: {block_type}")


class UnknownBlockError(RegistryError):
    """Lookup of a block type that was never registered."""

    def __init__(self, block_type: str):
        self.block_type = block_type
        super().__init__(f"Unknown block type: {block_type}. Block not registered in registry.")


class WorkflowValidationError(BlockflowError):
    """Structural problem in a workflow definition."""

    kind = "validation"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class CycleDetectedError(WorkflowValidationError):
    """The workflow graph is not acyclic."""

    def __init__(self, node_ids: Optional[List[str]] = None):
        self.node_ids = sorted(node_ids or [])
        detail = f" (involving: {', '.join(self.node_ids)})" if self.node_ids else ""
        super().__init__(f"Cycle detected in workflow DAG{detail}")
