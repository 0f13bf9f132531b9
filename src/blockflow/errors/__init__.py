"""Error taxonomy for the workflow engine."""

from .exceptions import (
    BlockflowError,
    BlockTimeoutError,
    ConfigurationError,
    CycleDetectedError,
    DuplicateBlockError,
    ItemError,
    RegistryError,
    TransientError,
    UnknownBlockError,
    WorkflowValidationError,
)
from .classifier import is_transient, error_type_name

__all__ = [
    "BlockflowError",
    "BlockTimeoutError",
    "ConfigurationError",
    "CycleDetectedError",
    "DuplicateBlockError",
    "ItemError",
    "RegistryError",
    "TransientError",
    "UnknownBlockError",
    "WorkflowValidationError",
    "is_transient",
    "error_type_name",
]
