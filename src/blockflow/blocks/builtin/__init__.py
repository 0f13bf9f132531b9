"""Built-in block types."""

from typing import Any, Dict, List, Tuple, Type

from ..base import Block
from .core import EchoBlock, OutputLoggerBlock, PassThroughBlock, SetVariablesBlock, StaticInputBlock
from .http import HttpRequestBlock
from .logic import BranchBlock, FilterBlock
from .transform import FieldMappingBlock, MergeBlock

# (block class, registry metadata)
BUILTIN_BLOCKS: List[Tuple[Type[Block], Dict[str, Any]]] = [
    (EchoBlock, {"name": "Echo", "category": "utility", "tags": ["identity"]}),
    (PassThroughBlock, {"name": "Pass Through", "category": "transform", "tags": ["identity"]}),
    (StaticInputBlock, {"name": "Static Input", "category": "input"}),
    (FilterBlock, {"name": "Filter", "category": "logic", "tags": ["conditions"]}),
    (BranchBlock, {"name": "Branch", "category": "logic", "tags": ["conditions", "routing"]}),
    (FieldMappingBlock, {"name": "Field Mapping", "category": "transform"}),
    (MergeBlock, {"name": "Merge", "category": "transform", "tags": ["merge"]}),
    (SetVariablesBlock, {"name": "Set Variables", "category": "context", "tags": ["variables"]}),
    (OutputLoggerBlock, {"name": "Logger Output", "category": "output"}),
    (HttpRequestBlock, {"name": "HTTP Request", "category": "api", "tags": ["enrichment", "http"]}),
]

__all__ = [
    "BUILTIN_BLOCKS",
    "BranchBlock",
    "EchoBlock",
    "FieldMappingBlock",
    "FilterBlock",
    "HttpRequestBlock",
    "MergeBlock",
    "OutputLoggerBlock",
    "PassThroughBlock",
    "SetVariablesBlock",
    "StaticInputBlock",
]
