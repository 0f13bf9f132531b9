"""Block contract, registry and built-in blocks."""

import logging

from .base import BaseBlock, Block, BlockConfig
from .builtin import BUILTIN_BLOCKS
from .registry import BlockMetadata, BlockRegistry

logger = logging.getLogger(__name__)


def register_builtin_blocks(registry: BlockRegistry) -> BlockRegistry:
    """Register every built-in block type that is not already present."""
    for block_cls, metadata in BUILTIN_BLOCKS:
        if registry.has(block_cls.type):
            logger.debug(f"Skipping built-in '{block_cls.type}': already registered")
            continue
        registry.register(block_cls.type, block_cls, **metadata)
    return registry


def create_default_registry() -> BlockRegistry:
    """Fresh registry populated with the built-in blocks."""
    return register_builtin_blocks(BlockRegistry())


__all__ = [
    "BaseBlock",
    "Block",
    "BlockConfig",
    "BlockMetadata",
    "BlockRegistry",
    "create_default_registry",
    "register_builtin_blocks",
]
