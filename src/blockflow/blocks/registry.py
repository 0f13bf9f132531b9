"""Block registry: maps type keys to block classes and their metadata.

A registry is an ordinary object created at startup and injected into the
orchestrator, so tests and concurrent runs can use independent registries.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from ..errors import DuplicateBlockError, UnknownBlockError
from .base import Block

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockMetadata:
    """Descriptive information about a registered block type."""
    type: str
    name: str
    description: str = ""
    category: str = "custom"
    version: str = "1.0.0"
    supports_mock: bool = False
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "version": self.version,
            "supports_mock": self.supports_mock,
            "tags": list(self.tags),
        }


class BlockRegistry:
    """Type key -> block class, plus metadata."""

    def __init__(self):
        self._blocks: Dict[str, Type[Block]] = {}
        self._metadata: Dict[str, BlockMetadata] = {}

    def register(
        self,
        block_type: str,
        block_cls: Type[Block],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        category: str = "custom",
        version: str = "1.0.0",
        tags: Optional[List[str]] = None,
        supports_mock: Optional[bool] = None,
    ) -> BlockMetadata:
        """Register ``block_cls`` under ``block_type``.

        Raises ``DuplicateBlockError`` if the key is taken; use
        ``unregister`` first to replace a block.
        """
        if not block_type:
            raise ValueError("block_type must be a non-empty string")
        if block_type in self._blocks:
            raise DuplicateBlockError(block_type)

        metadata = BlockMetadata(
            type=block_type,
            name=name or block_type,
            description=description if description is not None else _first_doc_line(block_cls),
            category=category,
            version=version,
            supports_mock=(
                supports_mock if supports_mock is not None
                else bool(getattr(block_cls, "supports_mock", False))
            ),
            tags=list(tags or []),
        )
        self._blocks[block_type] = block_cls
        self._metadata[block_type] = metadata
        logger.debug(f"Registered block type '{block_type}' ({category} v{version})")
        return metadata

    def block(self, block_type: str, **metadata: Any) -> Callable[[Type[Block]], Type[Block]]:
        """Class decorator form of ``register``."""
        def decorator(block_cls: Type[Block]) -> Type[Block]:
            self.register(block_type, block_cls, **metadata)
            return block_cls

        return decorator

    def create(self, block_type: str) -> Block:
        """Fresh block instance for one invocation."""
        block_cls = self._blocks.get(block_type)
        if block_cls is None:
            raise UnknownBlockError(block_type)
        return block_cls()

    def deferred_scopes(self, block_type: str) -> Tuple[str, ...]:
        """Template scopes the block resolves itself; config interpolation skips them."""
        block_cls = self._blocks.get(block_type)
        if block_cls is None:
            raise UnknownBlockError(block_type)
        return tuple(getattr(block_cls, "deferred_scopes", ()))

    def has(self, block_type: str) -> bool:
        return block_type in self._blocks

    def list_types(self) -> List[str]:
        return sorted(self._blocks)

    def get_metadata(self, block_type: str) -> BlockMetadata:
        metadata = self._metadata.get(block_type)
        if metadata is None:
            raise UnknownBlockError(block_type)
        return metadata

    def all_metadata(self) -> List[BlockMetadata]:
        return [self._metadata[t] for t in self.list_types()]

    def by_category(self, category: str) -> List[BlockMetadata]:
        return [m for m in self.all_metadata() if m.category == category]

    def categories(self) -> List[str]:
        return sorted({m.category for m in self._metadata.values()})

    def supports_mock(self, block_type: str) -> bool:
        metadata = self._metadata.get(block_type)
        return bool(metadata and metadata.supports_mock)

    def unregister(self, block_type: str) -> bool:
        """Remove a block type. Returns False if it was not registered."""
        if block_type not in self._blocks:
            return False
        del self._blocks[block_type]
        del self._metadata[block_type]
        return True

    def clear(self) -> None:
        self._blocks.clear()
        self._metadata.clear()

    def __contains__(self, block_type: str) -> bool:
        return self.has(block_type)

    def __len__(self) -> int:
        return len(self._blocks)


def _first_doc_line(block_cls: Type[Any]) -> str:
    doc = (block_cls.__doc__ or "").strip()
    return doc.splitlines()[0] if doc else ""
