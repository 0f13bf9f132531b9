"""Record-shaping blocks: field mapping and payload merging."""

from functools import reduce
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ...utils.paths import MISSING, get_path
from ...workflow.context import ExecutionContext
from ...workflow.merge import deep_merge, smart_merge
from ..base import BaseBlock, BlockConfig


class TransformOperation(BaseModel):
    """One field-level operation applied to every record."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["map", "rename", "remove", "deduplicate"]
    field: Optional[str] = None
    target_field: Optional[str] = Field(default=None, alias="targetField")

    @model_validator(mode="after")
    def validate_fields(self) -> "TransformOperation":
        if self.type in ("map", "rename") and not (self.field and self.target_field):
            raise ValueError(f"'{self.type}' operation requires 'field' and 'target_field'")
        if self.type == "remove" and not self.field:
            raise ValueError("'remove' operation requires 'field'")
        return self


class FieldMappingConfig(BlockConfig):
    operations: List[TransformOperation] = Field(default_factory=list)


class FieldMappingBlock(BaseBlock):
    """Applies map/rename/remove/deduplicate operations in order.

    Works on a list of records or a single record; non-dict items are left
    as they are.
    """
    type = "transform.field_mapping"
    supports_mock = True
    config_model = FieldMappingConfig

    async def execute_live(self, config: FieldMappingConfig, input: Any, context: ExecutionContext) -> Any:
        data = input
        for operation in config.operations:
            data = self.apply_operation(operation, data)

        count = len(data) if isinstance(data, list) else 1
        self.log(context, "info", "Field mapping completed", operations=len(config.operations), records=count)
        return self.completed(data, operations=len(config.operations), records=count)

    def apply_operation(self, operation: TransformOperation, data: Any) -> Any:
        if operation.type == "deduplicate":
            return _deduplicate(data, operation.field or "id")
        if isinstance(data, list):
            return [self._apply_to_record(operation, item) for item in data]
        return self._apply_to_record(operation, data)

    def _apply_to_record(self, operation: TransformOperation, record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        updated = dict(record)
        if operation.type == "map":
            updated[operation.target_field] = get_path(record, operation.field)
        elif operation.type == "rename":
            if operation.field in updated:
                updated[operation.target_field] = updated.pop(operation.field)
        elif operation.type == "remove":
            updated.pop(operation.field, None)
        return updated


def _deduplicate(data: Any, key: str) -> Any:
    """Keep the first record for each key value; records without the key are kept."""
    if not isinstance(data, list):
        return data
    seen = set()
    unique = []
    for item in data:
        value = get_path(item, key, MISSING) if isinstance(item, dict) else MISSING
        if value is MISSING:
            unique.append(item)
            continue
        marker = repr(value)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique


class MergeConfig(BlockConfig):
    sources: List[str] = Field(default_factory=list)  # Input keys holding the payloads to merge
    strategy: Literal["smart", "deep"] = "smart"


class MergeBlock(BaseBlock):
    """Merges several payloads carried in one input.

    With ``sources`` the payloads are ``input[source]`` in the listed order;
    without, a list input is merged element by element. Merging is left to
    right, identity-aware by default.
    """
    type = "transform.merge"
    supports_mock = True
    config_model = MergeConfig

    async def execute_live(self, config: MergeConfig, input: Any, context: ExecutionContext) -> Any:
        if config.sources:
            source_map: Dict[str, Any] = input if isinstance(input, dict) else {}
            payloads = [source_map[s] for s in config.sources if s in source_map]
            missing = [s for s in config.sources if s not in source_map]
            if missing:
                self.log(context, "warning", "Merge sources missing from input", missing=", ".join(missing))
        elif isinstance(input, list):
            payloads = list(input)
        else:
            payloads = [input]

        merge_fn = smart_merge if config.strategy == "smart" else deep_merge
        merged = reduce(merge_fn, payloads[1:], payloads[0]) if payloads else {}
        self.log(context, "info", "Merged payloads", count=len(payloads), strategy=config.strategy)
        return self.completed(merged, merged_count=len(payloads), strategy=config.strategy)
