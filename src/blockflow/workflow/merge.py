"""Merging of payloads from multiple upstream producers.

``deep_merge`` combines plain structures key by key; ``smart_merge`` adds
identity awareness for well-known record collections. When a node has
several incoming edges the orchestrator folds their payloads left to right
with ``smart_merge`` so that no producer's fields are lost. A genuine
scalar conflict is resolved in favour of the later edge (declaration order).
"""

from functools import reduce
from typing import Any, Dict, Iterable, List, Sequence

IDENTITY_KEY = "id"

# Array-valued keys that conventionally hold identified records
RECORD_COLLECTION_KEYS = ("records", "items", "rows", "contacts")


def _is_container(value: Any) -> bool:
    return isinstance(value, (dict, list))


def _has_identity(item: Any) -> bool:
    return isinstance(item, dict) and item.get(IDENTITY_KEY) is not None


def has_identified_elements(*arrays: Sequence[Any]) -> bool:
    """True if any element of any array is a record carrying an ``id``."""
    return any(_has_identity(item) for array in arrays for item in array)


def merge_by_id(target: List[Any], source: List[Any]) -> List[Any]:
    """Merge two record lists element-wise by ``id``.

    Records sharing an id are deep-merged in place (target order preserved);
    records with a new id, or without an id, are appended.
    """
    merged = list(target)
    positions: Dict[Any, int] = {}
    for i, item in enumerate(merged):
        if _has_identity(item):
            positions.setdefault(_hashable(item[IDENTITY_KEY]), i)

    for item in source:
        if _has_identity(item):
            key = _hashable(item[IDENTITY_KEY])
            if key in positions:
                pos = positions[key]
                merged[pos] = deep_merge(merged[pos], item)
                continue
            positions[key] = len(merged)
        merged.append(item)
    return merged


def _hashable(value: Any) -> Any:
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def deep_merge(target: Any, source: Any) -> Any:
    """Recursively merge ``source`` into ``target`` without mutating either.

    - ``None`` source keeps the target.
    - Non-container on either side (or dict vs list): source wins.
    - Two lists: merged by id when elements carry one, else concatenated.
    - Two dicts: key by key; keys present on one side only are kept.
    """
    if source is None:
        return target
    if not _is_container(source) or not _is_container(target):
        return source
    if isinstance(source, list) and isinstance(target, list):
        if has_identified_elements(target, source):
            return merge_by_id(target, source)
        return [*target, *source]
    if isinstance(source, dict) and isinstance(target, dict):
        result = dict(target)
        for key, value in source.items():
            if key in result:
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value
        return result
    return source


def smart_merge(
    target: Any,
    source: Any,
    collection_keys: Iterable[str] = RECORD_COLLECTION_KEYS,
) -> Any:
    """Identity-aware merge.

    For each well-known collection key present as a list on both sides with
    identified elements, records are merged by id; every other field goes
    through ``deep_merge``. Degrades to ``deep_merge`` otherwise.
    """
    if source is None:
        return target
    if not (isinstance(target, dict) and isinstance(source, dict)):
        return deep_merge(target, source)

    merged_target = dict(target)
    remaining_source = dict(source)
    for key in collection_keys:
        left = target.get(key)
        right = source.get(key)
        if isinstance(left, list) and isinstance(right, list) and has_identified_elements(left, right):
            merged_target[key] = merge_by_id(left, right)
            del remaining_source[key]

    return deep_merge(merged_target, remaining_source)


def fold_merge(payloads: Sequence[Any]) -> Any:
    """Left fold of ``smart_merge`` over payloads in edge declaration order."""
    if not payloads:
        return {}
    return reduce(smart_merge, payloads[1:], payloads[0])
