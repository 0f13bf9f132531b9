"""Edge adapters: reshape an upstream output before it reaches the target node."""

import importlib
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from ..errors import ConfigurationError
from ..utils.paths import get_path
from .definition import EdgeAdapter
from .templating import interpolate

if TYPE_CHECKING:
    from .context import ExecutionContext

logger = logging.getLogger(__name__)

_function_cache: Dict[str, Callable[..., Any]] = {}


def apply_edge_adapter(
    output: Any,
    adapter: EdgeAdapter,
    context: Optional["ExecutionContext"] = None,
) -> Any:
    """Transform ``output`` according to ``adapter``.

    Raises ``ConfigurationError`` if the adapter cannot be applied.
    """
    if adapter.type == "map":
        return _apply_map(output, adapter, context)
    if adapter.type == "template":
        return _apply_template(output, adapter, context)
    if adapter.type == "function":
        return _apply_function(output, adapter, context)
    raise ConfigurationError(f"Unknown adapter type: {adapter.type}", field="adapter.type")


def _apply_map(output: Any, adapter: EdgeAdapter, context: Optional["ExecutionContext"]) -> Any:
    if not adapter.mapping:
        return output

    result: Dict[str, Any] = {}
    for target_field, source in adapter.mapping.items():
        if isinstance(source, str) and "{{" in source:
            result[target_field] = interpolate(source, output, context)
        elif isinstance(source, str):
            result[target_field] = get_path(output, source)
        else:
            # Non-string mapping values are literals
            result[target_field] = source
    return result


def _apply_template(output: Any, adapter: EdgeAdapter, context: Optional["ExecutionContext"]) -> Any:
    if not adapter.template:
        return output
    return {
        target_field: interpolate(template, output, context)
        for target_field, template in adapter.template.items()
    }


def _apply_function(output: Any, adapter: EdgeAdapter, context: Optional["ExecutionContext"]) -> Any:
    if not adapter.function:
        return output

    fn = resolve_callable(adapter.function)
    try:
        return fn(output, context)
    except Exception as e:
        raise ConfigurationError(
            f"Function adapter '{adapter.function}' failed: {e}", field="adapter.function"
        ) from e


def resolve_callable(path: str) -> Callable[..., Any]:
    """Import ``"package.module:attr"`` and return the callable it names."""
    if path in _function_cache:
        return _function_cache[path]

    module_name, _, attr_path = path.partition(":")
    if not module_name or not attr_path:
        raise ConfigurationError(
            f"Function adapter must be a 'module:callable' path, got '{path}'",
            field="adapter.function",
        )
    try:
        target: Any = importlib.import_module(module_name)
        for attr in attr_path.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Cannot import function adapter '{path}': {e}", field="adapter.function"
        ) from e

    if not callable(target):
        raise ConfigurationError(f"Function adapter '{path}' is not callable", field="adapter.function")

    _function_cache[path] = target
    logger.debug(f"Resolved function adapter {path}")
    return target
