"""``{{expression}}`` interpolation for node configs and edge adapters.

Supported prefixes:
    input.*            the node's gathered input
    output.*           alias of input; reads naturally in edge adapters,
                       where the data is the upstream node's output
    variables.* var.*  run variables published by earlier blocks
    secrets.*          context secrets
    nodes.<id>.*       output of an already-executed node
    workflow.*         id, execution_id, mode
    now                current UTC time (ISO 8601)

An unprefixed path resolves against the input. Expressions whose first
segment is in ``deferred`` are left as placeholders for the block to
resolve later (e.g. ``item`` in per-item HTTP configs).
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ..utils.paths import MISSING, get_path

if TYPE_CHECKING:
    from .context import ExecutionContext

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")
_SINGLE_PLACEHOLDER = re.compile(r"^\{\{([^{}]+)\}\}$")


def _scopes(context: Optional["ExecutionContext"], input_data: Any) -> Dict[str, Any]:
    scopes: Dict[str, Any] = {"input": input_data, "output": input_data}
    if context is not None:
        scopes["variables"] = context.variables
        scopes["var"] = context.variables
        scopes["secrets"] = context.secrets
        scopes["nodes"] = context.node_outputs
        scopes["workflow"] = {
            "id": context.workflow_id,
            "execution_id": context.execution_id,
            "mode": context.mode.value,
        }
    return scopes


def resolve_expression(
    expression: str,
    input_data: Any = None,
    context: Optional["ExecutionContext"] = None,
) -> Any:
    """Resolve one expression; returns ``MISSING`` when it cannot be resolved."""
    expression = expression.strip()
    if expression == "now":
        return datetime.now(timezone.utc).isoformat()

    scopes = _scopes(context, input_data)
    prefix, _, rest = expression.partition(".")
    if prefix in scopes:
        return get_path(scopes[prefix], rest, MISSING)
    return get_path(input_data, expression, MISSING)


def _is_deferred(expression: str, deferred: tuple) -> bool:
    return bool(deferred) and expression.strip().partition(".")[0] in deferred


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate(
    template: Any,
    input_data: Any = None,
    context: Optional["ExecutionContext"] = None,
    deferred: Iterable[str] = (),
) -> Any:
    """Interpolate a single value.

    A string that is exactly one placeholder yields the raw resolved value
    (lists stay lists). Mixed text yields a string. Unresolvable
    placeholders are left intact.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template
    deferred = tuple(deferred)

    single = _SINGLE_PLACEHOLDER.match(template)
    if single:
        if _is_deferred(single.group(1), deferred):
            return template
        value = resolve_expression(single.group(1), input_data, context)
        return template if value is MISSING else value

    def replace(match: "re.Match[str]") -> str:
        if _is_deferred(match.group(1), deferred):
            return match.group(0)
        value = resolve_expression(match.group(1), input_data, context)
        if value is MISSING:
            logger.debug(f"Unresolved template expression: {match.group(1).strip()}")
            return match.group(0)
        return _format(value)

    return _PLACEHOLDER.sub(replace, template)


def interpolate_object(
    obj: Any,
    input_data: Any = None,
    context: Optional["ExecutionContext"] = None,
    deferred: Iterable[str] = (),
) -> Any:
    """Recursively interpolate strings inside dicts and lists."""
    deferred = tuple(deferred)
    if isinstance(obj, str):
        return interpolate(obj, input_data, context, deferred)
    if isinstance(obj, list):
        return [interpolate_object(item, input_data, context, deferred) for item in obj]
    if isinstance(obj, dict):
        return {k: interpolate_object(v, input_data, context, deferred) for k, v in obj.items()}
    return obj


def extract_variables(template: str) -> List[str]:
    """List the expressions referenced by a template string."""
    return [m.strip() for m in _PLACEHOLDER.findall(template)]
