"""Identity, static input, logging output and variable publishing blocks."""

import json
from typing import Any, Dict, Literal, Optional

from pydantic import Field

from ...utils.paths import get_path
from ...workflow.context import ExecutionContext
from ..base import BaseBlock, BlockConfig


class EchoBlock(BaseBlock):
    """Returns its input unchanged."""
    type = "echo"
    supports_mock = True

    async def execute_live(self, config: BlockConfig, input: Any, context: ExecutionContext) -> Any:
        return input


class PassThroughBlock(EchoBlock):
    """Forwards input unchanged; useful as a join point for several edges."""
    type = "transform.pass_through"

    async def execute_live(self, config: BlockConfig, input: Any, context: ExecutionContext) -> Any:
        count = len(input) if isinstance(input, (list, dict)) else 1
        self.log(context, "debug", "Passing input through", items=count)
        return self.completed(input, items=count)


class StaticInputConfig(BlockConfig):
    data: Any = Field(...)


class StaticInputBlock(BaseBlock):
    """Emits the configured ``data``, ignoring its input."""
    type = "input.static"
    supports_mock = True
    config_model = StaticInputConfig

    async def execute_live(self, config: StaticInputConfig, input: Any, context: ExecutionContext) -> Any:
        count = len(config.data) if isinstance(config.data, list) else 1
        self.log(context, "info", "Emitting static data", items=count)
        return self.completed(config.data, items=count)


class OutputLoggerConfig(BlockConfig):
    prefix: str = "[Output]"
    format: Literal["pretty", "json", "summary"] = "pretty"
    max_items: int = 5


class OutputLoggerBlock(BaseBlock):
    """Logs a summary of its input and passes it through."""
    type = "output.logger"
    supports_mock = True
    config_model = OutputLoggerConfig

    async def execute_live(self, config: OutputLoggerConfig, input: Any, context: ExecutionContext) -> Any:
        count = len(input) if isinstance(input, list) else 1
        if config.format == "summary":
            message = f"{config.prefix} {_describe(input)}"
        elif config.format == "json":
            message = f"{config.prefix} {json.dumps(input, default=str)}"
        else:
            sample = input[: config.max_items] if isinstance(input, list) else input
            message = f"{config.prefix} {_describe(input)}\n{json.dumps(sample, indent=2, default=str)}"
        context.logger.info(message)
        return self.completed(input, items=count, logged=True)


def _describe(data: Any) -> str:
    if isinstance(data, list):
        return f"{len(data)} items"
    if isinstance(data, dict):
        return f"object with {len(data)} keys"
    return type(data).__name__


class SetVariablesConfig(BlockConfig):
    variables: Dict[str, Any] = Field(default_factory=dict)
    from_input: Optional[Dict[str, str]] = None  # variable name -> dotted path into input


class SetVariablesBlock(BaseBlock):
    """Publishes run variables for template expressions in later nodes.

    Values in ``variables`` are already interpolated by the orchestrator;
    ``from_input`` copies values out of the input by path.
    """
    type = "context.set_variables"
    supports_mock = True
    config_model = SetVariablesConfig

    async def execute_live(self, config: SetVariablesConfig, input: Any, context: ExecutionContext) -> Any:
        published = dict(config.variables)
        for name, path in (config.from_input or {}).items():
            published[name] = get_path(input, path)

        context.set_variables(published)
        self.log(context, "info", "Published variables", names=", ".join(sorted(published)))
        return self.completed(input, variables=sorted(published))
