"""Block contract and the base class that implements the live/mock dispatch."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Dict, Literal, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import ConfigurationError, error_type_name
from ..utils.retry import RetryPolicy, retry_async, with_timeout
from ..workflow.context import ExecutionContext
from ..workflow.results import NodeResult, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockConfig(BaseModel):
    """Base for block configuration schemas.

    Unknown keys are kept so templated extras pass through untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    mode: Optional[Literal["live", "mock"]] = None  # Per-node override of the run mode


class Block(ABC):
    """Interface every block implements.

    ``execute`` must not raise: failures are returned as a failed
    ``NodeResult``. Instances are created fresh for each invocation and
    hold no state across invocations.
    """
    type: ClassVar[str] = ""
    supports_mock: ClassVar[bool] = False
    config_model: ClassVar[Type[BlockConfig]] = BlockConfig
    deferred_scopes: ClassVar[Tuple[str, ...]] = ()  # Left unresolved by config interpolation

    @abstractmethod
    async def execute(self, config: Dict[str, Any], input: Any, context: ExecutionContext) -> NodeResult:
        """Run the block against ``input`` and return its result envelope."""
        pass


class BaseBlock(Block):
    """Block with config validation and live/mock dispatch.

    Subclasses implement ``execute_live``; blocks that call external
    services also override ``execute_mock``. Either may return a plain output or a
    ``NodeResult`` (to attach metadata). Mock is chosen when the context is
    in demo/test mode or the node config says ``mode: mock``.
    """

    async def execute(self, config: Dict[str, Any], input: Any, context: ExecutionContext) -> NodeResult:
        start_time = utc_now()
        started = time.monotonic()
        mock = False
        try:
            parsed = self.parse_config(config)
            mock = self.use_mock(parsed, context)
            if mock:
                outcome = await self.execute_mock(parsed, input, context)
            else:
                outcome = await self.execute_live(parsed, input, context)
            result = outcome if isinstance(outcome, NodeResult) else NodeResult.completed(outcome)
        except Exception as e:
            context.logger.error(f"Block '{self.type}' failed: {e}")
            result = NodeResult.failed(str(e), error_type_name(e))

        result.metadata.setdefault("mock", mock)
        result.start_time = start_time
        result.end_time = utc_now()
        result.execution_time_ms = (time.monotonic() - started) * 1000
        result.logs = context.logger.drain() + result.logs
        return result

    def parse_config(self, config: Optional[Dict[str, Any]]) -> BlockConfig:
        """Validate the raw node config into ``config_model``."""
        try:
            return self.config_model.model_validate(config or {})
        except ValidationError as e:
            problems = []
            for err in e.errors():
                location = ".".join(str(part) for part in err.get("loc", ()))
                problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
            first_field = ".".join(str(p) for p in e.errors()[0].get("loc", ())) if e.errors() else None
            raise ConfigurationError(
                f"Invalid config for block '{self.type}': {'; '.join(problems)}",
                field=first_field or None,
            ) from e

    def use_mock(self, config: BlockConfig, context: ExecutionContext) -> bool:
        if not self.supports_mock:
            return False
        return context.is_mock_mode() or config.mode == "mock"

    @abstractmethod
    async def execute_live(self, config: Any, input: Any, context: ExecutionContext) -> Any:
        pass

    async def execute_mock(self, config: Any, input: Any, context: ExecutionContext) -> Any:
        # Blocks without external calls behave the same in both modes
        return await self.execute_live(config, input, context)

    # Helpers for subclasses

    def completed(self, output: Any, **metadata: Any) -> NodeResult:
        return NodeResult.completed(output, metadata=metadata)

    def log(self, context: ExecutionContext, level: str, message: str, **details: Any) -> None:
        log_fn = getattr(context.logger, level, context.logger.info)
        log_fn(f"[{self.type}] {message}", details=details or None)

    async def with_timeout(self, awaitable: Awaitable[T], timeout: Optional[float], operation: str = "") -> T:
        return await with_timeout(awaitable, timeout, operation=operation or self.type)

    async def with_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        context: ExecutionContext,
        operation: str = "",
    ) -> T:
        def on_retry(attempt: int, error: BaseException) -> None:
            context.logger.warning(
                f"[{self.type}] {operation or 'operation'} failed ({error}), "
                f"retry {attempt}/{policy.max_retries}"
            )

        return await retry_async(fn, policy, on_retry=on_retry, operation=operation or self.type)
