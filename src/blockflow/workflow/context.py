"""Per-run execution context handed to every block."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..utils.rich_logging import ExecutionLogger, get_execution_logger

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    """Which code path blocks take.

    ``production`` runs the live path; ``demo`` and ``test`` run the mock
    path, which needs no credentials and makes no outbound calls.
    """
    PRODUCTION = "production"
    DEMO = "demo"
    TEST = "test"

    @classmethod
    def parse(cls, value: Union[str, "ExecutionMode"]) -> "ExecutionMode":
        """Accept enum members, names, and the ``live``/``mock`` aliases."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {"live": cls.PRODUCTION, "mock": cls.DEMO}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join([m.value for m in cls] + list(aliases))
            raise ValueError(f"Invalid execution mode '{value}'. Expected one of: {valid}") from None

    @property
    def is_mock(self) -> bool:
        return self in (ExecutionMode.DEMO, ExecutionMode.TEST)


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress report from a block or the orchestrator."""
    percent: float
    event: Optional[str]
    node_id: Optional[str]
    execution_id: str
    timestamp: str


ProgressCallback = Callable[[ProgressUpdate], Any]


@dataclass
class ExecutionContext:
    """Cross-cutting state for one run (or one node within a run).

    Blocks read ``mode`` to pick live vs mock, use ``secrets`` for external
    calls, publish values to ``variables`` for later template expressions,
    and report long loops through ``update_progress``. Secret values are
    excluded from ``repr`` and ``summary()`` and masked in logs.
    """
    workflow_id: str
    execution_id: str
    mode: ExecutionMode = ExecutionMode.PRODUCTION
    variables: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict, repr=False)
    disable_cache: bool = False  # Force fresh external calls
    logger: Optional[ExecutionLogger] = field(default=None, repr=False)
    progress_callback: Optional[ProgressCallback] = field(default=None, repr=False)
    node_id: Optional[str] = None  # Set on per-node contexts
    node_outputs: Dict[str, Any] = field(default_factory=dict, repr=False)  # Completed upstream outputs
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic, repr=False)
    _progress: float = field(default=0.0, init=False, repr=False)
    _parent: Optional["ExecutionContext"] = field(default=None, init=False, repr=False)
    _band: Tuple[float, float] = field(default=(0.0, 100.0), init=False, repr=False)

    def __post_init__(self):
        self.mode = ExecutionMode.parse(self.mode)
        if self.logger is None:
            self.logger = get_execution_logger(
                self.execution_id,
                node_id=self.node_id,
                secret_values=self.secrets.values(),
            )
        else:
            self.logger.add_secret_values(self.secrets.values())

    # Variables

    def set_variable(self, key: str, value: Any) -> None:
        self.variables[key] = value

    def set_variables(self, values: Dict[str, Any]) -> None:
        self.variables.update(values)

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.variables.get(key, default)

    # Secrets

    def get_secret(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.secrets.get(key, default)

    def set_secret(self, key: str, value: str) -> None:
        self.secrets[key] = value
        self.logger.add_secret_values([value])

    def is_mock_mode(self) -> bool:
        return self.mode.is_mock

    # Progress

    @property
    def progress(self) -> float:
        return self._progress

    def update_progress(self, percent: float, event: Optional[str] = None) -> None:
        """Report progress in percent.

        Values are clamped to 0..100 and never move backwards; a lower value
        than the last report is ignored. A node context reports through its
        run context, scaled into the band the orchestrator gave the node, so
        the sink only ever sees run-level percentages. Callback failures are
        logged and do not interrupt the caller.
        """
        percent = max(0.0, min(100.0, float(percent)))
        if not self._advance(percent):
            return
        if self._parent is not None:
            low, high = self._band
            self._parent._publish(low + percent * (high - low) / 100.0, event, self.node_id)
        else:
            self._publish(percent, event, self.node_id)

    def _advance(self, percent: float) -> bool:
        if percent < self._progress:
            logger.debug(
                f"Ignoring non-monotonic progress {percent:.1f}% "
                f"(current {self._progress:.1f}%) for {self.node_id or self.execution_id}"
            )
            return False
        self._progress = percent
        return True

    def _publish(self, percent: float, event: Optional[str], node_id: Optional[str]) -> None:
        # Concurrent nodes share the run sink; keep it monotonic
        if node_id != self.node_id and not self._advance(percent):
            return
        if self.progress_callback is None:
            return
        update = ProgressUpdate(
            percent=percent,
            event=event,
            node_id=node_id,
            execution_id=self.execution_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self.progress_callback(update)
        except Exception as e:
            self.logger.error(f"Progress callback failed: {e}")

    # Derived contexts

    def for_node(
        self,
        node_id: str,
        progress_band: Optional[Tuple[float, float]] = None,
    ) -> "ExecutionContext":
        """Fresh context scoped to one node.

        Shares the run's variable store, secrets, upstream outputs and
        progress sink; progress and captured logs are per node. The node's
        0..100 progress maps onto ``progress_band`` of the run (default: from
        the run's current progress to 100).
        """
        node_context = ExecutionContext(
            workflow_id=self.workflow_id,
            execution_id=self.execution_id,
            mode=self.mode,
            variables=self.variables,
            secrets=self.secrets,
            disable_cache=self.disable_cache,
            logger=self.logger.for_node(node_id),
            progress_callback=self.progress_callback,
            node_id=node_id,
            node_outputs=self.node_outputs,
            metadata=dict(self.metadata),
            started_at=self.started_at,
        )
        node_context._parent = self
        node_context._band = progress_band or (self._progress, 100.0)
        return node_context

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def summary(self) -> Dict[str, Any]:
        """Loggable snapshot; contains no secret values."""
        return {
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "mode": self.mode.value,
            "node_id": self.node_id,
            "elapsed_ms": round(self.elapsed_ms(), 2),
            "nodes_completed": len(self.node_outputs),
            "variables_count": len(self.variables),
            "secrets_count": len(self.secrets),
            "disable_cache": self.disable_cache,
            "progress": self._progress,
        }


def generate_execution_id() -> str:
    return f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ContextFactory:
    """Builds run contexts with generated execution ids."""

    @staticmethod
    def create(
        workflow_id: str,
        mode: Union[str, ExecutionMode] = ExecutionMode.PRODUCTION,
        execution_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
        disable_cache: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
        logger: Optional[ExecutionLogger] = None,
    ) -> ExecutionContext:
        return ExecutionContext(
            workflow_id=workflow_id,
            execution_id=execution_id or generate_execution_id(),
            mode=ExecutionMode.parse(mode),
            variables=dict(variables or {}),
            secrets=dict(secrets or {}),
            disable_cache=disable_cache,
            logger=logger,
            progress_callback=progress_callback,
        )

    @staticmethod
    def demo(workflow_id: str, mock_data: Optional[Dict[str, Any]] = None, **kwargs) -> ExecutionContext:
        """Demo-mode context; ``mock_data`` seeds the variables."""
        variables = {"mock": True, **(mock_data or {})}
        return ContextFactory.create(workflow_id, mode=ExecutionMode.DEMO, variables=variables, **kwargs)

    @staticmethod
    def test(workflow_id: str = "test", **kwargs) -> ExecutionContext:
        kwargs.setdefault("disable_cache", True)
        return ContextFactory.create(workflow_id, mode=ExecutionMode.TEST, **kwargs)
