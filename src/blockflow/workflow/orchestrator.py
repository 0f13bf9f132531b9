"""Workflow orchestrator: plans the DAG and runs nodes layer by layer.

Nodes in the same layer are independent and run concurrently. A node runs
only when every upstream node completed; otherwise it is recorded as
``never_run``. Failures never propagate as exceptions: every node ends with
a ``NodeResult`` and the run with a ``WorkflowExecutionResult``.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from ..core.config import EngineConfig
from ..errors import error_type_name
from ..utils.retry import RetryPolicy, with_timeout
from .adapters import apply_edge_adapter
from .context import ContextFactory, ExecutionContext, ExecutionMode, ProgressCallback
from .dag import ExecutionPlan, plan_execution
from .definition import NodeDefinition, WorkflowDefinition
from .merge import fold_merge
from .results import NodeResult, NodeStatus, RunStatus, TimelineEvent, WorkflowExecutionResult, utc_now
from .templating import interpolate_object

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Executes workflow definitions against a block registry.

    The registry is injected so independent orchestrators (and tests) never
    share block registrations.
    """

    def __init__(
        self,
        registry,
        config: Optional[EngineConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.registry = registry
        self.config = config or EngineConfig()
        self._sleep = sleep
        self._active: Set[str] = set()
        self._cancelled: Set[str] = set()

    def plan(self, workflow: WorkflowDefinition) -> ExecutionPlan:
        """Layered execution order; raises ``CycleDetectedError`` for cyclic graphs."""
        return plan_execution(workflow)

    def cancel(self, execution_id: Optional[str] = None) -> None:
        """Stop scheduling further layers; nodes already running finish.

        With an ``execution_id`` only that run is cancelled, and the request
        holds even if the run has not started yet. Without one, every run in
        flight on this orchestrator is cancelled.
        """
        if execution_id is not None:
            self._cancelled.add(execution_id)
            logger.info(f"Cancellation requested for {execution_id}, remaining layers will not run")
            return
        if not self._active:
            logger.warning("Cancellation requested but no workflow is running")
            return
        self._cancelled.update(self._active)
        logger.info(f"Cancellation requested for {len(self._active)} running workflow(s)")

    def is_cancelled(self, execution_id: str) -> bool:
        return execution_id in self._cancelled

    async def execute(
        self,
        workflow: Union[WorkflowDefinition, Dict[str, Any]],
        input: Any = None,
        context: Optional[ExecutionContext] = None,
        mode: Optional[Union[str, ExecutionMode]] = None,
        variables: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, str]] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> WorkflowExecutionResult:
        """Run ``workflow`` with ``input`` fed to every source node.

        Structural problems (invalid definition, cycles) raise before any
        node runs. Everything after that is reported in the result.
        """
        if isinstance(workflow, dict):
            workflow = WorkflowDefinition.from_dict(workflow)
        plan = self.plan(workflow)

        if context is None:
            context = ContextFactory.create(
                workflow.id,
                mode=mode or self.config.engine.default_mode,
                variables=variables,
                secrets=secrets,
                disable_cache=not self.config.cache.enabled,
                progress_callback=progress_callback,
            )

        run_id = context.execution_id
        self._active.add(run_id)
        try:
            return await self._run_layers(workflow, plan, input, context)
        finally:
            self._active.discard(run_id)
            self._cancelled.discard(run_id)

    async def _run_layers(
        self,
        workflow: WorkflowDefinition,
        plan: ExecutionPlan,
        input: Any,
        context: ExecutionContext,
    ) -> WorkflowExecutionResult:
        error_handling = workflow.settings.error_handling or self.config.engine.error_handling
        max_concurrency = self.config.engine.max_concurrency
        semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None

        results: Dict[str, NodeResult] = {}
        timeline: List[TimelineEvent] = []
        started = time.monotonic()
        started_at = utc_now()
        stopped = False
        total = len(plan.order)

        logger.info(
            f"Executing workflow '{workflow.display_name}' ({context.execution_id}): "
            f"{total} nodes in {len(plan.layers)} layers, mode={context.mode.value}"
        )
        timeline.append(TimelineEvent(
            "workflow_started",
            details={"nodes": total, "layers": len(plan.layers), "mode": context.mode.value},
        ))

        done = 0
        for layer_index, layer in enumerate(plan.layers):
            # Node progress maps into this layer's share of the run
            band = (done / total * 100, (done + len(layer)) / total * 100)
            runnable = []
            for node_id in layer:
                reason = self._skip_reason(node_id, plan, results, stopped, context.execution_id)
                if reason is None:
                    runnable.append(node_id)
                    continue
                results[node_id] = NodeResult.never_run(reason)
                timeline.append(TimelineEvent("node_skipped", node_id=node_id, details={"reason": reason}))
                logger.info(f"Node '{node_id}' will not run: {reason}")

            if runnable:
                layer_results = await asyncio.gather(*(
                    self._run_node(workflow, workflow.get_node(node_id), input, results,
                                   context, timeline, semaphore, band)
                    for node_id in runnable
                ))
                for node_id, result in zip(runnable, layer_results):
                    results[node_id] = result
                    if result.is_completed:
                        context.node_outputs[node_id] = result.output

            if error_handling == "stop" and not stopped and any(
                results[node_id].is_failed for node_id in runnable
            ):
                stopped = True
                logger.warning(f"Stopping workflow '{workflow.display_name}' after node failure")

            done += len(layer)
            timeline.append(TimelineEvent(
                "layer_completed",
                details={"layer": layer_index, "nodes": list(layer)},
            ))
            context.update_progress(done / total * 100 if total else 100.0, f"layer_{layer_index}_completed")

        return self._finalize(workflow, plan, input, context, results, timeline, started, started_at)

    def _skip_reason(
        self,
        node_id: str,
        plan: ExecutionPlan,
        results: Dict[str, NodeResult],
        stopped: bool,
        execution_id: str,
    ) -> Optional[str]:
        if self.is_cancelled(execution_id):
            return "workflow cancelled"
        if stopped:
            return "workflow stopped after a failed node"
        for dependency in plan.dependencies.get(node_id, []):
            upstream = results[dependency]
            if upstream.status != NodeStatus.COMPLETED:
                return f"dependency '{dependency}' {upstream.status.value}"
        return None

    async def _run_node(
        self,
        workflow: WorkflowDefinition,
        node: NodeDefinition,
        initial_input: Any,
        results: Dict[str, NodeResult],
        context: ExecutionContext,
        timeline: List[TimelineEvent],
        semaphore: Optional[asyncio.Semaphore],
        progress_band: Optional[Tuple[float, float]] = None,
    ) -> NodeResult:
        if semaphore is None:
            return await self._execute_node(workflow, node, initial_input, results, context, timeline, progress_band)
        async with semaphore:
            return await self._execute_node(workflow, node, initial_input, results, context, timeline, progress_band)

    async def _execute_node(
        self,
        workflow: WorkflowDefinition,
        node: NodeDefinition,
        initial_input: Any,
        results: Dict[str, NodeResult],
        context: ExecutionContext,
        timeline: List[TimelineEvent],
        progress_band: Optional[Tuple[float, float]] = None,
    ) -> NodeResult:
        node_context = context.for_node(node.id, progress_band=progress_band)
        start_time = utc_now()
        started = time.monotonic()
        timeline.append(TimelineEvent("node_started", timestamp=start_time, node_id=node.id,
                                      details={"type": node.type}))

        try:
            node_input = self.gather_input(workflow, node, initial_input, results, node_context)
            # Scopes the block resolves per item stay as placeholders
            deferred = self.registry.deferred_scopes(node.type)
            config = interpolate_object(node.config, node_input, node_context, deferred=deferred)
            result = await self._execute_with_retry(workflow, node, config, node_input, node_context, timeline)
        except Exception as e:
            # Registry, adapter and any unexpected errors fail this node only
            logger.error(f"Node '{node.id}' ({node.type}) failed before completing: {e}")
            result = NodeResult.failed(str(e), error_type_name(e))

        result.logs.extend(node_context.logger.drain())
        result.start_time = result.start_time or start_time
        result.end_time = utc_now()
        result.execution_time_ms = (time.monotonic() - started) * 1000

        details: Dict[str, Any] = {
            "execution_time_ms": round(result.execution_time_ms, 2),
            "retry_count": result.retry_count,
        }
        if result.is_completed:
            timeline.append(TimelineEvent("node_completed", node_id=node.id, details=details))
            logger.debug(f"Node '{node.id}' completed in {result.execution_time_ms:.0f}ms")
        else:
            details["error"] = result.error
            timeline.append(TimelineEvent("node_failed", node_id=node.id, details=details))
            logger.warning(f"Node '{node.id}' failed: {result.error}")
        return result

    def gather_input(
        self,
        workflow: WorkflowDefinition,
        node: NodeDefinition,
        initial_input: Any,
        results: Dict[str, NodeResult],
        context: Optional[ExecutionContext] = None,
    ) -> Any:
        """Build a node's input from its incoming edges.

        Source nodes get the workflow input. Otherwise each edge's payload
        (port selection, then adapter) is folded left to right with
        ``smart_merge`` in edge declaration order. The node receives its own
        copy so it cannot mutate upstream results.
        """
        edges = workflow.incoming_edges(node.id)
        if not edges:
            return copy.deepcopy(initial_input)

        payloads = []
        for edge in edges:
            payload = edge.select_port(results[edge.source].output)
            if edge.adapter is not None:
                payload = apply_edge_adapter(payload, edge.adapter, context)
            payloads.append(payload)

        if len(payloads) > 1:
            logger.debug(f"Merging {len(payloads)} inputs for node '{node.id}'")
        return copy.deepcopy(fold_merge(payloads))

    async def _execute_with_retry(
        self,
        workflow: WorkflowDefinition,
        node: NodeDefinition,
        config: Dict[str, Any],
        node_input: Any,
        context: ExecutionContext,
        timeline: List[TimelineEvent],
    ) -> NodeResult:
        policy: RetryPolicy = node.retry or workflow.settings.retry or self.config.retry
        timeout = node.timeout or workflow.settings.timeout or self.config.engine.default_timeout
        retry_any = workflow.settings.retry_on_any_failure

        attempt = 0
        while True:
            # Fresh instance per invocation
            block = self.registry.create(node.type)
            try:
                result = await with_timeout(
                    block.execute(config, node_input, context),
                    timeout,
                    operation=f"Node '{node.id}'",
                )
            except Exception as e:
                result = NodeResult.failed(str(e), error_type_name(e))

            if result.is_completed or attempt >= policy.max_retries:
                break
            if not (retry_any or _is_transient_result(result)):
                break

            delay = policy.calculate_delay(attempt)
            attempt += 1
            logger.warning(
                f"Node '{node.id}' failed ({result.error}), "
                f"retry {attempt}/{policy.max_retries} in {delay:.2f}s"
            )
            timeline.append(TimelineEvent(
                "node_retry", node_id=node.id,
                details={"attempt": attempt, "delay": delay, "error": result.error},
            ))
            await self._sleep(delay)

        result.retry_count = attempt
        return result

    def _finalize(
        self,
        workflow: WorkflowDefinition,
        plan: ExecutionPlan,
        input: Any,
        context: ExecutionContext,
        results: Dict[str, NodeResult],
        timeline: List[TimelineEvent],
        started: float,
        started_at: str,
    ) -> WorkflowExecutionResult:
        node_results = {node_id: results[node_id] for node_id in plan.order}
        counts = {status.value: 0 for status in NodeStatus}
        for result in node_results.values():
            counts[result.status.value] += 1

        if counts[NodeStatus.COMPLETED.value] == len(node_results):
            status = RunStatus.COMPLETED
        elif self.is_cancelled(context.execution_id):
            status = RunStatus.CANCELLED
        else:
            status = RunStatus.FAILED

        output = {
            node_id: node_results[node_id].output
            for node_id in plan.sinks
            if node_results[node_id].is_completed
        }
        execution_time_ms = (time.monotonic() - started) * 1000

        timeline.append(TimelineEvent(
            f"workflow_{status.value}",
            details={"execution_time_ms": round(execution_time_ms, 2), **counts},
        ))
        logger.info(
            f"Workflow '{workflow.display_name}' {status.value} in {execution_time_ms:.0f}ms "
            f"({counts['completed']}/{len(node_results)} nodes completed, "
            f"{counts['failed']} failed, {counts['never_run']} never run)"
        )

        return WorkflowExecutionResult(
            execution_id=context.execution_id,
            workflow_id=workflow.id,
            status=status,
            input=input,
            output=output,
            node_results=node_results,
            timeline=timeline,
            started_at=started_at,
            finished_at=utc_now(),
            execution_time_ms=execution_time_ms,
            metadata={
                "total": len(node_results),
                **counts,
                "layers": len(plan.layers),
                "mode": context.mode.value,
            },
        )


def _is_transient_result(result: NodeResult) -> bool:
    return bool(result.error_type and result.error_type.startswith("transient:"))
