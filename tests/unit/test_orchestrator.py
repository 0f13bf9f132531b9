"""Tests for DAG execution: scheduling, input gathering, failure policy, retries."""

import asyncio

import pytest

from blockflow.blocks import BaseBlock
from blockflow.errors import CycleDetectedError, TransientError, WorkflowValidationError
from blockflow.workflow.context import ContextFactory
from blockflow.workflow.definition import WorkflowDefinition
from blockflow.workflow.results import NodeStatus, RunStatus


class FailingBlock(BaseBlock):
    """Always fails with a deterministic error."""
    type = "test.fail"

    async def execute_live(self, config, input, context):
        raise ValueError(getattr(config, "message", "boom"))


class FlakyBlock(BaseBlock):
    """Fails transiently until ``failures`` attempts have been made."""
    type = "test.flaky"
    attempts = 0

    async def execute_live(self, config, input, context):
        type(self).attempts += 1
        if type(self).attempts <= getattr(config, "failures", 1):
            raise TransientError("upstream unavailable", status_code=503)
        return {"attempts": type(self).attempts}


class SlowBlock(BaseBlock):
    type = "test.slow"

    async def execute_live(self, config, input, context):
        await asyncio.sleep(getattr(config, "seconds", 1))
        return input


class ConcurrencyTrackerBlock(BaseBlock):
    """Records how many instances run at the same time."""
    type = "test.concurrency"
    active = 0
    peak = 0

    async def execute_live(self, config, input, context):
        cls = type(self)
        cls.active += 1
        cls.peak = max(cls.peak, cls.active)
        await asyncio.sleep(0.01)
        cls.active -= 1
        return input


class MutatingBlock(BaseBlock):
    type = "test.mutate"

    async def execute_live(self, config, input, context):
        input["mutated"] = True
        return input


class CancellingBlock(BaseBlock):
    type = "test.cancel"
    orchestrator = None

    async def execute_live(self, config, input, context):
        type(self).orchestrator.cancel()
        return input


class SelfCancellingBlock(BaseBlock):
    type = "test.cancel_self"
    orchestrator = None

    async def execute_live(self, config, input, context):
        type(self).orchestrator.cancel(context.execution_id)
        return input


@pytest.fixture
def test_registry(registry):
    FlakyBlock.attempts = 0
    ConcurrencyTrackerBlock.active = 0
    ConcurrencyTrackerBlock.peak = 0
    for block_cls in (
        FailingBlock, FlakyBlock, SlowBlock, ConcurrencyTrackerBlock,
        MutatingBlock, CancellingBlock, SelfCancellingBlock,
    ):
        registry.register(block_cls.type, block_cls)
    return registry


@pytest.fixture
def engine(orchestrator, test_registry):
    return orchestrator


def _workflow(nodes, edges=(), **settings):
    data = {
        "id": "wf",
        "nodes": [{"id": n, "type": t, **extra} for n, t, extra in nodes],
        "edges": [e if isinstance(e, dict) else {"source": e[0], "target": e[1]} for e in edges],
    }
    if settings:
        data["settings"] = settings
    return WorkflowDefinition.from_dict(data)


class TestLinearExecution:
    @pytest.mark.asyncio
    async def test_echo_chain_passes_input_through(self, engine):
        workflow = _workflow([("n1", "echo", {}), ("n2", "echo", {})], [("n1", "n2")])
        result = await engine.execute(workflow, {"v": 1})

        assert result.status == RunStatus.COMPLETED
        assert result.node_results["n1"].output == {"v": 1}
        assert result.node_results["n2"].output == {"v": 1}
        assert result.output == {"n2": {"v": 1}}
        assert result.input == {"v": 1}

    @pytest.mark.asyncio
    async def test_accepts_plain_dict_definition(self, engine):
        result = await engine.execute({"nodes": [{"id": "only", "type": "echo"}]}, [1, 2])
        assert result.is_completed
        assert result.output == {"only": [1, 2]}

    @pytest.mark.asyncio
    async def test_config_templates_resolve_against_input(self, engine):
        workflow = _workflow([
            ("fetch", "input.static", {"config": {"data": {"owner": "{{input.user}}", "fixed": 1}}}),
        ])
        result = await engine.execute(workflow, {"user": "ann"})
        assert result.output == {"fetch": {"owner": "ann", "fixed": 1}}

    @pytest.mark.asyncio
    async def test_node_input_is_isolated_copy(self, engine):
        workflow = _workflow(
            [("src", "echo", {}), ("mut", "test.mutate", {}), ("other", "echo", {})],
            [("src", "mut"), ("src", "other")],
        )
        payload = {"v": 1}
        result = await engine.execute(workflow, payload)

        assert payload == {"v": 1}
        assert result.node_results["src"].output == {"v": 1}
        assert result.node_results["other"].output == {"v": 1}
        assert result.node_results["mut"].output == {"v": 1, "mutated": True}


class TestMultiEdgeMerge:
    @pytest.mark.asyncio
    async def test_fan_in_merges_in_declaration_order(self, engine):
        workflow = _workflow(
            [
                ("crm", "input.static", {"config": {"data": {"records": [{"id": 1, "name": "Ann"}], "v": "crm"}}}),
                ("scores", "input.static", {"config": {"data": {"records": [{"id": 1, "score": 9}], "v": "scores"}}}),
                ("join", "transform.pass_through", {}),
            ],
            [("crm", "join"), ("scores", "join")],
        )
        result = await engine.execute(workflow)
        assert result.node_results["join"].output == {
            "records": [{"id": 1, "name": "Ann", "score": 9}],
            "v": "scores",
        }

    @pytest.mark.asyncio
    async def test_ports_and_adapters(self, engine):
        workflow = _workflow(
            [
                ("src", "input.static", {"config": {"data": {"person": {"email": "a@b.c"}, "meta": {"n": 1}}}}),
                ("sink", "echo", {}),
            ],
            [
                {"source": "src", "target": "sink", "sourcePort": "meta"},
                {
                    "id": "mapped",
                    "source": "src",
                    "target": "sink",
                    "adapter": {"type": "map", "mapping": {"email": "person.email"}},
                },
            ],
        )
        result = await engine.execute(workflow)
        assert result.node_results["sink"].output == {"n": 1, "email": "a@b.c"}

    @pytest.mark.asyncio
    async def test_parallel_port_edges_from_one_producer(self, engine):
        workflow = _workflow(
            [
                ("a", "input.static", {"config": {"data": {"x": {"p": 1}, "y": {"q": 2}}}}),
                ("b", "echo", {}),
            ],
            [
                {"source": "a", "target": "b", "sourcePort": "x"},
                {"source": "a", "target": "b", "sourcePort": "y"},
            ],
        )
        result = await engine.execute(workflow)
        assert result.is_completed
        assert result.node_results["b"].output == {"p": 1, "q": 2}


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_failed_branch_skips_only_its_dependents(self, engine):
        workflow = _workflow(
            [
                ("src", "echo", {}),
                ("a", "echo", {}),
                ("b", "test.fail", {}),
                ("c", "echo", {}),
                ("after_b", "echo", {}),
                ("after_a", "echo", {}),
            ],
            [("src", "a"), ("src", "b"), ("src", "c"), ("b", "after_b"), ("a", "after_a")],
        )
        result = await engine.execute(workflow, {"x": 1})

        assert result.status != RunStatus.COMPLETED
        assert result.status == RunStatus.FAILED
        assert result.node_results["b"].status == NodeStatus.FAILED
        assert result.node_results["b"].error == "boom"
        assert result.node_results["after_b"].status == NodeStatus.NEVER_RUN
        assert "dependency 'b' failed" in result.node_results["after_b"].metadata["reason"]
        for node_id in ("src", "a", "c", "after_a"):
            assert result.node_results[node_id].status == NodeStatus.COMPLETED
        assert result.failed_nodes == ["b"]
        assert result.never_run_nodes == ["after_b"]
        assert result.metadata["failed"] == 1
        assert result.metadata["never_run"] == 1

    @pytest.mark.asyncio
    async def test_never_run_propagates_transitively(self, engine):
        workflow = _workflow(
            [("a", "test.fail", {}), ("b", "echo", {}), ("c", "echo", {})],
            [("a", "b"), ("b", "c")],
        )
        result = await engine.execute(workflow)
        assert result.node_results["c"].status == NodeStatus.NEVER_RUN
        assert "dependency 'b' never_run" in result.node_results["c"].metadata["reason"]

    @pytest.mark.asyncio
    async def test_stop_policy_halts_later_layers(self, engine):
        workflow = _workflow(
            [("a", "test.fail", {}), ("b", "echo", {}), ("c", "echo", {}), ("d", "echo", {})],
            [("b", "c"), ("c", "d")],
            errorHandling="stop",
        )
        result = await engine.execute(workflow)

        assert result.node_results["a"].status == NodeStatus.FAILED
        assert result.node_results["b"].status == NodeStatus.COMPLETED
        assert result.node_results["c"].status == NodeStatus.NEVER_RUN
        assert result.node_results["d"].status == NodeStatus.NEVER_RUN
        assert result.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_block_type_fails_node(self, engine):
        workflow = _workflow([("a", "does.not.exist", {}), ("b", "echo", {})], [("a", "b")])
        result = await engine.execute(workflow)

        assert result.node_results["a"].status == NodeStatus.FAILED
        assert "Unknown block type" in result.node_results["a"].error
        assert result.node_results["a"].error_type == "registry:UnknownBlockError"
        assert result.node_results["b"].status == NodeStatus.NEVER_RUN

    @pytest.mark.asyncio
    async def test_timeout_fails_node(self, engine):
        workflow = _workflow([("slow", "test.slow", {"timeout": 0.05, "config": {"seconds": 5}})])
        result = await engine.execute(workflow)

        node = result.node_results["slow"]
        assert node.status == NodeStatus.FAILED
        assert "timed out" in node.error
        assert node.error_type == "transient:BlockTimeoutError"

    @pytest.mark.asyncio
    async def test_structural_errors_raise_before_running(self, engine):
        with pytest.raises(CycleDetectedError):
            await engine.execute({
                "nodes": [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
                "edges": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
            })
        with pytest.raises(WorkflowValidationError):
            await engine.execute({"nodes": [{"id": "a", "type": "echo"}], "edges": [{"source": "a", "target": "x"}]})


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, engine):
        workflow = _workflow([
            ("flaky", "test.flaky", {"config": {"failures": 2}, "retry": {"max_retries": 3, "initial_delay": 0}}),
        ])
        result = await engine.execute(workflow)

        node = result.node_results["flaky"]
        assert node.status == NodeStatus.COMPLETED
        assert node.retry_count == 2
        assert node.output == {"attempts": 3}
        assert [e.event for e in result.timeline].count("node_retry") == 2

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, engine):
        workflow = _workflow([
            ("flaky", "test.flaky", {"config": {"failures": 10}, "retry": {"max_retries": 2, "initial_delay": 0}}),
        ])
        result = await engine.execute(workflow)

        node = result.node_results["flaky"]
        assert node.status == NodeStatus.FAILED
        assert node.retry_count == 2
        assert FlakyBlock.attempts == 3

    @pytest.mark.asyncio
    async def test_deterministic_failure_not_retried(self, engine):
        workflow = _workflow([("bad", "test.fail", {"retry": {"max_retries": 3}})])
        result = await engine.execute(workflow)
        assert result.node_results["bad"].retry_count == 0

    @pytest.mark.asyncio
    async def test_retry_on_any_failure_setting(self, engine):
        workflow = _workflow(
            [("bad", "test.fail", {"retry": {"max_retries": 2, "initial_delay": 0}})],
            retryOnAnyFailure=True,
        )
        result = await engine.execute(workflow)
        assert result.node_results["bad"].retry_count == 2


class TestConcurrencyAndCancellation:
    @pytest.mark.asyncio
    async def test_layer_runs_concurrently(self, engine):
        workflow = _workflow([(f"p{i}", "test.concurrency", {}) for i in range(4)])
        await engine.execute(workflow)
        assert ConcurrencyTrackerBlock.peak == 4

    @pytest.mark.asyncio
    async def test_max_concurrency_limits_layer(self, engine):
        engine.config.engine.max_concurrency = 2
        workflow = _workflow([(f"p{i}", "test.concurrency", {}) for i in range(4)])
        await engine.execute(workflow)
        assert ConcurrencyTrackerBlock.peak == 2

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining_layers(self, engine):
        CancellingBlock.orchestrator = engine
        workflow = _workflow([("a", "test.cancel", {}), ("b", "echo", {})], [("a", "b")])
        result = await engine.execute(workflow, {"v": 1})

        assert result.status == RunStatus.CANCELLED
        assert result.node_results["a"].status == NodeStatus.COMPLETED
        assert result.node_results["b"].status == NodeStatus.NEVER_RUN
        assert result.node_results["b"].metadata["reason"] == "workflow cancelled"

    @pytest.mark.asyncio
    async def test_cancel_by_id_before_start(self, engine):
        context = ContextFactory.test("wf")
        engine.cancel(context.execution_id)
        workflow = _workflow([("a", "echo", {}), ("b", "echo", {})], [("a", "b")])
        result = await engine.execute(workflow, {"v": 1}, context=context)

        assert result.status == RunStatus.CANCELLED
        assert result.never_run_nodes == ["a", "b"]
        assert not engine.is_cancelled(context.execution_id)

    @pytest.mark.asyncio
    async def test_cancel_without_running_workflow_is_not_sticky(self, engine):
        engine.cancel()
        workflow = _workflow([("a", "echo", {})])
        result = await engine.execute(workflow, {"v": 1})
        assert result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_only_affects_its_own_run(self, engine):
        SelfCancellingBlock.orchestrator = engine
        cancelled_wf = _workflow([("a", "test.cancel_self", {}), ("b", "echo", {})], [("a", "b")])
        other_wf = _workflow(
            [("a", "test.slow", {"config": {"seconds": 0.05}}), ("b", "echo", {})],
            [("a", "b")],
        )
        cancelled, other = await asyncio.gather(
            engine.execute(cancelled_wf, {"v": 1}),
            engine.execute(other_wf, {"v": 2}),
        )

        assert cancelled.status == RunStatus.CANCELLED
        assert cancelled.node_results["b"].status == NodeStatus.NEVER_RUN
        assert other.status == RunStatus.COMPLETED
        assert other.output == {"b": {"v": 2}}


class TestContextAndProgress:
    @pytest.mark.asyncio
    async def test_progress_reported_per_layer(self, engine):
        updates = []
        workflow = _workflow([("a", "echo", {}), ("b", "echo", {})], [("a", "b")])
        await engine.execute(workflow, {}, progress_callback=updates.append)

        run_level = [u.percent for u in updates if u.node_id is None]
        assert run_level == [50, 100]

    @pytest.mark.asyncio
    async def test_block_progress_never_moves_sink_backwards(self, engine):
        updates = []
        workflow = _workflow(
            [
                ("fetch", "api.http_request", {"config": {
                    "url": "https://api.example.com/people/{{item.id}}",
                    "mockLatencyMs": [0, 0],
                }}),
                ("after", "echo", {}),
            ],
            [("fetch", "after")],
        )
        await engine.execute(workflow, [{"id": "a"}, {"id": "b"}], mode="test", progress_callback=updates.append)

        percents = [u.percent for u in updates]
        assert percents == sorted(percents)
        assert percents == [25.0, 50.0, 50.0, 100.0]
        assert [u.node_id for u in updates[:2]] == ["fetch", "fetch"]

    @pytest.mark.asyncio
    async def test_per_item_placeholders_not_resolved_against_node_input(self, engine):
        workflow = _workflow([
            ("fetch", "api.http_request", {"config": {
                "url": "https://api.example.com/people/{{item.id}}?owner={{input.owner}}",
                "itemsPath": "people",
                "mockLatencyMs": [0, 0],
            }}),
        ])
        data = {"item": {"id": "wrong"}, "owner": "ann", "people": [{"id": "a1"}]}
        result = await engine.execute(workflow, data, mode="test")

        record = result.node_results["fetch"].output[0]
        assert record["response"]["url"] == "https://api.example.com/people/a1?owner=ann"

    @pytest.mark.asyncio
    async def test_variables_flow_to_later_nodes(self, engine):
        workflow = _workflow(
            [
                ("vars", "context.set_variables", {"config": {"variables": {"greeting": "hi"}}}),
                ("use", "input.static", {"config": {"data": "{{variables.greeting}} there"}}),
            ],
            [("vars", "use")],
        )
        result = await engine.execute(workflow, {})
        assert result.output == {"use": "hi there"}

    @pytest.mark.asyncio
    async def test_explicit_context_mode(self, engine):
        context = ContextFactory.demo("wf")
        workflow = _workflow([("a", "echo", {})])
        result = await engine.execute(workflow, {"v": 1}, context=context)
        assert result.metadata["mode"] == "demo"
        assert result.node_results["a"].metadata["mock"] is True
        assert result.execution_id == context.execution_id

    @pytest.mark.asyncio
    async def test_timeline_records_lifecycle(self, engine):
        workflow = _workflow([("a", "echo", {})])
        result = await engine.execute(workflow, {})
        events = [e.event for e in result.timeline]
        assert events[0] == "workflow_started"
        assert "node_started" in events
        assert "node_completed" in events
        assert events[-1] == "workflow_completed"

    @pytest.mark.asyncio
    async def test_result_serializes(self, engine):
        workflow = _workflow([("a", "echo", {})])
        data = (await engine.execute(workflow, {"v": 1})).to_dict()
        assert data["status"] == "completed"
        assert data["node_results"]["a"]["status"] == "completed"
        assert data["metadata"]["total"] == 1
