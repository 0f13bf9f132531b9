"""Shared test fixtures for unit tests."""

import logging

import pytest

from blockflow.blocks import create_default_registry
from blockflow.core.config import EngineConfig
from blockflow.utils.retry import RetryPolicy
from blockflow.utils.rich_logging import ROOT_LOGGER_NAME
from blockflow.workflow.context import ContextFactory
from blockflow.workflow.orchestrator import WorkflowOrchestrator


class FakeClock:
    """Manually advanced clock (seconds) for cache expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return create_default_registry()


@pytest.fixture
def engine_config():
    return EngineConfig(
        engine={"default_timeout": 5.0, "error_handling": "continue"},
        retry=RetryPolicy(max_retries=0, initial_delay=0.0),
    )


@pytest.fixture
def orchestrator(registry, engine_config):
    return WorkflowOrchestrator(registry, engine_config, sleep=no_sleep)


@pytest.fixture
def context():
    return ContextFactory.test("wf-test")


@pytest.fixture
def live_context():
    return ContextFactory.create("wf-test", mode="production", disable_cache=True)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo CLI logging setup so caplog keeps seeing package records."""
    yield
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in package_logger.handlers[:]:
        handler.close()
        package_logger.removeHandler(handler)
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
