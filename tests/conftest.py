"""Test fixtures for bufferdrain tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager

import pytest
import pytest_asyncio
import respx
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook

from bufferdrain.config import Config
from bufferdrain.factory import Factory

from .support.config import configure
from .support.kubernetes import MockDrainKubernetesApi, patch_kubernetes


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return configure("standard")


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockDrainKubernetesApi,
    mock_slack: MockSlackWebhook,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def mock_kubernetes(config: Config) -> Iterator[MockDrainKubernetesApi]:
    """Mock Kubernetes with the worker StatefulSet scaled to zero."""
    with contextmanager(patch_kubernetes)() as mock:
        mock.set_replicas_for_test(config.namespace, config.workload.name, 0)
        yield mock


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> MockSlackWebhook:
    assert config.slack_webhook
    hook_url = config.slack_webhook.get_secret_value()
    return mock_slack_webhook(hook_url, respx_mock)
