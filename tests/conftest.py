"""
Shared pytest fixtures for all tests.

Factories
---------
Import factories directly from their modules:

    from tests.topology.factories import StackDescriptorFactory, ComponentFactory

Example usage:

    def test_something(registry):
        vpc = StackDescriptorFactory.create(name="vpc", output_keys=["vpcId"])
        synthesize(vpc, registry)
"""

import pytest

from stackcompose.core.logging import clear_contextvars
from stackcompose.topology.backends import LocalBackend
from stackcompose.topology.registry import OutputRegistry


@pytest.fixture
def registry() -> OutputRegistry:
    """Empty output registry."""
    return OutputRegistry()


@pytest.fixture
def local_backend() -> LocalBackend:
    """Fresh in-memory provisioning backend."""
    return LocalBackend()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep bound log context from leaking between tests."""
    clear_contextvars()
    yield
    clear_contextvars()
