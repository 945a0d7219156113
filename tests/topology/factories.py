"""
Factories for topology objects.

Used in tests to create stacks, components and trust edges.
"""

from collections.abc import Mapping
from typing import Any

import factory

from stackcompose.topology.descriptors import StackDescriptor
from stackcompose.topology.security import Component, Protocol, TrustEdge


def static_builder(outputs: Mapping[str, Any]):
    """Builder that ignores its context and returns fixed outputs."""

    def build(ctx):
        return dict(outputs)

    return build


def failing_builder(error: Exception):
    """Builder that always raises error."""

    def build(ctx):
        raise error

    return build


class StackDescriptorFactory(factory.Factory):
    """Factory for StackDescriptor."""

    class Meta:
        model = StackDescriptor

    name: Any = factory.Sequence(lambda n: f"stack{n}")
    inputs: Any = factory.LazyFunction(dict)
    declared_imports: Any = ()
    output_keys: Any = ()
    builder = None
    components: Any = ()


class ComponentFactory(factory.Factory):
    """Factory for Component."""

    class Meta:
        model = Component

    name: Any = factory.Sequence(lambda n: f"component{n}")
    stack = None
    cidr = None
    boundary_output = None


class TrustEdgeFactory(factory.Factory):
    """Factory for TrustEdge."""

    class Meta:
        model = TrustEdge

    from_component = "app"
    to_component = "db"
    port = 5432
    protocol = Protocol.TCP
    description = ""
