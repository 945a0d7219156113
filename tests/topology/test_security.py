"""
Tests for the security policy deriver.
"""

import pytest

from stackcompose.topology.exceptions import InvalidTrustEdgeError, UnknownComponentError
from stackcompose.topology.security import (
    AllowRule,
    Component,
    Direction,
    Protocol,
    derive,
    derive_all,
)
from tests.topology.factories import ComponentFactory, TrustEdgeFactory


@pytest.fixture
def components():
    return [
        ComponentFactory.create(name="internet", cidr="0.0.0.0/0"),
        ComponentFactory.create(name="lb", stack="shared-nw", boundary_output="lbSgId"),
        ComponentFactory.create(name="app", stack="ecs-fargate", boundary_output="appSgId"),
        ComponentFactory.create(name="db", stack="pgdb", boundary_output="dbSgId"),
    ]


class TestTrustEdge:
    """Tests for TrustEdge validation."""

    def test_self_edge_is_rejected(self):
        with pytest.raises(InvalidTrustEdgeError):
            TrustEdgeFactory.create(from_component="app", to_component="app")

    @pytest.mark.parametrize("port", [-1, 65536])
    def test_port_out_of_range(self, port):
        with pytest.raises(InvalidTrustEdgeError):
            TrustEdgeFactory.create(port=port)

    def test_unknown_protocol(self):
        with pytest.raises(InvalidTrustEdgeError):
            TrustEdgeFactory.create(protocol="icmp")

    def test_protocol_string_is_normalized(self):
        edge = TrustEdgeFactory.create(protocol="udp")

        assert edge.protocol is Protocol.UDP

    def test_description_does_not_affect_equality(self):
        assert TrustEdgeFactory.create(description="a") == TrustEdgeFactory.create(description="b")


class TestDerive:
    """Tests for deriving one component's boundary."""

    def test_no_edges_is_deny_all(self, components):
        boundary = derive("db", [], components)

        assert boundary.is_closed
        assert boundary.rules == ()

    def test_edge_opens_both_sides(self, components):
        """A -> B yields ingress on B and the matching egress on A."""
        edges = [TrustEdgeFactory.create(from_component="app", to_component="db", port=5432)]

        db = derive("db", edges, components)
        app = derive("app", edges, components)

        assert db.allows("ingress", "app", 5432)
        assert not db.allows("egress", "app", 5432)
        assert app.allows("egress", "db", 5432)
        assert not app.allows("ingress", "db", 5432)
        assert db.ingress[0].mirrored("db") == app.egress[0]

    def test_only_declared_port_and_protocol(self, components):
        edges = [TrustEdgeFactory.create(from_component="app", to_component="db", port=5432)]

        db = derive("db", edges, components)

        assert not db.allows("ingress", "app", 5433)
        assert not db.allows("ingress", "app", 5432, "udp")
        assert not db.allows("ingress", "lb", 5432)

    def test_unrelated_edges_are_ignored(self, components):
        edges = [TrustEdgeFactory.create(from_component="lb", to_component="app", port=80)]

        assert derive("db", edges, components).is_closed

    def test_external_peer_carries_cidr(self, components):
        edges = [TrustEdgeFactory.create(from_component="internet", to_component="lb", port=443)]

        lb = derive("lb", edges, components)

        assert lb.ingress == (
            AllowRule(
                peer="internet",
                protocol=Protocol.TCP,
                port=443,
                direction=Direction.INGRESS,
                peer_cidr="0.0.0.0/0",
            ),
        )

    def test_duplicate_edges_collapse(self, components):
        edges = [
            TrustEdgeFactory.create(from_component="app", to_component="db", port=5432),
            TrustEdgeFactory.create(
                from_component="app", to_component="db", port=5432, direction="egress"
            ),
        ]

        assert len(derive("db", edges, components).ingress) == 1

    def test_duplicate_description_does_not_depend_on_edge_order(self, components):
        first = TrustEdgeFactory.create(
            from_component="app", to_component="db", port=5432, description="writer"
        )
        second = TrustEdgeFactory.create(
            from_component="app", to_component="db", port=5432, description="reader"
        )
        unnamed = TrustEdgeFactory.create(from_component="app", to_component="db", port=5432)

        forward = derive("db", [unnamed, first, second], components)
        backward = derive("db", [second, first, unnamed], components)

        assert forward.ingress[0].description == "reader"
        assert backward.ingress[0].description == "reader"

    def test_rules_are_sorted(self, components):
        edges = [
            TrustEdgeFactory.create(from_component="lb", to_component="app", port=8080),
            TrustEdgeFactory.create(from_component="internet", to_component="app", port=443),
            TrustEdgeFactory.create(from_component="lb", to_component="app", port=80),
        ]

        app = derive("app", edges, components)

        assert [(rule.peer, rule.port) for rule in app.ingress] == [
            ("internet", 443),
            ("lb", 80),
            ("lb", 8080),
        ]

    def test_edge_order_does_not_matter(self, components):
        edges = [
            TrustEdgeFactory.create(from_component="lb", to_component="app", port=80),
            TrustEdgeFactory.create(from_component="app", to_component="db", port=5432),
            TrustEdgeFactory.create(from_component="internet", to_component="lb", port=443),
        ]

        assert derive_all(components, edges) == derive_all(components, reversed(edges))

    def test_unknown_component(self, components):
        with pytest.raises(UnknownComponentError):
            derive("cache", [], components)

    def test_unknown_edge_endpoint(self, components):
        edges = [TrustEdgeFactory.create(from_component="app", to_component="cache", port=6379)]

        with pytest.raises(UnknownComponentError) as exc_info:
            derive("db", edges, components)

        assert exc_info.value.component == "cache"

    def test_plain_component_names(self):
        edges = [TrustEdgeFactory.create(from_component="app", to_component="db", port=5432)]

        assert derive("db", edges, ["app", "db"]).allows("ingress", "app", 5432)


class TestDeriveAll:
    """Tests for deriving every boundary at once."""

    def test_every_component_gets_a_boundary(self, components):
        edges = [TrustEdgeFactory.create(from_component="app", to_component="db", port=5432)]

        boundaries = derive_all(components, edges)

        assert set(boundaries) == {"internet", "lb", "app", "db"}
        assert boundaries["lb"].is_closed
        assert boundaries["db"].allows("ingress", "app", 5432)

    def test_component_properties(self):
        external = Component(name="internet", cidr="0.0.0.0/0", stack="vpc")
        managed = Component(name="db", stack="pgdb")
        unmanaged = Component(name="legacy")

        assert external.is_external and not external.is_managed
        assert managed.is_managed and not managed.is_external
        assert not unmanaged.is_managed
