"""
Tests for topology validation and rule placement.
"""

import pytest

from stackcompose.topology.composition import Topology
from stackcompose.topology.descriptors import ImportRef
from stackcompose.topology.exceptions import (
    DuplicateStackError,
    TopologyError,
    UnanchoredTrustEdgeError,
    UnknownComponentError,
    UnknownSourceError,
    UnresolvedImportError,
)
from stackcompose.topology.security import Direction
from tests.topology.factories import ComponentFactory, StackDescriptorFactory, TrustEdgeFactory


def build_topology(compute_imports=("pgdb.dbSgId",), edges=None, external_stacks=()):
    """internet -> lb (shared-nw) -> app (compute) -> db (pgdb)."""
    stacks = [
        StackDescriptorFactory.create(name="pgdb", output_keys=["dbSgId"]),
        StackDescriptorFactory.create(name="shared-nw", output_keys=["lbSgId"]),
        StackDescriptorFactory.create(
            name="compute", declared_imports=["shared-nw.lbSgId", *compute_imports]
        ),
    ]
    components = [
        ComponentFactory.create(name="internet", cidr="0.0.0.0/0"),
        ComponentFactory.create(name="db", stack="pgdb", boundary_output="dbSgId"),
        ComponentFactory.create(name="lb", stack="shared-nw", boundary_output="lbSgId"),
        ComponentFactory.create(name="app", stack="compute", boundary_output="appSgId"),
    ]
    if edges is None:
        edges = [
            TrustEdgeFactory.create(from_component="internet", to_component="lb", port=443),
            TrustEdgeFactory.create(from_component="lb", to_component="app", port=80),
            TrustEdgeFactory.create(from_component="app", to_component="db", port=5432),
        ]
    return Topology(stacks, components, edges, external_stacks)


def sides(placements):
    return {(p.target, p.rule.direction, p.rule.peer, p.rule.port) for p in placements}


class TestTopologyValidation:
    """Tests for up-front topology validation."""

    def test_valid_topology(self):
        topology = build_topology()

        assert [stack.name for stack in topology.order()] == ["pgdb", "shared-nw", "compute"]
        assert topology.producers()["compute"] == ["pgdb", "shared-nw"]

    def test_duplicate_stack(self):
        stacks = [StackDescriptorFactory.create(name="vpc") for _ in range(2)]

        with pytest.raises(DuplicateStackError):
            Topology(stacks)

    def test_duplicate_component(self):
        stack = StackDescriptorFactory.create(name="vpc")
        components = [ComponentFactory.create(name="x"), ComponentFactory.create(name="x")]

        with pytest.raises(TopologyError):
            Topology([stack], components)

    def test_component_of_unknown_stack(self):
        stack = StackDescriptorFactory.create(name="vpc")

        with pytest.raises(TopologyError):
            Topology([stack], [ComponentFactory.create(name="db", stack="pgdb")])

    def test_edge_to_unknown_component(self):
        with pytest.raises(UnknownComponentError):
            build_topology(
                edges=[TrustEdgeFactory.create(from_component="app", to_component="cache")]
            )

    def test_import_of_undeclared_output(self):
        """Caught when the topology is built, before any stack is provisioned."""
        stacks = [
            StackDescriptorFactory.create(name="vpc", output_keys=["vpcId"]),
            StackDescriptorFactory.create(name="pgdb", declared_imports=["vpc.subnetIds"]),
        ]

        with pytest.raises(UnresolvedImportError) as exc_info:
            Topology(stacks)

        assert exc_info.value.consumer == "pgdb"
        assert "not a declared output" in str(exc_info.value)

    def test_unknown_import_source(self):
        stack = StackDescriptorFactory.create(name="pgdb", declared_imports=["vpc.vpcId"])

        with pytest.raises(UnknownSourceError):
            Topology([stack])

    def test_unanchored_cross_stack_edge(self):
        """Neither stack imports the other's boundary, so no stack can place the rule."""
        with pytest.raises(UnanchoredTrustEdgeError) as exc_info:
            build_topology(compute_imports=())

        assert exc_info.value.stacks == ("compute", "pgdb")

    def test_edges_to_external_stacks_are_not_anchored(self):
        stacks = [StackDescriptorFactory.create(name="compute", declared_imports=["vpc.vpcId"])]
        components = [
            ComponentFactory.create(name="app", stack="compute"),
            ComponentFactory.create(name="db", stack="pgdb", boundary_output="dbSgId"),
        ]
        edges = [TrustEdgeFactory.create(from_component="app", to_component="db")]

        topology = Topology(stacks, components, edges, external_stacks=["vpc", "pgdb"])

        assert topology.boundary("app").allows("egress", "db", 5432)

    def test_stack_components_are_collected(self):
        stack = StackDescriptorFactory.create(name="pgdb", components=["db", "proxy"])

        topology = Topology([stack])

        assert [c.name for c in topology.owned_components("pgdb")] == ["db", "proxy"]

    def test_stack_component_owned_elsewhere(self):
        stack = StackDescriptorFactory.create(name="pgdb", components=["db"])
        other = StackDescriptorFactory.create(name="cache")

        with pytest.raises(TopologyError):
            Topology([stack, other], [ComponentFactory.create(name="db", stack="cache")])

    def test_identical_edges_collapse(self):
        edge = TrustEdgeFactory.create(from_component="lb", to_component="app", port=80)

        topology = build_topology(edges=[edge, edge])

        assert topology.trust_edges == (edge,)

    def test_unknown_stack_lookup(self):
        with pytest.raises(TopologyError):
            build_topology().stack("cache")

    def test_unknown_boundary(self):
        with pytest.raises(UnknownComponentError):
            build_topology().boundary("cache")


class TestPlanRules:
    """Tests for assigning rule sides to stacks."""

    def test_every_rule_side_is_placed_exactly_once(self):
        topology = build_topology()

        placed = []
        for stack in topology.stacks:
            placed.extend(sides(topology.plan_rules(stack.name)))

        expected = set()
        for component in ["internet", "db", "lb", "app"]:
            if topology.components[component].is_external:
                continue
            for rule in topology.boundary(component).rules:
                expected.add((component, rule.direction, rule.peer, rule.port))

        assert sorted(placed) == sorted(expected)
        assert len(placed) == len(expected)

    def test_importing_stack_places_both_sides(self):
        topology = build_topology()

        placements = topology.plan_rules("compute")

        db_ingress = next(p for p in placements if p.target == "db")
        app_egress = next(
            p for p in placements if p.target == "app" and p.rule.peer == "db"
        )
        assert db_ingress.rule.direction is Direction.INGRESS
        assert db_ingress.target_ref == ImportRef("pgdb", "dbSgId")
        assert db_ingress.peer_ref is None
        assert app_egress.peer_ref == ImportRef("pgdb", "dbSgId")
        assert app_egress.target_ref is None

    def test_exporting_stack_leaves_rules_to_importer(self):
        topology = build_topology()

        assert topology.plan_rules("pgdb") == []

    def test_external_peer_is_placed_by_owner(self):
        topology = build_topology()

        placements = topology.plan_rules("shared-nw")

        assert sides(placements) == {("lb", Direction.INGRESS, "internet", 443)}
        assert placements[0].rule.peer_cidr == "0.0.0.0/0"

    def test_unknown_stack(self):
        with pytest.raises(TopologyError):
            build_topology().plan_rules("cache")
