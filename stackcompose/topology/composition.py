"""
Topology - stacks, components and trust edges of one run.

The topology is supplied once per run and validated up front: every import
must name a declared output of a known stack, every trust edge must reference
known components, and every edge that crosses two stacks must be
materializable by one of them (the one importing the other's boundary
output).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import cached_property
from typing import Any

from stackcompose.topology.descriptors import ImportRef, StackDescriptor
from stackcompose.topology.exceptions import (
    DuplicateStackError,
    TopologyError,
    UnanchoredTrustEdgeError,
    UnknownComponentError,
)
from stackcompose.topology.resolver import dependency_graph, order
from stackcompose.topology.security import (
    AllowRule,
    Component,
    SecurityBoundary,
    TrustEdge,
    derive,
)


@dataclass(frozen=True)
class RulePlacement:
    """
    One side of a derived rule, assigned to the stack that materializes it.

    target_ref / peer_ref point at the imported boundary output when the
    target / peer component lives in another stack; None means the component
    is local to the placing stack (or, for the peer, external).
    """

    stack: str
    target: str
    rule: AllowRule
    target_ref: ImportRef | None = None
    peer_ref: ImportRef | None = None
    # Resolved values of the refs, filled in at synthesis
    target_id: Any = None
    peer_id: Any = None


class Topology:
    """A validated set of stacks, components and trust edges."""

    def __init__(
        self,
        stacks: Iterable[StackDescriptor],
        components: Iterable[Component] = (),
        trust_edges: Iterable[TrustEdge] = (),
        external_stacks: Iterable[str] = (),
    ) -> None:
        self.stacks = list(stacks)
        self.external_stacks = frozenset(external_stacks)

        self._stacks: dict[str, StackDescriptor] = {}
        for stack in self.stacks:
            if stack.name in self._stacks:
                raise DuplicateStackError(stack.name)
            self._stacks[stack.name] = stack

        # Every import names a known stack and one of its declared outputs
        dependency_graph(self.stacks, self.external_stacks)

        self.components = self._collect_components(components)

        # Identical edges collapse to one
        self.trust_edges: tuple[TrustEdge, ...] = tuple(dict.fromkeys(trust_edges))
        for edge in self.trust_edges:
            for name in (edge.from_component, edge.to_component):
                if name not in self.components:
                    raise UnknownComponentError(name, edge)
            self._check_anchored(edge)

    def _collect_components(self, components: Iterable[Component]) -> dict[str, Component]:
        known: dict[str, Component] = {}
        for component in components:
            if component.name in known:
                raise TopologyError(f"Component '{component.name}' is declared more than once")
            owner = component.stack
            known_owners = self._stacks.keys() | self.external_stacks
            if owner is not None and owner not in known_owners:
                raise TopologyError(
                    f"Component '{component.name}' belongs to unknown stack '{owner}'"
                )
            known[component.name] = component

        # Components listed on a stack but not declared separately
        for stack in self.stacks:
            for name in stack.components:
                existing = known.get(name)
                if existing is None:
                    known[name] = Component(name=name, stack=stack.name)
                elif existing.stack != stack.name:
                    raise TopologyError(
                        f"Component '{name}' is listed on stack '{stack.name}' "
                        f"but belongs to '{existing.stack}'"
                    )
        return known

    def _check_anchored(self, edge: TrustEdge) -> None:
        source = self.components[edge.from_component]
        target = self.components[edge.to_component]
        if not (source.is_managed and target.is_managed) or source.stack == target.stack:
            return
        if source.stack not in self._stacks or target.stack not in self._stacks:
            # An external stack's imports are unknown here, its own run validated them
            return
        if self._imports_boundary(source, target) or self._imports_boundary(target, source):
            return
        raise UnanchoredTrustEdgeError(edge, (source.stack, target.stack))

    def _imports_boundary(self, importer: Component, exporter: Component) -> bool:
        """Check whether importer's stack imports exporter's boundary output."""
        stack = self._stacks.get(importer.stack)
        return (
            stack is not None
            and exporter.boundary_output is not None
            and stack.imports_from(exporter.stack, exporter.boundary_output)
        )

    def stack(self, name: str) -> StackDescriptor:
        try:
            return self._stacks[name]
        except KeyError:
            raise TopologyError(f"Unknown stack '{name}'") from None

    def order(self) -> list[StackDescriptor]:
        """Stacks in synthesis order."""
        return order(self.stacks, external=self.external_stacks)

    def producers(self) -> dict[str, list[str]]:
        """{stack: in-topology producer stacks}."""
        return dependency_graph(self.stacks, self.external_stacks)

    @cached_property
    def _boundaries(self) -> dict[str, SecurityBoundary]:
        return {name: derive(name, self.trust_edges, self.components) for name in self.components}

    def boundary(self, component: str) -> SecurityBoundary:
        """
        Derived security boundary of a component.

        Raises:
            UnknownComponentError: If the component is not part of the topology
        """
        try:
            return self._boundaries[component]
        except KeyError:
            raise UnknownComponentError(component) from None

    def owned_components(self, stack: str) -> list[Component]:
        """Managed components owned by a stack, in declaration order."""
        return [c for c in self.components.values() if c.stack == stack and c.is_managed]

    def plan_rules(self, stack: str) -> list[RulePlacement]:
        """
        Assign rule sides to the given stack.

        The owner of a boundary places its rules when the peer is external,
        local, or in a stack whose boundary output it imports; in the last case
        it also places the mirror rule on the imported boundary. Rules towards
        a stack that imports this one's boundary are left to that stack.
        """
        self.stack(stack)
        placements: list[RulePlacement] = []
        for component in self.owned_components(stack):
            for rule in self.boundary(component.name).rules:
                peer = self.components[rule.peer]
                if peer.is_external or peer.stack == stack:
                    placements.append(RulePlacement(stack, component.name, rule))
                elif peer.stack is None:
                    continue
                elif self._imports_boundary(component, peer):
                    peer_ref = ImportRef(peer.stack, peer.boundary_output)
                    placements.append(
                        RulePlacement(stack, component.name, rule, peer_ref=peer_ref)
                    )
                    placements.append(
                        RulePlacement(
                            stack,
                            peer.name,
                            rule.mirrored(component.name),
                            target_ref=peer_ref,
                        )
                    )
        return placements
