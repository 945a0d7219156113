"""
Security policy deriver.

Security boundaries are never written by hand. Each component starts closed
(deny-all) and only opens through declared trust edges: an edge A -> B on
tcp/443 yields an ingress rule on B's boundary sourced from A and, always
together with it, an egress rule on A's boundary towards B.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from stackcompose.topology.exceptions import InvalidTrustEdgeError, UnknownComponentError


class Protocol(StrEnum):
    TCP = "tcp"
    UDP = "udp"


class Direction(StrEnum):
    INGRESS = "ingress"
    EGRESS = "egress"


@dataclass(frozen=True)
class Component:
    """
    A network endpoint of the topology.

    Attributes:
        name: Unique component name
        stack: Owning stack; None for components no stack materializes
        cidr: Address range of an external peer (e.g. "0.0.0.0/0"); external
              peers own no boundary
        boundary_output: Output key under which the owning stack publishes the
                         boundary identifier (e.g. a security group id)
    """

    name: str
    stack: str | None = None
    cidr: str | None = None
    boundary_output: str | None = None

    @property
    def is_external(self) -> bool:
        return self.cidr is not None

    @property
    def is_managed(self) -> bool:
        return self.stack is not None and not self.is_external


@dataclass(frozen=True)
class TrustEdge:
    """
    Permission for one component to reach another on a protocol/port.

    direction records which side declared the edge; the derived rules are the
    same either way.
    """

    from_component: str
    to_component: str
    port: int
    protocol: Protocol = Protocol.TCP
    direction: Direction = Direction.INGRESS
    description: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if self.from_component == self.to_component:
            raise InvalidTrustEdgeError(
                f"Trust edge cannot connect component '{self.from_component}' to itself"
            )
        if not 0 <= self.port <= 65535:
            raise InvalidTrustEdgeError(f"Port {self.port} is out of range in {self}")
        try:
            object.__setattr__(self, "protocol", Protocol(self.protocol))
            object.__setattr__(self, "direction", Direction(self.direction))
        except ValueError as e:
            raise InvalidTrustEdgeError(str(e)) from e

    def __str__(self) -> str:
        return f"{self.from_component} -> {self.to_component} {self.protocol}/{self.port}"


@dataclass(frozen=True, order=True)
class AllowRule:
    """One resolved allow rule of a security boundary."""

    peer: str
    protocol: Protocol
    port: int
    direction: Direction
    peer_cidr: str | None = None
    description: str = field(default="", compare=False)

    def mirrored(self, component: str, cidr: str | None = None) -> AllowRule:
        """The matching rule on the peer's boundary, pointing back at component."""
        opposite = Direction.EGRESS if self.direction is Direction.INGRESS else Direction.INGRESS
        return AllowRule(
            peer=component,
            protocol=self.protocol,
            port=self.port,
            direction=opposite,
            peer_cidr=cidr,
            description=self.description,
        )


@dataclass(frozen=True)
class SecurityBoundary:
    """Resolved allow rules protecting one component. Empty means deny-all."""

    component: str
    ingress: tuple[AllowRule, ...] = ()
    egress: tuple[AllowRule, ...] = ()

    @property
    def rules(self) -> tuple[AllowRule, ...]:
        return self.ingress + self.egress

    @property
    def is_closed(self) -> bool:
        return not self.ingress and not self.egress

    def allows(
        self, direction: Direction | str, peer: str, port: int, protocol: Protocol | str = "tcp"
    ) -> bool:
        """Check whether traffic with peer on protocol/port is allowed in direction."""
        rules = self.ingress if Direction(direction) is Direction.INGRESS else self.egress
        return any(
            rule.peer == peer and rule.port == port and rule.protocol == Protocol(protocol)
            for rule in rules
        )


def _component_map(components: Iterable[Component | str] | Mapping[str, Component]) -> dict:
    if isinstance(components, Mapping):
        return dict(components)
    known: dict[str, Component] = {}
    for component in components:
        if isinstance(component, str):
            component = Component(name=component)
        known[component.name] = component
    return known


def _description_key(rule: AllowRule) -> tuple[bool, str]:
    # Non-empty descriptions sort first
    return (not rule.description, rule.description)


def derive(
    component: str,
    edges: Iterable[TrustEdge],
    components: Iterable[Component | str] | Mapping[str, Component],
) -> SecurityBoundary:
    """
    Derive the security boundary of one component from trust edges.

    Args:
        component: Name of the component whose boundary is derived
        edges: Declared trust edges (any iterable; order does not matter)
        components: Every component of the topology, as Component objects,
                    plain names, or a {name: Component} mapping

    Returns:
        The boundary; rules are deduplicated and sorted by (peer, protocol, port)

    Raises:
        UnknownComponentError: If component or any edge endpoint is unknown
    """
    known = _component_map(components)
    if component not in known:
        raise UnknownComponentError(component)

    # Duplicate rules collapse to one; the first description in sort order wins
    rules: dict[AllowRule, AllowRule] = {}
    for edge in edges:
        for name in (edge.from_component, edge.to_component):
            if name not in known:
                raise UnknownComponentError(name, edge)

        if edge.to_component == component:
            peer, direction = known[edge.from_component], Direction.INGRESS
        elif edge.from_component == component:
            peer, direction = known[edge.to_component], Direction.EGRESS
        else:
            continue

        rule = AllowRule(
            peer=peer.name,
            protocol=edge.protocol,
            port=edge.port,
            direction=direction,
            peer_cidr=peer.cidr,
            description=edge.description,
        )
        existing = rules.get(rule)
        if existing is None or _description_key(rule) < _description_key(existing):
            rules[rule] = rule

    ordered = sorted(rules.values())
    return SecurityBoundary(
        component=component,
        ingress=tuple(rule for rule in ordered if rule.direction is Direction.INGRESS),
        egress=tuple(rule for rule in ordered if rule.direction is Direction.EGRESS),
    )


def derive_all(
    components: Iterable[Component | str] | Mapping[str, Component],
    edges: Iterable[TrustEdge],
) -> dict[str, SecurityBoundary]:
    """Derive the boundary of every component."""
    known = _component_map(components)
    edges = list(edges)
    return {name: derive(name, edges, known) for name in known}
