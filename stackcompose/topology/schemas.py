"""
Topology document schemas.

A topology can be described as data (JSON) instead of code: stacks name a
builder kind, and the caller supplies the builder for each kind.
"""

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackcompose.topology.composition import Topology
from stackcompose.topology.descriptors import Builder, StackDescriptor
from stackcompose.topology.security import Component, Direction, Protocol, TrustEdge


class StackDocument(BaseModel):
    """One stack of a topology document."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Unique stack name")
    kind: str | None = Field(
        default=None, description="Builder kind; stacks without one only declare outputs"
    )
    inputs: dict[str, Any] = Field(default_factory=dict)
    imports: list[str] = Field(default_factory=list, description="'stack.key' references")
    outputs: list[str] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)


class ComponentDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    stack: str | None = None
    cidr: str | None = Field(default=None, description="External peers only")
    boundary_output: str | None = None


class TrustEdgeDocument(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    from_component: str = Field(..., alias="from")
    to_component: str = Field(..., alias="to")
    port: int = Field(..., ge=0, le=65535)
    protocol: Protocol = Protocol.TCP
    direction: Direction = Direction.INGRESS
    description: str = ""


class TopologyDocument(BaseModel):
    """Data form of a topology."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    stacks: list[StackDocument]
    components: list[ComponentDocument] = Field(default_factory=list)
    trust_edges: list[TrustEdgeDocument] = Field(default_factory=list)
    external_stacks: list[str] = Field(
        default_factory=list, description="Stacks whose outputs come from a previous run"
    )

    def to_topology(self, builders: Mapping[str, Builder] | None = None) -> Topology:
        """
        Build a validated Topology.

        Raises:
            ValueError: If a stack names a kind that has no builder
            TopologyError: If the topology itself is invalid
        """
        builders = builders or {}
        stacks = []
        for stack in self.stacks:
            builder = None
            if stack.kind is not None:
                if stack.kind not in builders:
                    raise ValueError(f"Stack '{stack.name}' has unknown kind '{stack.kind}'")
                builder = builders[stack.kind]
            stacks.append(
                StackDescriptor(
                    name=stack.name,
                    inputs=stack.inputs,
                    declared_imports=stack.imports,
                    output_keys=stack.outputs,
                    builder=builder,
                    components=stack.components,
                )
            )

        return Topology(
            stacks=stacks,
            components=[Component(**c.model_dump()) for c in self.components],
            trust_edges=[TrustEdge(**e.model_dump()) for e in self.trust_edges],
            external_stacks=self.external_stacks,
        )


def load_topology_document(path: str | Path) -> TopologyDocument:
    """Read and validate a JSON topology document."""
    with open(path, encoding="utf-8") as f:
        return TopologyDocument.model_validate(json.load(f))
