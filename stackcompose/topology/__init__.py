"""
Topology composition engine.

Public API of the engine: descriptors and the output registry, the
dependency resolver, the security policy deriver, the conditional resource
selector, provisioning backends and the synthesis services.
"""

from stackcompose.topology.backends import (
    LocalBackend,
    ProvisioningBackend,
    ProvisionResult,
    ResourceSpec,
    get_backend,
)
from stackcompose.topology.composition import RulePlacement, Topology
from stackcompose.topology.descriptors import ImportRef, StackDescriptor, StackStatus
from stackcompose.topology.exceptions import (
    CyclicDependencyError,
    DuplicateOutputError,
    DuplicateStackError,
    InvalidTrustEdgeError,
    OutputMismatchError,
    ProvisioningError,
    RunAbortedError,
    StackStateError,
    TopologyError,
    UnanchoredTrustEdgeError,
    UnknownComponentError,
    UnknownSourceError,
    UnresolvedImportError,
    UpstreamFailedError,
)
from stackcompose.topology.registry import OutputRegistry
from stackcompose.topology.resolver import dependency_graph, order
from stackcompose.topology.security import (
    AllowRule,
    Component,
    Direction,
    Protocol,
    SecurityBoundary,
    TrustEdge,
    derive,
    derive_all,
)
from stackcompose.topology.selector import ResourceVariant, VariantKind, select
from stackcompose.topology.services import (
    RunReport,
    SynthesisContext,
    TopologyRunner,
    run_topology,
    synthesize,
)

__all__ = [
    "AllowRule",
    "Component",
    "CyclicDependencyError",
    "Direction",
    "DuplicateOutputError",
    "DuplicateStackError",
    "ImportRef",
    "InvalidTrustEdgeError",
    "LocalBackend",
    "OutputMismatchError",
    "OutputRegistry",
    "Protocol",
    "ProvisionResult",
    "ProvisioningBackend",
    "ProvisioningError",
    "ResourceSpec",
    "ResourceVariant",
    "RulePlacement",
    "RunAbortedError",
    "RunReport",
    "SecurityBoundary",
    "StackDescriptor",
    "StackStateError",
    "StackStatus",
    "SynthesisContext",
    "Topology",
    "TopologyError",
    "TopologyRunner",
    "TrustEdge",
    "UnanchoredTrustEdgeError",
    "UnknownComponentError",
    "UnknownSourceError",
    "UnresolvedImportError",
    "UpstreamFailedError",
    "VariantKind",
    "dependency_graph",
    "derive",
    "derive_all",
    "order",
    "run_topology",
    "select",
    "synthesize",
]
