"""Topology composition exceptions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stackcompose.topology.services import RunReport


class TopologyError(Exception):
    """Base exception for topology composition errors."""

    pass


class UnresolvedImportError(TopologyError):
    """Raised when a stack reads an output that is not available to it."""

    def __init__(self, source: str, key: str, consumer: str | None = None, reason: str = ""):
        self.source = source
        self.key = key
        self.consumer = consumer
        who = f"Stack '{consumer}'" if consumer else "Lookup"
        detail = reason or "has not been published"
        super().__init__(f"{who} imports '{source}.{key}', which {detail}")


class DuplicateOutputError(TopologyError):
    """Raised when an output key is written twice for the same stack."""

    def __init__(self, stack: str, key: str):
        self.stack = stack
        self.key = key
        super().__init__(f"Output '{stack}.{key}' has already been published")


class DuplicateStackError(TopologyError):
    """Raised when two stacks share a name."""

    def __init__(self, stack: str):
        self.stack = stack
        super().__init__(f"Stack '{stack}' is declared more than once")


class CyclicDependencyError(TopologyError):
    """Raised when declared imports form a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency between stacks: {' -> '.join(self.cycle)}")


class UnknownSourceError(TopologyError):
    """Raised when a declared import names a stack that is not in the topology."""

    def __init__(self, consumer: str, source: str, key: str):
        self.consumer = consumer
        self.source = source
        self.key = key
        super().__init__(
            f"Stack '{consumer}' imports '{source}.{key}', but stack '{source}' is not defined"
        )


class UnknownComponentError(TopologyError):
    """Raised when a trust edge or boundary names a component that does not exist."""

    def __init__(self, component: str, edge: object | None = None):
        self.component = component
        self.edge = edge
        where = f" (in {edge})" if edge is not None else ""
        super().__init__(f"Unknown component '{component}'{where}")


class InvalidTrustEdgeError(TopologyError):
    """Raised when a trust edge is malformed."""

    pass


class UnanchoredTrustEdgeError(TopologyError):
    """Raised when no stack can materialize a cross-stack trust edge."""

    def __init__(self, edge: object, stacks: tuple[str, str]):
        self.edge = edge
        self.stacks = stacks
        super().__init__(
            f"Trust edge {edge} spans stacks '{stacks[0]}' and '{stacks[1]}', "
            "but neither imports the other's boundary output"
        )


class OutputMismatchError(TopologyError):
    """Raised when a builder produces a different key set than the stack declares."""

    def __init__(self, stack: str, missing: Sequence[str], unexpected: Sequence[str]):
        self.stack = stack
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(
            f"Stack '{stack}' produced mismatching outputs "
            f"(missing: {self.missing}, unexpected: {self.unexpected})"
        )


class StackStateError(TopologyError):
    """Raised on an illegal stack status transition."""

    pass


class UpstreamFailedError(TopologyError):
    """Raised for a stack that never started because a producer failed."""

    def __init__(self, stack: str, upstream: Sequence[str]):
        self.stack = stack
        self.upstream = list(upstream)
        super().__init__(
            f"Stack '{stack}' was not started: upstream stack(s) {self.upstream} failed"
        )


class ProvisioningError(TopologyError):
    """Raised when the provisioning backend fails to create a resource."""

    def __init__(self, stack: str, resource: str, cause: BaseException | str):
        self.stack = stack
        self.resource = resource
        self.cause = cause
        super().__init__(f"Provisioning '{resource}' for stack '{stack}' failed: {cause}")


class RunAbortedError(TopologyError):
    """Raised when a topology run stops on its first unrecoverable error."""

    def __init__(self, report: RunReport, stack: str, cause: BaseException):
        self.report = report
        self.stack = stack
        self.cause = cause
        super().__init__(f"Topology run aborted: stack '{stack}' failed: {cause}")
