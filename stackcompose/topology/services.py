"""
Synthesis services.

synthesize() builds one stack: it checks the stack's imports, runs its
builder against a SynthesisContext and publishes the outputs. TopologyRunner
drives a whole topology through a worker pool, so stacks without a
dependency path between them can be synthesized concurrently while a
producer always completes before any of its consumers starts.
"""

from __future__ import annotations

import heapq
import time
import uuid
from collections.abc import Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from stackcompose.config import settings
from stackcompose.core.logging import bind_contextvars, clear_contextvars, get_logger
from stackcompose.topology.backends import (
    ProvisioningBackend,
    ProvisionResult,
    ResourceSpec,
    get_backend,
)
from stackcompose.topology.composition import RulePlacement, Topology
from stackcompose.topology.descriptors import StackDescriptor, StackStatus
from stackcompose.topology.exceptions import (
    OutputMismatchError,
    ProvisioningError,
    RunAbortedError,
    StackStateError,
    TopologyError,
    UnresolvedImportError,
    UpstreamFailedError,
)
from stackcompose.topology.registry import OutputRegistry
from stackcompose.topology.security import Component, SecurityBoundary
from stackcompose.topology.selector import ResourceVariant, SlotConfig, select

logger = get_logger(__name__)


@dataclass
class SynthesisContext:
    """Everything a stack builder may read or call while its stack is synthesized."""

    descriptor: StackDescriptor
    registry: OutputRegistry
    topology: Topology | None = None
    backend: ProvisioningBackend | None = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def inputs(self) -> Mapping[str, Any]:
        return self.descriptor.inputs

    @property
    def imports(self) -> dict[str, Any]:
        """All declared imports as {"stack.key": value}."""
        return {
            str(ref): self.registry.get(ref.stack, ref.key)
            for ref in self.descriptor.declared_imports
        }

    def import_value(self, stack: str, key: str) -> Any:
        """
        Read one imported output.

        Raises:
            UnresolvedImportError: If the import is not declared by this stack or
                                   has not been published
        """
        if not self.descriptor.imports_from(stack, key):
            raise UnresolvedImportError(
                stack, key, consumer=self.name, reason="is not declared as an import"
            )
        try:
            return self.registry.get(stack, key)
        except UnresolvedImportError:
            raise UnresolvedImportError(stack, key, consumer=self.name) from None

    def _require_topology(self) -> Topology:
        if self.topology is None:
            raise TopologyError(f"Stack '{self.name}' is synthesized without a topology")
        return self.topology

    def owned_components(self) -> list[Component]:
        """Managed components whose boundaries this stack owns."""
        return self._require_topology().owned_components(self.name)

    def boundary(self, component: str) -> SecurityBoundary:
        """Derived security boundary of a component."""
        return self._require_topology().boundary(component)

    def rule_placements(self) -> list[RulePlacement]:
        """Rule sides this stack materializes, with imported boundary ids resolved."""
        resolved = []
        for placement in self._require_topology().plan_rules(self.name):
            target_id = peer_id = None
            if placement.target_ref is not None:
                target_id = self.import_value(placement.target_ref.stack, placement.target_ref.key)
            if placement.peer_ref is not None:
                peer_id = self.import_value(placement.peer_ref.stack, placement.peer_ref.key)
            resolved.append(replace(placement, target_id=target_id, peer_id=peer_id))
        return resolved

    def select(self, config: SlotConfig) -> ResourceVariant:
        """Select the variant of an optional-resource slot."""
        return select(config)

    def provision(
        self,
        kind: str,
        name: str,
        params: Mapping[str, Any] | None = None,
        endpoints: Iterable[str] = (),
    ) -> ProvisionResult:
        """
        Provision one resource through the backend.

        Raises:
            ProvisioningError: If the backend fails or omits a requested endpoint
        """
        if self.backend is None:
            self.backend = get_backend()

        spec = ResourceSpec(
            stack=self.name,
            kind=kind,
            name=name,
            params=MappingProxyType(dict(params or {})),
            endpoints=tuple(endpoints),
            depends_on=self.descriptor.source_stacks,
        )
        try:
            result = self.backend.provision(spec)
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(self.name, name, e) from e

        missing = [endpoint for endpoint in spec.endpoints if endpoint not in result.endpoints]
        if missing:
            raise ProvisioningError(self.name, name, f"backend returned no endpoint(s) {missing}")
        return result


def synthesize(
    descriptor: StackDescriptor,
    registry: OutputRegistry,
    *,
    topology: Topology | None = None,
    backend: ProvisioningBackend | None = None,
) -> Mapping[str, Any]:
    """
    Synthesize one stack and publish its outputs.

    Args:
        descriptor: The stack; must be pending
        registry: Registry holding the stack's imports; receives its outputs
        topology: Topology the stack belongs to (needed for boundaries/rules)
        backend: Provisioning backend; the configured default when omitted

    Returns:
        The stack's outputs (read-only)

    Raises:
        UnresolvedImportError: If a declared import has not been published
        OutputMismatchError: If the builder's keys differ from the declared outputs
        DuplicateOutputError: If one of the outputs was already published
        ProvisioningError: If the backend fails
        StackStateError: If the stack is not pending
    """
    descriptor.begin()
    started = time.perf_counter()
    logger.info("stack_synthesis_started", stack=descriptor.name)

    try:
        for ref in descriptor.declared_imports:
            if not registry.has(ref.stack, ref.key):
                raise UnresolvedImportError(ref.stack, ref.key, consumer=descriptor.name)

        produced: dict[str, Any] = {}
        if descriptor.builder is not None:
            context = SynthesisContext(descriptor, registry, topology, backend)
            produced = dict(descriptor.builder(context))

        declared = set(descriptor.output_keys)
        if set(produced) != declared:
            raise OutputMismatchError(
                descriptor.name, declared - set(produced), set(produced) - declared
            )

        registry.publish(descriptor.name, produced)
    except Exception as e:
        descriptor.fail(e)
        logger.error(
            "stack_synthesis_failed",
            stack=descriptor.name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    descriptor.complete(produced)
    logger.info(
        "stack_synthesized",
        stack=descriptor.name,
        output_count=len(produced),
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    return descriptor.outputs


@dataclass
class RunReport:
    """Outcome of one topology run."""

    run_id: str
    order: list[str]
    registry: OutputRegistry
    synthesized: list[str] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)
    # Stacks never started because the run aborted
    cancelled: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def outputs(self) -> dict[str, Any]:
        """Flat {"stack.key": value} table of everything published."""
        return self.registry.to_table()


class TopologyRunner:
    """
    Runs every stack of a topology in dependency order.

    A stack is submitted once all of its in-topology producers are
    synthesized. On the first failure nothing new is submitted; stacks that
    depend on a failed stack fail with UpstreamFailedError and the other
    never-started stacks are cancelled. No retries.
    """

    def __init__(
        self,
        topology: Topology,
        registry: OutputRegistry | None = None,
        backend: ProvisioningBackend | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.topology = topology
        self.registry = registry if registry is not None else OutputRegistry()
        self.backend = backend if backend is not None else get_backend()
        self.max_workers = max_workers or settings.MAX_WORKERS

    def run(self) -> RunReport:
        """
        Synthesize the whole topology.

        Raises:
            RunAbortedError: If any stack fails; carries the report
            CyclicDependencyError, UnknownSourceError: If the topology cannot be ordered
        """
        ordered = self.topology.order()
        for descriptor in ordered:
            if descriptor.status is not StackStatus.PENDING:
                raise StackStateError(
                    f"Stack '{descriptor.name}' is '{descriptor.status}', "
                    "a run needs pending stacks"
                )

        producers = self.topology.producers()
        position = {descriptor.name: i for i, descriptor in enumerate(ordered)}
        consumers: dict[str, list[str]] = {descriptor.name: [] for descriptor in ordered}
        for name, sources in producers.items():
            for source in sources:
                consumers[source].append(name)
        waiting = {name: len(sources) for name, sources in producers.items()}

        report = RunReport(
            run_id=uuid.uuid4().hex,
            order=[descriptor.name for descriptor in ordered],
            registry=self.registry,
        )
        logger.info(
            "topology_run_started",
            run_id=report.run_id,
            stack_count=len(ordered),
            max_workers=self.max_workers,
        )

        ready = [position[name] for name, count in waiting.items() if count == 0]
        heapq.heapify(ready)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            in_flight: dict[Future, StackDescriptor] = {}

            def submit_ready() -> None:
                while ready:
                    descriptor = ordered[heapq.heappop(ready)]
                    future = executor.submit(self._synthesize_one, descriptor, report.run_id)
                    in_flight[future] = descriptor

            submit_ready()
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: position[in_flight[f].name]):
                    descriptor = in_flight.pop(future)
                    error = future.exception()
                    if error is not None:
                        report.failures[descriptor.name] = error
                        continue
                    report.synthesized.append(descriptor.name)
                    for consumer in consumers[descriptor.name]:
                        waiting[consumer] -= 1
                        if waiting[consumer] == 0:
                            heapq.heappush(ready, position[consumer])
                if not report.failures:
                    submit_ready()

        if report.failures:
            self._abort(report, ordered, producers)

        logger.info(
            "topology_run_completed",
            run_id=report.run_id,
            synthesized=len(report.synthesized),
            output_count=len(self.registry),
        )
        return report

    def _synthesize_one(self, descriptor: StackDescriptor, run_id: str) -> Mapping[str, Any]:
        bind_contextvars(stack=descriptor.name, run_id=run_id)
        try:
            return synthesize(
                descriptor, self.registry, topology=self.topology, backend=self.backend
            )
        finally:
            clear_contextvars()

    def _abort(
        self,
        report: RunReport,
        ordered: list[StackDescriptor],
        producers: dict[str, list[str]],
    ) -> None:
        root_stack, root_error = next(iter(report.failures.items()))

        # Topological order: a producer's failure is recorded before its consumers are visited
        for descriptor in ordered:
            if descriptor.status is not StackStatus.PENDING:
                continue
            failed = [name for name in producers[descriptor.name] if name in report.failures]
            if failed:
                error = UpstreamFailedError(descriptor.name, failed)
                descriptor.fail(error)
                report.failures[descriptor.name] = error
                logger.error("stack_upstream_failed", stack=descriptor.name, upstream=failed)
            else:
                report.cancelled.append(descriptor.name)
                logger.warning("stack_cancelled", stack=descriptor.name)

        logger.error(
            "topology_run_aborted",
            run_id=report.run_id,
            stack=root_stack,
            error=str(root_error),
            failed=list(report.failures),
            cancelled=report.cancelled,
        )
        raise RunAbortedError(report, root_stack, root_error) from root_error


def run_topology(
    topology: Topology,
    registry: OutputRegistry | None = None,
    backend: ProvisioningBackend | None = None,
    max_workers: int | None = None,
) -> RunReport:
    """Run a topology with a fresh runner. See TopologyRunner.run()."""
    return TopologyRunner(topology, registry, backend, max_workers).run()
