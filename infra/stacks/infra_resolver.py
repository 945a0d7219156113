"""
Resolver for outputs of stacks deployed by a previous run.

When only some stacks are synthesized (--context stacks=ecs-fargate), the
others are external: their outputs are read from the SSM parameters written
by SharedExportStack and seeded into the registry before the run starts.

SSM Parameter Structure:
    {prefix}/{stack}/{key}
"""

from collections.abc import Callable

from aws_cdk import aws_ssm as ssm
from constructs import Construct

from stackcompose.core.logging import get_logger
from stackcompose.topology.composition import Topology
from stackcompose.topology.registry import OutputRegistry

logger = get_logger(__name__)


class InfraResolver:
    """
    Resolves imports of external stacks from SSM parameters.

    Usage:
        resolver = InfraResolver(app, "/stackcompose/dev")
        registry = resolver.seed_registry(topology)
    """

    def __init__(self, scope: Construct, prefix: str) -> None:
        """
        Initialize the resolver.

        Args:
            scope: CDK construct scope (usually the App)
            prefix: SSM parameter prefix (e.g., "/stackcompose/dev")
        """
        self.scope = scope
        self.prefix = prefix.rstrip("/")

    def parameter_name(self, stack: str, key: str) -> str:
        return f"{self.prefix}/{stack}/{key}"

    def lookup(self, stack: str, key: str, scope: Construct | None = None) -> str:
        """
        Look up one exported output.

        Note: ssm.StringParameter.value_from_lookup resolves the value during
        synthesis. This requires the parameter to exist at synth time, and the
        scope to be inside a Stack with an explicit account/region.
        """
        return ssm.StringParameter.value_from_lookup(
            scope or self.scope, self.parameter_name(stack, key)
        )

    def seed_registry(
        self,
        topology: Topology,
        registry: OutputRegistry | None = None,
        scope_for: Callable[[str], Construct] | None = None,
    ) -> OutputRegistry:
        """
        Publish every import of an external stack into the registry.

        Args:
            topology: Topology whose external imports are resolved
            registry: Registry to seed; a new one when omitted
            scope_for: Returns the lookup scope for a consuming stack name
                       (e.g. CdkBackend.stack_for); the resolver scope otherwise
        """
        registry = registry if registry is not None else OutputRegistry()
        for stack in topology.stacks:
            scope = scope_for(stack.name) if scope_for is not None else None
            for ref in stack.declared_imports:
                if ref.stack in topology.external_stacks and not registry.has(ref.stack, ref.key):
                    registry.put(ref.stack, ref.key, self.lookup(ref.stack, ref.key, scope))
                    logger.info("external_output_resolved", stack=ref.stack, key=ref.key)
        return registry
