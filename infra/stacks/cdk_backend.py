"""
CDK provisioning backend.

Materializes resource specs as AWS CDK constructs: each topology stack becomes
one ComposedStack, and each resource kind is handled by a function in the
matching *_stack module. The CDK construct tree is not thread-safe, so drive
this backend with a single worker.
"""

from collections.abc import Callable, Mapping

import aws_cdk as cdk
from constructs import Construct

from stackcompose.core.logging import get_logger
from stackcompose.topology.backends import ProvisioningBackend, ProvisionResult, ResourceSpec
from stackcompose.topology.registry import OutputRegistry

from .composed_stack import ComposedStack
from .database_stack import provision_database_cluster, provision_read_scaling
from .load_balancer_stack import provision_listener, provision_load_balancer
from .network_stack import (
    provision_security_group,
    provision_security_group_rule,
    provision_vpc,
    provision_vpc_endpoints,
)
from .service_stack import (
    provision_ecs_cluster,
    provision_fargate_service,
    provision_listener_rule,
)

logger = get_logger(__name__)

Handler = Callable[[ComposedStack, ResourceSpec], ProvisionResult]

HANDLERS: Mapping[str, Handler] = {
    "vpc": provision_vpc,
    "vpc_endpoints": provision_vpc_endpoints,
    "security_group": provision_security_group,
    "security_group_rule": provision_security_group_rule,
    "database_cluster": provision_database_cluster,
    "read_scaling": provision_read_scaling,
    "load_balancer": provision_load_balancer,
    "listener": provision_listener,
    "ecs_cluster": provision_ecs_cluster,
    "fargate_service": provision_fargate_service,
    "listener_rule": provision_listener_rule,
}


class CdkBackend(ProvisioningBackend):
    """
    AWS CDK backend.

    Usage:
        backend = CdkBackend(app, env=env)
        TopologyRunner(topology, backend=backend, max_workers=1).run()
        backend.add_outputs(registry)
        app.synth()
    """

    def __init__(
        self,
        scope: Construct,
        *,
        env: cdk.Environment | None = None,
        stack_prefix: str = "",
    ) -> None:
        self.scope = scope
        self.env = env
        self.stack_prefix = stack_prefix
        self.stacks: dict[str, ComposedStack] = {}
        self._dependencies: set[tuple[str, str]] = set()

    def stack_for(self, name: str, depends_on: tuple[str, ...] = ()) -> ComposedStack:
        """Get or create the CDK stack of a topology stack."""
        stack = self.stacks.get(name)
        if stack is None:
            stack = ComposedStack(self.scope, f"{self.stack_prefix}{name}", env=self.env)
            self.stacks[name] = stack
        # Producers from a previous deployment have no stack in this app
        for upstream in depends_on:
            if upstream in self.stacks and (name, upstream) not in self._dependencies:
                stack.add_dependency(self.stacks[upstream])
                self._dependencies.add((name, upstream))
        return stack

    def provision(self, spec: ResourceSpec) -> ProvisionResult:
        handler = HANDLERS.get(spec.kind)
        if handler is None:
            raise ValueError(f"CdkBackend cannot provision resource kind '{spec.kind}'")

        stack = self.stack_for(spec.stack, spec.depends_on)
        result = handler(stack, spec)

        logger.info(
            "resource_provisioned",
            stack=spec.stack,
            kind=spec.kind,
            resource=spec.name,
            backend="cdk",
        )
        return result

    def add_outputs(self, registry: OutputRegistry) -> None:
        """Add a CfnOutput for every published output of the stacks in this app."""
        for stack_name, key in registry:
            stack = self.stacks.get(stack_name)
            if stack is None:
                continue
            cdk.CfnOutput(
                stack,
                key,
                value=str(registry.get(stack_name, key)),
                description=f"{stack_name}.{key}",
            )
