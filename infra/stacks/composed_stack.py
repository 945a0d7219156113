"""
Composed stack - one CDK stack per topology stack.

Resources are added by the CdkBackend handlers and looked up by (kind, name),
so a handler can reference resources that an earlier handler created in the
same stack (e.g. the security groups a database cluster attaches).
"""

from typing import Any

from aws_cdk import Stack
from aws_cdk import aws_ec2 as ec2
from constructs import Construct


class ComposedStack(Stack):
    """CDK stack materializing the resources of one topology stack."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self._resources: dict[tuple[str, str], Any] = {}
        self._vpcs: dict[str, ec2.IVpc] = {}
        self._imported_groups: dict[str, ec2.ISecurityGroup] = {}

    def add_resource(self, kind: str, name: str, resource: Any) -> None:
        if (kind, name) in self._resources:
            raise ValueError(f"Stack '{self.stack_name}' already has {kind} '{name}'")
        self._resources[(kind, name)] = resource

    def resource(self, kind: str, name: str) -> Any:
        try:
            return self._resources[(kind, name)]
        except KeyError:
            raise ValueError(f"Stack '{self.stack_name}' has no {kind} '{name}'") from None

    def register_vpc(self, vpc_name: str, vpc: ec2.IVpc) -> None:
        self._vpcs[vpc_name] = vpc

    def vpc(self, vpc_name: str) -> ec2.IVpc:
        """
        Get a VPC by name.

        VPCs created in this stack are used directly; any other VPC is looked up
        by name, which requires an explicit account/region on the stack.
        """
        if vpc_name not in self._vpcs:
            self._vpcs[vpc_name] = ec2.Vpc.from_lookup(self, f"{vpc_name}-vpc", vpc_name=vpc_name)
        return self._vpcs[vpc_name]

    def security_group(self, component: str, group_id: str | None = None) -> ec2.ISecurityGroup:
        """
        Get the security group of a component.

        Without group_id the group must have been created in this stack. With a
        group_id (imported from another stack) a reference is created once and
        reused, so repeated rules on it are deduplicated by CDK.
        """
        if group_id is None:
            return self.resource("security_group", component)

        if component not in self._imported_groups:
            self._imported_groups[component] = ec2.SecurityGroup.from_security_group_id(
                self,
                f"{component}-imported-sg",
                group_id,
                allow_all_outbound=False,
                mutable=True,
            )
        return self._imported_groups[component]
