"""
CDK validation aspects for pre-deployment checks.

These aspects run during `cdk synth` and will add warnings/info
for validation rules, catching issues before deployment.

Usage:
    from stacks.validation import add_validation_aspects
    add_validation_aspects(app)
"""

import aws_cdk as cdk
import jsii
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_rds as rds
from constructs import IConstruct


@jsii.implements(cdk.IAspect)
class ProductionReadinessAspect:
    """
    Validates production-readiness requirements for deployed resources.

    Checks the synthesized CloudFormation resources:
    - ECS services run at least 2 desired tasks for HA
    - Aurora clusters have deletion protection enabled

    Unresolved tokens are skipped; the value is only known at deploy time.
    """

    MIN_DESIRED_TASKS = 2

    def __init__(self, enforce_ha: bool = True, enforce_deletion_protection: bool = True):
        self._enforce_ha = enforce_ha
        self._enforce_deletion_protection = enforce_deletion_protection

    def visit(self, node: IConstruct) -> None:
        if self._enforce_ha and isinstance(node, ecs.CfnService):
            desired_count = node.desired_count
            if (
                isinstance(desired_count, (int, float))
                and not cdk.Token.is_unresolved(desired_count)
                and desired_count < self.MIN_DESIRED_TASKS
            ):
                cdk.Annotations.of(node).add_warning(
                    f"ECS service runs {int(desired_count)} desired task(s); "
                    f"production HA needs at least {self.MIN_DESIRED_TASKS}"
                )

        if self._enforce_deletion_protection and isinstance(node, rds.CfnDBCluster):
            deletion_protection = node.deletion_protection
            if not cdk.Token.is_unresolved(deletion_protection) and not deletion_protection:
                cdk.Annotations.of(node).add_warning(
                    "Aurora cluster has deletion protection disabled; "
                    "set database.deletion_protection for production"
                )


@jsii.implements(cdk.IAspect)
class SecurityAspect:
    """
    Validates security requirements for deployed resources.

    Checks:
    - Security groups start closed; egress comes from derived rules only
    """

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, ec2.SecurityGroup) and node.allow_all_outbound:
            cdk.Annotations.of(node).add_warning(
                "Security group allows all outbound traffic; declare a trust edge instead"
            )


def add_validation_aspects(
    scope: cdk.App,
    enforce_ha: bool = True,
    enforce_deletion_protection: bool = True,
    enable_security_checks: bool = True,
) -> None:
    """
    Add validation aspects to all stacks in the CDK app.

    Args:
        scope: The CDK App to add aspects to
        enforce_ha: Whether to check for high-availability configurations
        enforce_deletion_protection: Whether to check for deletion protection
        enable_security_checks: Whether to run security-related validations
    """
    cdk.Aspects.of(scope).add(
        ProductionReadinessAspect(
            enforce_ha=enforce_ha,
            enforce_deletion_protection=enforce_deletion_protection,
        )
    )

    if enable_security_checks:
        cdk.Aspects.of(scope).add(SecurityAspect())
