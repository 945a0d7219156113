"""
Stack to export topology outputs as SSM parameters.

A later, independently triggered deployment that only synthesizes some of
the stacks reads the outputs of the others from these parameters (see
infra_resolver.py). Parameter names follow the registry layout:

    {prefix}/{stack}/{key}

Activated by passing --context export_prefix=/stackcompose/dev
"""

from collections.abc import Mapping

from aws_cdk import Stack
from aws_cdk import aws_ssm as ssm
from constructs import Construct


class SharedExportStack(Stack):
    """Writes one SSM parameter per exported output."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        parameters: Mapping[str, str],
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        for parameter_name, value in parameters.items():
            ssm.StringParameter(
                self,
                parameter_name.strip("/").replace("/", "-"),
                parameter_name=parameter_name,
                string_value=value,
            )
