"""CDK stacks and provisioning handlers for composed topologies."""

from .cdk_backend import CdkBackend
from .composed_stack import ComposedStack
from .infra_resolver import InfraResolver
from .shared_export_stack import SharedExportStack

__all__ = [
    "CdkBackend",
    "ComposedStack",
    "InfraResolver",
    "SharedExportStack",
]
