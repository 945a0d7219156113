"""
Provisioning backends - pluggable resource providers.

The engine never creates cloud resources itself. A stack's builder describes
each resource as a ResourceSpec and hands it to the configured backend.

LocalBackend: Deterministic in-memory provisioning (dry runs, tests)
CdkBackend: AWS CDK constructs, lives in the infra app (infra/stacks/cdk_backend.py)
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from stackcompose.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResourceSpec:
    """Declarative description of one resource to provision."""

    stack: str
    kind: str
    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    # Endpoint names the caller expects back, e.g. ("cluster_endpoint",)
    endpoints: tuple[str, ...] = ()
    # Stacks that must be deployed before this resource
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProvisionResult:
    """Live identifiers of a provisioned resource."""

    id: str
    endpoints: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    status: str = "provisioned"


class ProvisioningBackend(ABC):
    """Abstract base class for provisioning backends."""

    @abstractmethod
    def provision(self, spec: ResourceSpec) -> ProvisionResult:
        """
        Provision one resource.

        Returns the resource id and every endpoint listed in spec.endpoints.
        Any exception raised here is reported as a ProvisioningError for the
        calling stack.
        """
        pass


class LocalBackend(ProvisioningBackend):
    """
    Local backend.

    Fabricates stable ids and endpoints from the spec so that repeated runs of
    the same topology produce identical outputs. Every spec is recorded for
    inspection.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.provisioned: list[ResourceSpec] = []

    def provision(self, spec: ResourceSpec) -> ProvisionResult:
        """Record the spec and return deterministic identifiers."""
        digest = hashlib.sha256(f"{spec.stack}/{spec.kind}/{spec.name}".encode()).hexdigest()
        resource_id = f"{spec.kind}-{digest[:12]}"
        endpoints = {
            endpoint: f"{spec.name}-{endpoint}.{spec.stack}.internal".replace("_", "-")
            for endpoint in spec.endpoints
        }

        with self._lock:
            self.provisioned.append(spec)

        logger.info(
            "resource_provisioned",
            stack=spec.stack,
            kind=spec.kind,
            resource=spec.name,
            resource_id=resource_id,
            backend="local",
        )
        return ProvisionResult(id=resource_id, endpoints=MappingProxyType(endpoints))

    def specs_for(self, stack: str) -> list[ResourceSpec]:
        """Get every spec provisioned for one stack, in provisioning order."""
        with self._lock:
            return [spec for spec in self.provisioned if spec.stack == stack]


def get_backend(name: str | None = None) -> ProvisioningBackend:
    """
    Get the configured provisioning backend.

    Uses the PROVISIONING_BACKEND setting when no name is given. Only 'local'
    can be built here; other backends are injected by the app that owns them.
    """
    from stackcompose.config import settings

    backend_type = name or settings.PROVISIONING_BACKEND

    if backend_type == "local":
        return LocalBackend()

    raise ValueError(f"Unknown provisioning backend '{backend_type}'")
