"""
Multi-stack blueprint.

Reference topology of a containerized web service on AWS, split into four
independently deployable stacks:

    vpc          VPC, subnets and the VPC endpoints containers need
    pgdb         Aurora PostgreSQL cluster            (imports vpc)
    shared-nw    Shared application load balancer(s)  (imports vpc)
    ecs-fargate  ECS Fargate service behind the ALB   (imports vpc, pgdb, shared-nw)

Builders only describe resources; the provisioning backend decides what they
become (in-memory records with LocalBackend, CDK constructs with the infra
app's CdkBackend). Security groups and their rules are never listed here, they
follow from the trust edges in build_topology().
"""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field, field_validator

from stackcompose.topology.composition import Topology
from stackcompose.topology.descriptors import StackDescriptor
from stackcompose.topology.security import Component, TrustEdge
from stackcompose.topology.selector import (
    DatabaseCapacitySlot,
    ListenerSlot,
    ReadScalingSlot,
    ServiceScalingSlot,
    VariantKind,
    VpcLayoutSlot,
    select,
)
from stackcompose.topology.services import SynthesisContext

VPC_STACK = "vpc"
DATABASE_STACK = "pgdb"
SHARED_NETWORK_STACK = "shared-nw"
SERVICE_STACK = "ecs-fargate"

VPC_OUTPUTS = ("vpcName", "vpcId", "vpcArn", "cntrVpceSgId")
DATABASE_OUTPUTS = (
    "clusterEndpoint",
    "clusterReaderEndpoint",
    "dbCredsSecretArn",
    "dbSecurityGroupId",
)
EXTERNAL_LB_OUTPUTS = ("extLbEndpoint", "extLbArn", "extListenerArn", "extLbSgId")
INTERNAL_LB_OUTPUTS = ("intLbEndpoint", "intLbArn", "intLbSgId")
SERVICE_OUTPUTS = ("clusterName", "serviceName", "appSgId")

ANY_IPV4 = "0.0.0.0/0"
HTTPS_PORT = 443
HTTP_PORT = 80

DEFAULT_RESPONSE = {
    "status_code": 404,
    "content_type": "application/json",
    "message_body": '{"status":404}',
}


# =================================================================
# Settings
# =================================================================


class VpcSettings(BaseModel):
    name: str = Field(default="dev", min_length=1, description="VPC name, used for lookups")
    layout: VpcLayoutSlot = Field(default_factory=VpcLayoutSlot)
    interface_endpoints: list[str] = Field(
        default_factory=lambda: ["secretsmanager", "ecr.api", "ecr.dkr", "logs"]
    )
    gateway_endpoints: list[str] = Field(default_factory=lambda: ["s3"])

    @property
    def cidr(self) -> str:
        return select(self.layout).params["cidr"]


class DatabaseSettings(BaseModel):
    engine_version: str = "15.3"
    default_database_name: str = "appdb"
    port: int = Field(default=5432, ge=1, le=65535)
    parameters: dict[str, str] = Field(default_factory=dict)
    capacity: DatabaseCapacitySlot = Field(
        default_factory=lambda: DatabaseCapacitySlot(
            serverless_min_capacity=0.5, serverless_max_capacity=4
        )
    )
    read_scaling: ReadScalingSlot = Field(default_factory=ReadScalingSlot)
    subnet_type: str = Field(default="isolated", pattern="^(private|isolated)$")
    backup_retention_days: int = Field(default=1, ge=1, le=35)
    preferred_backup_window: str = "17:00-18:00"
    monitoring_interval_seconds: int = 5
    deletion_protection: bool = False

    @field_validator("monitoring_interval_seconds")
    @classmethod
    def _check_monitoring_interval(cls, value: int) -> int:
        if value not in (0, 1, 5, 10, 15, 30, 60):
            raise ValueError("monitoring_interval_seconds must be one of 0, 1, 5, 10, 15, 30, 60")
        return value


class LoadBalancerSettings(BaseModel):
    listener: ListenerSlot = Field(default_factory=ListenerSlot)
    create_internal_lb: bool = False


class ServiceSettings(BaseModel):
    name: str = "api"
    image: str = "public.ecr.aws/nginx/nginx:stable"
    container_port: int = Field(default=80, ge=1, le=65535)
    cpu: int = 256
    memory_mib: int = 512
    scaling: ServiceScalingSlot = Field(default_factory=ServiceScalingSlot)
    environment: dict[str, str] = Field(default_factory=dict)
    health_check_path: str = "/healthz"
    path_patterns: list[str] = Field(default_factory=lambda: ["/api/v1/*"])
    host_headers: list[str] = Field(default_factory=list)
    listener_priority: int = Field(default=1, ge=1, le=50000)
    log_retention_days: int = 3
    stop_timeout_seconds: int = 30


class MultiStackSettings(BaseModel):
    """Settings of the whole blueprint, one section per stack."""

    vpc: VpcSettings = Field(default_factory=VpcSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    load_balancer: LoadBalancerSettings = Field(default_factory=LoadBalancerSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)


# =================================================================
# Builders
# =================================================================


def provision_boundaries(ctx: SynthesisContext, vpc_name: str) -> dict[str, Any]:
    """
    Provision the security groups of the stack's components and their rules.

    Returns:
        {component name: security group id}
    """
    groups = {}
    for component in ctx.owned_components():
        result = ctx.provision(
            "security_group",
            component.name,
            {"vpc_name": vpc_name, "description": f"Security group of {component.name}"},
            endpoints=("security_group_id",),
        )
        groups[component.name] = result.endpoints["security_group_id"]

    for placement in ctx.rule_placements():
        rule = placement.rule
        ctx.provision(
            "security_group_rule",
            f"{placement.target}-{rule.direction}-{rule.peer}-{rule.protocol}-{rule.port}",
            {
                "target": placement.target,
                "target_id": placement.target_id,
                "direction": str(rule.direction),
                "protocol": str(rule.protocol),
                "port": rule.port,
                "peer": rule.peer,
                "peer_id": placement.peer_id,
                "peer_cidr": rule.peer_cidr,
                "description": rule.description,
            },
        )
    return groups


def build_vpc(ctx: SynthesisContext) -> dict[str, Any]:
    config: VpcSettings = ctx.inputs["settings"]
    layout = ctx.select(config.layout)

    vpc = ctx.provision(
        "vpc",
        config.name,
        {"vpc_name": config.name, **layout.params},
        endpoints=("vpc_id", "vpc_arn"),
    )
    groups = provision_boundaries(ctx, config.name)
    ctx.provision(
        "vpc_endpoints",
        "cntr-vpce",
        {
            "vpc_name": config.name,
            "interface_services": list(config.interface_endpoints),
            "gateway_services": list(config.gateway_endpoints),
            "security_group": "vpc-endpoints",
        },
    )

    return {
        "vpcName": config.name,
        "vpcId": vpc.endpoints["vpc_id"],
        "vpcArn": vpc.endpoints["vpc_arn"],
        "cntrVpceSgId": groups["vpc-endpoints"],
    }


def build_database(ctx: SynthesisContext) -> dict[str, Any]:
    config: DatabaseSettings = ctx.inputs["settings"]
    vpc_name = ctx.import_value(VPC_STACK, "vpcName")

    groups = provision_boundaries(ctx, vpc_name)
    capacity = ctx.select(config.capacity)
    cluster = ctx.provision(
        "database_cluster",
        "db",
        {
            "vpc_name": vpc_name,
            "engine_version": config.engine_version,
            "default_database_name": config.default_database_name,
            "port": config.port,
            "parameters": dict(config.parameters),
            "capacity_kind": str(capacity.kind),
            "capacity": dict(capacity.params),
            "subnet_type": config.subnet_type,
            "security_groups": ["db"],
            "credentials_username": "postgres",
            "storage_encrypted": True,
            "backup_retention_days": config.backup_retention_days,
            "preferred_backup_window": config.preferred_backup_window,
            "monitoring_interval_seconds": config.monitoring_interval_seconds,
            "deletion_protection": config.deletion_protection,
        },
        endpoints=("cluster_endpoint", "cluster_reader_endpoint", "secret_arn"),
    )

    read_scaling = ctx.select(config.read_scaling)
    if read_scaling.kind is not VariantKind.FIXED:
        ctx.provision(
            "read_scaling",
            "db-read-scaling",
            {"cluster": "db", "kind": str(read_scaling.kind), **read_scaling.params},
        )

    return {
        "clusterEndpoint": cluster.endpoints["cluster_endpoint"],
        "clusterReaderEndpoint": cluster.endpoints["cluster_reader_endpoint"],
        "dbCredsSecretArn": cluster.endpoints["secret_arn"],
        "dbSecurityGroupId": groups["db"],
    }


def _load_balancer(
    ctx: SynthesisContext,
    prefix: str,
    vpc_name: str,
    listener: dict[str, Any],
    internet_facing: bool,
) -> tuple[Any, Any]:
    balancer = ctx.provision(
        "load_balancer",
        f"{prefix}-alb",
        {
            "vpc_name": vpc_name,
            "internet_facing": internet_facing,
            "security_group": f"{prefix}-lb",
        },
        endpoints=("dns_name", "arn"),
    )
    created = ctx.provision(
        "listener",
        f"{prefix}-listener",
        {"load_balancer": f"{prefix}-alb", **listener, "default_response": DEFAULT_RESPONSE},
        endpoints=("arn",),
    )
    return balancer, created


def build_shared_network(ctx: SynthesisContext) -> dict[str, Any]:
    config: LoadBalancerSettings = ctx.inputs["settings"]
    vpc_name = ctx.import_value(VPC_STACK, "vpcName")

    groups = provision_boundaries(ctx, vpc_name)
    listener = ctx.select(config.listener)
    balancer, ext_listener = _load_balancer(
        ctx, "ext", vpc_name, dict(listener.params), internet_facing=True
    )
    outputs = {
        "extLbEndpoint": balancer.endpoints["dns_name"],
        "extLbArn": balancer.endpoints["arn"],
        "extListenerArn": ext_listener.endpoints["arn"],
        "extLbSgId": groups["ext-lb"],
    }

    if config.create_internal_lb:
        internal = ctx.select(ListenerSlot())
        balancer, _ = _load_balancer(
            ctx, "int", vpc_name, dict(internal.params), internet_facing=False
        )
        outputs.update(
            intLbEndpoint=balancer.endpoints["dns_name"],
            intLbArn=balancer.endpoints["arn"],
            intLbSgId=groups["int-lb"],
        )
    return outputs


def build_service(ctx: SynthesisContext) -> dict[str, Any]:
    config: ServiceSettings = ctx.inputs["settings"]
    vpc_name = ctx.import_value(VPC_STACK, "vpcName")

    groups = provision_boundaries(ctx, vpc_name)
    cluster = ctx.provision(
        "ecs_cluster",
        "rest-apis",
        {"vpc_name": vpc_name, "container_insights": True},
        endpoints=("cluster_name",),
    )

    scaling = ctx.select(config.scaling)
    environment = {
        "APP_PORT": str(config.container_port),
        "DB_WRITER_ENDPOINT": ctx.import_value(DATABASE_STACK, "clusterEndpoint"),
        "DB_READER_ENDPOINT": ctx.import_value(DATABASE_STACK, "clusterReaderEndpoint"),
        **config.environment,
    }
    service = ctx.provision(
        "fargate_service",
        config.name,
        {
            "vpc_name": vpc_name,
            "cluster": "rest-apis",
            "cpu": config.cpu,
            "memory_mib": config.memory_mib,
            "image": config.image,
            "container_port": config.container_port,
            "environment": environment,
            "secret_arn": ctx.import_value(DATABASE_STACK, "dbCredsSecretArn"),
            "secrets": {"DB_USER": "username", "DB_PWD": "password", "DB_NAME": "dbname"},
            "security_groups": ["app"],
            "scaling_kind": str(scaling.kind),
            "scaling": dict(scaling.params),
            "log_retention_days": config.log_retention_days,
            "stop_timeout_seconds": config.stop_timeout_seconds,
        },
        endpoints=("service_name",),
    )
    ctx.provision(
        "listener_rule",
        f"{config.name}-rule",
        {
            "vpc_name": vpc_name,
            "service": config.name,
            "listener_arn": ctx.import_value(SHARED_NETWORK_STACK, "extListenerArn"),
            "listener_security_group": "ext-lb",
            "listener_security_group_id": ctx.import_value(SHARED_NETWORK_STACK, "extLbSgId"),
            "container_port": config.container_port,
            "priority": config.listener_priority,
            "path_patterns": list(config.path_patterns),
            "host_headers": list(config.host_headers),
            "health_check_path": config.health_check_path,
        },
    )

    return {
        "clusterName": cluster.endpoints["cluster_name"],
        "serviceName": service.endpoints["service_name"],
        "appSgId": groups["app"],
    }


# =================================================================
# Topology
# =================================================================


def build_topology(
    settings: MultiStackSettings | None = None, only: Iterable[str] | None = None
) -> Topology:
    """
    Build the four-stack topology.

    Args:
        settings: Blueprint settings; defaults when omitted
        only: Names of the stacks to synthesize; the others become external
              stacks whose outputs come from a previous run

    Returns:
        A validated Topology ready for TopologyRunner

    Raises:
        ValueError: If only names an unknown stack
    """
    settings = settings or MultiStackSettings()
    vpc_cidr = settings.vpc.cidr
    db_port = settings.database.port
    listener_port = select(settings.load_balancer.listener).params["port"]
    app_port = settings.service.container_port
    internal_lb = settings.load_balancer.create_internal_lb

    shared_outputs = EXTERNAL_LB_OUTPUTS + (INTERNAL_LB_OUTPUTS if internal_lb else ())
    stacks = [
        StackDescriptor(
            name=VPC_STACK,
            inputs={"settings": settings.vpc},
            output_keys=VPC_OUTPUTS,
            builder=build_vpc,
            components=["vpc-endpoints"],
        ),
        StackDescriptor(
            name=DATABASE_STACK,
            inputs={"settings": settings.database},
            declared_imports=["vpc.vpcName"],
            output_keys=DATABASE_OUTPUTS,
            builder=build_database,
            components=["db"],
        ),
        StackDescriptor(
            name=SHARED_NETWORK_STACK,
            inputs={"settings": settings.load_balancer},
            declared_imports=["vpc.vpcName"],
            output_keys=shared_outputs,
            builder=build_shared_network,
            components=["ext-lb", "int-lb"] if internal_lb else ["ext-lb"],
        ),
        StackDescriptor(
            name=SERVICE_STACK,
            inputs={"settings": settings.service},
            declared_imports=[
                "vpc.vpcName",
                "vpc.cntrVpceSgId",
                "pgdb.clusterEndpoint",
                "pgdb.clusterReaderEndpoint",
                "pgdb.dbCredsSecretArn",
                "pgdb.dbSecurityGroupId",
                "shared-nw.extListenerArn",
                "shared-nw.extLbSgId",
            ],
            output_keys=SERVICE_OUTPUTS,
            builder=build_service,
            components=["app"],
        ),
    ]

    components = [
        Component("internet", cidr=ANY_IPV4),
        Component("vpc-cidr", cidr=vpc_cidr),
        Component("vpc-endpoints", stack=VPC_STACK, boundary_output="cntrVpceSgId"),
        Component("db", stack=DATABASE_STACK, boundary_output="dbSecurityGroupId"),
        Component("ext-lb", stack=SHARED_NETWORK_STACK, boundary_output="extLbSgId"),
        Component("app", stack=SERVICE_STACK, boundary_output="appSgId"),
    ]
    edges = [
        TrustEdge("vpc-cidr", "vpc-endpoints", HTTPS_PORT, description="VPC to endpoints"),
        TrustEdge("vpc-cidr", "db", db_port, description="VPC to database"),
        TrustEdge("internet", "ext-lb", listener_port, description="Public listener"),
        TrustEdge("ext-lb", "vpc-cidr", HTTPS_PORT, description="LB to targets"),
        TrustEdge("ext-lb", "vpc-cidr", HTTP_PORT, description="LB to targets"),
        TrustEdge("ext-lb", "app", app_port, description="All calls to the app go through the LB"),
        TrustEdge("app", "db", db_port, description="App to PostgreSQL"),
        TrustEdge("app", "vpc-endpoints", HTTPS_PORT, description="ECR and Secrets Manager"),
        TrustEdge("app", "internet", HTTPS_PORT, description="Outbound HTTPS"),
    ]

    if internal_lb:
        components.append(
            Component("int-lb", stack=SHARED_NETWORK_STACK, boundary_output="intLbSgId")
        )
        edges += [
            TrustEdge("vpc-cidr", "int-lb", HTTP_PORT, description="Internal listener"),
            TrustEdge("int-lb", "vpc-cidr", HTTPS_PORT, description="LB to targets"),
            TrustEdge("int-lb", "vpc-cidr", HTTP_PORT, description="LB to targets"),
        ]

    external: list[str] = []
    if only is not None:
        selected = set(only)
        unknown = selected - {stack.name for stack in stacks}
        if unknown:
            raise ValueError(f"Unknown stack(s) {sorted(unknown)}")
        external = [stack.name for stack in stacks if stack.name not in selected]
        stacks = [stack for stack in stacks if stack.name in selected]

    return Topology(
        stacks=stacks, components=components, trust_edges=edges, external_stacks=external
    )
