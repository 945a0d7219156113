"""
Network resources - VPC, VPC endpoints, security groups and their rules.
"""

from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam

from stackcompose.topology.backends import ProvisionResult, ResourceSpec

from .composed_stack import ComposedStack

SUBNET_TYPES = {
    "public": ec2.SubnetType.PUBLIC,
    "private": ec2.SubnetType.PRIVATE_WITH_EGRESS,
    "isolated": ec2.SubnetType.PRIVATE_ISOLATED,
}

INTERFACE_SERVICES = {
    "secretsmanager": ec2.InterfaceVpcEndpointAwsService.SECRETS_MANAGER,
    "ecr.api": ec2.InterfaceVpcEndpointAwsService.ECR,
    "ecr.dkr": ec2.InterfaceVpcEndpointAwsService.ECR_DOCKER,
    "logs": ec2.InterfaceVpcEndpointAwsService.CLOUDWATCH_LOGS,
}

GATEWAY_SERVICES = {
    "s3": ec2.GatewayVpcEndpointAwsService.S3,
    "dynamodb": ec2.GatewayVpcEndpointAwsService.DYNAMODB,
}


def lookup(table: dict, key: str, what: str):
    try:
        return table[key]
    except KeyError:
        raise ValueError(f"Unsupported {what} '{key}', expected one of {sorted(table)}") from None


def provision_vpc(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    vpc = ec2.Vpc(
        stack,
        spec.name,
        vpc_name=params["vpc_name"],
        ip_addresses=ec2.IpAddresses.cidr(params["cidr"]),
        max_azs=params["max_azs"],
        nat_gateways=params["nat_gateways"],
        subnet_configuration=[
            ec2.SubnetConfiguration(
                name=subnet["name"],
                subnet_type=lookup(SUBNET_TYPES, subnet["subnet_type"], "subnet type"),
                cidr_mask=subnet["cidr_mask"],
            )
            for subnet in params["subnets"]
        ],
    )
    stack.add_resource(spec.kind, spec.name, vpc)
    stack.register_vpc(params["vpc_name"], vpc)
    return ProvisionResult(id=vpc.vpc_id, endpoints={"vpc_id": vpc.vpc_id, "vpc_arn": vpc.vpc_arn})


def provision_vpc_endpoints(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    vpc = stack.vpc(params["vpc_name"])
    security_group = stack.security_group(params["security_group"])

    for service in params["interface_services"]:
        ec2.InterfaceVpcEndpoint(
            stack,
            f"{service.replace('.', '-')}-vpcendpoint",
            vpc=vpc,
            service=lookup(INTERFACE_SERVICES, service, "interface endpoint service"),
            security_groups=[security_group],
        )

    for service in params["gateway_services"]:
        gateway = ec2.GatewayVpcEndpoint(
            stack,
            f"{service}-vpcendpoint",
            vpc=vpc,
            service=lookup(GATEWAY_SERVICES, service, "gateway endpoint service"),
            subnets=[ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS)],
        )
        if service == "s3":
            # ECR stores image layers in this regional bucket
            gateway.add_to_policy(
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=["s3:GetObject"],
                    principals=[iam.StarPrincipal()],
                    resources=[f"arn:aws:s3:::prod-{stack.region}-starport-layer-bucket/*"],
                )
            )

    return ProvisionResult(id=spec.name)


def provision_security_group(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    security_group = ec2.SecurityGroup(
        stack,
        f"{spec.name}-sg",
        vpc=stack.vpc(spec.params["vpc_name"]),
        description=spec.params.get("description"),
        allow_all_outbound=False,
    )
    stack.add_resource(spec.kind, spec.name, security_group)
    group_id = security_group.security_group_id
    return ProvisionResult(id=group_id, endpoints={"security_group_id": group_id})


def provision_security_group_rule(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    """
    Add one derived allow rule to a security group.

    Rules on imported groups become standalone ingress/egress resources in
    this stack, which keeps the dependency one-way between stacks.
    """
    params = spec.params
    target = stack.security_group(params["target"], params["target_id"])

    if params["peer_cidr"] is not None:
        peer = ec2.Peer.ipv4(params["peer_cidr"])
    else:
        peer = stack.security_group(params["peer"], params["peer_id"])

    if params["protocol"] == "udp":
        port = ec2.Port.udp(params["port"])
    else:
        port = ec2.Port.tcp(params["port"])

    description = params["description"] or spec.name
    if params["direction"] == "ingress":
        target.add_ingress_rule(peer, port, description)
    else:
        target.add_egress_rule(peer, port, description)

    return ProvisionResult(id=spec.name)
