"""
Service resources - ECS cluster, Fargate service and its load balancer routing.

The task pulls its image, writes logs and reads the database credentials
through the VPC endpoints; DB endpoints come in as environment variables and
credentials as secrets.
"""

from aws_cdk import Duration
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_ecs as ecs
from aws_cdk import aws_elasticloadbalancingv2 as elbv2
from aws_cdk import aws_iam as iam
from aws_cdk import aws_logs as logs
from aws_cdk import aws_secretsmanager as secretsmanager

from stackcompose.topology.backends import ProvisionResult, ResourceSpec

from .composed_stack import ComposedStack
from .network_stack import lookup

LOG_RETENTION = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
}


def provision_ecs_cluster(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    cluster = ecs.Cluster(
        stack,
        spec.name,
        vpc=stack.vpc(spec.params["vpc_name"]),
        enable_fargate_capacity_providers=True,
        container_insights=spec.params["container_insights"],
    )
    stack.add_resource(spec.kind, spec.name, cluster)
    return ProvisionResult(id=cluster.cluster_arn, endpoints={"cluster_name": cluster.cluster_name})


def _execution_role(stack: ComposedStack, name: str) -> iam.Role:
    """IAM role allowing the task to write CloudWatch logs and authenticate to ECR."""
    role = iam.Role(
        stack,
        f"{name}-execution-role",
        assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
    )
    role.add_to_policy(
        iam.PolicyStatement(
            resources=["*"],
            actions=["logs:PutLogEvents", "logs:CreateLogStream"],
            effect=iam.Effect.ALLOW,
        )
    )
    role.add_to_policy(
        iam.PolicyStatement(
            resources=["*"],
            actions=["ecr:GetAuthorizationToken"],
            effect=iam.Effect.ALLOW,
        )
    )
    return role


def provision_fargate_service(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    scaling = params["scaling"]

    task_definition = ecs.FargateTaskDefinition(
        stack,
        f"{spec.name}-taskdef",
        family=spec.name,
        cpu=params["cpu"],
        memory_limit_mib=params["memory_mib"],
        runtime_platform=ecs.RuntimePlatform(
            operating_system_family=ecs.OperatingSystemFamily.LINUX,
            cpu_architecture=ecs.CpuArchitecture.X86_64,
        ),
        execution_role=_execution_role(stack, spec.name),
    )

    db_credentials = secretsmanager.Secret.from_secret_attributes(
        stack, f"{spec.name}-db-creds", secret_complete_arn=params["secret_arn"]
    )
    task_definition.add_container(
        spec.name,
        container_name=spec.name,
        image=ecs.ContainerImage.from_registry(params["image"]),
        environment=dict(params["environment"]),
        secrets={
            variable: ecs.Secret.from_secrets_manager(db_credentials, field)
            for variable, field in params["secrets"].items()
        },
        stop_timeout=Duration.seconds(params["stop_timeout_seconds"]),
        port_mappings=[
            ecs.PortMapping(
                name="http",
                container_port=params["container_port"],
                protocol=ecs.Protocol.TCP,
            )
        ],
        logging=ecs.LogDrivers.aws_logs(
            stream_prefix=spec.name,
            log_retention=lookup(LOG_RETENTION, params["log_retention_days"], "log retention"),
        ),
    )

    service = ecs.FargateService(
        stack,
        f"{spec.name}-svc",
        cluster=stack.resource("ecs_cluster", params["cluster"]),
        task_definition=task_definition,
        desired_count=scaling["desired_count"],
        vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
        security_groups=[stack.security_group(name) for name in params["security_groups"]],
        capacity_provider_strategies=[
            ecs.CapacityProviderStrategy(capacity_provider="FARGATE", base=0, weight=1)
        ],
    )

    if params["scaling_kind"] == "auto_scaled":
        task_count = service.auto_scale_task_count(
            min_capacity=scaling["min_capacity"],
            max_capacity=scaling["max_capacity"],
        )
        task_count.scale_on_cpu_utilization(
            f"{spec.name}-cpu-scaling",
            target_utilization_percent=scaling["target_cpu_percent"],
            scale_in_cooldown=Duration.seconds(60),
            scale_out_cooldown=Duration.seconds(60),
        )

    stack.add_resource(spec.kind, spec.name, service)
    return ProvisionResult(id=service.service_arn, endpoints={"service_name": service.service_name})


def provision_listener_rule(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    """
    Route matching requests of a shared listener to the service.

    The listener's security group is the same reference the derived rules use,
    so the rules CDK adds for the target group collapse into them.
    """
    params = spec.params
    service = stack.resource("fargate_service", params["service"])
    listener = elbv2.ApplicationListener.from_application_listener_attributes(
        stack,
        f"{spec.name}-listener",
        listener_arn=params["listener_arn"],
        security_group=stack.security_group(
            params["listener_security_group"], params["listener_security_group_id"]
        ),
    )

    target_group = elbv2.ApplicationTargetGroup(
        stack,
        f"{spec.name}-tg",
        vpc=stack.vpc(params["vpc_name"]),
        port=params["container_port"],
        protocol=elbv2.ApplicationProtocol.HTTP,
        targets=[service],
        deregistration_delay=Duration.seconds(60),
        health_check=elbv2.HealthCheck(
            path=params["health_check_path"],
            interval=Duration.seconds(15),
            timeout=Duration.seconds(3),
            healthy_threshold_count=5,
            unhealthy_threshold_count=2,
        ),
    )

    conditions = [elbv2.ListenerCondition.path_patterns(list(params["path_patterns"]))]
    if params["host_headers"]:
        conditions.append(elbv2.ListenerCondition.host_headers(list(params["host_headers"])))

    elbv2.ApplicationListenerRule(
        stack,
        spec.name,
        listener=listener,
        priority=params["priority"],
        conditions=conditions,
        target_groups=[target_group],
    )
    return ProvisionResult(id=spec.name)
