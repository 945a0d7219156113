"""
Database resources - Aurora PostgreSQL cluster and read replica scaling.

The writer and its failover reader are either provisioned instances or
Serverless v2 instances, depending on the selected capacity variant. A
serverless reader scales with the writer.
"""

from aws_cdk import Duration
from aws_cdk import aws_applicationautoscaling as appscaling
from aws_cdk import aws_cloudwatch as cloudwatch
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_rds as rds

from stackcompose.topology.backends import ProvisionResult, ResourceSpec

from .composed_stack import ComposedStack
from .network_stack import SUBNET_TYPES, lookup

PREDEFINED_METRICS = {
    "RDSReaderAverageCPUUtilization": (
        appscaling.PredefinedMetric.RDS_READER_AVERAGE_CPU_UTILIZATION
    ),
    "RDSReaderAverageDatabaseConnections": (
        appscaling.PredefinedMetric.RDS_READER_AVERAGE_DATABASE_CONNECTIONS
    ),
}


def provision_database_cluster(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    capacity = params["capacity"]
    version = params["engine_version"]

    engine = rds.DatabaseClusterEngine.aurora_postgres(
        version=rds.AuroraPostgresEngineVersion.of(version, version.split(".")[0]),
    )
    parameter_group = rds.ParameterGroup(
        stack,
        f"{spec.name}-param-grp",
        engine=engine,
        parameters=dict(params["parameters"]),
    )

    serverless_capacity = {}
    if params["capacity_kind"] == "provisioned":
        instance_type = ec2.InstanceType(capacity["instance_type"])
        writer = rds.ClusterInstance.provisioned(
            "writer",
            instance_type=instance_type,
            enable_performance_insights=True,
            parameter_group=parameter_group,
        )
        reader = rds.ClusterInstance.provisioned(
            "provisioned-reader1",
            instance_type=instance_type,
            enable_performance_insights=True,
            parameter_group=parameter_group,
        )
    else:
        writer = rds.ClusterInstance.serverless_v2(
            "writer",
            enable_performance_insights=True,
            parameter_group=parameter_group,
        )
        # Failover reader
        reader = rds.ClusterInstance.serverless_v2(
            "serverless-reader1",
            enable_performance_insights=True,
            parameter_group=parameter_group,
            scale_with_writer=capacity["reader_scales_with_writer"],
        )
        serverless_capacity = {
            "serverless_v2_min_capacity": capacity["min_capacity"],
            "serverless_v2_max_capacity": capacity["max_capacity"],
        }

    monitoring_interval = params["monitoring_interval_seconds"]
    cluster = rds.DatabaseCluster(
        stack,
        spec.name,
        engine=engine,
        credentials=rds.Credentials.from_generated_secret(params["credentials_username"]),
        vpc=stack.vpc(params["vpc_name"]),
        vpc_subnets=ec2.SubnetSelection(
            subnet_type=lookup(SUBNET_TYPES, params["subnet_type"], "subnet type")
        ),
        writer=writer,
        readers=[reader],
        storage_encrypted=params["storage_encrypted"],
        monitoring_interval=Duration.seconds(monitoring_interval) if monitoring_interval else None,
        backup=rds.BackupProps(
            retention=Duration.days(params["backup_retention_days"]),
            preferred_window=params["preferred_backup_window"],
        ),
        port=params["port"],
        default_database_name=params["default_database_name"],
        instance_update_behaviour=rds.InstanceUpdateBehaviour.ROLLING,
        deletion_protection=params["deletion_protection"],
        security_groups=[stack.security_group(name) for name in params["security_groups"]],
        **serverless_capacity,
    )
    stack.add_resource(spec.kind, spec.name, cluster)

    return ProvisionResult(
        id=cluster.cluster_identifier,
        endpoints={
            "cluster_endpoint": cluster.cluster_endpoint.hostname,
            "cluster_reader_endpoint": cluster.cluster_read_endpoint.hostname,
            "secret_arn": cluster.secret.secret_arn,
        },
    )


def provision_read_scaling(stack: ComposedStack, spec: ResourceSpec) -> ProvisionResult:
    params = spec.params
    cluster = stack.resource("database_cluster", params["cluster"])

    target = appscaling.ScalableTarget(
        stack,
        spec.name,
        service_namespace=appscaling.ServiceNamespace.RDS,
        min_capacity=params["min_capacity"],
        max_capacity=params["max_capacity"],
        resource_id=f"cluster:{cluster.cluster_identifier}",
        scalable_dimension="rds:cluster:ReadReplicaCount",
    )

    if params["kind"] == "target_tracking":
        target.scale_to_track_metric(
            f"{spec.name}-tracking",
            target_value=params["target_value"],
            predefined_metric=lookup(
                PREDEFINED_METRICS, params["predefined_metric"], "predefined metric"
            ),
            scale_out_cooldown=Duration.seconds(params["scale_out_cooldown_seconds"]),
            scale_in_cooldown=Duration.seconds(params["scale_in_cooldown_seconds"]),
        )
    else:
        target.scale_on_metric(
            f"{spec.name}-on-metric",
            metric=cloudwatch.Metric(
                namespace="AWS/RDS",
                metric_name=params["metric_name"],
                dimensions_map={"DBClusterIdentifier": cluster.cluster_identifier},
            ),
            scaling_steps=[
                appscaling.ScalingInterval(
                    lower=step["lower"], upper=step["upper"], change=step["change"]
                )
                for step in params["steps"]
            ],
        )

    return ProvisionResult(id=spec.name)
