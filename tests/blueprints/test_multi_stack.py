"""
Tests for the multi-stack blueprint, run end to end on the local backend.
"""

import pytest
from pydantic import ValidationError

from stackcompose.blueprints import MultiStackSettings, build_topology
from stackcompose.blueprints.multi_stack import (
    DATABASE_OUTPUTS,
    EXTERNAL_LB_OUTPUTS,
    INTERNAL_LB_OUTPUTS,
    SERVICE_OUTPUTS,
    VPC_OUTPUTS,
    DatabaseSettings,
)
from stackcompose.topology.backends import LocalBackend
from stackcompose.topology.descriptors import StackStatus
from stackcompose.topology.exceptions import TopologyError
from stackcompose.topology.registry import OutputRegistry
from stackcompose.topology.services import run_topology, synthesize


def run(local_backend, settings=None, **kwargs):
    return run_topology(build_topology(settings), backend=local_backend, **kwargs)


def kinds(backend, stack):
    return [spec.kind for spec in backend.specs_for(stack)]


def spec_named(backend, stack, name):
    return next(spec for spec in backend.specs_for(stack) if spec.name == name)


class TestDefaultTopology:
    """Tests for the blueprint with default settings."""

    def test_synthesis_order(self, local_backend):
        report = run(local_backend)

        assert report.order == ["vpc", "pgdb", "shared-nw", "ecs-fargate"]
        assert report.ok

    def test_every_declared_output_is_published(self, local_backend):
        report = run(local_backend)

        expected = {
            "vpc": VPC_OUTPUTS,
            "pgdb": DATABASE_OUTPUTS,
            "shared-nw": EXTERNAL_LB_OUTPUTS,
            "ecs-fargate": SERVICE_OUTPUTS,
        }
        for stack, keys in expected.items():
            assert set(report.registry.outputs_of(stack)) == set(keys)
        assert report.outputs()["vpc.vpcName"] == "dev"

    def test_runs_are_reproducible(self):
        first = run(LocalBackend())
        second = run(LocalBackend(), max_workers=1)

        assert first.outputs() == second.outputs()

    def test_database_is_serverless_by_default(self, local_backend):
        run(local_backend)

        cluster = spec_named(local_backend, "pgdb", "db")
        assert cluster.params["capacity_kind"] == "serverless"
        assert cluster.params["capacity"]["max_capacity"] == 4
        assert cluster.depends_on == ("vpc",)
        assert "read_scaling" not in kinds(local_backend, "pgdb")

    def test_service_is_wired_to_imports(self, local_backend):
        report = run(local_backend)
        outputs = report.outputs()

        service = spec_named(local_backend, "ecs-fargate", "api")
        rule = spec_named(local_backend, "ecs-fargate", "api-rule")
        environment = service.params["environment"]
        assert environment["DB_WRITER_ENDPOINT"] == outputs["pgdb.clusterEndpoint"]
        assert service.params["secret_arn"] == outputs["pgdb.dbCredsSecretArn"]
        assert service.params["scaling_kind"] == "fixed"
        assert rule.params["listener_arn"] == outputs["shared-nw.extListenerArn"]
        assert rule.params["listener_security_group_id"] == outputs["shared-nw.extLbSgId"]

    def test_http_listener_by_default(self, local_backend):
        run(local_backend)

        listener = spec_named(local_backend, "shared-nw", "ext-listener")
        assert listener.params["protocol"] == "HTTP"
        assert listener.params["default_response"]["status_code"] == 404


class TestDerivedSecurity:
    """Tests for security boundaries derived from the blueprint's trust edges."""

    def test_app_boundary(self):
        app = build_topology().boundary("app")

        assert app.allows("ingress", "ext-lb", 80)
        assert app.allows("egress", "db", 5432)
        assert app.allows("egress", "vpc-endpoints", 443)
        assert app.allows("egress", "internet", 443)
        assert not app.allows("ingress", "internet", 80)

    def test_database_only_reachable_from_app_and_vpc(self):
        db = build_topology().boundary("db")

        assert {rule.peer for rule in db.ingress} == {"app", "vpc-cidr"}
        assert db.egress == ()

    def test_database_port_follows_settings(self):
        settings = MultiStackSettings(database=DatabaseSettings(port=6432))

        db = build_topology(settings).boundary("db")

        assert db.allows("ingress", "app", 6432)
        assert not db.allows("ingress", "app", 5432)

    def test_cross_stack_rules_are_placed_by_the_service(self, local_backend):
        report = run(local_backend)

        rules = {
            spec.name: spec
            for spec in local_backend.specs_for("ecs-fargate")
            if spec.kind == "security_group_rule"
        }
        db_ingress = rules["db-ingress-app-tcp-5432"]
        assert db_ingress.params["target_id"] == report.outputs()["pgdb.dbSecurityGroupId"]
        assert "app-egress-db-tcp-5432" in rules
        assert "ext-lb-egress-app-tcp-80" in rules
        assert not any(
            spec.params.get("peer") == "app" for spec in local_backend.specs_for("pgdb")
        )

    def test_external_peers_carry_cidrs(self, local_backend):
        run(local_backend)

        rule = spec_named(local_backend, "pgdb", "db-ingress-vpc-cidr-tcp-5432")
        assert rule.params["peer_cidr"] == "10.1.0.0/16"


class TestVariants:
    """Tests for optional resources chosen by settings."""

    def test_https_listener(self, local_backend):
        settings = MultiStackSettings.model_validate(
            {"load_balancer": {"listener": {"certificate_arn": "arn:aws:acm:cert"}}}
        )

        run(local_backend, settings)

        listener = spec_named(local_backend, "shared-nw", "ext-listener")
        assert listener.params["protocol"] == "HTTPS"
        assert build_topology(settings).boundary("ext-lb").allows("ingress", "internet", 443)

    def test_internal_load_balancer(self, local_backend):
        settings = MultiStackSettings.model_validate(
            {"load_balancer": {"create_internal_lb": True}}
        )

        report = run(local_backend, settings)

        shared = report.registry.outputs_of("shared-nw")
        assert set(shared) == set(EXTERNAL_LB_OUTPUTS + INTERNAL_LB_OUTPUTS)
        listener = spec_named(local_backend, "shared-nw", "int-listener")
        assert listener.params["load_balancer"] == "int-alb"
        assert listener.params["protocol"] == "HTTP"

    def test_read_scaling(self, local_backend):
        settings = MultiStackSettings.model_validate(
            {
                "database": {
                    "read_scaling": {"max_capacity": 3, "target_tracking": {"target_value": 60}}
                }
            }
        )

        run(local_backend, settings)

        scaling = spec_named(local_backend, "pgdb", "db-read-scaling")
        assert scaling.params["kind"] == "target_tracking"
        assert scaling.params["max_capacity"] == 3

    def test_provisioned_writer(self, local_backend):
        settings = MultiStackSettings.model_validate(
            {"database": {"capacity": {"instance_type": "r6g.large"}}}
        )

        run(local_backend, settings)

        assert spec_named(local_backend, "pgdb", "db").params["capacity_kind"] == "provisioned"

    def test_auto_scaled_service(self, local_backend):
        settings = MultiStackSettings.model_validate(
            {"service": {"scaling": {"min_capacity": 2, "max_capacity": 8}}}
        )

        run(local_backend, settings)

        service = spec_named(local_backend, "ecs-fargate", "api")
        assert service.params["scaling_kind"] == "auto_scaled"
        assert service.params["scaling"]["max_capacity"] == 8

    def test_deletion_protection(self, local_backend):
        settings = MultiStackSettings.model_validate({"database": {"deletion_protection": True}})

        run(local_backend, settings)

        assert spec_named(local_backend, "pgdb", "db").params["deletion_protection"] is True

    def test_deletion_protection_is_off_by_default(self, local_backend):
        run(local_backend)

        assert spec_named(local_backend, "pgdb", "db").params["deletion_protection"] is False

    def test_invalid_monitoring_interval(self):
        with pytest.raises(ValidationError):
            DatabaseSettings(monitoring_interval_seconds=7)


class TestPartialDeployment:
    """Tests for synthesizing a subset of stacks against earlier outputs."""

    def test_only_marks_the_rest_external(self):
        topology = build_topology(only=["ecs-fargate"])

        assert [stack.name for stack in topology.stacks] == ["ecs-fargate"]
        assert topology.external_stacks == {"vpc", "pgdb", "shared-nw"}

    def test_service_against_previous_outputs(self, local_backend):
        previous = run(LocalBackend()).outputs()
        seeded = OutputRegistry.from_table(
            {ref: value for ref, value in previous.items() if not ref.startswith("ecs-fargate.")}
        )

        report = run_topology(
            build_topology(only=["ecs-fargate"]), registry=seeded, backend=local_backend
        )

        assert report.synthesized == ["ecs-fargate"]
        assert report.outputs() == previous

    def test_unknown_stack(self):
        with pytest.raises(ValueError):
            build_topology(only=["cache"])

    def test_builder_outside_a_topology(self, registry, local_backend):
        """Builders that place boundaries fail cleanly when synthesized on their own."""
        vpc = build_topology().stack("vpc")

        with pytest.raises(TopologyError):
            synthesize(vpc, registry, backend=local_backend)

        assert vpc.status is StackStatus.FAILED
