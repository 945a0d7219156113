#!/usr/bin/env python3
"""
AWS CDK app entry point for the multi-stack topology.

Context:
    settings       MultiStackSettings as a JSON object (defaults when omitted)
    stacks         Comma-separated stacks to synthesize, e.g. "ecs-fargate";
                   the others must have been exported by a previous deployment
    import_prefix  SSM prefix holding the outputs of the other stacks
    export_prefix  SSM prefix to export every output to (adds a SharedExport stack)
"""

import json
import os

import aws_cdk as cdk

from stackcompose.blueprints import MultiStackSettings, build_topology
from stackcompose.config import settings as engine_settings
from stackcompose.core.logging import configure_logging
from stackcompose.topology.registry import OutputRegistry
from stackcompose.topology.services import TopologyRunner
from stacks.cdk_backend import CdkBackend
from stacks.infra_resolver import InfraResolver
from stacks.shared_export_stack import SharedExportStack
from stacks.validation import add_validation_aspects

configure_logging(json_format=engine_settings.LOG_JSON, log_level=engine_settings.LOG_LEVEL)

app = cdk.App()

# Environment configuration
env = cdk.Environment(
    account=app.node.try_get_context("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
    region=app.node.try_get_context("region") or os.environ.get("CDK_DEFAULT_REGION"),
)

raw_settings = app.node.try_get_context("settings") or {}
if isinstance(raw_settings, str):
    raw_settings = json.loads(raw_settings)
settings = MultiStackSettings.model_validate(raw_settings)

selected = app.node.try_get_context("stacks")
topology = build_topology(settings, only=selected.split(",") if selected else None)

backend = CdkBackend(app, env=env)

# Outputs of stacks deployed earlier, looked up from the stacks that import them
registry = OutputRegistry()
if topology.external_stacks:
    import_prefix = app.node.try_get_context("import_prefix") or engine_settings.EXPORT_PREFIX
    InfraResolver(app, import_prefix).seed_registry(
        topology, registry, scope_for=backend.stack_for
    )

# One worker: the construct tree is not thread-safe
TopologyRunner(topology, registry=registry, backend=backend, max_workers=1).run()
backend.add_outputs(registry)

export_prefix = app.node.try_get_context("export_prefix")
if export_prefix:
    # Only what this deployment produced, external outputs are already exported
    produced = OutputRegistry(
        {
            (stack, key): registry.get(stack, key)
            for stack, key in registry
            if stack in backend.stacks
        }
    )
    SharedExportStack(
        app, "SharedExport", parameters=produced.to_parameters(export_prefix), env=env
    )

add_validation_aspects(app)

app.synth()
