"""Ready-made topologies built on the composition engine."""

from stackcompose.blueprints.multi_stack import MultiStackSettings, build_topology

__all__ = ["MultiStackSettings", "build_topology"]
