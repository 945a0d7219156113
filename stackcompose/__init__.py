"""
stackcompose - composition engine for independently deployable infrastructure stacks.

Stacks declare inputs, imports and outputs; the engine orders them, derives
their network security boundaries from declared trust edges, selects optional
resource variants and hands the result to a provisioning backend.
"""

__version__ = "0.1.0"
