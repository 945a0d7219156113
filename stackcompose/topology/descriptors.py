"""
Stack descriptors - the atomic deployable nodes of a topology.

A descriptor declares what a stack consumes (inputs and imports of other
stacks' outputs), what it produces (named outputs) and how to build it. The
outputs are filled exactly once, when the stack is synthesized.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from stackcompose.topology.exceptions import StackStateError

if TYPE_CHECKING:
    from stackcompose.topology.services import SynthesisContext

Builder = Callable[["SynthesisContext"], Mapping[str, Any]]


@dataclass(frozen=True, order=True)
class ImportRef:
    """Reference to one output of another stack."""

    stack: str
    key: str

    @classmethod
    def parse(cls, ref: str | tuple[str, str] | ImportRef) -> ImportRef:
        """
        Build a reference from "stack.key", a (stack, key) tuple, or a reference.

        The stack part ends at the first dot, so keys may themselves contain dots.
        """
        if isinstance(ref, ImportRef):
            return ref
        if isinstance(ref, tuple):
            stack, key = ref
        else:
            stack, sep, key = ref.partition(".")
            if not sep:
                raise ValueError(f"Import reference '{ref}' must have the form 'stack.key'")
        if not stack or not key:
            raise ValueError(f"Import reference '{ref}' has an empty stack or key")
        return cls(stack=stack, key=key)

    def __str__(self) -> str:
        return f"{self.stack}.{self.key}"


class StackStatus(StrEnum):
    PENDING = "pending"
    SYNTHESIZING = "synthesizing"
    SYNTHESIZED = "synthesized"
    FAILED = "failed"


@dataclass(eq=False)
class StackDescriptor:
    """
    A named unit of configuration with inputs, declared imports and outputs.

    Status moves pending -> synthesizing -> synthesized | failed and never
    re-enters. A stack that never started because a producer failed goes
    straight from pending to failed.
    """

    name: str
    inputs: Mapping[str, Any] = field(default_factory=dict)
    declared_imports: Iterable[str | tuple[str, str] | ImportRef] = ()
    output_keys: Iterable[str] = ()
    builder: Builder | None = None
    # Components whose security boundaries this stack owns
    components: Iterable[str] = ()

    status: StackStatus = field(default=StackStatus.PENDING, init=False)
    error: BaseException | None = field(default=None, init=False, repr=False)
    _outputs: Mapping[str, Any] | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.name or "." in self.name:
            raise ValueError(f"Stack name '{self.name}' must be non-empty and contain no '.'")

        self.inputs = MappingProxyType(dict(self.inputs))

        refs: list[ImportRef] = []
        for raw in self.declared_imports:
            ref = ImportRef.parse(raw)
            if ref not in refs:
                refs.append(ref)
        self.declared_imports = tuple(refs)

        self.output_keys = tuple(dict.fromkeys(self.output_keys))
        self.components = tuple(dict.fromkeys(self.components))

    @property
    def outputs(self) -> Mapping[str, Any]:
        """Outputs produced at synthesis; empty until the stack is synthesized."""
        if self._outputs is None:
            return MappingProxyType({})
        return self._outputs

    @property
    def source_stacks(self) -> tuple[str, ...]:
        """Names of the stacks this one imports from, in declaration order."""
        return tuple(dict.fromkeys(ref.stack for ref in self.declared_imports))

    def imports_from(self, stack: str, key: str | None = None) -> bool:
        """Check whether this stack declares an import of stack (optionally of one key)."""
        return any(
            ref.stack == stack and (key is None or ref.key == key)
            for ref in self.declared_imports
        )

    def begin(self) -> None:
        """Move pending -> synthesizing."""
        with self._lock:
            if self.status is not StackStatus.PENDING:
                raise StackStateError(
                    f"Stack '{self.name}' cannot start synthesis from status '{self.status}'"
                )
            self.status = StackStatus.SYNTHESIZING

    def complete(self, outputs: Mapping[str, Any]) -> None:
        """Move synthesizing -> synthesized and freeze the outputs."""
        with self._lock:
            if self.status is not StackStatus.SYNTHESIZING:
                raise StackStateError(
                    f"Stack '{self.name}' cannot complete from status '{self.status}'"
                )
            self._outputs = MappingProxyType(dict(outputs))
            self.status = StackStatus.SYNTHESIZED

    def fail(self, error: BaseException) -> None:
        """Move pending | synthesizing -> failed."""
        with self._lock:
            if self.status in (StackStatus.SYNTHESIZED, StackStatus.FAILED):
                raise StackStateError(
                    f"Stack '{self.name}' cannot fail from status '{self.status}'"
                )
            self.error = error
            self.status = StackStatus.FAILED
