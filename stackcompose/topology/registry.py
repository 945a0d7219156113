"""
Output registry.

Maps (stack name, output key) to the value a stack published when it was
synthesized. Every key is write-once: downstream stacks must be able to trust
that an imported value never changes after they read it.

Reads are lock-free; writes are serialized and conflict-checked.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from typing import Any

from stackcompose.topology.descriptors import ImportRef
from stackcompose.topology.exceptions import DuplicateOutputError, UnresolvedImportError


class OutputRegistry:
    """Write-once store of stack outputs shared by one topology run."""

    def __init__(self, values: Mapping[tuple[str, str], Any] | None = None) -> None:
        self._values: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()
        for (stack, key), value in (values or {}).items():
            self.put(stack, key, value)

    @classmethod
    def from_table(cls, table: Mapping[str, Any]) -> OutputRegistry:
        """
        Build a registry from a flat {"stack.key": value} table.

        Used to seed a run with the outputs of a previous, independent run.
        """
        values = {}
        for ref, value in table.items():
            parsed = ImportRef.parse(ref)
            values[(parsed.stack, parsed.key)] = value
        return cls(values)

    def put(self, stack: str, key: str, value: Any) -> None:
        """
        Write a single output.

        Raises:
            DuplicateOutputError: If the key was already written for this stack
        """
        self.publish(stack, {key: value})

    def publish(self, stack: str, outputs: Mapping[str, Any]) -> None:
        """
        Write every output of a stack at once.

        Either all keys are written or none is: conflicts are checked before
        anything is stored.

        Raises:
            DuplicateOutputError: If any key was already written for this stack
        """
        with self._lock:
            for key in outputs:
                if (stack, key) in self._values:
                    raise DuplicateOutputError(stack, key)
            for key, value in outputs.items():
                self._values[(stack, key)] = value

    def get(self, stack: str, key: str) -> Any:
        """
        Read an output.

        Raises:
            UnresolvedImportError: If the output has not been published
        """
        try:
            return self._values[(stack, key)]
        except KeyError:
            raise UnresolvedImportError(stack, key) from None

    def has(self, stack: str, key: str) -> bool:
        return (stack, key) in self._values

    def outputs_of(self, stack: str) -> dict[str, Any]:
        """Get every published output of one stack."""
        return {key: value for (name, key), value in list(self._values.items()) if name == stack}

    def stacks(self) -> list[str]:
        """Get the names of all stacks with at least one published output."""
        return sorted({name for name, _ in list(self._values)})

    def to_table(self) -> dict[str, Any]:
        """Flatten to a sorted {"stack.key": value} table for operators and tools."""
        return {
            f"{stack}.{key}": value for (stack, key), value in sorted(list(self._values.items()))
        }

    def to_parameters(self, prefix: str) -> dict[str, str]:
        """
        Flatten to parameter-store names.

        Returns:
            {"{prefix}/{stack}/{key}": str(value)} sorted by name
        """
        prefix = prefix.rstrip("/")
        return {
            f"{prefix}/{stack}/{key}": str(value)
            for (stack, key), value in sorted(list(self._values.items()))
        }

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, ImportRef):
            return self.has(ref.stack, ref.key)
        if isinstance(ref, str):
            try:
                return ImportRef.parse(ref) in self
            except ValueError:
                return False
        return False

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(sorted(list(self._values)))

    def __len__(self) -> int:
        return len(self._values)
