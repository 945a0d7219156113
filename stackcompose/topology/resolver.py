"""
Dependency resolver.

Orders stacks so that every stack comes after the stacks producing its
declared imports. The order is deterministic for a given declaration order,
which keeps resource naming and output keys reproducible across runs.
"""

import heapq
from collections.abc import Iterable, Sequence

from stackcompose.topology.descriptors import StackDescriptor
from stackcompose.topology.exceptions import (
    CyclicDependencyError,
    DuplicateStackError,
    UnknownSourceError,
    UnresolvedImportError,
)


def dependency_graph(
    stacks: Sequence[StackDescriptor], external: Iterable[str] = ()
) -> dict[str, list[str]]:
    """
    Build the producer map of a set of stacks.

    Args:
        stacks: Stacks in declaration order
        external: Stacks outside the set whose outputs are already available
                  (published by a previous run)

    Returns:
        {stack name: [names of in-set producer stacks, in declaration order]}

    Raises:
        DuplicateStackError: If two stacks share a name
        UnknownSourceError: If an import names a stack that is neither in the
                            set nor external
        UnresolvedImportError: If an import names a key its in-set producer
                               does not declare as an output
    """
    index: dict[str, int] = {}
    for position, stack in enumerate(stacks):
        if stack.name in index:
            raise DuplicateStackError(stack.name)
        index[stack.name] = position

    external = set(external)
    producers: dict[str, list[str]] = {}
    for stack in stacks:
        sources: set[str] = set()
        for ref in stack.declared_imports:
            if ref.stack in index:
                producer = stacks[index[ref.stack]]
                if ref.key not in producer.output_keys:
                    raise UnresolvedImportError(
                        ref.stack,
                        ref.key,
                        consumer=stack.name,
                        reason=f"is not a declared output of stack '{ref.stack}'",
                    )
                sources.add(ref.stack)
            elif ref.stack not in external:
                raise UnknownSourceError(stack.name, ref.stack, ref.key)
        producers[stack.name] = sorted(sources, key=index.__getitem__)

    return producers


def order(
    stacks: Iterable[StackDescriptor], *, external: Iterable[str] = ()
) -> list[StackDescriptor]:
    """
    Topologically order stacks by their declared imports.

    Kahn's algorithm; among stacks that are ready at the same time, the one
    declared first goes first.

    Raises:
        CyclicDependencyError: If the imports form a cycle (self imports included)
        UnknownSourceError: If an import names an unknown stack
        DuplicateStackError: If two stacks share a name
    """
    stacks = list(stacks)
    producers = dependency_graph(stacks, external)
    index = {stack.name: position for position, stack in enumerate(stacks)}

    consumers: dict[str, list[str]] = {stack.name: [] for stack in stacks}
    for name, sources in producers.items():
        for source in sources:
            consumers[source].append(name)

    # in_degree[X] = number of in-set stacks X still waits for
    in_degree = {name: len(sources) for name, sources in producers.items()}
    ready = [index[name] for name, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    ordered: list[StackDescriptor] = []
    while ready:
        stack = stacks[heapq.heappop(ready)]
        ordered.append(stack)
        for consumer in consumers[stack.name]:
            in_degree[consumer] -= 1
            if in_degree[consumer] == 0:
                heapq.heappush(ready, index[consumer])

    if len(ordered) != len(stacks):
        blocked = {name for name, degree in in_degree.items() if degree > 0}
        raise CyclicDependencyError(_find_cycle(blocked, producers, index))

    return ordered


def _find_cycle(
    blocked: set[str], producers: dict[str, list[str]], index: dict[str, int]
) -> list[str]:
    """
    Extract one cycle among the stacks Kahn's algorithm could not place.

    Every blocked stack waits for at least one blocked producer, so walking
    producer edges from any blocked stack must revisit a stack.
    """
    node = min(blocked, key=index.__getitem__)
    path: list[str] = []
    seen: dict[str, int] = {}
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(source for source in producers[node] if source in blocked)
    return path[seen[node] :] + [node]
