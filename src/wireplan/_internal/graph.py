from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from wireplan._internal.bindings import Binding, Dependency

if TYPE_CHECKING:
    from wireplan._internal.keys import BindingKey
    from wireplan.declarations import MultibindsDeclaration


@dataclass(frozen=True, slots=True)
class BindingGraph:
    """Adjacency map of one graph level: key to binding, edges to dependencies.

    Edges whose target is an absent key (a dependency with a default and no
    binding) have no node; every other edge target is a node of the graph.
    """

    name: str
    bindings: Mapping[BindingKey, Binding]
    roots: tuple[BindingKey, ...] = ()
    absent_keys: frozenset[BindingKey] = frozenset()
    multibinds: tuple[MultibindsDeclaration, ...] = ()
    requested_by: Mapping[BindingKey, BindingKey] = field(default_factory=dict, compare=False)
    """First consumer that requested each key, for binding traces."""

    def __contains__(self, key: object) -> bool:
        return key in self.bindings

    def __iter__(self) -> Iterator[BindingKey]:
        return iter(self.bindings)

    def __len__(self) -> int:
        return len(self.bindings)

    def __getitem__(self, key: BindingKey) -> Binding:
        return self.bindings[key]

    def get(self, key: BindingKey) -> Binding | None:
        return self.bindings.get(key)

    def ordered_keys(self) -> list[BindingKey]:
        """Keys in declaration order, ties broken by key."""
        return sorted(self.bindings, key=lambda key: (self.bindings[key].declaration_index, key))

    def edges(self, key: BindingKey) -> Iterator[tuple[int, Dependency]]:
        """Dependencies of ``key`` that point at nodes, with their positions."""
        for index, dependency in enumerate(self.bindings[key].dependencies):
            if dependency.key in self.bindings:
                yield index, dependency

    def successors(self, key: BindingKey, *, direct_only: bool = False) -> list[BindingKey]:
        return [
            dependency.key
            for _, dependency in self.edges(key)
            if not direct_only or dependency.is_direct
        ]

    def reachable_from(self, roots: Iterable[BindingKey]) -> set[BindingKey]:
        seen: set[BindingKey] = set()
        queue = deque(root for root in roots if root in self.bindings)
        while queue:
            key = queue.popleft()
            if key in seen:
                continue
            seen.add(key)
            queue.extend(self.successors(key))
        return seen

    def trace(self, key: BindingKey) -> list[BindingKey]:
        """Request chain from a root down to ``key``."""
        return request_trace(self.requested_by, key)

    def with_bindings(self, bindings: Mapping[BindingKey, Binding]) -> BindingGraph:
        return replace(self, bindings=dict(bindings))

    def shrunk(self) -> BindingGraph:
        """Drop bindings that are unreachable from the graph's roots."""
        keep = self.reachable_from(self.roots)
        bindings = {key: binding for key, binding in self.bindings.items() if key in keep}
        referenced = {
            dependency.key for binding in bindings.values() for dependency in binding.dependencies
        }
        return replace(
            self,
            bindings=bindings,
            absent_keys=frozenset(key for key in self.absent_keys if key in referenced),
        )

    def dump(self) -> str:
        lines = [f"Binding graph '{self.name}' ({len(self.bindings)} bindings)"]
        for key in self.ordered_keys():
            binding = self.bindings[key]
            scope = f" @{binding.scope.name}" if binding.scope is not None else ""
            lines.append(f"  {key} [{binding.kind.value}]{scope}")
            lines.extend(
                f"    -> {dependency.key} ({dependency.indirection.value})"
                for dependency in binding.dependencies
            )
        lines.extend(f"  {key} [absent]" for key in sorted(self.absent_keys))
        return "\n".join(lines)


def request_trace(
    requested_by: Mapping[BindingKey, BindingKey],
    key: BindingKey,
) -> list[BindingKey]:
    chain = [key]
    seen = {key}
    current = key
    while current in requested_by:
        current = requested_by[current]
        if current in seen:
            break
        seen.add(current)
        chain.append(current)
    chain.reverse()
    return chain
