from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Sequence

from wireplan._internal.bindings import Binding, BindingKind
from wireplan._internal.graph import BindingGraph
from wireplan._internal.keys import BindingKey

_SLOTLESS_KINDS = frozenset(
    {
        BindingKind.MULTIBINDING,
        BindingKind.ALIAS,
        BindingKind.GRAPH,
        BindingKind.PARENT_FIELD,
    },
)
_SHARED_REFERENCES = 2


def collect_slot_keys(
    graph: BindingGraph,
    order: Sequence[BindingKey],
    *,
    delegates: Collection[BindingKey] = (),
) -> list[BindingKey]:
    """Keys of ``graph`` that need a storage slot, in construction order.

    Scoped bindings, bound instances and delegates always get one. Unscoped
    constructor and provider bindings get one when two or more places
    reference them, so the generated code holds one provider instance.

    Args:
        graph: Deferral-planned graph.
        order: Construction order of ``graph``.
        delegates: Keys that need a forward-reference slot.

    """
    references = reference_counts(graph)
    return [
        key
        for key in order
        if _needs_slot(graph[key], references[key], is_delegate=key in delegates)
    ]


def reference_counts(graph: BindingGraph) -> Counter[BindingKey]:
    """Count edges into each node plus one per root occurrence."""
    counts: Counter[BindingKey] = Counter(root for root in graph.roots if root in graph)
    for key in graph:
        for _, dependency in graph.edges(key):
            counts[dependency.key] += 1
    return counts


def _needs_slot(binding: Binding, references: int, *, is_delegate: bool) -> bool:
    if binding.kind in _SLOTLESS_KINDS:
        return False
    if binding.is_scoped or is_delegate or binding.kind is BindingKind.BOUND_INSTANCE:
        return True
    if binding.is_contributor:
        return False
    return references >= _SHARED_REFERENCES
