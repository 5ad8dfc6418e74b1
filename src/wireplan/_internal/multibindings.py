from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, get_args, get_origin

from wireplan._internal.bindings import (
    AggregateInfo,
    Binding,
    BindingKind,
    CollectionKind,
    Dependency,
    Indirection,
)
from wireplan._internal.graph import BindingGraph
from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import Provider
from wireplan.diagnostics import DiagnosticReporter, ErrorCollector
from wireplan.exceptions import (
    WirePlanDuplicateBindingError,
    WirePlanDuplicateMapKeyError,
    WirePlanEmptyMultibindingError,
)

logger = logging.getLogger(__name__)

_MAP_TYPE_ARGUMENTS = 2


def collection_kind(key: BindingKey) -> CollectionKind | None:
    origin = get_origin(key.type)
    if origin is set:
        return CollectionKind.SET
    if origin is dict:
        return CollectionKind.MAP
    return None


def element_type(key: BindingKey) -> Any:
    """Element type of ``set[T]`` or value type of ``dict[K, V]``; ``None`` otherwise."""
    kind = collection_kind(key)
    if kind is None:
        return None
    arguments = get_args(key.type)
    return arguments[-1] if arguments else None


def provider_map_key(collection_key: BindingKey) -> BindingKey | None:
    """Return the ``dict[K, Provider[V]]`` key exposed next to a ``dict[K, V]`` map."""
    if collection_kind(collection_key) is not CollectionKind.MAP:
        return None
    arguments = get_args(collection_key.type)
    if len(arguments) != _MAP_TYPE_ARGUMENTS:
        return None
    key_type, value_type = arguments
    return BindingKey(
        type=dict[key_type, Provider[value_type]],  # type: ignore[valid-type]
        qualifier=collection_key.qualifier,
    )


class MultibindingAggregator:
    """Fold multibinding contributions into one aggregate binding per collection.

    Contributors stay in the graph under their unique contributor keys; the
    aggregate depends on each of them through a provider so every element
    keeps its own scoping. Aggregating an aggregated graph returns an equal
    graph.
    """

    def __init__(self, *, reporter: DiagnosticReporter | None = None) -> None:
        self._reporter = reporter

    def aggregate(self, graph: BindingGraph) -> BindingGraph:
        """Return ``graph`` with an aggregate binding for every collection key.

        Args:
            graph: Graph produced by the binding graph builder.

        """
        errors = ErrorCollector(reporter=self._reporter, graph=graph.name)
        contributors: dict[BindingKey, list[Binding]] = defaultdict(list)
        for key in graph.ordered_keys():
            binding = graph[key]
            if binding.contribution is not None:
                contributors[binding.contribution.collection_key].append(binding)
        declared = {declaration.key: declaration for declaration in graph.multibinds}

        bindings = dict(graph.bindings)
        for collection_key in sorted(set(contributors) | set(declared)):
            members = contributors.get(collection_key, [])
            declaration = declared.get(collection_key)
            existing = bindings.get(collection_key)
            if existing is not None and existing.kind is not BindingKind.MULTIBINDING:
                errors.error(
                    WirePlanDuplicateBindingError,
                    (
                        f"Multiple bindings found for {collection_key}:\n"
                        f"  Binding 1: {existing.describe()}\n"
                        f"  Binding 2: multibinding with {len(members)} contribution(s)"
                    ),
                    key=collection_key,
                    origin=existing.origin,
                )
                continue
            if not members and declaration is not None and not declaration.allow_empty:
                errors.error(
                    WirePlanEmptyMultibindingError,
                    f"Multibinding {collection_key} has no contributions but does not allow empty.",
                    key=collection_key,
                    origin=declaration.origin,
                )
                continue

            kind = collection_kind(collection_key) or CollectionKind.SET
            map_keys: tuple[Any, ...] = ()
            if kind is CollectionKind.MAP:
                map_keys = self._collect_map_keys(
                    collection_key=collection_key,
                    members=members,
                    errors=errors,
                )

            indices = [member.declaration_index for member in members]
            if declaration is not None:
                indices.append(declaration.declaration_index)
            aggregate = Binding(
                key=collection_key,
                kind=BindingKind.MULTIBINDING,
                dependencies=tuple(
                    Dependency(key=member.key, indirection=Indirection.PROVIDER)
                    for member in members
                ),
                declaration_index=min(indices),
                origin=declaration.origin if declaration is not None else None,
                aggregate=AggregateInfo(
                    collection=kind,
                    declared=declaration is not None,
                    allow_empty=declaration.allow_empty if declaration is not None else True,
                    map_keys=map_keys,
                ),
            )
            bindings[collection_key] = aggregate

            alias_key = provider_map_key(collection_key)
            if alias_key is not None:
                bindings[alias_key] = Binding(
                    key=alias_key,
                    kind=BindingKind.ALIAS,
                    dependencies=(Dependency(key=collection_key),),
                    declaration_index=aggregate.declaration_index,
                    origin=aggregate.origin,
                )
            logger.debug(
                "Aggregated %s from %d contribution(s) in graph '%s'",
                collection_key,
                len(members),
                graph.name,
            )

        errors.raise_if_errors()
        return graph.with_bindings(bindings)

    def _collect_map_keys(
        self,
        *,
        collection_key: BindingKey,
        members: list[Binding],
        errors: ErrorCollector,
    ) -> tuple[Any, ...]:
        seen: dict[Any, Binding] = {}
        for member in members:
            contribution = member.contribution
            if contribution is None:
                continue
            previous = seen.get(contribution.map_key)
            if previous is not None:
                errors.error(
                    WirePlanDuplicateMapKeyError,
                    (
                        f"Map multibinding {collection_key} has duplicate key "
                        f"{contribution.map_key!r}:\n"
                        f"  Contribution 1: {previous.describe()}\n"
                        f"  Contribution 2: {member.describe()}"
                    ),
                    key=collection_key,
                    origin=member.origin,
                )
                continue
            seen[contribution.map_key] = member
        return tuple(seen)
