from __future__ import annotations

import itertools
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias, get_args, get_origin

from wireplan._internal.bindings import (
    Binding,
    BindingKind,
    Contribution,
    ContributionKind,
    Dependency,
)
from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import MultibindingElement, Scope, split_qualifier
from wireplan._internal.multibindings import provider_map_key
from wireplan.exceptions import WirePlanDeclarationError

DependencyLike: TypeAlias = Any
"""A dependency annotation (``T``, ``Provider[T]``, ``Annotated[T, Named(...)]``) or a ``Dependency``."""

_ELEMENTS_COLLECTION_ORIGINS = frozenset({set, frozenset, list, tuple})


@dataclass(frozen=True, slots=True, kw_only=True)
class MultibindsDeclaration:
    """Explicit declaration of a set or map multibinding, possibly empty."""

    key: BindingKey
    allow_empty: bool = True
    declaration_index: int = 0
    origin: str | None = None


@dataclass(kw_only=True)
class GraphDeclaration:
    """Bindings and hierarchy metadata of one graph.

    Instances are created by ``CompilationUnit.add_graph``; the ``add_*``
    methods record declarations in call order, which is also the tie-break
    order for construction.
    """

    name: str
    """Unique graph name, also used as the receiver of the graph's storage slots."""

    scopes: frozenset[Scope] = frozenset()
    parent: str | None = None
    graph_type: Any = None
    """Type bound to the graph itself, if the graph exposes a self-reference."""

    bindings: list[Binding] = field(default_factory=list)
    multibinds: list[MultibindsDeclaration] = field(default_factory=list)
    accessors: list[BindingKey] = field(default_factory=list)
    """Keys the generated graph exposes; the roots of reachability."""

    _indices: Iterator[int] = field(default_factory=itertools.count, repr=False)

    def add_provider(
        self,
        provides: Any,
        *,
        dependencies: Iterable[DependencyLike] = (),
        scope: Scope | None = None,
        origin: str | None = None,
    ) -> Binding:
        """Declare a provider function for ``provides``.

        Args:
            provides: Provided key annotation, optionally qualified.
            dependencies: Parameter annotations or ``Dependency`` records.
            scope: Scope that makes the provided value a per-level singleton.
            origin: Declaration site shown in diagnostics.

        """
        return self._add(
            Binding(
                key=BindingKey.of(provides),
                kind=BindingKind.PROVIDER,
                scope=scope,
                dependencies=_to_dependencies(dependencies),
                declaration_index=next(self._indices),
                origin=origin,
            ),
        )

    def add_binds(self, provides: Any, target: Any, *, origin: str | None = None) -> Binding:
        """Declare that ``provides`` resolves to ``target``.

        Args:
            provides: Alias key annotation.
            target: Key the alias resolves to.
            origin: Declaration site shown in diagnostics.

        """
        key = BindingKey.of(provides)
        dependency = Dependency.of(target)
        if not dependency.is_direct:
            msg = f"Binds declaration for {key} must target a plain key, got {target!r}."
            raise WirePlanDeclarationError(msg)
        if dependency.key == key:
            msg = f"Binds declaration for {key} targets itself."
            raise WirePlanDeclarationError(msg)
        return self._add(
            Binding(
                key=key,
                kind=BindingKind.ALIAS,
                dependencies=(dependency,),
                declaration_index=next(self._indices),
                origin=origin,
            ),
        )

    def add_instance(self, provides: Any, *, origin: str | None = None) -> Binding:
        """Declare a value supplied when the graph is created.

        Args:
            provides: Key annotation of the bound value.
            origin: Declaration site shown in diagnostics.

        """
        return self._add(
            Binding(
                key=BindingKey.of(provides),
                kind=BindingKind.BOUND_INSTANCE,
                declaration_index=next(self._indices),
                origin=origin,
            ),
        )

    def add_into_set(
        self,
        element: Any,
        *,
        dependencies: Iterable[DependencyLike] = (),
        scope: Scope | None = None,
        origin: str | None = None,
    ) -> Binding:
        """Contribute one element to ``set[element]``.

        Args:
            element: Element annotation; its qualifier qualifies the set.
            dependencies: Parameter annotations or ``Dependency`` records.
            scope: Scope of the contributed element.
            origin: Declaration site shown in diagnostics.

        """
        base, qualifier = split_qualifier(element)
        collection_key = BindingKey(type=set[base], qualifier=qualifier)  # type: ignore[valid-type]
        return self._add_contribution(
            element_type=base,
            contribution=Contribution(
                kind=ContributionKind.INTO_SET,
                collection_key=collection_key,
            ),
            dependencies=dependencies,
            scope=scope,
            origin=origin,
        )

    def add_elements_into_set(
        self,
        elements: Any,
        *,
        dependencies: Iterable[DependencyLike] = (),
        scope: Scope | None = None,
        origin: str | None = None,
    ) -> Binding:
        """Contribute a whole collection of elements to ``set[T]``.

        Args:
            elements: Collection annotation such as ``list[T]`` or ``set[T]``.
            dependencies: Parameter annotations or ``Dependency`` records.
            scope: Scope of the contributed collection.
            origin: Declaration site shown in diagnostics.

        """
        base, qualifier = split_qualifier(elements)
        origin_type = get_origin(base)
        arguments = get_args(base)
        if origin_type not in _ELEMENTS_COLLECTION_ORIGINS or not arguments:
            msg = (
                f"Elements-into-set contribution {elements!r} must be a parametrized "
                "set, frozenset, list or tuple."
            )
            raise WirePlanDeclarationError(msg)
        collection_key = BindingKey(type=set[arguments[0]], qualifier=qualifier)  # type: ignore[misc]
        return self._add_contribution(
            element_type=base,
            contribution=Contribution(
                kind=ContributionKind.ELEMENTS_INTO_SET,
                collection_key=collection_key,
            ),
            dependencies=dependencies,
            scope=scope,
            origin=origin,
        )

    def add_into_map(
        self,
        map_key: Any,
        value: Any,
        *,
        map_key_type: Any = None,
        dependencies: Iterable[DependencyLike] = (),
        scope: Scope | None = None,
        origin: str | None = None,
    ) -> Binding:
        """Contribute ``map_key -> value`` to ``dict[K, value]``.

        Args:
            map_key: Constant map key of the entry.
            value: Value annotation; its qualifier qualifies the map.
            map_key_type: Map key type, defaults to ``type(map_key)``.
            dependencies: Parameter annotations or ``Dependency`` records.
            scope: Scope of the contributed value.
            origin: Declaration site shown in diagnostics.

        """
        base, qualifier = split_qualifier(value)
        key_type = map_key_type if map_key_type is not None else type(map_key)
        collection_key = BindingKey(type=dict[key_type, base], qualifier=qualifier)  # type: ignore[valid-type]
        return self._add_contribution(
            element_type=base,
            contribution=Contribution(
                kind=ContributionKind.INTO_MAP,
                collection_key=collection_key,
                map_key=map_key,
                map_key_type=key_type,
            ),
            dependencies=dependencies,
            scope=scope,
            origin=origin,
        )

    def add_multibinds(
        self,
        collection: Any,
        *,
        allow_empty: bool = True,
        origin: str | None = None,
    ) -> MultibindsDeclaration:
        """Declare a set or map multibinding that may have no contributions.

        Args:
            collection: ``set[T]`` or ``dict[K, V]`` annotation, optionally qualified.
            allow_empty: Whether zero contributions is valid.
            origin: Declaration site shown in diagnostics.

        """
        key = BindingKey.of(collection)
        if get_origin(key.type) not in {set, dict}:
            msg = f"Multibinds declaration {key} must declare a set[T] or dict[K, V] key."
            raise WirePlanDeclarationError(msg)
        declaration = MultibindsDeclaration(
            key=key,
            allow_empty=allow_empty,
            declaration_index=next(self._indices),
            origin=origin,
        )
        self.multibinds.append(declaration)
        return declaration

    def add_accessor(self, annotation: Any) -> BindingKey:
        """Expose ``annotation`` from the generated graph.

        Args:
            annotation: Key annotation of the accessor.

        """
        key = BindingKey.of(annotation)
        if key not in self.accessors:
            self.accessors.append(key)
        return key

    def declared_keys(self) -> tuple[BindingKey, ...]:
        """Keys this graph can provide to nested graphs, in declaration order."""
        keys: dict[BindingKey, None] = {}
        for binding in self.bindings:
            keys.setdefault(binding.key, None)
            if binding.contribution is not None:
                _add_collection_keys(keys, binding.contribution.collection_key)
        for declaration in self.multibinds:
            _add_collection_keys(keys, declaration.key)
        return tuple(keys)

    def _add_contribution(
        self,
        *,
        element_type: Any,
        contribution: Contribution,
        dependencies: Iterable[DependencyLike],
        scope: Scope | None,
        origin: str | None,
    ) -> Binding:
        index = next(self._indices)
        key = BindingKey(
            type=element_type,
            qualifier=MultibindingElement(contribution.collection_key.render(), index),
        )
        return self._add(
            Binding(
                key=key,
                kind=BindingKind.PROVIDER,
                scope=scope,
                dependencies=_to_dependencies(dependencies),
                declaration_index=index,
                origin=origin,
                contribution=contribution,
            ),
        )

    def _add(self, binding: Binding) -> Binding:
        self.bindings.append(binding)
        return binding


@dataclass(kw_only=True)
class CompilationUnit:
    """Closed set of declarations processed by one engine run.

    Holds the constructor-injected classes, which every graph may instantiate,
    and the graph hierarchy in declaration order.
    """

    injectables: list[Binding] = field(default_factory=list)
    graphs: dict[str, GraphDeclaration] = field(default_factory=dict)
    _indices: Iterator[int] = field(default_factory=itertools.count, repr=False)

    def add_injectable(
        self,
        provides: Any,
        *,
        dependencies: Iterable[DependencyLike] = (),
        scope: Scope | None = None,
        origin: str | None = None,
    ) -> Binding:
        """Declare a constructor-injected class.

        Args:
            provides: Class or key annotation produced by the constructor.
            dependencies: Constructor parameter annotations or ``Dependency`` records.
            scope: Scope that makes the instance a per-level singleton.
            origin: Declaration site shown in diagnostics.

        """
        binding = Binding(
            key=BindingKey.of(provides),
            kind=BindingKind.CONSTRUCTOR,
            scope=scope,
            dependencies=_to_dependencies(dependencies),
            declaration_index=next(self._indices),
            origin=origin,
        )
        self.injectables.append(binding)
        return binding

    def add_graph(
        self,
        name: str,
        *,
        scopes: Iterable[Scope] = (),
        parent: str | None = None,
        graph_type: Any = None,
        origin: str | None = None,
    ) -> GraphDeclaration:
        """Declare a graph, optionally nested under ``parent``.

        Args:
            name: Unique graph name.
            scopes: Scopes the graph declares.
            parent: Name of an already declared parent graph.
            graph_type: Type bound to the graph itself.
            origin: Declaration site of the graph self-reference.

        """
        if name in self.graphs:
            msg = f"Graph '{name}' is declared twice."
            raise WirePlanDeclarationError(msg)
        if parent is not None and parent not in self.graphs:
            msg = f"Graph '{name}' names unknown parent graph '{parent}'."
            raise WirePlanDeclarationError(msg)

        graph = GraphDeclaration(
            name=name,
            scopes=frozenset(scopes),
            parent=parent,
            graph_type=graph_type,
            _indices=self._indices,
        )
        if graph_type is not None:
            graph.bindings.append(
                Binding(
                    key=BindingKey.of(graph_type),
                    kind=BindingKind.GRAPH,
                    declaration_index=next(self._indices),
                    origin=origin,
                ),
            )
        self.graphs[name] = graph
        return graph

    def roots(self) -> tuple[GraphDeclaration, ...]:
        return tuple(graph for graph in self.graphs.values() if graph.parent is None)

    def children_of(self, name: str) -> tuple[GraphDeclaration, ...]:
        return tuple(graph for graph in self.graphs.values() if graph.parent == name)

    def ancestors_of(self, name: str) -> tuple[GraphDeclaration, ...]:
        """Ancestors of ``name`` from its parent up to the root."""
        ancestors: list[GraphDeclaration] = []
        parent = self.graphs[name].parent
        while parent is not None:
            graph = self.graphs[parent]
            ancestors.append(graph)
            parent = graph.parent
        return tuple(ancestors)


def _add_collection_keys(keys: dict[BindingKey, None], collection_key: BindingKey) -> None:
    keys.setdefault(collection_key, None)
    alias_key = provider_map_key(collection_key)
    if alias_key is not None:
        keys.setdefault(alias_key, None)


def _to_dependencies(dependencies: Iterable[DependencyLike]) -> tuple[Dependency, ...]:
    return tuple(
        item if isinstance(item, Dependency) else Dependency.of(item) for item in dependencies
    )
