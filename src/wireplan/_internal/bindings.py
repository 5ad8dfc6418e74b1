from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import (
    Scope,
    is_lazy_annotation,
    is_provider_annotation,
    is_wrapper_annotation,
    strip_wrapper_annotation,
)


class BindingKind(Enum):
    """Describe how a binding produces its value."""

    CONSTRUCTOR = "constructor"
    """Instantiate a constructor-injected class."""

    PROVIDER = "provider"
    """Call a provider function declared in a graph."""

    ALIAS = "alias"
    """Resolve to the single target key of a binds declaration."""

    MULTIBINDING = "multibinding"
    """Collect every contribution of a set or map multibinding."""

    BOUND_INSTANCE = "bound_instance"
    """Use a value supplied when the graph is created."""

    GRAPH = "graph"
    """Refer to the graph instance itself."""

    PARENT_FIELD = "parent_field"
    """Read a storage slot owned by an ancestor graph."""


class Indirection(Enum):
    """Describe how a consumer receives a dependency."""

    DIRECT = "direct"
    """The value is needed while the consumer is constructed."""

    PROVIDER = "provider"
    """The consumer receives a provider and invokes it later."""

    LAZY = "lazy"
    """The consumer receives a memoizing lazy wrapper."""

    @property
    def is_deferred(self) -> bool:
        return self is not Indirection.DIRECT


class ContributionKind(Enum):
    """Describe how a binding contributes to a multibinding."""

    INTO_SET = "into_set"
    ELEMENTS_INTO_SET = "elements_into_set"
    INTO_MAP = "into_map"


class CollectionKind(Enum):
    SET = "set"
    MAP = "map"


@dataclass(frozen=True, slots=True)
class Dependency:
    """One edge from a binding to the key it depends on."""

    key: BindingKey
    indirection: Indirection = Indirection.DIRECT
    has_default: bool = False
    """Use the parameter default when the key has no binding."""

    allow_deferral: bool = False
    """The edge may be rewritten to ``Indirection.PROVIDER`` to break a cycle."""

    name: str | None = None
    """Parameter name at the declaration site, used in diagnostics."""

    @classmethod
    def of(
        cls,
        annotation: Any,
        *,
        has_default: bool = False,
        allow_deferral: bool = False,
        name: str | None = None,
    ) -> Dependency:
        """Build a dependency from an annotation, unwrapping ``Provider``/``Lazy``.

        Args:
            annotation: Dependency annotation such as ``Provider[Service]``.
            has_default: Whether the parameter has a default value.
            allow_deferral: Whether a direct edge may be deferred to break a cycle.
            name: Parameter name used in diagnostics.

        """
        indirection = Indirection.DIRECT
        if is_provider_annotation(annotation):
            indirection = Indirection.PROVIDER
        elif is_lazy_annotation(annotation):
            indirection = Indirection.LAZY

        inner = annotation
        while is_wrapper_annotation(inner):
            inner = strip_wrapper_annotation(inner)
        return cls(
            key=BindingKey.of(inner),
            indirection=indirection,
            has_default=has_default,
            allow_deferral=allow_deferral,
            name=name,
        )

    @property
    def is_direct(self) -> bool:
        return self.indirection is Indirection.DIRECT

    @property
    def is_reclassifiable(self) -> bool:
        return self.is_direct and self.allow_deferral

    def deferred(self) -> Dependency:
        return replace(self, indirection=Indirection.PROVIDER)


@dataclass(frozen=True, slots=True)
class Contribution:
    """Multibinding metadata of a contributor binding."""

    kind: ContributionKind
    collection_key: BindingKey
    map_key: Any = None
    map_key_type: Any = None


@dataclass(frozen=True, slots=True)
class AggregateInfo:
    """Metadata of a synthetic multibinding aggregate."""

    collection: CollectionKind
    declared: bool
    """Declared explicitly with ``multibinds``."""

    allow_empty: bool
    map_keys: tuple[Any, ...] = ()
    """Map keys aligned with the aggregate's dependencies (maps only)."""


@dataclass(frozen=True, slots=True)
class FieldAccess:
    """A storage slot and the graph whose generated instance holds it."""

    slot: StorageSlot
    receiver: str
    """Name of the graph that owns ``slot``."""


@dataclass(frozen=True, slots=True)
class StorageSlot:
    """Field that holds a memoized provider for one key at one graph level."""

    name: str
    key: BindingKey
    owner: str
    """Name of the owning graph."""

    type: Any
    """``Provider[T]`` for the key's type."""

    @property
    def qualifier(self) -> Any:
        return self.key.qualifier


@dataclass(frozen=True, slots=True)
class Binding:
    """One way to produce the value of a key."""

    key: BindingKey
    kind: BindingKind
    scope: Scope | None = None
    dependencies: tuple[Dependency, ...] = ()
    declaration_index: int = 0
    """Position of the declaration in the compilation unit, for tie-breaks."""

    origin: str | None = None
    """Declaration site, for diagnostics."""

    contribution: Contribution | None = None
    aggregate: AggregateInfo | None = None
    parent_field: FieldAccess | None = None

    @property
    def is_scoped(self) -> bool:
        return self.scope is not None

    @property
    def is_contributor(self) -> bool:
        return self.contribution is not None

    @property
    def is_empty_singleton(self) -> bool:
        """Whether the binding is a declared multibinding with no contributors.

        Code generators render it as one shared empty collection.
        """
        return self.kind is BindingKind.MULTIBINDING and not self.dependencies

    def describe(self) -> str:
        site = f" ({self.origin})" if self.origin else ""
        return f"{self.key} [{self.kind.value}]{site}"

    def replace_dependency(self, index: int, dependency: Dependency) -> Binding:
        dependencies = list(self.dependencies)
        dependencies[index] = dependency
        return replace(self, dependencies=tuple(dependencies))
