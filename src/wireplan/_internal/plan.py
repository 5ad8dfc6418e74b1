from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from wireplan._internal.bindings import Binding, FieldAccess, StorageSlot
from wireplan._internal.cycles import DeferredEdge
from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import Scope


class DelegateState(Enum):
    """State of a delegate's forward-reference slot."""

    UNRESOLVED = "unresolved"
    """The slot exists but does not point at an instance yet."""

    RESOLVED = "resolved"
    """The slot points at the constructed instance."""


class InitializationAction(Enum):
    ALLOCATE_DELEGATE = "allocate_delegate"
    """Create an empty forward-reference slot before any consumer is constructed."""

    CONSTRUCT = "construct"
    """Construct the binding once its direct dependencies are ready."""

    RESOLVE_DELEGATE = "resolve_delegate"
    """Point the forward-reference slot at the constructed instance."""


@dataclass(frozen=True, slots=True)
class InitializationStep:
    action: InitializationAction
    key: BindingKey
    delegate_state: DelegateState | None = None
    """State of the key's delegate after the step, for delegate steps."""


@dataclass(frozen=True, slots=True)
class GraphPlan:
    """Resolution output of one graph level, consumed by code generation."""

    graph_name: str
    parent: str | None
    scopes: frozenset[Scope]
    bindings: Mapping[BindingKey, Binding]
    construction_order: tuple[BindingKey, ...]
    slots: tuple[StorageSlot, ...]
    """Storage slots owned by this level."""

    used_keys: Mapping[BindingKey, FieldAccess]
    """Keys read from ancestor levels; generated constructors receive them."""

    exposed_keys: tuple[BindingKey, ...] = ()
    """Keys nested levels read from this level's slots."""

    deferred_edges: tuple[DeferredEdge, ...] = ()
    delegates: tuple[BindingKey, ...] = ()
    initialization: tuple[InitializationStep, ...] = ()
    accessors: tuple[BindingKey, ...] = ()

    def slot_for(self, key: BindingKey) -> StorageSlot | None:
        for slot in self.slots:
            if slot.key == key:
                return slot
        return None
