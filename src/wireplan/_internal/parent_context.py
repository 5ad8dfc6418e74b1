from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from wireplan._internal.bindings import FieldAccess, StorageSlot
from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import Provider, Scope
from wireplan._internal.name_allocator import NameAllocator, slot_name_for
from wireplan.exceptions import WirePlanInternalError
from wireplan.options import DEFAULT_SLOT_SUFFIX

logger = logging.getLogger(__name__)


@dataclass(kw_only=True)
class GraphLevel:
    """One graph of the hierarchy while it sits on the allocator stack."""

    graph_name: str
    declared_scopes: frozenset[Scope] = frozenset()
    name_allocator: NameAllocator = field(default_factory=NameAllocator)
    introduced_keys: dict[BindingKey, None] = field(default_factory=dict)
    """Keys whose storage this level owns, in introduction order."""

    used_keys: dict[BindingKey, None] = field(default_factory=dict)
    """Keys this level read from an ancestor, in first-use order."""

    fields: dict[BindingKey, StorageSlot] = field(default_factory=dict)
    """Slots created for descendants that read keys owned by this level."""

    readers: dict[BindingKey, dict[str, None]] = field(default_factory=dict)
    """Descendant graphs reading each slot of this level."""

    slot_suffix: str = DEFAULT_SLOT_SUFFIX

    def slot_for(self, key: BindingKey) -> StorageSlot:
        """Return the slot holding ``key``, allocating it on first request.

        Args:
            key: Key owned by this level.

        """
        slot = self.fields.get(key)
        if slot is None:
            slot = StorageSlot(
                name=self.name_allocator.new_name(
                    slot_name_for(key.type_name(), suffix=self.slot_suffix),
                ),
                key=key,
                owner=self.graph_name,
                type=Provider[key.type],
            )
            self.fields[key] = slot
        return slot

    def release_slot(self, key: BindingKey) -> StorageSlot:
        slot = self.fields.pop(key)
        self.name_allocator.release(slot.name)
        return slot


class ParentContext:
    """Decide which hierarchy level owns the storage of each key.

    Levels form a stack with the root graph at index 0. Every key keeps a stack
    of the level indices that introduced it, so the innermost provider wins and
    an outer provider becomes visible again once the inner level is popped.
    One instance serves one compilation.
    """

    def __init__(self) -> None:
        self._levels: list[GraphLevel] = []
        self._available: set[BindingKey] = set()
        self._intro_stacks: dict[BindingKey, list[int]] = {}
        self._pending: dict[BindingKey, None] = {}
        self._scopes: Counter[Scope] = Counter()

    @property
    def depth(self) -> int:
        return len(self._levels)

    @property
    def current_level(self) -> GraphLevel | None:
        return self._levels[-1] if self._levels else None

    def stage(self, keys: Iterable[BindingKey]) -> None:
        """Stage keys that the next entered level introduces.

        Args:
            keys: Keys provided by the graph whose level is entered next.

        """
        for key in keys:
            self._pending.setdefault(key, None)

    def enter_level(self, level: GraphLevel) -> None:
        """Push ``level`` and make every staged key introduced by it.

        Args:
            level: Level of the graph being processed.

        """
        index = len(self._levels)
        self._levels.append(level)
        self._scopes.update(level.declared_scopes)
        for key in self._pending:
            self._introduce_at(index, key)
        self._pending.clear()
        logger.debug(
            "Entered level %d for graph '%s' introducing %d key(s)",
            index,
            level.graph_name,
            len(level.introduced_keys),
        )

    def exit_level(self) -> set[BindingKey]:
        """Pop the innermost level and retract the keys it introduced.

        Returns the keys the popped level read from its ancestors.
        """
        if not self._levels:
            msg = "Allocator stack underflow: exit_level() called without a matching enter_level()."
            raise WirePlanInternalError(msg)

        index = len(self._levels) - 1
        level = self._levels.pop()
        for key in level.introduced_keys:
            stack = self._intro_stacks.get(key)
            popped = stack.pop() if stack else None
            if popped != index:
                msg = (
                    f"Allocator state is corrupt: key {key} introduced by level {index} "
                    f"('{level.graph_name}') has introducing index {popped} on top of its stack."
                )
                raise WirePlanInternalError(msg)
            if not stack:
                del self._intro_stacks[key]
                self._available.discard(key)

        self._scopes.subtract(level.declared_scopes)
        self._scopes = +self._scopes
        logger.debug(
            "Exited level %d for graph '%s' using %d ancestor key(s)",
            index,
            level.graph_name,
            len(level.used_keys),
        )
        return set(level.used_keys)

    @contextmanager
    def entered(self, level: GraphLevel) -> Iterator[GraphLevel]:
        """Keep ``level`` on the stack for the duration of the block.

        Args:
            level: Level of the graph being processed.

        """
        self.enter_level(level)
        try:
            yield level
        finally:
            self.exit_level()

    def resolve_field(self, key: BindingKey, scope: Scope | None = None) -> FieldAccess | None:
        """Return the ancestor slot that holds ``key``, creating it if needed.

        The nearest level that introduced ``key`` owns it. Otherwise, when
        ``scope`` is given, the innermost level declaring ``scope`` introduces
        ``key``. Returns ``None`` when no level can own ``key``.

        Args:
            key: Requested key.
            scope: Scope of the binding that produces ``key``, if any.

        """
        index = self._nearest(key)
        if index is None and scope is not None:
            index = self._innermost_declaring(scope)
            if index is not None:
                self._introduce_at(index, key)
                logger.debug(
                    "Scope %s introduced %s at level %d ('%s')",
                    scope.name,
                    key,
                    index,
                    self._levels[index].graph_name,
                )
        if index is None:
            return None

        owner = self._levels[index]
        slot = owner.slot_for(key)
        innermost = len(self._levels) - 1
        if index != innermost:
            reader = self._levels[innermost]
            reader.used_keys.setdefault(key, None)
            owner.readers.setdefault(key, {})[reader.graph_name] = None
        return FieldAccess(slot=slot, receiver=owner.graph_name)

    def release_reads(
        self,
        reader: str,
        keys: Iterable[BindingKey] | None = None,
    ) -> list[StorageSlot]:
        """Forget reads that graph ``reader`` made from levels on the stack.

        A slot that no other graph reads any more is dropped from its owning
        level. Returns the dropped slots.

        Args:
            reader: Name of the graph whose reads are forgotten.
            keys: Keys to forget; every key ``reader`` read when omitted.

        """
        selected = None if keys is None else set(keys)
        released: list[StorageSlot] = []
        for level in self._levels:
            if level.graph_name == reader:
                for key in list(level.used_keys):
                    if selected is None or key in selected:
                        del level.used_keys[key]
            for key, readers in list(level.readers.items()):
                if reader not in readers or (selected is not None and key not in selected):
                    continue
                del readers[reader]
                if not readers:
                    del level.readers[key]
                    released.append(level.release_slot(key))
        if released:
            logger.debug(
                "Released %d slot(s) no longer read after dropping reads of graph '%s'",
                len(released),
                reader,
            )
        return released

    def peek_field(self, key: BindingKey) -> FieldAccess | None:
        """Return the nearest existing slot for ``key`` without creating one.

        Args:
            key: Requested key.

        """
        index = self._nearest(key)
        if index is None:
            return None
        owner = self._levels[index]
        slot = owner.fields.get(key)
        if slot is None:
            return None
        return FieldAccess(slot=slot, receiver=owner.graph_name)

    def is_known(self, key: BindingKey) -> bool:
        return key in self._pending or key in self._available

    def nearest_owner(self, key: BindingKey) -> GraphLevel | None:
        index = self._nearest(key)
        return self._levels[index] if index is not None else None

    def contains_scope(self, scope: Scope) -> bool:
        return self._scopes[scope] > 0

    def available_keys(self) -> frozenset[BindingKey]:
        return frozenset(self._available)

    def _nearest(self, key: BindingKey) -> int | None:
        stack = self._intro_stacks.get(key)
        return stack[-1] if stack else None

    def _innermost_declaring(self, scope: Scope) -> int | None:
        for index in range(len(self._levels) - 1, -1, -1):
            if scope in self._levels[index].declared_scopes:
                return index
        return None

    def _introduce_at(self, index: int, key: BindingKey) -> None:
        level = self._levels[index]
        if key in level.introduced_keys:
            return
        level.introduced_keys[key] = None
        self._intro_stacks.setdefault(key, []).append(index)
        self._available.add(key)
