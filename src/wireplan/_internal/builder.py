from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from wireplan._internal.bindings import Binding, BindingKind, Dependency
from wireplan._internal.graph import BindingGraph, request_trace
from wireplan._internal.keys import BindingKey
from wireplan._internal.markers import MultibindingElement, Scope
from wireplan._internal.multibindings import element_type, provider_map_key
from wireplan._internal.parent_context import ParentContext
from wireplan.declarations import GraphDeclaration, MultibindsDeclaration
from wireplan.diagnostics import DiagnosticReporter, ErrorCollector
from wireplan.exceptions import (
    WirePlanDuplicateBindingError,
    WirePlanMissingBindingError,
    WirePlanScopeMismatchError,
)
from wireplan.options import EngineOptions

logger = logging.getLogger(__name__)

_ROOT_DECLARATION_INDEX = -1


@dataclass(frozen=True, slots=True)
class _Request:
    key: BindingKey
    requester: BindingKey | None
    dependency: Dependency | None


class BindingGraphBuilder:
    """Build the binding graph of one graph level.

    Resolves every key reachable from the graph's explicit declarations,
    accessors and extra roots. Keys are looked up in this order: explicit
    declarations of the graph, multibinding collections the graph contributes
    to, ancestor storage slots, constructor-injected classes, dependency
    defaults. Multibinding aggregates are left to the aggregator; their
    contributors are resolved here.
    """

    def __init__(
        self,
        *,
        graph: GraphDeclaration,
        injectables: Sequence[Binding] = (),
        inherited_contributors: Sequence[Binding] = (),
        inherited_multibinds: Sequence[MultibindsDeclaration] = (),
        parent_context: ParentContext | None = None,
        options: EngineOptions | None = None,
        reporter: DiagnosticReporter | None = None,
    ) -> None:
        self._graph = graph
        self._parent_context = parent_context
        self._options = options or EngineOptions()
        self._errors = ErrorCollector(reporter=reporter, graph=graph.name)

        self._explicit = self._index_explicit(graph.bindings)
        self._injectables: dict[BindingKey, list[Binding]] = {}
        for binding in injectables:
            self._injectables.setdefault(binding.key, []).append(binding)

        self._collection_contributors: dict[BindingKey, list[BindingKey]] = {}
        self._inherited_contributors = {binding.key: binding for binding in inherited_contributors}
        self._multibinds: dict[BindingKey, MultibindsDeclaration] = {}
        self._local_collections: dict[BindingKey, BindingKey] = {}
        self._index_collections(
            inherited_contributors=inherited_contributors,
            inherited_multibinds=inherited_multibinds,
        )

        self._bindings: dict[BindingKey, Binding] = {}
        self._absent: set[BindingKey] = set()
        self._missing: set[BindingKey] = set()
        self._requested_by: dict[BindingKey, BindingKey] = {}
        self._visited_collections: set[BindingKey] = set()

    def build(self, *, extra_roots: Iterable[BindingKey] = ()) -> BindingGraph:
        """Resolve the graph and return it, or raise after reporting errors.

        Args:
            extra_roots: Keys nested graphs read from this graph's storage slots.

        """
        roots = tuple(dict.fromkeys([*self._graph.accessors, *extra_roots]))
        queue: deque[_Request] = deque(_Request(key, None, None) for key in roots)
        queue.extend(_Request(key, None, None) for key in self._explicit)
        queue.extend(
            _Request(key, None, None) for key in self._multibinds if key in self._local_collections
        )

        while queue:
            request = queue.popleft()
            for dependency_request in self._resolve(request):
                queue.append(dependency_request)

        self._check_scopes()
        self._errors.raise_if_errors()

        multibinds = tuple(
            declaration
            for key, declaration in self._multibinds.items()
            if key in self._local_collections
        )
        graph = BindingGraph(
            name=self._graph.name,
            bindings=dict(
                sorted(self._bindings.items(), key=lambda item: (item[1].declaration_index, item[0])),
            ),
            roots=roots,
            absent_keys=frozenset(self._absent),
            multibinds=multibinds,
            requested_by=dict(self._requested_by),
        )
        logger.debug(
            "Built binding graph '%s': %d binding(s), %d absent key(s)",
            graph.name,
            len(graph),
            len(graph.absent_keys),
        )
        if self._options.dump_graphs:
            logger.debug("%s", graph.dump())
        return graph

    def _resolve(self, request: _Request) -> list[_Request]:
        key = request.key
        if key in self._bindings or key in self._missing or key in self._visited_collections:
            return []
        if key in self._absent:
            if request.dependency is not None and request.dependency.has_default:
                return []
            self._absent.discard(key)
            self._note_requester(request)
            self._report_missing(request)
            return []

        self._note_requester(request)
        if key in self._local_collections:
            self._visited_collections.add(key)
            return self._collection_requests(key)

        binding = self._lookup(key)
        if binding is None:
            if request.dependency is not None and request.dependency.has_default:
                self._absent.add(key)
                return []
            self._report_missing(request)
            return []

        self._bindings[key] = binding
        return [_Request(dependency.key, key, dependency) for dependency in binding.dependencies]

    def _collection_requests(self, key: BindingKey) -> list[_Request]:
        collection_key = self._local_collections[key]
        requests = [
            _Request(member, key, None)
            for member in self._collection_contributors.get(collection_key, ())
        ]
        if collection_key != key:
            requests.insert(0, _Request(collection_key, key, None))
        return requests

    def _note_requester(self, request: _Request) -> None:
        if request.requester is not None:
            self._requested_by.setdefault(request.key, request.requester)

    def _lookup(self, key: BindingKey) -> Binding | None:
        explicit = self._explicit.get(key)
        if explicit is not None:
            if self._reads_from_ancestor(explicit):
                inherited = self._parent_binding(key, template=explicit)
                if inherited is not None:
                    return inherited
            return explicit

        if self._ancestor_provides(key):
            inherited = self._parent_binding(key, template=self._inherited_contributors.get(key))
            if inherited is not None:
                return inherited

        candidates = self._injectables.get(key)
        if not candidates:
            return None
        if len(candidates) > 1:
            first, second = candidates[0], candidates[1]
            self._errors.error(
                WirePlanDuplicateBindingError,
                (
                    f"Multiple bindings found for {key}:\n"
                    f"  Binding 1: {first.describe()}\n"
                    f"  Binding 2: {second.describe()}"
                ),
                key=key,
                origin=second.origin,
            )
        injectable = candidates[0]
        scope = injectable.scope
        if (
            scope is not None
            and scope not in self._graph.scopes
            and self._parent_context is not None
            and self._parent_context.contains_scope(scope)
        ):
            inherited = self._parent_binding(key, template=injectable, scope=scope)
            if inherited is not None:
                return inherited
        return injectable

    def _reads_from_ancestor(self, binding: Binding) -> bool:
        return (
            binding.scope is not None
            and binding.scope not in self._graph.scopes
            and self._ancestor_provides(binding.key)
        )

    def _ancestor_provides(self, key: BindingKey) -> bool:
        if self._parent_context is None:
            return False
        owner = self._parent_context.nearest_owner(key)
        return owner is not None and owner.graph_name != self._graph.name

    def _parent_binding(
        self,
        key: BindingKey,
        *,
        template: Binding | None,
        scope: Scope | None = None,
    ) -> Binding | None:
        if self._parent_context is None:
            return None
        access = self._parent_context.resolve_field(key, scope)
        if access is None:
            return None
        return Binding(
            key=key,
            kind=BindingKind.PARENT_FIELD,
            scope=template.scope if template is not None else None,
            declaration_index=(
                template.declaration_index if template is not None else _ROOT_DECLARATION_INDEX
            ),
            origin=template.origin if template is not None else None,
            contribution=template.contribution if template is not None else None,
            parent_field=access,
        )

    def _check_scopes(self) -> None:
        for binding in self._bindings.values():
            scope = binding.scope
            if scope is None or binding.kind is BindingKind.PARENT_FIELD:
                continue
            if scope in self._graph.scopes:
                continue
            declared = ", ".join(sorted(item.name for item in self._graph.scopes)) or "none"
            if self._parent_context is not None and self._parent_context.contains_scope(scope):
                reason = f"@{scope.name} belongs to an ancestor graph that does not provide it"
            else:
                reason = f"no graph in the hierarchy declares @{scope.name}"
            self._errors.error(
                WirePlanScopeMismatchError,
                (
                    f"{binding.key} is scoped @{scope.name} but graph '{self._graph.name}' "
                    f"declares scopes [{declared}]; {reason}."
                ),
                key=binding.key,
                origin=binding.origin,
            )

    def _report_missing(self, request: _Request) -> None:
        key = request.key
        self._missing.add(key)
        lines = [f"Cannot find a binding for {key}."]
        if request.requester is not None:
            requester = self._bindings.get(request.requester)
            described = requester.describe() if requester is not None else str(request.requester)
            parameter = request.dependency.name if request.dependency is not None else None
            via = f" (parameter '{parameter}')" if parameter else ""
            lines.append(f"  Requested by: {described}{via}")
            trace = request_trace(self._requested_by, request.requester)
            if len(trace) > 1:
                lines.append("  Trace: " + " -> ".join(str(item) for item in [*trace, key]))
        if self._options.report_similar_bindings:
            similar = self._similar_bindings(key)
            if similar:
                lines.append("  Similar bindings:")
                lines.extend(f"    - {item}" for item in similar)
        origin = None
        if request.requester is not None:
            requester_binding = self._bindings.get(request.requester)
            origin = requester_binding.origin if requester_binding is not None else None
        self._errors.error(
            WirePlanMissingBindingError,
            "\n".join(lines),
            key=key,
            origin=origin,
        )

    def _similar_bindings(self, key: BindingKey) -> list[str]:
        known: set[BindingKey] = set(self._explicit) | set(self._injectables)
        known |= set(self._local_collections)
        if self._parent_context is not None:
            known |= self._parent_context.available_keys()
        similar: list[str] = []
        for candidate in sorted(known):
            if candidate == key or isinstance(candidate.qualifier, MultibindingElement):
                continue
            if candidate.type == key.type:
                similar.append(f"{candidate} (different qualifier)")
            elif element_type(candidate) == key.type:
                similar.append(f"{candidate} (multibinding of this type)")
        return similar

    def _index_explicit(self, bindings: Iterable[Binding]) -> dict[BindingKey, Binding]:
        explicit: dict[BindingKey, Binding] = {}
        for binding in bindings:
            previous = explicit.get(binding.key)
            if previous is not None:
                self._errors.error(
                    WirePlanDuplicateBindingError,
                    (
                        f"Multiple bindings found for {binding.key}:\n"
                        f"  Binding 1: {previous.describe()}\n"
                        f"  Binding 2: {binding.describe()}"
                    ),
                    key=binding.key,
                    origin=binding.origin,
                )
                continue
            explicit[binding.key] = binding
        return explicit

    def _index_collections(
        self,
        *,
        inherited_contributors: Sequence[Binding],
        inherited_multibinds: Sequence[MultibindsDeclaration],
    ) -> None:
        own_collections: list[BindingKey] = []
        for binding in self._graph.bindings:
            if binding.contribution is not None:
                own_collections.append(binding.contribution.collection_key)
        own_collections.extend(declaration.key for declaration in self._graph.multibinds)

        for collection_key in own_collections:
            self._local_collections[collection_key] = collection_key
            alias_key = provider_map_key(collection_key)
            if alias_key is not None:
                self._local_collections[alias_key] = collection_key

        for binding in [*inherited_contributors, *self._graph.bindings]:
            contribution = binding.contribution
            if contribution is None or contribution.collection_key not in self._local_collections:
                continue
            members = self._collection_contributors.setdefault(contribution.collection_key, [])
            if binding.key not in members:
                members.append(binding.key)

        for declaration in [*inherited_multibinds, *self._graph.multibinds]:
            self._multibinds.setdefault(declaration.key, declaration)

        for key, binding in self._explicit.items():
            if key in self._local_collections:
                self._errors.error(
                    WirePlanDuplicateBindingError,
                    (
                        f"Multiple bindings found for {key}:\n"
                        f"  Binding 1: {binding.describe()}\n"
                        "  Binding 2: multibinding declared in the same graph"
                    ),
                    key=key,
                    origin=binding.origin,
                )

