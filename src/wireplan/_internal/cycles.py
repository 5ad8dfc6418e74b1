from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass

from wireplan._internal.graph import BindingGraph
from wireplan._internal.keys import BindingKey
from wireplan.diagnostics import DiagnosticReporter, ErrorCollector
from wireplan.exceptions import WirePlanDependencyCycleError
from wireplan.options import EngineOptions

logger = logging.getLogger(__name__)

Edge = tuple[BindingKey, BindingKey]
Adjacency = Mapping[BindingKey, Sequence[BindingKey]]


@dataclass(frozen=True, slots=True)
class DeferredEdge:
    """A direct dependency rewritten to a provider to break a cycle."""

    consumer: BindingKey
    dependency: BindingKey
    cycle_count: int
    """Number of enumerated cycles the edge took part in."""


@dataclass(frozen=True, slots=True)
class DeferralPlan:
    graph: BindingGraph
    deferred_edges: tuple[DeferredEdge, ...] = ()


class DeferralPlanner:
    """Find cycles over direct edges and defer edges to break them.

    Edges that are already provider- or lazy-wrapped never take part in a
    cycle. Within each strongly connected component of the direct-edge
    subgraph, cycles are broken one at a time by deferring the reclassifiable
    edge on the cycle that belongs to the fewest enumerated cycles; ties go to
    the consumer declared first. A cycle without a reclassifiable edge is
    reported with its full path.
    """

    def __init__(
        self,
        *,
        options: EngineOptions | None = None,
        reporter: DiagnosticReporter | None = None,
    ) -> None:
        self._options = options or EngineOptions()
        self._reporter = reporter

    def plan(self, graph: BindingGraph) -> DeferralPlan:
        """Return ``graph`` with cycle-breaking edges deferred.

        Args:
            graph: Aggregated binding graph.

        """
        errors = ErrorCollector(reporter=self._reporter, graph=graph.name)
        nodes = sorted(graph.bindings)
        adjacency = direct_adjacency(graph)

        deferred: list[DeferredEdge] = []
        for component in strongly_connected_components(nodes, adjacency):
            if not _is_cyclic(component, adjacency):
                continue
            deferred.extend(
                self._break_component(
                    graph=graph,
                    component=component,
                    adjacency=adjacency,
                    errors=errors,
                ),
            )
        errors.raise_if_errors()

        if not deferred:
            return DeferralPlan(graph=graph)

        deferred_pairs = {(edge.consumer, edge.dependency) for edge in deferred}
        bindings = dict(graph.bindings)
        for consumer, dependency_key in sorted(deferred_pairs):
            binding = bindings[consumer]
            for index, dependency in enumerate(binding.dependencies):
                if dependency.key == dependency_key and dependency.is_direct:
                    binding = binding.replace_dependency(index, dependency.deferred())
            bindings[consumer] = binding

        for edge in deferred:
            logger.debug(
                "Deferred %s -> %s in graph '%s' (member of %d cycle(s))",
                edge.consumer,
                edge.dependency,
                graph.name,
                edge.cycle_count,
            )
        return DeferralPlan(graph=graph.with_bindings(bindings), deferred_edges=tuple(deferred))

    def _break_component(
        self,
        *,
        graph: BindingGraph,
        component: list[BindingKey],
        adjacency: Adjacency,
        errors: ErrorCollector,
    ) -> list[DeferredEdge]:
        members = set(component)
        residual: dict[BindingKey, list[BindingKey]] = {
            node: [successor for successor in adjacency[node] if successor in members]
            for node in component
        }
        counts = count_cycle_memberships(
            component,
            residual,
            limit=self._options.max_cycle_enumeration,
        )

        deferred: list[DeferredEdge] = []
        while (cycle := find_cycle(component, residual)) is not None:
            candidates = [
                edge for edge in _cycle_edges(cycle) if _is_reclassifiable(graph, edge)
            ]
            if not candidates:
                errors.error(
                    WirePlanDependencyCycleError,
                    _describe_cycle(graph, cycle),
                    key=cycle[0],
                    origin=graph[cycle[0]].origin,
                )
                break
            consumer, dependency = min(
                candidates,
                key=lambda edge: (counts[edge], graph[edge[0]].declaration_index, edge),
            )
            residual[consumer].remove(dependency)
            deferred.append(
                DeferredEdge(
                    consumer=consumer,
                    dependency=dependency,
                    cycle_count=counts[(consumer, dependency)],
                ),
            )
        return deferred


def direct_adjacency(graph: BindingGraph) -> dict[BindingKey, list[BindingKey]]:
    return {
        key: sorted(set(graph.successors(key, direct_only=True))) for key in graph.bindings
    }


def full_adjacency(graph: BindingGraph) -> dict[BindingKey, list[BindingKey]]:
    return {key: sorted(set(graph.successors(key))) for key in graph.bindings}


def strongly_connected_components(
    nodes: Sequence[BindingKey],
    adjacency: Adjacency,
) -> list[list[BindingKey]]:
    """Tarjan's algorithm, iterative; components come out in reverse topological order."""
    index_of: dict[BindingKey, int] = {}
    low_link: dict[BindingKey, int] = {}
    on_stack: set[BindingKey] = set()
    stack: list[BindingKey] = []
    components: list[list[BindingKey]] = []
    counter = 0

    for root in nodes:
        if root in index_of:
            continue
        work: list[tuple[BindingKey, Iterator[BindingKey]]] = []
        index_of[root] = low_link[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work.append((root, iter(adjacency.get(root, ()))))
        while work:
            node, successors = work[-1]
            advanced = False
            for successor in successors:
                if successor not in index_of:
                    index_of[successor] = low_link[successor] = counter
                    counter += 1
                    stack.append(successor)
                    on_stack.add(successor)
                    work.append((successor, iter(adjacency.get(successor, ()))))
                    advanced = True
                    break
                if successor in on_stack:
                    low_link[node] = min(low_link[node], index_of[successor])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low_link[parent] = min(low_link[parent], low_link[node])
            if low_link[node] == index_of[node]:
                component: list[BindingKey] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))
    return components


def count_cycle_memberships(
    nodes: Sequence[BindingKey],
    adjacency: Adjacency,
    *,
    limit: int,
) -> Counter[Edge]:
    """Count, per edge, the simple cycles it belongs to.

    Each cycle is enumerated once, from its smallest node. Enumeration stops
    after ``limit`` cycles or a proportional number of search steps.

    Args:
        nodes: Nodes of one strongly connected component, sorted.
        adjacency: Successors restricted to the component.
        limit: Maximum number of cycles to enumerate.

    """
    position = {node: index for index, node in enumerate(nodes)}
    counts: Counter[Edge] = Counter()
    found = 0
    steps_left = limit * max(len(nodes), 1)

    for start in nodes:
        start_position = position[start]
        path = [start]
        on_path = {start}
        work = [iter(adjacency.get(start, ()))]
        while work and found < limit and steps_left > 0:
            successor = next(work[-1], None)
            if successor is None:
                work.pop()
                on_path.discard(path.pop())
                continue
            steps_left -= 1
            if position.get(successor, -1) < start_position:
                continue
            if successor == start:
                found += 1
                for edge in _cycle_edges(path):
                    counts[edge] += 1
                continue
            if successor in on_path:
                continue
            path.append(successor)
            on_path.add(successor)
            work.append(iter(adjacency.get(successor, ())))
        if found >= limit or steps_left <= 0:
            break
    return counts


def find_cycle(nodes: Sequence[BindingKey], adjacency: Adjacency) -> list[BindingKey] | None:
    """Return one cycle as ``[n0, ..., nk]`` (``nk -> n0`` closes it), or ``None``."""
    visiting, done = 1, 2
    state: dict[BindingKey, int] = {}
    for root in nodes:
        if root in state:
            continue
        state[root] = visiting
        path = [root]
        work = [iter(adjacency.get(root, ()))]
        while work:
            successor = next(work[-1], None)
            if successor is None:
                work.pop()
                state[path.pop()] = done
                continue
            successor_state = state.get(successor)
            if successor_state == visiting:
                return path[path.index(successor) :]
            if successor_state is None:
                state[successor] = visiting
                path.append(successor)
                work.append(iter(adjacency.get(successor, ())))
    return None


def render_cycle(cycle: Sequence[BindingKey]) -> str:
    if len(cycle) == 2:  # noqa: PLR2004
        return f"{cycle[0]} <--> {cycle[1]}"
    return " --> ".join(str(key) for key in [*cycle, cycle[0]])


def _cycle_edges(cycle: Sequence[BindingKey]) -> list[Edge]:
    return [(cycle[index], cycle[(index + 1) % len(cycle)]) for index in range(len(cycle))]


def _is_cyclic(component: Sequence[BindingKey], adjacency: Adjacency) -> bool:
    if len(component) > 1:
        return True
    node = component[0]
    return node in adjacency.get(node, ())


def _is_reclassifiable(graph: BindingGraph, edge: Edge) -> bool:
    consumer, dependency_key = edge
    direct = [
        dependency
        for dependency in graph[consumer].dependencies
        if dependency.key == dependency_key and dependency.is_direct
    ]
    return bool(direct) and all(dependency.allow_deferral for dependency in direct)


def _describe_cycle(graph: BindingGraph, cycle: Sequence[BindingKey]) -> str:
    lines = [
        f"Found a dependency cycle in graph '{graph.name}' that no deferrable edge breaks.",
        "Cycle:",
        f"    {render_cycle(cycle)}",
    ]
    trace = graph.trace(cycle[0])
    if len(trace) > 1:
        lines.extend(["Trace:", "    " + " -> ".join(str(key) for key in trace)])
    lines.extend(
        [
            "Members:",
            *(f"    {graph[key].describe()}" for key in cycle),
        ],
    )
    return "\n".join(lines)
