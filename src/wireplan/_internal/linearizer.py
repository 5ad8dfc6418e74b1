from __future__ import annotations

import heapq
from collections.abc import Sequence

from wireplan._internal.cycles import find_cycle, full_adjacency, render_cycle, strongly_connected_components
from wireplan._internal.graph import BindingGraph
from wireplan._internal.keys import BindingKey
from wireplan._internal.plan import DelegateState, InitializationAction, InitializationStep
from wireplan.exceptions import WirePlanInternalError


class ConstructionOrderLinearizer:
    """Order a deferral-planned graph for single-pass initialization.

    The order is topological over direct edges; independent bindings keep
    declaration order. Components of the full graph are placed so that
    deferred edges are honoured whenever no cycle forces otherwise, which keeps
    the number of delegates low.
    """

    def order(self, graph: BindingGraph) -> tuple[BindingKey, ...]:
        """Return construction order, dependencies before their consumers.

        Args:
            graph: Graph whose direct-edge subgraph is acyclic.

        """
        adjacency = full_adjacency(graph)
        components = strongly_connected_components(sorted(graph.bindings), adjacency)
        component_of = {
            key: index for index, component in enumerate(components) for key in component
        }

        pending_dependencies = [0] * len(components)
        consumers: list[set[int]] = [set() for _ in components]
        for key, successors in adjacency.items():
            consumer = component_of[key]
            for successor in successors:
                provider = component_of[successor]
                if provider != consumer and consumer not in consumers[provider]:
                    consumers[provider].add(consumer)
                    pending_dependencies[consumer] += 1

        ready: list[tuple[int, BindingKey, int]] = []
        for index, component in enumerate(components):
            if pending_dependencies[index] == 0:
                heapq.heappush(ready, (*self._priority(graph, component), index))

        order: list[BindingKey] = []
        while ready:
            _, _, index = heapq.heappop(ready)
            order.extend(self._order_component(graph, components[index]))
            for consumer in sorted(consumers[index]):
                pending_dependencies[consumer] -= 1
                if pending_dependencies[consumer] == 0:
                    heapq.heappush(ready, (*self._priority(graph, components[consumer]), consumer))

        if len(order) != len(graph):
            msg = (
                f"Construction order for graph '{graph.name}' covers {len(order)} of "
                f"{len(graph)} bindings."
            )
            raise WirePlanInternalError(msg)
        return tuple(order)

    def initialization(
        self,
        graph: BindingGraph,
        order: Sequence[BindingKey],
    ) -> tuple[tuple[BindingKey, ...], tuple[InitializationStep, ...]]:
        """Return delegates and the two-phase initialization steps.

        A key becomes a delegate when a consumer constructed no later than the
        key itself receives it through a deferred edge.

        Args:
            graph: Deferral-planned graph.
            order: Construction order from ``order``.

        """
        position = {key: index for index, key in enumerate(order)}
        delegates: set[BindingKey] = set()
        for consumer in order:
            for _, dependency in graph.edges(consumer):
                if dependency.is_direct:
                    continue
                if position[dependency.key] >= position[consumer]:
                    delegates.add(dependency.key)

        ordered_delegates = tuple(key for key in order if key in delegates)
        steps = [
            InitializationStep(
                action=InitializationAction.ALLOCATE_DELEGATE,
                key=key,
                delegate_state=DelegateState.UNRESOLVED,
            )
            for key in ordered_delegates
        ]
        for key in order:
            steps.append(InitializationStep(action=InitializationAction.CONSTRUCT, key=key))
            if key in delegates:
                steps.append(
                    InitializationStep(
                        action=InitializationAction.RESOLVE_DELEGATE,
                        key=key,
                        delegate_state=DelegateState.RESOLVED,
                    ),
                )
        return ordered_delegates, tuple(steps)

    def _order_component(
        self,
        graph: BindingGraph,
        component: Sequence[BindingKey],
    ) -> list[BindingKey]:
        if len(component) == 1:
            key = component[0]
            if key in graph.successors(key, direct_only=True):
                self._raise_cycle(graph, [key])
            return [key]

        members = set(component)
        pending = {
            key: {
                successor
                for successor in graph.successors(key, direct_only=True)
                if successor in members and successor != key
            }
            for key in component
        }
        for key in component:
            if key in graph.successors(key, direct_only=True):
                self._raise_cycle(graph, [key])

        ready = [self._key_priority(graph, key) for key in component if not pending[key]]
        heapq.heapify(ready)
        order: list[BindingKey] = []
        while ready:
            _, key = heapq.heappop(ready)
            order.append(key)
            for consumer in component:
                waiting = pending[consumer]
                if key in waiting:
                    waiting.discard(key)
                    if not waiting:
                        heapq.heappush(ready, self._key_priority(graph, consumer))

        if len(order) != len(component):
            remaining = [key for key in component if key not in set(order)]
            adjacency = {key: sorted(pending[key]) for key in remaining}
            self._raise_cycle(graph, find_cycle(remaining, adjacency) or remaining)
        return order

    def _raise_cycle(self, graph: BindingGraph, cycle: Sequence[BindingKey]) -> None:
        msg = (
            f"Direct dependency cycle survived deferral planning in graph '{graph.name}': "
            f"{render_cycle(cycle)}"
        )
        raise WirePlanInternalError(msg)

    def _priority(
        self,
        graph: BindingGraph,
        component: Sequence[BindingKey],
    ) -> tuple[int, BindingKey]:
        return min(self._key_priority(graph, key) for key in component)

    def _key_priority(self, graph: BindingGraph, key: BindingKey) -> tuple[int, BindingKey]:
        return graph[key].declaration_index, key
