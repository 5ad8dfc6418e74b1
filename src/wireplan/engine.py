from __future__ import annotations

import logging
from dataclasses import dataclass, field

from wireplan._internal.bindings import Binding, FieldAccess
from wireplan._internal.builder import BindingGraphBuilder
from wireplan._internal.cycles import DeferralPlanner
from wireplan._internal.keys import BindingKey
from wireplan._internal.linearizer import ConstructionOrderLinearizer
from wireplan._internal.multibindings import MultibindingAggregator
from wireplan._internal.name_allocator import NameAllocator
from wireplan._internal.parent_context import GraphLevel, ParentContext
from wireplan._internal.plan import GraphPlan
from wireplan._internal.slots import collect_slot_keys
from wireplan.declarations import CompilationUnit, GraphDeclaration, MultibindsDeclaration
from wireplan.diagnostics import (
    CollectingReporter,
    Diagnostic,
    DiagnosticReporter,
    LoggingReporter,
    report_internal_error,
)
from wireplan.exceptions import WirePlanAbortProcessing, WirePlanInternalError
from wireplan.options import EngineOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Plans of every graph that resolved, plus the diagnostics of the rest."""

    plans: tuple[GraphPlan, ...]
    """Plans in hierarchy pre-order: every parent precedes its children."""

    diagnostics: tuple[Diagnostic, ...] = ()
    failed_graphs: tuple[str, ...] = ()
    """Graphs without a plan: those that reported errors, then the nested
    graphs dropped because an enclosing graph has no plan."""

    @property
    def succeeded(self) -> bool:
        return not self.failed_graphs and not self.diagnostics

    def plan_for(self, graph_name: str) -> GraphPlan | None:
        for plan in self.plans:
            if plan.graph_name == graph_name:
                return plan
        return None


class _TeeReporter:
    def __init__(self, *reporters: DiagnosticReporter) -> None:
        self._reporters = reporters

    def report(self, diagnostic: Diagnostic) -> None:
        for reporter in self._reporters:
            reporter.report(diagnostic)


@dataclass(kw_only=True)
class _Run:
    unit: CompilationUnit
    reporter: DiagnosticReporter
    context: ParentContext = field(default_factory=ParentContext)
    plans: list[GraphPlan] = field(default_factory=list)
    failed_graphs: list[str] = field(default_factory=list)
    stopped: bool = False


class ResolutionEngine:
    """Resolve every graph of a compilation unit into a ``GraphPlan``.

    Graphs are processed depth-first. A graph's level stays on the parent
    context while its nested graphs resolve, so the storage slots they read
    from it are known before its own binding graph is built. Declaration and
    graph errors are reported and skip only the affected graph; an internal
    error is reported and aborts the run.

    Examples:
        .. code-block:: python

            unit = CompilationUnit()
            app = unit.add_graph("AppGraph", scopes=[Scope("App")])
            app.add_provider(HttpClient, scope=Scope("App"))
            app.add_accessor(HttpClient)

            result = ResolutionEngine().resolve(unit)
            plan = result.plan_for("AppGraph")

    """

    def __init__(
        self,
        *,
        options: EngineOptions | None = None,
        reporter: DiagnosticReporter | None = None,
    ) -> None:
        self._options = options or EngineOptions()
        self._reporter = reporter if reporter is not None else LoggingReporter()
        self._linearizer = ConstructionOrderLinearizer()

    def resolve(self, unit: CompilationUnit) -> ResolutionResult:
        """Resolve ``unit`` and return the plan of every graph without errors.

        Args:
            unit: Declarations to resolve.

        Raises:
            WirePlanInternalError: If an engine invariant is broken.

        """
        collecting = CollectingReporter()
        run = _Run(unit=unit, reporter=_TeeReporter(collecting, self._reporter))
        for graph in unit.roots():
            self._process(run, graph)
            if run.stopped:
                break

        if run.context.depth:
            msg = f"Allocator stack holds {run.context.depth} level(s) after resolution."
            raise WirePlanInternalError(msg)

        logger.info(
            "Resolved %d graph(s): planned=%d failed=%d diagnostics=%d",
            len(unit.graphs),
            len(run.plans),
            len(run.failed_graphs),
            len(collecting.diagnostics),
        )
        return ResolutionResult(
            plans=tuple(run.plans),
            diagnostics=tuple(collecting.diagnostics),
            failed_graphs=tuple(run.failed_graphs),
        )

    def _process(self, run: _Run, graph: GraphDeclaration) -> None:
        level = GraphLevel(
            graph_name=graph.name,
            declared_scopes=graph.scopes,
            name_allocator=NameAllocator(),
            slot_suffix=self._options.slot_suffix,
        )
        position = len(run.plans)
        run.context.stage(graph.declared_keys())
        run.context.enter_level(level)
        try:
            for child in run.unit.children_of(graph.name):
                self._process(run, child)
                if run.stopped:
                    self._drop_nested_plans(run, graph, position)
                    return
            try:
                plan = self._plan_graph(run, graph, level)
            except WirePlanAbortProcessing:
                logger.debug("Skipping graph '%s' after reported errors", graph.name)
                run.failed_graphs.append(graph.name)
                run.context.release_reads(graph.name)
                self._drop_nested_plans(run, graph, position)
                if self._options.fail_fast:
                    run.stopped = True
                return
            except WirePlanInternalError as error:
                report_internal_error(run.reporter, error, graph=graph.name)
                raise
            run.plans.insert(position, plan)
        finally:
            run.context.exit_level()

    def _drop_nested_plans(self, run: _Run, graph: GraphDeclaration, position: int) -> None:
        # Nested plans read slots of a graph that has no plan of its own.
        dropped = [plan.graph_name for plan in run.plans[position:]]
        if not dropped:
            return
        del run.plans[position:]
        for name in dropped:
            run.context.release_reads(name)
        run.failed_graphs.extend(dropped)
        logger.info(
            "Dropped %d nested plan(s) of graph '%s' that has no plan: %s",
            len(dropped),
            graph.name,
            ", ".join(dropped),
        )

    def _plan_graph(self, run: _Run, graph: GraphDeclaration, level: GraphLevel) -> GraphPlan:
        inherited_contributors: list[Binding] = []
        inherited_multibinds: list[MultibindsDeclaration] = []
        for ancestor in run.unit.ancestors_of(graph.name):
            inherited_contributors.extend(
                binding for binding in ancestor.bindings if binding.is_contributor
            )
            inherited_multibinds.extend(ancestor.multibinds)

        exposed_keys = tuple(level.fields)
        builder = BindingGraphBuilder(
            graph=graph,
            injectables=run.unit.injectables,
            inherited_contributors=inherited_contributors,
            inherited_multibinds=inherited_multibinds,
            parent_context=run.context,
            options=self._options,
            reporter=run.reporter,
        )
        binding_graph = builder.build(extra_roots=exposed_keys)
        binding_graph = MultibindingAggregator(reporter=run.reporter).aggregate(binding_graph)
        if self._options.shrink_unused_bindings:
            binding_graph = binding_graph.shrunk()
            unread = [key for key in level.used_keys if key not in binding_graph]
            if unread:
                run.context.release_reads(graph.name, unread)

        deferral = DeferralPlanner(options=self._options, reporter=run.reporter).plan(
            binding_graph,
        )
        planned = deferral.graph
        order = self._linearizer.order(planned)
        delegates, steps = self._linearizer.initialization(planned, order)
        for key in collect_slot_keys(planned, order, delegates=delegates):
            level.slot_for(key)

        used_keys: dict[BindingKey, FieldAccess] = {}
        for key in level.used_keys:
            access = run.context.peek_field(key)
            if access is None:
                msg = f"Graph '{graph.name}' reads {key} from an ancestor that holds no slot for it."
                raise WirePlanInternalError(msg)
            used_keys[key] = access

        plan = GraphPlan(
            graph_name=graph.name,
            parent=graph.parent,
            scopes=graph.scopes,
            bindings=planned.bindings,
            construction_order=order,
            slots=tuple(level.fields.values()),
            used_keys=used_keys,
            exposed_keys=exposed_keys,
            deferred_edges=deferral.deferred_edges,
            delegates=delegates,
            initialization=steps,
            accessors=tuple(graph.accessors),
        )
        logger.info(
            (
                "Planned graph '%s': bindings=%d slots=%d used_keys=%d "
                "deferred_edges=%d delegates=%d"
            ),
            plan.graph_name,
            len(plan.bindings),
            len(plan.slots),
            len(plan.used_keys),
            len(plan.deferred_edges),
            len(plan.delegates),
        )
        return plan
