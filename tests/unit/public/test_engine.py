from __future__ import annotations

import logging
from typing import Annotated

import pytest

from wireplan import (
    BindingKey,
    BindingKind,
    CollectingReporter,
    CompilationUnit,
    Dependency,
    EngineOptions,
    FieldAccess,
    InitializationAction,
    Named,
    Provider,
    ResolutionEngine,
    Scope,
    Severity,
    WirePlanDependencyCycleError,
    WirePlanInternalError,
)
from wireplan._internal.linearizer import ConstructionOrderLinearizer

APP = Scope("App")
REQUEST = Scope("Request")


class Database:
    pass


class Session:
    pass


class Handler:
    pass


class Alpha:
    pass


class Beta:
    pass


class ApplicationGraph:
    pass


def test_provider_wrapped_back_edge_is_accepted(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    graph = unit.add_graph("AppGraph")
    unit.add_injectable(Alpha, dependencies=[Beta])
    unit.add_injectable(Beta, dependencies=[Provider[Alpha]])
    graph.add_accessor(Alpha)

    result = engine.resolve(unit)

    assert result.succeeded
    plan = result.plan_for("AppGraph")
    assert plan is not None
    assert plan.construction_order == (BindingKey.of(Beta), BindingKey.of(Alpha))
    assert plan.delegates == (BindingKey.of(Alpha),)
    assert [step.action for step in plan.initialization] == [
        InitializationAction.ALLOCATE_DELEGATE,
        InitializationAction.CONSTRUCT,
        InitializationAction.CONSTRUCT,
        InitializationAction.RESOLVE_DELEGATE,
    ]
    assert plan.slot_for(BindingKey.of(Alpha)) is not None


def test_direct_cycle_skips_graph_and_reports_both_members(
    unit: CompilationUnit,
    engine: ResolutionEngine,
    reporter: CollectingReporter,
) -> None:
    graph = unit.add_graph("AppGraph")
    unit.add_injectable(Alpha, dependencies=[Beta])
    unit.add_injectable(Beta, dependencies=[Alpha])
    graph.add_accessor(Alpha)

    result = engine.resolve(unit)

    assert result.plans == ()
    assert result.failed_graphs == ("AppGraph",)
    [diagnostic] = reporter.diagnostics
    assert diagnostic.error_type is WirePlanDependencyCycleError
    assert str(BindingKey.of(Alpha)) in diagnostic.message
    assert str(BindingKey.of(Beta)) in diagnostic.message
    assert result.diagnostics == (diagnostic,)


def test_deferrable_cycle_is_broken_by_engine(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    graph = unit.add_graph("AppGraph")
    unit.add_injectable(Alpha, dependencies=[Beta])
    unit.add_injectable(Beta, dependencies=[Dependency.of(Alpha, allow_deferral=True)])
    graph.add_accessor(Alpha)

    result = engine.resolve(unit)

    plan = result.plan_for("AppGraph")
    assert plan is not None
    [edge] = plan.deferred_edges
    assert (edge.consumer, edge.dependency) == (BindingKey.of(Beta), BindingKey.of(Alpha))
    assert plan.delegates == (BindingKey.of(Alpha),)


def test_failed_graph_does_not_stop_other_graphs(
    unit: CompilationUnit,
    engine: ResolutionEngine,
    reporter: CollectingReporter,
) -> None:
    broken = unit.add_graph("BrokenGraph")
    broken.add_provider(int)
    broken.add_provider(int)
    broken.add_accessor(Annotated[int, Named("cache-size")])
    healthy = unit.add_graph("HealthyGraph")
    healthy.add_instance(Database)
    healthy.add_accessor(Database)

    result = engine.resolve(unit)

    assert result.failed_graphs == ("BrokenGraph",)
    assert [plan.graph_name for plan in result.plans] == ["HealthyGraph"]
    assert reporter.codes() == ["wireplan/DuplicateBinding", "wireplan/MissingBinding"]
    assert not result.succeeded


def test_fail_fast_stops_after_first_failed_graph(
    unit: CompilationUnit,
    reporter: CollectingReporter,
) -> None:
    broken = unit.add_graph("BrokenGraph")
    broken.add_accessor(Database)
    healthy = unit.add_graph("HealthyGraph")
    healthy.add_instance(Database)
    healthy.add_accessor(Database)

    result = ResolutionEngine(options=EngineOptions(fail_fast=True), reporter=reporter).resolve(
        unit,
    )

    assert result.failed_graphs == ("BrokenGraph",)
    assert result.plans == ()


def test_nested_graph_reads_scoped_binding_from_root(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    request = unit.add_graph("RequestGraph", parent="AppGraph", scopes=[REQUEST])
    unit.add_injectable(Handler, dependencies=[Database])
    request.add_accessor(Handler)

    result = engine.resolve(unit)

    assert [plan.graph_name for plan in result.plans] == ["AppGraph", "RequestGraph"]
    app_plan = result.plan_for("AppGraph")
    request_plan = result.plan_for("RequestGraph")
    assert app_plan is not None
    assert request_plan is not None

    slot = app_plan.slot_for(BindingKey.of(Database))
    assert slot is not None
    assert slot.name == "database_provider"
    assert slot.owner == "AppGraph"
    assert app_plan.exposed_keys == (BindingKey.of(Database),)
    assert request_plan.used_keys == {
        BindingKey.of(Database): FieldAccess(slot=slot, receiver="AppGraph"),
    }
    assert request_plan.bindings[BindingKey.of(Database)].kind is BindingKind.PARENT_FIELD
    assert request_plan.construction_order == (BindingKey.of(Database), BindingKey.of(Handler))
    assert request_plan.slots == ()


def test_nested_graph_without_request_uses_no_parent_keys(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    app.add_accessor(Database)
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    request.add_instance(Handler)
    request.add_accessor(Handler)

    result = engine.resolve(unit)

    request_plan = result.plan_for("RequestGraph")
    assert request_plan is not None
    assert request_plan.used_keys == {}


def test_scoped_injectable_lands_on_graph_declaring_its_scope(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    unit.add_graph("AppGraph", scopes=[APP])
    unit.add_injectable(Session, scope=APP)
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    unit.add_injectable(Handler, dependencies=[Session])
    request.add_accessor(Handler)

    result = engine.resolve(unit)

    assert result.succeeded
    app_plan = result.plan_for("AppGraph")
    request_plan = result.plan_for("RequestGraph")
    assert app_plan is not None
    assert request_plan is not None
    assert app_plan.bindings[BindingKey.of(Session)].kind is BindingKind.CONSTRUCTOR
    assert app_plan.slot_for(BindingKey.of(Session)) is not None
    assert BindingKey.of(Session) in request_plan.used_keys


def test_nearest_graph_owns_redeclared_binding(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    app.add_accessor(Database)
    tenant = unit.add_graph("TenantGraph", parent="AppGraph", scopes=[APP])
    tenant.add_provider(Database, scope=APP)
    tenant.add_accessor(Database)
    request = unit.add_graph("RequestGraph", parent="TenantGraph")
    unit.add_injectable(Handler, dependencies=[Database])
    request.add_accessor(Handler)

    result = engine.resolve(unit)

    request_plan = result.plan_for("RequestGraph")
    assert request_plan is not None
    assert request_plan.used_keys[BindingKey.of(Database)].receiver == "TenantGraph"


def test_nested_graph_contributions_extend_parent_collection(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph")
    app.add_into_set(int)
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    request.add_into_set(int)
    request.add_accessor(set[int])

    result = engine.resolve(unit)

    request_plan = result.plan_for("RequestGraph")
    assert request_plan is not None
    aggregate = request_plan.bindings[BindingKey.of(set[int])]
    assert aggregate.kind is BindingKind.MULTIBINDING
    assert len(aggregate.dependencies) == 2
    kinds = {request_plan.bindings[dependency.key].kind for dependency in aggregate.dependencies}
    assert kinds == {BindingKind.PARENT_FIELD, BindingKind.PROVIDER}


def test_unused_bindings_are_shrunk_unless_disabled(unit: CompilationUnit) -> None:
    graph = unit.add_graph("AppGraph")
    graph.add_instance(Database)
    graph.add_instance(Session)
    graph.add_accessor(Database)

    shrunk = ResolutionEngine(reporter=CollectingReporter()).resolve(unit)
    full = ResolutionEngine(
        options=EngineOptions(shrink_unused_bindings=False),
        reporter=CollectingReporter(),
    ).resolve(unit)

    shrunk_plan = shrunk.plan_for("AppGraph")
    full_plan = full.plan_for("AppGraph")
    assert shrunk_plan is not None
    assert full_plan is not None
    assert BindingKey.of(Session) not in shrunk_plan.bindings
    assert BindingKey.of(Session) in full_plan.bindings


def test_repeated_runs_produce_identical_plans(unit: CompilationUnit) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    app.add_into_set(int)
    app.add_into_set(int)
    app.add_accessor(set[int])
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    unit.add_injectable(Alpha, dependencies=[Beta, Database])
    unit.add_injectable(Beta, dependencies=[Provider[Alpha]])
    request.add_accessor(Alpha)

    first = ResolutionEngine(reporter=CollectingReporter()).resolve(unit)
    second = ResolutionEngine(reporter=CollectingReporter()).resolve(unit)

    assert first.succeeded
    assert first.plans == second.plans


def test_internal_error_is_reported_and_aborts(
    unit: CompilationUnit,
    engine: ResolutionEngine,
    reporter: CollectingReporter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    graph = unit.add_graph("AppGraph")
    graph.add_instance(Database)
    graph.add_accessor(Database)

    def broken_order(self: ConstructionOrderLinearizer, graph: object) -> tuple[()]:
        msg = "Direct dependency cycle survived deferral planning"
        raise WirePlanInternalError(msg)

    monkeypatch.setattr(ConstructionOrderLinearizer, "order", broken_order)

    with pytest.raises(WirePlanInternalError, match="survived deferral planning"):
        engine.resolve(unit)

    [diagnostic] = reporter.diagnostics
    assert diagnostic.severity is Severity.INTERNAL
    assert diagnostic.graph == "AppGraph"


def test_default_reporter_logs_diagnostics(
    unit: CompilationUnit,
    caplog: pytest.LogCaptureFixture,
) -> None:
    graph = unit.add_graph("AppGraph")
    graph.add_accessor(Database)

    with caplog.at_level(logging.WARNING, logger="wireplan"):
        result = ResolutionEngine().resolve(unit)

    assert result.failed_graphs == ("AppGraph",)
    assert "[wireplan/MissingBinding] in graph 'AppGraph'" in caplog.text


def test_engine_logs_plan_summary(
    unit: CompilationUnit,
    engine: ResolutionEngine,
    caplog: pytest.LogCaptureFixture,
) -> None:
    graph = unit.add_graph("AppGraph")
    graph.add_instance(Database)
    graph.add_accessor(Database)

    with caplog.at_level(logging.INFO, logger="wireplan"):
        engine.resolve(unit)

    assert "Planned graph 'AppGraph': bindings=1 slots=1" in caplog.text


def test_nested_plans_are_dropped_when_parent_graph_fails(
    unit: CompilationUnit,
    engine: ResolutionEngine,
    reporter: CollectingReporter,
) -> None:
    root = unit.add_graph("AppGraph", scopes=[APP])
    root.add_provider(Database, scope=APP)
    root.add_provider(Session, dependencies=[Handler])
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    request.add_accessor(Database)
    other = unit.add_graph("OtherGraph")
    other.add_instance(Database)
    other.add_accessor(Database)

    result = engine.resolve(unit)

    assert result.plan_for("RequestGraph") is None
    assert result.failed_graphs == ("AppGraph", "RequestGraph")
    assert [plan.graph_name for plan in result.plans] == ["OtherGraph"]
    assert reporter.codes() == ["wireplan/MissingBinding"]


def test_unreachable_child_binding_reads_nothing_from_parent(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    request.add_provider(Alpha, dependencies=[Database])
    request.add_instance(Session)
    request.add_accessor(Session)

    result = engine.resolve(unit)

    assert result.succeeded
    app_plan = result.plan_for("AppGraph")
    request_plan = result.plan_for("RequestGraph")
    assert app_plan is not None
    assert request_plan is not None
    assert list(request_plan.bindings) == [BindingKey.of(Session)]
    assert request_plan.used_keys == {}
    assert app_plan.slots == ()
    assert app_plan.exposed_keys == ()


def test_slot_read_by_one_child_survives_unread_sibling(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    app = unit.add_graph("AppGraph", scopes=[APP])
    app.add_provider(Database, scope=APP)
    admin = unit.add_graph("AdminGraph", parent="AppGraph")
    admin.add_accessor(Database)
    request = unit.add_graph("RequestGraph", parent="AppGraph")
    request.add_provider(Alpha, dependencies=[Database])
    request.add_instance(Session)
    request.add_accessor(Session)

    result = engine.resolve(unit)

    app_plan = result.plan_for("AppGraph")
    admin_plan = result.plan_for("AdminGraph")
    request_plan = result.plan_for("RequestGraph")
    assert app_plan is not None
    assert admin_plan is not None
    assert request_plan is not None
    assert app_plan.exposed_keys == (BindingKey.of(Database),)
    assert BindingKey.of(Database) in admin_plan.used_keys
    assert request_plan.used_keys == {}


def test_graph_type_resolves_to_graph_self_reference(
    unit: CompilationUnit,
    engine: ResolutionEngine,
) -> None:
    graph = unit.add_graph("AppGraph", graph_type=ApplicationGraph)
    unit.add_injectable(Handler, dependencies=[ApplicationGraph])
    graph.add_accessor(Handler)

    result = engine.resolve(unit)

    assert result.succeeded
    plan = result.plan_for("AppGraph")
    assert plan is not None
    graph_key = BindingKey.of(ApplicationGraph)
    assert plan.bindings[graph_key].kind is BindingKind.GRAPH
    assert plan.construction_order == (graph_key, BindingKey.of(Handler))
    assert plan.slot_for(graph_key) is None
