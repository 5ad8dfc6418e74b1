from wireplan._internal.bindings import (
    Binding,
    BindingKind,
    Dependency,
    FieldAccess,
    Indirection,
    StorageSlot,
)
from wireplan._internal.cycles import DeferredEdge
from wireplan._internal.keys import BindingKey
from wireplan._internal.plan import (
    DelegateState,
    GraphPlan,
    InitializationAction,
    InitializationStep,
)
from wireplan.declarations import CompilationUnit, GraphDeclaration, MultibindsDeclaration
from wireplan.diagnostics import CollectingReporter, Diagnostic, LoggingReporter, Severity
from wireplan.engine import ResolutionEngine, ResolutionResult
from wireplan.exceptions import (
    WirePlanAbortProcessing,
    WirePlanDeclarationError,
    WirePlanDependencyCycleError,
    WirePlanDuplicateBindingError,
    WirePlanDuplicateMapKeyError,
    WirePlanEmptyMultibindingError,
    WirePlanError,
    WirePlanInternalError,
    WirePlanMissingBindingError,
    WirePlanScopeMismatchError,
)
from wireplan.markers import Lazy, Named, Provider, Scope
from wireplan.options import EngineOptions

__all__ = [
    "Binding",
    "BindingKey",
    "BindingKind",
    "CollectingReporter",
    "CompilationUnit",
    "DeferredEdge",
    "DelegateState",
    "Dependency",
    "Diagnostic",
    "EngineOptions",
    "FieldAccess",
    "GraphDeclaration",
    "GraphPlan",
    "Indirection",
    "InitializationAction",
    "InitializationStep",
    "Lazy",
    "LoggingReporter",
    "MultibindsDeclaration",
    "Named",
    "Provider",
    "ResolutionEngine",
    "ResolutionResult",
    "Scope",
    "Severity",
    "StorageSlot",
    "WirePlanAbortProcessing",
    "WirePlanDeclarationError",
    "WirePlanDependencyCycleError",
    "WirePlanDuplicateBindingError",
    "WirePlanDuplicateMapKeyError",
    "WirePlanEmptyMultibindingError",
    "WirePlanError",
    "WirePlanInternalError",
    "WirePlanMissingBindingError",
    "WirePlanScopeMismatchError",
]
