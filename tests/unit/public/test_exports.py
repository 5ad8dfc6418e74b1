from __future__ import annotations

import pytest

import wireplan
import wireplan.exceptions as wireplan_exceptions
from wireplan.diagnostics import Diagnostic, Severity


def test_all_names_are_importable() -> None:
    missing = [name for name in wireplan.__all__ if not hasattr(wireplan, name)]

    assert missing == []
    assert wireplan.__all__ == sorted(wireplan.__all__)


@pytest.mark.parametrize(
    "error_type",
    [
        wireplan_exceptions.WirePlanDuplicateBindingError,
        wireplan_exceptions.WirePlanMissingBindingError,
        wireplan_exceptions.WirePlanDuplicateMapKeyError,
        wireplan_exceptions.WirePlanEmptyMultibindingError,
        wireplan_exceptions.WirePlanScopeMismatchError,
    ],
)
def test_declaration_errors_share_base_class(error_type: type[Exception]) -> None:
    assert issubclass(error_type, wireplan_exceptions.WirePlanDeclarationError)
    assert issubclass(error_type, wireplan_exceptions.WirePlanError)


def test_graph_and_internal_errors_are_not_declaration_errors() -> None:
    for error_type in (
        wireplan_exceptions.WirePlanDependencyCycleError,
        wireplan_exceptions.WirePlanInternalError,
        wireplan_exceptions.WirePlanAbortProcessing,
    ):
        assert issubclass(error_type, wireplan_exceptions.WirePlanError)
        assert not issubclass(error_type, wireplan_exceptions.WirePlanDeclarationError)


def test_diagnostic_format_includes_code_graph_and_origin() -> None:
    diagnostic = Diagnostic(
        severity=Severity.ERROR,
        error_type=wireplan_exceptions.WirePlanDuplicateMapKeyError,
        message="Map multibinding has duplicate key 'a'.",
        graph="AppGraph",
        origin="plugins.py:3",
    )

    assert diagnostic.code == "wireplan/DuplicateMapKey"
    assert diagnostic.format() == (
        "[wireplan/DuplicateMapKey] in graph 'AppGraph': Map multibinding has duplicate "
        "key 'a'.\n  declared at plugins.py:3"
    )
