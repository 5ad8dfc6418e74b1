from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from wireplan._internal.keys import BindingKey
from wireplan.exceptions import WirePlanAbortProcessing, WirePlanError, WirePlanInternalError

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Classify a diagnostic by how the engine recovers from it."""

    ERROR = "error"
    """A declaration or graph error; the graph is skipped."""

    INTERNAL = "internal"
    """A broken engine invariant; the compilation is aborted."""


@dataclass(frozen=True, slots=True, kw_only=True)
class Diagnostic:
    """One problem found while resolving a compilation unit."""

    severity: Severity
    error_type: type[WirePlanError]
    message: str
    graph: str | None = None
    key: BindingKey | None = None
    origin: str | None = None
    """Declaration site of the offending binding."""

    @property
    def code(self) -> str:
        name = self.error_type.__name__.removeprefix("WirePlan").removesuffix("Error")
        return f"wireplan/{name}"

    def format(self) -> str:
        location = f" in graph '{self.graph}'" if self.graph else ""
        site = f"\n  declared at {self.origin}" if self.origin else ""
        return f"[{self.code}]{location}: {self.message}{site}"


class DiagnosticReporter(Protocol):
    """Receive diagnostics from the engine."""

    def report(self, diagnostic: Diagnostic) -> None: ...


@dataclass
class CollectingReporter:
    """Keep every reported diagnostic in memory."""

    diagnostics: list[Diagnostic] = field(default_factory=list)

    def report(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)

    def codes(self) -> list[str]:
        return [diagnostic.code for diagnostic in self.diagnostics]


class LoggingReporter:
    """Write diagnostics to the ``wireplan.diagnostics`` logger."""

    def report(self, diagnostic: Diagnostic) -> None:
        if diagnostic.severity is Severity.INTERNAL:
            logger.error("%s", diagnostic.format())
        else:
            logger.warning("%s", diagnostic.format())


class ErrorCollector:
    """Collect recoverable errors found while processing one graph.

    With a reporter attached, every error is forwarded as it is found and
    ``raise_if_errors`` raises ``WirePlanAbortProcessing``. Without one, the
    concrete error type of the first error is raised with every message.
    """

    def __init__(self, *, reporter: DiagnosticReporter | None, graph: str | None) -> None:
        self._reporter = reporter
        self._graph = graph
        self.diagnostics: list[Diagnostic] = []

    def error(
        self,
        error_type: type[WirePlanError],
        message: str,
        *,
        key: BindingKey | None = None,
        origin: str | None = None,
    ) -> None:
        diagnostic = Diagnostic(
            severity=Severity.ERROR,
            error_type=error_type,
            message=message,
            graph=self._graph,
            key=key,
            origin=origin,
        )
        self.diagnostics.append(diagnostic)
        if self._reporter is not None:
            self._reporter.report(diagnostic)

    def raise_if_errors(self) -> None:
        if not self.diagnostics:
            return
        if self._reporter is not None:
            msg = (
                f"{len(self.diagnostics)} error(s) reported for graph "
                f"'{self._graph}'; skipping it."
            )
            raise WirePlanAbortProcessing(msg)
        first = self.diagnostics[0]
        msg = "\n".join(diagnostic.format() for diagnostic in self.diagnostics)
        raise first.error_type(msg)


def report_internal_error(
    reporter: DiagnosticReporter | None,
    error: WirePlanInternalError,
    *,
    graph: str | None,
) -> None:
    if reporter is None:
        return
    reporter.report(
        Diagnostic(
            severity=Severity.INTERNAL,
            error_type=type(error),
            message=str(error),
            graph=graph,
        ),
    )
