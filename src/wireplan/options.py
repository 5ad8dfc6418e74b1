from __future__ import annotations

from dataclasses import dataclass

DEFAULT_SLOT_SUFFIX = "_provider"
DEFAULT_MAX_CYCLE_ENUMERATION = 1000


@dataclass(frozen=True, slots=True, kw_only=True)
class EngineOptions:
    """Configure a ``ResolutionEngine`` run.

    Examples:
        .. code-block:: python

            engine = ResolutionEngine(options=EngineOptions(shrink_unused_bindings=False))

    """

    shrink_unused_bindings: bool = True
    """Drop bindings unreachable from accessors and nested graphs after validation."""

    slot_suffix: str = DEFAULT_SLOT_SUFFIX
    """Suffix appended to generated storage slot names."""

    max_cycle_enumeration: int = DEFAULT_MAX_CYCLE_ENUMERATION
    """Cap on cycles enumerated per component when choosing edges to defer."""

    report_similar_bindings: bool = True
    """List bindings with a similar key in missing-binding errors."""

    dump_graphs: bool = False
    """Log every built binding graph at DEBUG level."""

    fail_fast: bool = False
    """Stop after the first graph with recoverable errors."""
