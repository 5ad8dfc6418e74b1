"""Shared pytest fixtures for wireplan tests."""

import pytest

from wireplan.declarations import CompilationUnit
from wireplan.diagnostics import CollectingReporter
from wireplan.engine import ResolutionEngine


@pytest.fixture()
def unit() -> CompilationUnit:
    """Empty compilation unit."""
    return CompilationUnit()


@pytest.fixture()
def reporter() -> CollectingReporter:
    """Reporter that keeps diagnostics in memory."""
    return CollectingReporter()


@pytest.fixture()
def engine(reporter: CollectingReporter) -> ResolutionEngine:
    """Engine reporting into the collecting reporter."""
    return ResolutionEngine(reporter=reporter)
