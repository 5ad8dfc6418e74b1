from __future__ import annotations

from wireplan._internal.markers import Lazy, Named, Provider, Scope

__all__ = [
    "Lazy",
    "Named",
    "Provider",
    "Scope",
]
