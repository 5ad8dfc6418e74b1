from __future__ import annotations

import collections.abc
import types
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Annotated, Any, ForwardRef, Literal, Union, get_args, get_origin

from wireplan._internal.markers import (
    MultibindingElement,
    Named,
    Provider,
    is_annotated,
    is_wrapper_annotation,
    split_qualifier,
)
from wireplan.exceptions import WirePlanDeclarationError

if TYPE_CHECKING:
    from typing_extensions import Self

_UNION_ORIGINS: tuple[Any, ...] = (Union, types.UnionType)
_NONE_TYPE = type(None)
_MARKERS_MODULE = Provider.__module__


@dataclass(frozen=True, slots=True)
class BindingKey:
    """Canonical identity of a requested or provided value.

    A key is a type plus an optional qualifier. Equivalent spellings of a type
    (``typing.List[int]`` and ``list[int]``, ``Optional[int]`` and
    ``int | None``) produce equal keys. Keys sort by their rendered form so
    every collection derived from them can be ordered deterministically.
    """

    type: Any
    """Canonical type or opaque front-end type name."""

    qualifier: Any = None
    """``Named`` qualifier, contribution qualifier, or ``None``."""

    _rendered: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if is_annotated(self.type):
            msg = (
                f"Binding key type {self.type!r} is an Annotated form; "
                "use BindingKey.of() to extract its qualifier."
            )
            raise WirePlanDeclarationError(msg)
        if is_wrapper_annotation(self.type):
            msg = (
                f"Type {self.type!r} is a dependency wrapper; Provider[T] and Lazy[T] "
                "are only valid in dependency declarations."
            )
            raise WirePlanDeclarationError(msg)
        object.__setattr__(self, "type", canonicalize_type(self.type))
        rendered = render_type(self.type)
        if self.qualifier is not None:
            rendered = f"{render_qualifier(self.qualifier)} {rendered}"
        object.__setattr__(self, "_rendered", rendered)

    @classmethod
    def of(cls, annotation: Any) -> BindingKey:
        """Build a key from an annotation such as ``Annotated[T, Named("x")]``.

        Args:
            annotation: Type annotation, optionally qualified.

        """
        if isinstance(annotation, BindingKey):
            return annotation
        base, qualifier = split_qualifier(annotation)
        return cls(type=base, qualifier=qualifier)

    def with_qualifier(self, qualifier: Any) -> Self:
        return replace(self, qualifier=qualifier)

    def unqualified(self) -> Self:
        return replace(self, qualifier=None)

    def render(self) -> str:
        return self._rendered

    def type_name(self) -> str:
        return render_type(self.type)

    def __lt__(self, other: BindingKey) -> bool:
        if not isinstance(other, BindingKey):
            return NotImplemented
        return self._rendered < other._rendered

    def __str__(self) -> str:
        return self._rendered


def canonicalize_type(value: Any) -> Any:
    """Normalize a type annotation so equivalent spellings compare equal.

    Args:
        value: Type annotation to normalize.

    """
    if isinstance(value, str):
        return value
    if value is None:
        return _NONE_TYPE
    if is_annotated(value):
        base, *metadata = get_args(value)
        return Annotated.__class_getitem__((canonicalize_type(base), *metadata))  # type: ignore[attr-defined]

    origin = get_origin(value)
    if origin is None:
        return value
    if origin in _UNION_ORIGINS:
        members = {canonicalize_type(argument) for argument in get_args(value)}
        ordered = tuple(sorted(members, key=render_type))
        return Union[ordered]  # noqa: UP007
    if origin is Literal:
        return value

    arguments = tuple(_canonicalize_argument(argument) for argument in get_args(value))
    return _rebuild_alias(origin=origin, args=arguments, fallback=value)


def _canonicalize_argument(argument: Any) -> Any:
    if isinstance(argument, list):
        return [canonicalize_type(item) for item in argument]
    if argument is Ellipsis:
        return argument
    return canonicalize_type(argument)


def _rebuild_alias(*, origin: Any, args: tuple[Any, ...], fallback: Any) -> Any:
    try:
        if len(args) == 1:
            return origin[args[0]]
        return origin[args]
    except TypeError:
        return fallback


def render_type(value: Any) -> str:
    """Render a canonical type into a stable, readable name.

    Args:
        value: Canonical type produced by ``canonicalize_type``.

    """
    if isinstance(value, str):
        return value
    if value is None or value is _NONE_TYPE:
        return "None"
    if value is Ellipsis:
        return "..."
    if isinstance(value, ForwardRef):
        return value.__forward_arg__
    if isinstance(value, list):
        return "[" + ", ".join(render_type(item) for item in value) + "]"

    origin = get_origin(value)
    if origin is None:
        return _render_class(value)
    arguments = get_args(value)
    if origin in _UNION_ORIGINS:
        return " | ".join(render_type(argument) for argument in arguments)
    if origin is Literal:
        return "Literal[" + ", ".join(repr(argument) for argument in arguments) + "]"
    if origin is Annotated:
        base, *metadata = arguments
        return "Annotated[" + ", ".join([render_type(base), *map(repr, metadata)]) + "]"
    if origin is collections.abc.Callable and len(arguments) == 2:  # noqa: PLR2004
        parameters, result = arguments
        return f"{_render_class(origin)}[{render_type(parameters)}, {render_type(result)}]"
    return _render_class(origin) + "[" + ", ".join(render_type(a) for a in arguments) + "]"


def _render_class(value: Any) -> str:
    qualname = getattr(value, "__qualname__", None)
    if qualname is None:
        return repr(value)
    module = getattr(value, "__module__", None)
    if module in {None, "builtins", _MARKERS_MODULE}:
        return qualname
    return f"{module}.{qualname}"


def render_qualifier(qualifier: Any) -> str:
    if isinstance(qualifier, Named):
        return f"@Named({qualifier.value!r})"
    if isinstance(qualifier, MultibindingElement):
        return f"@Element({qualifier.collection}#{qualifier.index})"
    return f"@{qualifier!r}"
