from __future__ import annotations

from typing import Annotated, Any, Generic, NamedTuple, TypeVar, get_args, get_origin

from wireplan.exceptions import WirePlanDeclarationError

T = TypeVar("T")
_ANNOTATED_MARKER_MIN_ARGS = 2


class Named(NamedTuple):
    """Qualify a binding key so several bindings of one type can coexist.

    Attach ``Named`` metadata to ``typing.Annotated``; keys with different
    qualifiers are distinct.

    Examples:
        .. code-block:: python

            from typing import Annotated, TypeAlias

            CacheSize: TypeAlias = Annotated[int, Named("cache-size")]

    """

    value: Any


class Scope(NamedTuple):
    """Name a scope annotation.

    A scoped binding has at most one instance per graph level that declares
    the scope.
    """

    name: str


class MultibindingElement(NamedTuple):
    """Qualifier that gives every multibinding contribution a unique key."""

    collection: str
    index: int


class Provider(Generic[T]):
    """Mark a dependency obtained through a provider that defers construction.

    ``Provider[T]`` is only meaningful in dependency declarations; the consumer
    does not need the value until it invokes the provider.
    """


class Lazy(Generic[T]):
    """Mark a dependency obtained through a memoizing lazy wrapper."""


QUALIFIER_TYPES: tuple[type, ...] = (Named, MultibindingElement)


def is_annotated(annotation: Any) -> bool:
    return get_origin(annotation) is Annotated


def is_provider_annotation(annotation: Any) -> bool:
    return get_origin(annotation) is Provider


def is_lazy_annotation(annotation: Any) -> bool:
    return get_origin(annotation) is Lazy


def is_wrapper_annotation(annotation: Any) -> bool:
    return is_provider_annotation(annotation) or is_lazy_annotation(annotation)


def strip_wrapper_annotation(annotation: Any) -> Any:
    """Return the wrapped type of ``Provider[T]`` or ``Lazy[T]``.

    Args:
        annotation: A ``Provider`` or ``Lazy`` annotation.

    """
    args = get_args(annotation)
    if len(args) != 1:
        msg = f"Dependency wrapper {annotation!r} must have exactly one type argument."
        raise WirePlanDeclarationError(msg)
    return args[0]


def split_qualifier(annotation: Any) -> tuple[Any, Any | None]:
    """Split ``Annotated[T, Named(...)]`` into ``T`` and its qualifier.

    Metadata that is not a qualifier is ignored. Annotations without metadata
    are returned unchanged with no qualifier. Nested ``Annotated`` forms are
    already flattened by ``typing``.

    Args:
        annotation: The annotation to split.

    """
    if not is_annotated(annotation):
        return annotation, None

    args = get_args(annotation)
    if len(args) < _ANNOTATED_MARKER_MIN_ARGS:
        return annotation, None

    base, *metadata = args
    qualifiers = [item for item in metadata if isinstance(item, QUALIFIER_TYPES)]
    if len(qualifiers) > 1:
        msg = (
            f"Annotation {annotation!r} carries {len(qualifiers)} qualifiers; "
            "a binding key accepts at most one."
        )
        raise WirePlanDeclarationError(msg)
    return base, (qualifiers[0] if qualifiers else None)
