from __future__ import annotations

import keyword
import re

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_INVALID_IDENTIFIER_CHARS = re.compile(r"\W+")


class NameAllocator:
    """Hand out identifiers that are unique within one generated class."""

    def __init__(self, *, reserved: tuple[str, ...] = ()) -> None:
        self._allocated: set[str] = set(reserved)

    def new_name(self, suggestion: str) -> str:
        """Allocate ``suggestion`` or the first free ``suggestion_N`` variant.

        Args:
            suggestion: Preferred identifier; sanitized into a valid one.

        """
        base = sanitize_identifier(suggestion)
        name = base
        counter = 2
        while name in self._allocated:
            name = f"{base}_{counter}"
            counter += 1
        self._allocated.add(name)
        return name

    def release(self, name: str) -> None:
        self._allocated.discard(name)

    def __contains__(self, name: object) -> bool:
        return name in self._allocated


def sanitize_identifier(value: str) -> str:
    name = _INVALID_IDENTIFIER_CHARS.sub("_", value).strip("_") or "slot"
    if name[0].isdigit():
        name = f"_{name}"
    if keyword.iskeyword(name):
        name = f"{name}_"
    return name


def snake_case(value: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", value).lower()


def slot_name_for(type_name: str, *, suffix: str) -> str:
    """Derive a storage slot name from a rendered type name.

    ``app.services.HttpClient`` becomes ``http_client`` plus ``suffix`` unless
    the name already ends with it.

    Args:
        type_name: Rendered type name of the key.
        suffix: Slot suffix such as ``_provider``.

    """
    simple = type_name.split("[", 1)[0].rsplit(".", 1)[-1]
    name = snake_case(sanitize_identifier(simple))
    if suffix and not name.endswith(suffix):
        name = f"{name}{suffix}"
    return name
