from __future__ import annotations

import re
from typing import Annotated, List, Optional, Union

import pytest

from wireplan._internal.keys import BindingKey, canonicalize_type, render_type
from wireplan.exceptions import WirePlanDeclarationError
from wireplan.markers import Lazy, Named, Provider


class HttpClient:
    pass


def test_typing_alias_and_builtin_generic_produce_equal_keys() -> None:
    assert BindingKey.of(List[int]) == BindingKey.of(list[int])  # noqa: UP006
    assert hash(BindingKey.of(List[int])) == hash(BindingKey.of(list[int]))  # noqa: UP006


def test_optional_and_pipe_union_produce_equal_keys() -> None:
    assert BindingKey.of(Optional[int]) == BindingKey.of(int | None)  # noqa: UP007


def test_union_member_order_does_not_change_key() -> None:
    assert BindingKey.of(Union[int, str]) == BindingKey.of(Union[str, int])  # noqa: UP007
    assert render_type(canonicalize_type(str | int)) == "int | str"


def test_qualifier_distinguishes_keys_of_same_type() -> None:
    plain = BindingKey.of(int)
    named = BindingKey.of(Annotated[int, Named("cache-size")])

    assert plain != named
    assert named.qualifier == Named("cache-size")
    assert named.unqualified() == plain
    assert plain.with_qualifier(Named("cache-size")) == named


def test_render_places_qualifier_before_type() -> None:
    key = BindingKey.of(Annotated[int, Named("cache-size")])

    assert str(key) == "@Named('cache-size') int"


def test_render_uses_module_qualified_class_names() -> None:
    key = BindingKey.of(HttpClient)

    assert key.render() == f"{__name__}.HttpClient"
    assert key.type_name() == f"{__name__}.HttpClient"


def test_keys_sort_by_rendered_form() -> None:
    keys = [BindingKey.of(str), BindingKey.of(bytes), BindingKey.of(int)]

    assert [str(key) for key in sorted(keys)] == ["bytes", "int", "str"]


def test_metadata_other_than_qualifiers_is_ignored() -> None:
    assert BindingKey.of(Annotated[int, "docs"]) == BindingKey.of(int)


def test_two_qualifiers_are_rejected() -> None:
    with pytest.raises(WirePlanDeclarationError, match="carries 2 qualifiers"):
        BindingKey.of(Annotated[int, Named("a"), Named("b")])


def test_wrapper_types_are_rejected_as_keys() -> None:
    with pytest.raises(WirePlanDeclarationError, match="dependency wrapper"):
        BindingKey.of(Provider[int])
    with pytest.raises(WirePlanDeclarationError, match="dependency wrapper"):
        BindingKey.of(Lazy[int])


def test_annotated_type_passed_directly_is_rejected() -> None:
    with pytest.raises(WirePlanDeclarationError, match=re.escape("BindingKey.of()")):
        BindingKey(type=Annotated[int, Named("x")])


def test_wrapper_nested_in_map_value_is_a_valid_key() -> None:
    key = BindingKey.of(dict[str, Provider[int]])

    assert str(key) == "dict[str, Provider[int]]"


def test_opaque_type_names_pass_through() -> None:
    key = BindingKey(type="com.example.Repository")

    assert str(key) == "com.example.Repository"
    assert key == BindingKey(type="com.example.Repository")
