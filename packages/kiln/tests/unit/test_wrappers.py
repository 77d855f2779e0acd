"""Unit tests for module wrappers."""

from __future__ import annotations

import pytest

from kiln.config import WrapperKind
from kiln.wrappers import (
    Wrapped,
    amd_wrapper,
    commonjs_wrapper,
    get_wrapper,
    module_name,
    no_wrapper,
    split_wrapped,
)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("app/main.js", "main"),
        ("app/views/home.coffee", "views/home"),
        ("lib\\util.js", "lib/util"),
    ],
)
def test_module_name(path: str, expected: str) -> None:
    assert module_name(path) == expected


class TestWrappers:
    """Tests for the built-in wrappers."""

    def test_commonjs(self) -> None:
        wrapped = commonjs_wrapper("app/views/home.js", "x;", True)
        assert wrapped.to_string() == (
            'require.register("views/home", function(exports, require, module) {\nx;\n});\n\n'
        )
        assert wrapped.data == "x;"

    def test_amd(self) -> None:
        wrapped = amd_wrapper("app/main.js", "x;", True)
        assert wrapped.prefix.startswith('define("main", ["require", "exports", "module"]')
        assert wrapped.suffix == "\n});\n\n"

    @pytest.mark.parametrize("wrapper", [commonjs_wrapper, amd_wrapper, no_wrapper])
    def test_non_modules_pass_through(self, wrapper) -> None:
        wrapped = wrapper("vendor/jquery.js", "jQuery;", False)
        assert wrapped == Wrapped("", "", "jQuery;", is_module=False)

    def test_get_wrapper(self) -> None:
        assert get_wrapper(WrapperKind.AMD) is amd_wrapper
        assert get_wrapper("none") is no_wrapper

    def test_get_wrapper_unknown(self) -> None:
        with pytest.raises(ValueError):
            get_wrapper("umd")


class TestSplitWrapped:
    """Tests for split_wrapped()."""

    def test_wrapped_passes_through(self) -> None:
        wrapped = Wrapped("a", "b", "x")
        assert split_wrapped("x", wrapped) is wrapped

    def test_string_is_split_around_compiled(self) -> None:
        parts = split_wrapped("x;", "(function(){x;})();")
        assert (parts.prefix, parts.data, parts.suffix) == ("(function(){", "x;", "})();")

    def test_compiled_at_start_is_not_duplicated(self) -> None:
        parts = split_wrapped("x;", "x;//# end")
        assert parts.to_string() == "x;//# end"
        assert parts.prefix == ""

    def test_string_without_compiled_becomes_body(self) -> None:
        parts = split_wrapped("x;", "replaced();")
        assert parts == Wrapped("", "", "replaced();")
