import pytest

from lexer import Lexer, scan_string_literal


def tokens(text):
    return Lexer(text).tokenize()


@pytest.mark.parametrize(
    "source, expected",
    [
        ("1 2 add", ["1", "2", "add"]),
        ("  1   2  ", ["1", "2"]),
        ("1\n2\tadd\r", ["1", "2", "add"]),
        ("1　2", ["1", "2"]),
        ("", []),
        ("[1 (a b) 2]", ["[1 (a b) 2]"]),
        ("(hello world) println", ["(hello world)", "println"]),
        ("((a b) c)", ["((a b) c)"]),
        ("[1 [2 3]] len", ["[1 [2 3]]", "len"]),
        ("{1, 2; 3, 4} transpose", ["{1, 2; 3, 4}", "transpose"]),
        ("#a comment# 1", ["#a comment#", "1"]),
        ("(a [b) c", ["(a [b)", "c"]),
    ],
)
def test_tokenize(source, expected):
    assert tokens(source) == expected


def test_comment_hides_brackets():
    assert tokens("#( [# 1") == ["#( [#", "1"]


def test_braces_inside_string_do_not_nest():
    assert tokens("({) 1") == ["({)", "1"]


def test_escaped_space_joins_token():
    assert tokens(r"a\ b c") == ["a b", "c"]


def test_top_level_escapes_stay_encoded():
    assert tokens(r"a\nb") == ["a\\nb"]
    assert tokens(r"a\tb") == ["a\\tb"]
    assert tokens(r"\(x") == ["(x"]


def test_nested_escape_keeps_backslash():
    assert tokens(r"(a\)b)") == [r"(a\)b)"]


def test_scan_string_literal():
    assert scan_string_literal("hello world") == "hello world"
    assert scan_string_literal(r"a\)b") == "a)b"
    assert scan_string_literal("x (y z) [1 2]") == "x (y z) [1 2]"
    assert scan_string_literal(r"line\nbreak") == "line\\nbreak"
