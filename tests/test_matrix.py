from fractions import Fraction

import pytest

from values import Matrix, error, string


def mat(rows, cols, *values):
    return Matrix(rows=rows, cols=cols, data=tuple(Fraction(v) for v in values))


def top_matrix(stack):
    assert stack[-1].type == "matrix", stack[-1]
    return stack[-1].value


def test_display(run):
    assert run("{1, 2; 3, 4}")[-1].to_str() == "{ 1, 2; 3, 4 }"


def test_scalar_mul(run):
    assert top_matrix(run("{1, 2; 3, 4} 1/2 scalar-mul")) == mat(2, 2, Fraction(1, 2), 1, Fraction(3, 2), 2)


def test_add_and_sub(run):
    assert top_matrix(run("{1, 2; 3, 4} {1, 1; 1, 1} add-matrix")) == mat(2, 2, 2, 3, 4, 5)
    assert top_matrix(run("pop {1, 2; 3, 4} {1, 1; 1, 1} sub-matrix")) == mat(2, 2, 0, 1, 2, 3)


def test_mul(run):
    assert top_matrix(run("{1, 2; 3, 4} {1, 0; 0, 1} mul-matrix")) == mat(2, 2, 1, 2, 3, 4)
    assert top_matrix(run("pop {1, 2} {3; 4} mul-matrix")) == mat(1, 1, 11)
    assert top_matrix(run("pop {1; 2} {3, 4} mul-matrix")) == mat(2, 2, 3, 4, 6, 8)


def test_transpose(run):
    assert top_matrix(run("{1, 2, 3; 4, 5, 6} transpose")) == mat(3, 2, 1, 4, 2, 5, 3, 6)


def test_inverse(run):
    assert top_matrix(run("{2, 0; 0, 4} inverse")) == mat(2, 2, Fraction(1, 2), 0, 0, Fraction(1, 4))
    assert top_matrix(run("pop {1, 2; 3, 4} inverse")) == mat(2, 2, -2, 1, Fraction(3, 2), Fraction(-1, 2))


@pytest.mark.parametrize("code", ["{1, 2; 2, 4} inverse", "{1, 2, 3; 4, 5, 6} inverse"])
def test_no_inverse(run, code):
    assert run(code) == [error("no-inverse")]


def test_sim_equation(run):
    # x + y = 3, x - y = 1
    assert top_matrix(run("[3 1] {1, 1; 1, -1} sim-equation")) == mat(2, 1, 2, 1)


@pytest.mark.parametrize("code", ["[1 2] {1, 2; 2, 4} sim-equation", "[1 2 3] {1, 0; 0, 1} sim-equation"])
def test_no_solution(run, code):
    assert run(code) == [error("no-solution")]


@pytest.mark.parametrize(
    "code, tag",
    [
        ("{1, 2} {1, 2; 3, 4} add-matrix", "matrix-shape"),
        ("{1, 2} {1, 2} mul-matrix", "matrix-shape"),
        ("1 2 add-matrix", "not-matrix"),
        ("(a) transpose", "not-matrix"),
        ("[1 2] 2 scalar-mul", "not-matrix"),
    ],
)
def test_matrix_failures(run, code, tag):
    assert run(code) == [error(tag)]


def test_graph(run):
    (dot,) = run("{0, 1, 0; 0, 0, 1; 1, 0, 0} graph")
    text = dot.to_str()
    assert text.startswith("digraph {")
    assert '    2 [ label = "2" ]' in text
    for edge in ("0 -> 1", "1 -> 2", "2 -> 0"):
        assert edge in text
    assert "0 -> 2" not in text


def test_bar_chart(run, output):
    assert run("[1 2 -1] bar-chart") == []
    (chart,) = output
    lines = chart.splitlines()
    assert lines[0] == "Bar Chart - NumStack"
    assert lines[2].count("#") == 40
    assert "=" in lines[3]


def test_line_chart(run, output):
    run("[0 5 10] line-chart")
    (chart,) = output
    lines = chart.splitlines()
    assert lines[0] == "Line Chart - NumStack"
    assert lines[1].endswith("  *")
    assert lines[10].endswith("*  ")


def test_empty_chart(run, output):
    run("[] bar-chart")
    assert output == ["Bar Chart - NumStack\n(no data)\n"]


def test_graph_text_is_a_plain_string(run):
    assert run("{} graph") == [string("digraph {\n}\n")]
