import pytest

from expr_ast import (
    Binary, Group, Identifier, Number, Unary,
    find_dependencies, match_value_shape, parse_macro_replacement, render_expr, tokenize,
)


def test_tokenize_keeps_number_spelling():
    kinds = [(t.kind, t.text) for t in tokenize("(1 << 11)")]
    assert kinds == [("paren", "("), ("number", "1"), ("op", "<<"), ("number", "11"), ("paren", ")")]


def test_tokenize_exponent_is_one_token():
    assert [t.text for t in tokenize("-1E-10")] == ["-", "1E-10"]


def test_precedence_follows_c():
    expr = parse_macro_replacement("A | B & C")
    assert isinstance(expr, Binary)
    assert expr.op == "|"
    assert isinstance(expr.right, Binary) and expr.right.op == "&"


def test_shift_binds_looser_than_addition():
    expr = parse_macro_replacement("1 << 2 + 3")
    assert expr.op == "<<"
    assert expr.right == Binary(Number("2"), "+", Number("3"))


def test_group_and_unary():
    expr = parse_macro_replacement("(-23.8946)")
    assert expr == Group(Unary("-", Number("23.8946")))
    assert render_expr(expr) == "(-23.8946)"


@pytest.mark.parametrize("text", [
    "1 +",
    "(1 + 2",
    "1 2",
    "foo(1)",
    "MY_TRUE ? 1 : 0",
    "1.2.3",
    "",
])
def test_unparseable_replacements(text):
    assert parse_macro_replacement(text) is None


def test_render_integer_division_floors():
    assert render_expr(parse_macro_replacement("(360 / 12)")) == "(360 // 12)"


def test_render_negative_integer_division_truncates():
    rendered = render_expr(parse_macro_replacement("(-7 / 2)"))
    assert rendered == "(int(-7 / 2))"
    assert eval(rendered) == -3


def test_render_keeps_c_grouping_for_comparisons():
    rendered = render_expr(parse_macro_replacement("(1 < 2 | 3)"))
    assert rendered == "((1 < 2) | 3)"
    assert eval(rendered) == 3


def test_render_wraps_negation_inside_arithmetic():
    assert render_expr(parse_macro_replacement("1 + !A")) == "1 + (not A)"


def test_render_float_division_stays_true_division():
    assert render_expr(parse_macro_replacement("(1.0 / 3)")) == "(1.0 / 3)"


def test_render_symbolic_division_unchanged():
    assert render_expr(parse_macro_replacement("SE_X / 2")) == "SE_X / 2"


def test_render_logical_operators():
    assert render_expr(parse_macro_replacement("!A && B || C")) == "not A and B or C"


def test_render_hex_literal():
    assert render_expr(parse_macro_replacement("0x7F")) == "0x7F"


@pytest.mark.parametrize("value, expected", [
    ("256", "256"),
    ("-1", "-1"),
    ("0.5", "0.5"),
    ("(-25.80)", "(-25.80)"),
    ("2*1024", "(2*1024)"),
    ("1 << 11", "(1 << 11)"),
    ("(2*1024)", "(2*1024)"),
    ("(SE_AST_OFFSET + 20000)", "(SE_AST_OFFSET + 20000)"),
    ("SEFLG_SWIEPH", "SEFLG_SWIEPH"),
    ("(SEFLG_NOABERR|SEFLG_NOGDEFL)", "(SEFLG_NOABERR|SEFLG_NOGDEFL)"),
    ("SEFLG_JPLEPH|SEFLG_SWIEPH", "(SEFLG_JPLEPH|SEFLG_SWIEPH)"),
])
def test_accepted_value_shapes(value, expected):
    assert match_value_shape(value) == expected


@pytest.mark.parametrize("value", [
    "swe_helper(1)",
    "(MY_TRUE ? 1 : 0)",
    "some_lower_case",
    "1.0e5f",
])
def test_rejected_value_shapes(value):
    assert match_value_shape(value) is None


def test_find_dependencies_dedupes_and_skips_self():
    deps = find_dependencies("(SE_A | SE_B | SE_A | SE_SELF)", own_name="SE_SELF")
    assert deps == ["SE_A", "SE_B"]


def test_find_dependencies_ignores_numbers():
    assert find_dependencies("(-1E-10)") == []
    assert find_dependencies("(2*1024)") == []


def test_identifier_node():
    assert parse_macro_replacement("SE_SUN") == Identifier("SE_SUN")
