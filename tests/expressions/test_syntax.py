import pytest

from exceptions import ErrorKind, ExpressionSyntaxError
from expressions import ExpressionCompiler, compile_expression, tokenize
from expressions.tree import Binary, Call, Conditional, Constant, Negate, Volume


class TestTokenize:
    def test_tokens_keep_their_offsets(self):
        tokens = tokenize("A <= 2.5e1")

        assert [(token.kind, token.text, token.position) for token in tokens] == [
            ("name", "A", 0),
            ("operator", "<=", 2),
            ("number", "2.5e1", 5),
            ("end", "", 10),
        ]

    def test_unexpected_character(self):
        with pytest.raises(ExpressionSyntaxError) as info:
            tokenize("A + $B")

        assert info.value.position == 4
        assert info.value.kind is ErrorKind.PARSE


class TestCompile:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            pytest.param(
                "A + B * 2",
                Binary("+", Volume(0), Binary("*", Volume(1), Constant(2.0))),
                id="product binds tighter",
            ),
            pytest.param(
                "(A + B) * 2",
                Binary("*", Binary("+", Volume(0), Volume(1)), Constant(2.0)),
                id="parentheses",
            ),
            pytest.param(
                "A - B - C",
                Binary("-", Binary("-", Volume(0), Volume(1)), Volume(2)),
                id="left associative",
            ),
            pytest.param("-A", Negate(Volume(0)), id="negation"),
            pytest.param("+.5", Constant(0.5), id="unary plus"),
            pytest.param(
                "A + 1 > B",
                Binary(">", Binary("+", Volume(0), Constant(1.0)), Volume(1)),
                id="comparison binds loosest",
            ),
            pytest.param(
                "A > 0 ? A : B > 0 ? B : 0",
                Conditional(
                    Binary(">", Volume(0), Constant(0.0)),
                    Volume(0),
                    Conditional(Binary(">", Volume(1), Constant(0.0)), Volume(1), Constant(0.0)),
                ),
                id="nested conditional",
            ),
            pytest.param(
                "max(A, abs(B))",
                Call("max", (Volume(0), Call("abs", (Volume(1),)))),
                id="function calls",
            ),
        ],
    )
    def test_precedence(self, text, expected):
        assert compile_expression(text) == expected

    @pytest.mark.parametrize(
        "text", ["Z", "v25", "v[25]"], ids=["letter", "indexed name", "subscript"]
    )
    def test_placeholders(self, text):
        assert compile_expression(text) == Volume(25)

    def test_volume_indices(self):
        tree = compile_expression("A + v[3] * min(C, 1)")

        assert tree.volume_indices() == {0, 2, 3}

    @pytest.mark.parametrize(
        ("text", "position"),
        [
            pytest.param("", 0, id="empty"),
            pytest.param("A +", 3, id="dangling operator"),
            pytest.param("(A + B", 6, id="unclosed parenthesis"),
            pytest.param("A B", 2, id="trailing operand"),
            pytest.param("sqrt(A)", 0, id="unknown function"),
            pytest.param("max(A)", 0, id="wrong arity"),
            pytest.param("A ? B", 5, id="missing colon"),
            pytest.param("v[x]", 2, id="non-numeric subscript"),
        ],
    )
    def test_syntax_errors_report_position(self, text, position):
        with pytest.raises(ExpressionSyntaxError) as info:
            compile_expression(text)

        assert info.value.position == position

    def test_compiler_is_reusable_after_an_error(self):
        compiler = ExpressionCompiler()

        with pytest.raises(ExpressionSyntaxError):
            compiler.compile("A +")

        assert compiler.compile("B") == Volume(1)
