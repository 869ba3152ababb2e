"""
Tokenizer and recursive-descent parser for volume expressions.

Grammar, loosest binding first::

    expression  := comparison [ "?" expression ":" expression ]
    comparison  := sum [ ("<" | "<=" | ">" | ">=" | "==" | "!=") sum ]
    sum         := product { ("+" | "-") product }
    product     := unary { ("*" | "/") unary }
    unary       := ("-" | "+") unary | primary
    primary     := number | placeholder | function "(" arguments ")" | "(" expression ")"

Placeholders name the input volumes in order: ``A`` to ``Z``, ``v0``, ``v1``, ...
or ``v[0]``, ``v[1]``, ... Functions are ``min``, ``max`` and ``abs``.
"""

import re
from typing import NamedTuple

from exceptions import ExpressionSyntaxError

from .tree import FUNCTIONS, Binary, Call, Conditional, Constant, Negate, Node, Volume

_TOKEN = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<name>[A-Za-z_]\w*)
    | (?P<operator><=|>=|==|!=|[-+*/()<>?:\[\],])
    """,
    re.VERBOSE,
)
_INDEXED_NAME = re.compile(r"v(\d+)")
_COMPARISON_OPERATORS = ("<", "<=", ">", ">=", "==", "!=")


class Token(NamedTuple):
    kind: str
    text: str
    position: int


def tokenize(text: str) -> list[Token]:
    tokens = []
    position = 0
    while position < len(text):
        match = _TOKEN.match(text, position)
        if match is None:
            raise ExpressionSyntaxError(f"Unexpected character '{text[position]}'", position)
        if match.lastgroup != "space":
            tokens.append(Token(match.lastgroup, match.group(), position))
        position = match.end()
    tokens.append(Token("end", "", len(text)))
    return tokens


class ExpressionCompiler:
    """
    Compiles expression text into a :class:`~expressions.tree.Node` tree.

    Parser state lives on the instance, so independent compilers can be used
    side by side.
    """

    def __init__(self):
        self._tokens: list[Token] = []
        self._index = 0

    def compile(self, text: str) -> Node:
        """
        :raises ExpressionSyntaxError: with the offset of the offending token.
        """
        self._tokens = tokenize(text)
        self._index = 0
        try:
            if self._peek().kind == "end":
                raise ExpressionSyntaxError("Empty expression", 0)
            tree = self._expression()
            if self._peek().kind != "end":
                token = self._peek()
                raise ExpressionSyntaxError(f"Unexpected '{token.text}'", token.position)
            return tree
        finally:
            self._tokens = []
            self._index = 0

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept(self, *operators: str) -> Token | None:
        token = self._peek()
        if token.kind == "operator" and token.text in operators:
            return self._advance()
        return None

    def _expect(self, operator: str) -> Token:
        token = self._accept(operator)
        if token is None:
            found = self._peek()
            description = f"'{found.text}'" if found.kind != "end" else "end of expression"
            raise ExpressionSyntaxError(
                f"Expected '{operator}' but found {description}", found.position
            )
        return token

    def _expression(self) -> Node:
        condition = self._comparison()
        if self._accept("?") is None:
            return condition
        if_true = self._expression()
        self._expect(":")
        return Conditional(condition, if_true, self._expression())

    def _comparison(self) -> Node:
        left = self._sum()
        operator = self._accept(*_COMPARISON_OPERATORS)
        if operator is None:
            return left
        return Binary(operator.text, left, self._sum())

    def _sum(self) -> Node:
        node = self._product()
        while operator := self._accept("+", "-"):
            node = Binary(operator.text, node, self._product())
        return node

    def _product(self) -> Node:
        node = self._unary()
        while operator := self._accept("*", "/"):
            node = Binary(operator.text, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._accept("-"):
            return Negate(self._unary())
        if self._accept("+"):
            return self._unary()
        return self._primary()

    def _primary(self) -> Node:
        token = self._advance()
        match token.kind:
            case "number":
                return Constant(float(token.text))
            case "name":
                return self._name(token)
            case "operator" if token.text == "(":
                node = self._expression()
                self._expect(")")
                return node
            case "end":
                raise ExpressionSyntaxError("Unexpected end of expression", token.position)
        raise ExpressionSyntaxError(f"Unexpected '{token.text}'", token.position)

    def _name(self, token: Token) -> Node:
        name = token.text
        if len(name) == 1 and "A" <= name <= "Z":
            return Volume(ord(name) - ord("A"))
        if indexed := _INDEXED_NAME.fullmatch(name):
            return Volume(int(indexed.group(1)))
        if name == "v" and self._accept("["):
            index = self._advance()
            if index.kind != "number" or not index.text.isdigit():
                raise ExpressionSyntaxError("Expected a volume index", index.position)
            self._expect("]")
            return Volume(int(index.text))
        if name in FUNCTIONS:
            return self._call(token)
        raise ExpressionSyntaxError(f"Unknown name '{name}'", token.position)

    def _call(self, token: Token) -> Node:
        arity, _ = FUNCTIONS[token.text]
        self._expect("(")
        arguments = [self._expression()]
        while self._accept(","):
            arguments.append(self._expression())
        self._expect(")")
        if len(arguments) != arity:
            raise ExpressionSyntaxError(
                f"'{token.text}' takes {arity} argument(s), got {len(arguments)}",
                token.position,
            )
        return Call(token.text, tuple(arguments))


def compile_expression(text: str) -> Node:
    return ExpressionCompiler().compile(text)
