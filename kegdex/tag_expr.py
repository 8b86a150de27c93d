"""
Boolean tag expressions for kegdex.

Grammar, lowest precedence first:

    expr := or
    or   := and (("or" | "||") and)*
    and  := not (("and" | "&&") not)*
    not  := ("not" | "!") not | atom
    atom := TAG | "(" expr ")"

Keywords are case-insensitive. A tag named like a keyword must be quoted
('and', "or"). Expressions are parsed completely before evaluation, so an
invalid expression never yields a partial result.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from .utils import ParseFailureError

T = TypeVar("T")

KEYWORDS = {"and": "AND", "or": "OR", "not": "NOT"}


class TagExpressionError(ParseFailureError):
    """Raised when a tag expression cannot be parsed."""

    def __init__(self, detail: str):
        super().__init__(f"invalid tag expression: {detail}")
        self.detail = detail


@dataclass(frozen=True)
class Token:
    kind: str  # TAG, AND, OR, NOT, LPAREN, RPAREN
    value: str
    pos: int


@dataclass(frozen=True)
class Tag:
    name: str


@dataclass(frozen=True)
class Not:
    operand: "Expr"


@dataclass(frozen=True)
class And:
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Or:
    left: "Expr"
    right: "Expr"


Expr = Tag | Not | And | Or


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif ch == "(":
            tokens.append(Token("LPAREN", ch, i))
            i += 1
        elif ch == ")":
            tokens.append(Token("RPAREN", ch, i))
            i += 1
        elif ch == "!":
            tokens.append(Token("NOT", ch, i))
            i += 1
        elif text.startswith("&&", i):
            tokens.append(Token("AND", "&&", i))
            i += 2
        elif text.startswith("||", i):
            tokens.append(Token("OR", "||", i))
            i += 2
        elif ch in "&|":
            raise TagExpressionError(f"unexpected character {ch!r} at position {i}")
        elif ch in "'\"":
            start = i
            i += 1
            chars: list[str] = []
            while i < n and text[i] != ch:
                if text[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(text[i])
                i += 1
            if i >= n:
                raise TagExpressionError("unterminated quoted tag")
            i += 1
            tokens.append(Token("TAG", "".join(chars), start))
        else:
            start = i
            while i < n and not text[i].isspace() and text[i] not in "()!&|'\"":
                i += 1
            word = text[start:i]
            kind = KEYWORDS.get(word.lower(), "TAG")
            tokens.append(Token(kind, word, start))
    return tokens


class _Parser:
    """Recursive descent over a token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Token | None:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def take(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Expr:
        expr = self.parse_or()
        token = self.peek()
        if token is not None:
            raise TagExpressionError(f"unexpected token {token.value!r} at position {token.pos}")
        return expr

    def parse_or(self) -> Expr:
        left = self.parse_and()
        while (token := self.peek()) is not None and token.kind == "OR":
            self.take()
            left = Or(left, self.parse_and())
        return left

    def parse_and(self) -> Expr:
        left = self.parse_not()
        while (token := self.peek()) is not None and token.kind == "AND":
            self.take()
            left = And(left, self.parse_not())
        return left

    def parse_not(self) -> Expr:
        token = self.peek()
        if token is not None and token.kind == "NOT":
            self.take()
            return Not(self.parse_not())
        return self.parse_atom()

    def parse_atom(self) -> Expr:
        token = self.peek()
        if token is None:
            raise TagExpressionError("unexpected end of expression")
        if token.kind == "TAG":
            self.take()
            return Tag(token.value)
        if token.kind == "LPAREN":
            self.take()
            expr = self.parse_or()
            closing = self.peek()
            if closing is None or closing.kind != "RPAREN":
                raise TagExpressionError("expected ')' before end of expression")
            self.take()
            return expr
        raise TagExpressionError(f"unexpected token {token.value!r} at position {token.pos}")


def parse_tag_expression(text: str) -> Expr:
    """Parse a tag expression.

    Raises:
        TagExpressionError: If the expression is empty or malformed
    """
    if not text or not text.strip():
        raise TagExpressionError("expression is empty")
    return _Parser(tokenize(text)).parse()


def evaluate_expr(expr: Expr, universe: set[T], resolve: Callable[[str], Iterable[T]]) -> set[T]:
    """Evaluate a parsed expression against a universe of ids."""
    if isinstance(expr, Tag):
        return set(resolve(expr.name)) & universe
    if isinstance(expr, Not):
        return universe - evaluate_expr(expr.operand, universe, resolve)
    if isinstance(expr, And):
        return evaluate_expr(expr.left, universe, resolve) & evaluate_expr(expr.right, universe, resolve)
    return evaluate_expr(expr.left, universe, resolve) | evaluate_expr(expr.right, universe, resolve)


def evaluate(text: str, universe: Iterable[T], resolve: Callable[[str], Iterable[T]]) -> set[T]:
    """Parse and evaluate a tag expression.

    Literals resolve through resolve(name) intersected with the universe;
    `and` intersects, `or` unions and `not` complements against the universe.
    """
    expr = parse_tag_expression(text)
    return evaluate_expr(expr, set(universe), resolve)
