"""Parsing and evaluation of intensity equations.

An equation is either a comparison of two arithmetic expressions over fragment intensities, e.g.
``NL_PC > 2*$BASEPEAK`` or ``A/B>2``, or an OR rule ``A|B|C`` which is fulfilled if any of the listed fragments
was found. Expressions support ``+ - * /``, numbers, parentheses, ``$BASEPEAK`` and fragment names with an
optional position index ``Name[1]``.

Evaluation is total: if a referenced fragment has no intensity or a divisor is zero, the expression has no value
and the equation is not fulfilled.
"""

import operator
import re
from collections.abc import Callable
from dataclasses import dataclass

from alphalipid.constants.keys import Placeholder
from alphalipid.exceptions import MalformedInputError

# (name, position) -> intensity or None if the fragment was not found
IntensityLookup = Callable[[str, int | None], float | None]

COMPARATORS = {">": operator.gt, "<": operator.lt}
ARITHMETIC = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}

TOKEN_PATTERN = re.compile(
    r"\s*(?:"
    r"(?P<number>\d+(?:\.\d*)?(?:[eE][-+]?\d+)?|\.\d+)"
    r"|(?P<placeholder>\$[A-Za-z]+)"
    r"|(?P<position>\[\s*\d+\s*\])"
    r"|(?P<name>[^\s\d$+\-*/<>|=()\[\]][^\s$+\-*/<>|=()\[\]]*)"
    r"|(?P<symbol>[-+*/<>|()])"
    r")"
)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str


def tokenize(text: str) -> list[Token]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = TOKEN_PATTERN.match(text, pos)
        if match is None or match.end() == pos:
            raise MalformedInputError(
                text, f"Unexpected character '{text[pos:].strip()[:1]}' at {pos}."
            )
        kind = match.lastgroup
        tokens.append(Token(kind, match.group(kind)))
        pos = match.end()
    return tokens


@dataclass(frozen=True)
class Number:
    value: float

    def evaluate(self, lookup: IntensityLookup, base_peak: float | None):
        return self.value

    def references(self):
        return frozenset()


@dataclass(frozen=True)
class BasePeak:
    def evaluate(self, lookup: IntensityLookup, base_peak: float | None):
        return base_peak

    def references(self):
        return frozenset()


@dataclass(frozen=True)
class FragmentRef:
    name: str
    position: int | None = None

    def evaluate(self, lookup: IntensityLookup, base_peak: float | None):
        return lookup(self.name, self.position)

    def references(self):
        return frozenset({(self.name, self.position)})


@dataclass(frozen=True)
class Negation:
    operand: "Expression"

    def evaluate(self, lookup: IntensityLookup, base_peak: float | None):
        value = self.operand.evaluate(lookup, base_peak)
        return None if value is None else -value

    def references(self):
        return self.operand.references()


@dataclass(frozen=True)
class BinaryOperation:
    op: str
    left: "Expression"
    right: "Expression"

    def evaluate(self, lookup: IntensityLookup, base_peak: float | None):
        left = self.left.evaluate(lookup, base_peak)
        right = self.right.evaluate(lookup, base_peak)
        if left is None or right is None:
            return None
        if self.op == "/" and right == 0:
            return None
        return ARITHMETIC[self.op](left, right)

    def references(self):
        return self.left.references() | self.right.references()


Expression = Number | BasePeak | FragmentRef | Negation | BinaryOperation


@dataclass(frozen=True)
class Comparison:
    """``left > right`` or ``left < right``."""

    left: Expression
    comparator: str
    right: Expression

    def is_fulfilled(self, lookup: IntensityLookup, base_peak: float | None) -> bool:
        left = self.left.evaluate(lookup, base_peak)
        right = self.right.evaluate(lookup, base_peak)
        if left is None or right is None:
            return False
        return COMPARATORS[self.comparator](left, right)

    def references(self) -> frozenset[tuple[str, int | None]]:
        return self.left.references() | self.right.references()

    @property
    def bigger(self) -> Expression:
        return self.left if self.comparator == ">" else self.right

    @property
    def smaller(self) -> Expression:
        return self.right if self.comparator == ">" else self.left


@dataclass(frozen=True)
class AnyOf:
    """``A|B|C``: fulfilled if at least one of the fragments was found."""

    names: tuple[str, ...]

    def is_fulfilled(self, lookup: IntensityLookup, base_peak: float | None) -> bool:
        return any(lookup(name, None) is not None for name in self.names)

    def references(self) -> frozenset[tuple[str, int | None]]:
        return frozenset((name, None) for name in self.names)


Equation = Comparison | AnyOf


class _Parser:
    """Recursive descent parser over the token list of a single equation."""

    def __init__(self, text: str, tokens: list[Token]):
        self.text = text
        self.tokens = tokens
        self.index = 0

    def error(self, detail: str) -> MalformedInputError:
        return MalformedInputError(self.text, detail)

    def peek(self) -> Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> Token:
        token = self.peek()
        if token is None:
            raise self.error("Unexpected end of equation.")
        self.index += 1
        return token

    def at_symbol(self, *symbols: str) -> bool:
        token = self.peek()
        return token is not None and token.kind == "symbol" and token.text in symbols

    def expression(self) -> Expression:
        node = self.term()
        while self.at_symbol("+", "-"):
            op = self.take().text
            node = BinaryOperation(op, node, self.term())
        return node

    def term(self) -> Expression:
        node = self.unary()
        while self.at_symbol("*", "/"):
            op = self.take().text
            node = BinaryOperation(op, node, self.unary())
        return node

    def unary(self) -> Expression:
        if self.at_symbol("-"):
            self.take()
            return Negation(self.unary())
        if self.at_symbol("+"):
            self.take()
            return self.unary()
        return self.primary()

    def primary(self) -> Expression:
        token = self.take()
        if token.kind == "number":
            return Number(float(token.text))
        if token.kind == "placeholder":
            if token.text != Placeholder.BASE_PEAK:
                raise self.error(f"Unknown placeholder '{token.text}'.")
            return BasePeak()
        if token.kind == "name":
            position = None
            if (next_token := self.peek()) is not None and next_token.kind == "position":
                self.take()
                position = int(next_token.text.strip("[] \t"))
                if position < 1:
                    raise self.error("Positions start at 1.")
            return FragmentRef(token.text, position)
        if token.kind == "symbol" and token.text == "(":
            node = self.expression()
            if not self.at_symbol(")"):
                raise self.error("Missing closing parenthesis.")
            self.take()
            return node
        raise self.error(f"Unexpected '{token.text}'.")


def _split_at_comparator(tokens: list[Token]) -> tuple[list[Token], str, list[Token]]:
    comparators = [
        i
        for i, t in enumerate(tokens)
        if t.kind == "symbol" and t.text in COMPARATORS
    ]
    if len(comparators) != 1:
        raise MalformedInputError(
            "".join(t.text for t in tokens),
            "An equation needs exactly one '>' or '<', or must be an OR rule 'A|B'.",
        )
    i = comparators[0]
    return tokens[:i], tokens[i].text, tokens[i + 1 :]


def _parse_side(text: str, tokens: list[Token]) -> Expression:
    if not tokens:
        raise MalformedInputError(text, "Both sides of the comparison are required.")
    parser = _Parser(text, tokens)
    node = parser.expression()
    if parser.peek() is not None:
        raise parser.error(f"Unexpected '{parser.peek().text}'.")
    return node


def parse_equation(text: str) -> Equation:
    """Parse an equation into a `Comparison` or an `AnyOf`.

    Raises
    ------
    MalformedInputError
        The text is empty or not a valid equation.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedInputError(str(text), "The equation must not be empty.")

    tokens = tokenize(text)

    if any(t.kind == "symbol" and t.text == "|" for t in tokens):
        names = tokens[::2]
        separators = tokens[1::2]
        if (
            len(tokens) % 2 == 0
            or any(t.kind != "name" for t in names)
            or any(t.text != "|" for t in separators)
        ):
            raise MalformedInputError(
                text, "An OR rule may only contain fragment names separated by '|'."
            )
        return AnyOf(tuple(t.text for t in names))

    left, comparator, right = _split_at_comparator(tokens)
    return Comparison(
        _parse_side(text, left), comparator, _parse_side(text, right)
    )


def side_positions(expression: Expression) -> set[int]:
    """Positions referenced on one side of a comparison."""
    return {pos for _, pos in expression.references() if pos is not None}


def interpret(equation: Equation, lookup: IntensityLookup, base_peak: float | None) -> str:
    """Render the equation with the intensities that were used to evaluate it, e.g. ``100.0/40.0>2.0``."""
    if isinstance(equation, AnyOf):
        return "|".join(_format_value(lookup(name, None)) for name in equation.names)
    return (
        f"{_render(equation.left, lookup, base_peak)}"
        f"{equation.comparator}"
        f"{_render(equation.right, lookup, base_peak)}"
    )


def _render(node: Expression, lookup: IntensityLookup, base_peak: float | None) -> str:
    if isinstance(node, BinaryOperation):
        return f"({_render(node.left, lookup, base_peak)}{node.op}{_render(node.right, lookup, base_peak)})"
    if isinstance(node, Negation):
        return f"-{_render(node.operand, lookup, base_peak)}"
    return _format_value(node.evaluate(lookup, base_peak))


def _format_value(value: float | None) -> str:
    return "n/a" if value is None else f"{value:g}"
