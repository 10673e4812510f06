"""Arithmetic evaluator for spreadsheet-style cell formulas.

Only numeric literals, ``+ - * /``, unary signs and parentheses are accepted.
Anything else is rejected with ``ExpressionError``; nothing is ever handed to
``eval``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import List, Optional

_TOKEN_PATTERN = re.compile(r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<op>[-+*/()]))")
MAX_NESTING = 100


class ExpressionError(ValueError):
    """Raised when a cell formula is not plain arithmetic or cannot be evaluated."""


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(source)
    while pos < length:
        if source[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_PATTERN.match(source, pos)
        if not match:
            raise ExpressionError(f"Karakter tidak dikenal '{source[pos]}' pada posisi {pos + 1}.")
        if match.group("number") is not None:
            tokens.append(Token("number", match.group("number"), match.start("number")))
        else:
            tokens.append(Token("op", match.group("op"), match.start("op")))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive descent over::

        expr   := term (('+' | '-') term)*
        term   := factor (('*' | '/') factor)*
        factor := ('+' | '-') factor | NUMBER | '(' expr ')'

    Signs and parentheses may nest at most ``MAX_NESTING`` levels deep.
    """

    def __init__(self, tokens: List[Token]) -> None:
        self._tokens = tokens
        self._index = 0
        self._depth = 0

    def parse(self) -> Decimal:
        if not self._tokens:
            raise ExpressionError("Formula kosong.")
        value = self._expr()
        if self._peek() is not None:
            token = self._peek()
            raise ExpressionError(f"Token tidak terduga '{token.text}' pada posisi {token.position + 1}.")
        return value

    def _peek(self) -> Optional[Token]:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise ExpressionError("Formula tidak lengkap.")
        self._index += 1
        return token

    def _accept(self, *ops: str) -> Optional[Token]:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text in ops:
            self._index += 1
            return token
        return None

    def _expr(self) -> Decimal:
        value = self._term()
        while True:
            op = self._accept("+", "-")
            if op is None:
                return value
            rhs = self._term()
            value = value + rhs if op.text == "+" else value - rhs

    def _term(self) -> Decimal:
        value = self._factor()
        while True:
            op = self._accept("*", "/")
            if op is None:
                return value
            rhs = self._factor()
            if op.text == "*":
                value = value * rhs
            else:
                if rhs == 0:
                    raise ExpressionError("Pembagian dengan nol.")
                value = value / rhs

    def _factor(self) -> Decimal:
        self._depth += 1
        if self._depth > MAX_NESTING:
            raise ExpressionError(f"Formula terlalu bertingkat (maksimal {MAX_NESTING} tingkat tanda atau kurung).")
        try:
            return self._unary()
        finally:
            self._depth -= 1

    def _unary(self) -> Decimal:
        sign = self._accept("+", "-")
        if sign is not None:
            operand = self._factor()
            return -operand if sign.text == "-" else operand

        if self._accept("(") is not None:
            value = self._expr()
            if self._accept(")") is None:
                raise ExpressionError("Kurung tutup tidak ditemukan.")
            return value

        token = self._advance()
        if token.kind != "number":
            raise ExpressionError(f"Token tidak terduga '{token.text}' pada posisi {token.position + 1}.")
        return Decimal(token.text)


def evaluate(source: str) -> Decimal:
    """Evaluate ``source`` (without the leading ``=``).

    Commas are read as decimal points, matching how numbers are typed in the
    editor cells.
    """
    normalised = source.replace(",", ".")
    try:
        return _Parser(tokenize(normalised)).parse()
    except (InvalidOperation, DivisionByZero) as exc:
        raise ExpressionError("Formula tidak valid.") from exc
