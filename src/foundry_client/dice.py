"""Local dice roller used when the server's dice engine is unavailable.

Formulas are restricted to digits, ``d``, ``+ - * /``, parentheses and
spaces. Anything else is rejected before any parsing happens.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from .errors import InvalidFormulaError

SAFE_FORMULA = re.compile(r"[0-9dD+\-*/() ]+")
TOKEN = re.compile(r"\d+|[dD]|[+\-*/()]")

MAX_FORMULA_LENGTH = 200
MAX_DICE = 100
MAX_SIDES = 1000

Number = int | float


@dataclass(frozen=True)
class DiceRoll:
    formula: str
    total: Number
    breakdown: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    reason: str | None = None
    source: Literal["remote", "local"] = "local"


def validate_formula(formula: str) -> str:
    """Return the trimmed formula or raise ``InvalidFormulaError``."""
    if not isinstance(formula, str) or not formula.strip():
        raise InvalidFormulaError("Dice formula is empty")
    if len(formula) > MAX_FORMULA_LENGTH:
        raise InvalidFormulaError(
            f"Dice formula exceeds {MAX_FORMULA_LENGTH} characters"
        )
    if not SAFE_FORMULA.fullmatch(formula):
        raise InvalidFormulaError(
            "Dice formula may only contain digits, 'd', + - * /, parentheses and spaces"
        )
    return formula.strip()


def roll_formula(
    formula: str,
    reason: str | None = None,
    *,
    rng: random.Random | None = None,
) -> DiceRoll:
    """Evaluate *formula* locally, e.g. ``"2d6+3"`` or ``"(1d8+2)*2"``."""
    cleaned = validate_formula(formula)
    parser = _Parser(TOKEN.findall(cleaned), rng or random.Random())
    total = parser.parse()
    return DiceRoll(
        formula=cleaned,
        total=total,
        breakdown=" | ".join(parser.rolls) or str(total),
        reason=reason,
        source="local",
    )


class _Parser:
    """Recursive descent over the token list.

    expr    := term (('+' | '-') term)*
    term    := unary (('*' | '/') unary)*
    unary   := ('+' | '-') unary | primary
    primary := '(' expr ')' | [NUMBER] 'd' NUMBER | NUMBER
    """

    def __init__(self, tokens: list[str], rng: random.Random) -> None:
        self._tokens = tokens
        self._pos = 0
        self._rng = rng
        self.rolls: list[str] = []

    def parse(self) -> Number:
        value = self._expr()
        if self._peek() is not None:
            raise InvalidFormulaError(f"Unexpected token {self._peek()!r}")
        return _normalize(value)

    def _peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise InvalidFormulaError("Dice formula ended unexpectedly")
        self._pos += 1
        return token

    def _expr(self) -> Number:
        value = self._term()
        while self._peek() in ("+", "-"):
            if self._next() == "+":
                value += self._term()
            else:
                value -= self._term()
        return value

    def _term(self) -> Number:
        value = self._unary()
        while self._peek() in ("*", "/"):
            op = self._next()
            rhs = self._unary()
            if op == "*":
                value *= rhs
            elif rhs == 0:
                raise InvalidFormulaError("Division by zero in dice formula")
            else:
                value /= rhs
        return value

    def _unary(self) -> Number:
        if self._peek() == "-":
            self._next()
            return -self._unary()
        if self._peek() == "+":
            self._next()
            return self._unary()
        return self._primary()

    def _primary(self) -> Number:
        token = self._next()
        if token == "(":
            value = self._expr()
            if self._next() != ")":
                raise InvalidFormulaError("Unbalanced parentheses in dice formula")
            return value
        if token in ("d", "D"):
            return self._roll(1)
        if token.isdigit():
            if self._peek() in ("d", "D"):
                self._next()
                return self._roll(int(token))
            return int(token)
        raise InvalidFormulaError(f"Unexpected token {token!r}")

    def _roll(self, count: int) -> int:
        sides_token = self._next()
        if not sides_token.isdigit():
            raise InvalidFormulaError("Die size must be a number")
        sides = int(sides_token)
        if not 1 <= count <= MAX_DICE:
            raise InvalidFormulaError(f"Dice count must be between 1 and {MAX_DICE}")
        if not 1 <= sides <= MAX_SIDES:
            raise InvalidFormulaError(f"Die size must be between 1 and {MAX_SIDES}")

        results = [self._rng.randint(1, sides) for _ in range(count)]
        subtotal = sum(results)
        self.rolls.append(
            f"{count}d{sides} [{', '.join(map(str, results))}] = {subtotal}"
        )
        return subtotal


def _normalize(value: Number) -> Number:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
