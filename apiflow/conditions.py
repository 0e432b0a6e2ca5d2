"""Boolean condition language used by step ``skipIf`` expressions.

Conditions are evaluated by a dedicated interpreter rather than the host
language. Supported forms::

    true / false / null
    'text' "text" 42 3.5
    name, user.id, items[0].status        (looked up in the variables)
    a == b   a != b   a === b   a !== b   a < b   a <= b   a > b   a >= b
    !x   not x   a && b   a and b   a || b   a or b   ( ... )
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from .errors import ConditionError
from .paths import NOT_FOUND, resolve_path

_TOKEN_SPEC = [
    ("WS", r"\s+"),
    ("NUMBER", r"-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?"),
    ("STRING", r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\""),
    ("OP", r"===|!==|==|!=|<=|>=|&&|\|\||<|>|!|\(|\)"),
    ("NAME", r"[A-Za-z_$][\w$]*(?:(?:\.[A-Za-z_$][\w$]*)|(?:\[\d+\]))*"),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{rx})" for name, rx in _TOKEN_SPEC))

_KEYWORDS = {"true": True, "false": False, "null": None, "none": None}
_WORD_OPS = {"and": "&&", "or": "||", "not": "!"}
_COMPARISONS = {"==", "!=", "===", "!==", "<", "<=", ">", ">="}


@dataclass
class Token:
    kind: str
    value: str
    pos: int


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ConditionError(
                f"Unexpected character {expression[pos]!r} at position {pos}"
            )
        kind = match.lastgroup
        text = match.group()
        if kind == "NAME" and text.lower() in _WORD_OPS:
            tokens.append(Token("OP", _WORD_OPS[text.lower()], pos))
        elif kind != "WS":
            tokens.append(Token(kind, text, pos))
        pos = match.end()
    return tokens


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class _Parser:
    """Recursive-descent evaluator over a token list.

    The right operand of ``||`` and ``&&`` is only parsed, not evaluated,
    once the left operand decides the result.
    """

    def __init__(self, tokens: List[Token], variables: Mapping[str, Any]) -> None:
        self.tokens = tokens
        self.variables = variables
        self.index = 0
        self.evaluating = True

    def _parse_only(self, rule: Callable[[], Any]) -> None:
        evaluating = self.evaluating
        self.evaluating = False
        try:
            rule()
        finally:
            self.evaluating = evaluating

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _accept(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token is not None and token.kind == "OP" and token.value in ops:
            self.index += 1
            return token.value
        return None

    def parse(self) -> Any:
        value = self._or()
        token = self._peek()
        if token is not None:
            raise ConditionError(f"Unexpected token {token.value!r} at position {token.pos}")
        return value

    def _or(self) -> Any:
        left = self._and()
        while self._accept("||"):
            if left:
                self._parse_only(self._and)
            else:
                left = self._and()
        return left

    def _and(self) -> Any:
        left = self._not()
        while self._accept("&&"):
            if not left:
                self._parse_only(self._not)
            else:
                left = self._not()
        return left

    def _not(self) -> Any:
        if self._accept("!"):
            return not self._not()
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._operand()
        token = self._peek()
        if token is None or token.kind != "OP" or token.value not in _COMPARISONS:
            return left
        self.index += 1
        right = self._operand()
        if not self.evaluating:
            return None
        return _compare(token.value, left, right)

    def _operand(self) -> Any:
        token = self._peek()
        if token is None:
            raise ConditionError("Unexpected end of expression")
        if self._accept("("):
            value = self._or()
            if not self._accept(")"):
                raise ConditionError("Missing closing parenthesis")
            return value

        self.index += 1
        if token.kind == "NUMBER":
            number = float(token.value)
            return int(number) if number.is_integer() and "." not in token.value else number
        if token.kind == "STRING":
            return _unquote(token.value)
        if token.kind == "NAME":
            if token.value.lower() in _KEYWORDS:
                return _KEYWORDS[token.value.lower()]
            if not self.evaluating:
                return None
            value = resolve_path(self.variables, token.value)
            if value is NOT_FOUND:
                raise ConditionError(f"Unknown variable {token.value!r}")
            return value
        raise ConditionError(f"Unexpected token {token.value!r} at position {token.pos}")


def _compare(op: str, left: Any, right: Any) -> bool:
    if op in ("==", "==="):
        return left == right
    if op in ("!=", "!=="):
        return left != right
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
    except TypeError as exc:
        raise ConditionError(f"Cannot compare {left!r} {op} {right!r}") from exc


def evaluate_condition(expression: Optional[str], variables: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` against ``variables`` and return its truth value.

    An empty expression is false. Raises :class:`ConditionError` for syntax
    errors, unknown names and incomparable operands.
    """
    if not expression or not expression.strip():
        return False
    tokens = tokenize(expression)
    return bool(_Parser(tokens, variables).parse())
