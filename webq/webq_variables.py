"""
Variable environment and `${...}` placeholder resolution.

Placeholders are resolved just before a segment runs. A placeholder naming a
known variable is replaced by the variable's text. Anything else is handed to
a small expression evaluator (numbers, quoted strings, variable names,
`+ - * / %`, unary minus and parentheses). If evaluation fails the placeholder
is left in the text untouched; unresolved variables are never an error.
"""

from __future__ import annotations

import collections.abc
import json
import logging
import re
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")

BUILTIN_NAMES = ("time", "pageUrl", "rootUrl")


class VariableEnvironment(collections.abc.MutableMapping):
    """Saved values for one top-level execution.

    The environment only grows: names can be added or overwritten but never
    removed. It is copied, not shared, when crossing an array-pipe boundary.
    """

    def __init__(self, initial: Optional[collections.abc.Mapping] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    @classmethod
    def seeded(cls, page_url: str = "", root_url: str = "",
               initial: Optional[collections.abc.Mapping] = None) -> "VariableEnvironment":
        env = cls({
            "time": int(time.time() * 1000),
            "pageUrl": page_url,
            "rootUrl": root_url,
        })
        env.update(initial or {})
        return env

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __delitem__(self, key: str) -> None:
        raise TypeError("variables cannot be removed from a VariableEnvironment")

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def copy(self) -> "VariableEnvironment":
        return VariableEnvironment(self._values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"VariableEnvironment({self._values!r})"


# =================================================================
# Stringification
# =================================================================

def format_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def stringify(value: Any) -> str:
    """Text form of a variable value as it appears in a resolved template."""
    match value:
        case None:
            return "null"
        case bool():
            return "true" if value else "false"
        case str():
            return value
        case int() | float():
            return format_number(value)
        case list() | tuple() | dict():
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
        case _:
            from webq.webq_datatypes import is_element, element_text
            if is_element(value):
                return element_text(value).strip()
            return str(value)


def _as_number(value: Any) -> Optional[float | int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return None
    return None


# =================================================================
# Expression evaluator
# =================================================================

class ExpressionError(ValueError):
    pass


_TOKEN_RE = re.compile(r"""
    \s*(?:
        (?P<number>\d+(?:\.\d*)?|\.\d+)
      | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<name>[A-Za-z_][A-Za-z0-9_.]*)
      | (?P<op>[-+*/%()])
    )""", re.VERBOSE)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ExpressionError(f"unexpected character at {pos}: {text[pos:]!r}")
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class ExpressionEvaluator:
    """Recursive-descent evaluator for the `${...}` expression subset.

    Grammar:
        expr   := term (('+' | '-') term)*
        term   := unary (('*' | '/' | '%') unary)*
        unary  := '-' unary | atom
        atom   := number | string | name | '(' expr ')'

    `+` adds when both sides are numbers and concatenates text otherwise.
    Variables holding numeric text take part in arithmetic as numbers.
    """

    def __init__(self, variables: collections.abc.Mapping):
        self.variables = variables
        self.tokens: List[Tuple[str, str]] = []
        self.pos = 0

    def evaluate(self, text: str) -> Any:
        self.tokens = _tokenize(text)
        self.pos = 0
        if not self.tokens:
            raise ExpressionError("empty expression")
        try:
            value = self._expr()
        except ArithmeticError as e:
            raise ExpressionError(str(e)) from e
        if self.pos != len(self.tokens):
            raise ExpressionError(f"unexpected token {self.tokens[self.pos][1]!r}")
        return value

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _take(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise ExpressionError("unexpected end of expression")
        self.pos += 1
        return tok

    def _expr(self) -> Any:
        left = self._term()
        while (tok := self._peek()) is not None and tok[1] in ("+", "-"):
            self._take()
            right = self._term()
            left = self._add(left, right) if tok[1] == "+" else self._arith("-", left, right)
        return left

    def _term(self) -> Any:
        left = self._unary()
        while (tok := self._peek()) is not None and tok[1] in ("*", "/", "%"):
            self._take()
            left = self._arith(tok[1], left, self._unary())
        return left

    def _unary(self) -> Any:
        tok = self._peek()
        if tok is not None and tok == ("op", "-"):
            self._take()
            value = _as_number(self._unary())
            if value is None:
                raise ExpressionError("unary minus on a non-number")
            return -value
        return self._atom()

    def _atom(self) -> Any:
        kind, text = self._take()
        match kind:
            case "number":
                return float(text) if "." in text else int(text)
            case "string":
                return json.loads(text) if text[0] == '"' else text[1:-1].replace("\\'", "'")
            case "name":
                if text not in self.variables:
                    raise ExpressionError(f"unknown variable {text!r}")
                return self.variables[text]
            case "op" if text == "(":
                value = self._expr()
                if self._take() != ("op", ")"):
                    raise ExpressionError("missing ')'")
                return value
        raise ExpressionError(f"unexpected token {text!r}")

    def _add(self, left: Any, right: Any) -> Any:
        a, b = _as_number(left), _as_number(right)
        if a is not None and b is not None:
            return a + b
        return stringify(left) + stringify(right)

    def _arith(self, op: str, left: Any, right: Any) -> Any:
        a, b = _as_number(left), _as_number(right)
        if a is None or b is None:
            raise ExpressionError(f"'{op}' needs numbers, got {left!r} and {right!r}")
        match op:
            case "-":
                return a - b
            case "*":
                return a * b
            case "/":
                if b == 0:
                    raise ExpressionError("division by zero")
                return a / b
            case "%":
                if b == 0:
                    raise ExpressionError("modulo by zero")
                return a % b
        raise ExpressionError(f"unknown operator {op!r}")


def evaluate_expression(expr: str, variables: collections.abc.Mapping) -> Any:
    return ExpressionEvaluator(variables).evaluate(expr)


# =================================================================
# Placeholder resolution
# =================================================================

def resolve_placeholders(text: str, variables: collections.abc.Mapping) -> str:
    """Replaces every `${expr}` in `text`; failures keep the placeholder."""
    if not text or "${" not in text:
        return text

    def _replace(m: re.Match) -> str:
        expr = m.group(1).strip()
        if expr in variables:
            return stringify(variables[expr])
        try:
            return stringify(evaluate_expression(expr, variables))
        except ValueError as e:  # ExpressionError, or an int too long to print
            logger.debug("placeholder %s left unresolved: %s", m.group(0), e)
            return m.group(0)

    return PLACEHOLDER_RE.sub(_replace, text)


def resolve_all(values: List[str], variables: collections.abc.Mapping) -> List[str]:
    return [resolve_placeholders(v, variables) for v in values]


def extract_variable_names(text: str) -> List[str]:
    """Sorted identifiers referenced inside `${...}` placeholders."""
    names = set()
    for m in PLACEHOLDER_RE.finditer(text or ""):
        for name in re.findall(r"[A-Za-z_][A-Za-z0-9_]*", m.group(1)):
            if name not in ("true", "false", "null"):
                names.add(name)
    return sorted(names)


__all__ = [
    "VariableEnvironment",
    "ExpressionEvaluator",
    "ExpressionError",
    "BUILTIN_NAMES",
    "PLACEHOLDER_RE",
    "stringify",
    "format_number",
    "evaluate_expression",
    "resolve_placeholders",
    "resolve_all",
    "extract_variable_names",
]
