"""
Standalone syntax checking for query expressions.

`validate(expr)` never runs a query and is never consulted by the engine; it
exists to give authors positioned, human-readable errors and warnings.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from webq.webq_datatypes import QueryFormatError, Scheme
from webq.webq_parser import CSS_PSEUDO_CLASSES, OPERATOR_RE, parse_segment
from webq.webq_variables import extract_variable_names

VALID_SCHEMES = tuple(Scheme.names())
VALID_OPERATORS = ("++", "||", ">>", ">>>")
SUGGESTION_THRESHOLD = 2
SNIPPET_RADIUS = 40

# Selectors that sit within suggestion distance of a scheme name.
HTML_TAGS = frozenset({
    "a", "b", "i", "p", "q", "s", "u", "br", "dd", "dl", "dt", "em", "h1", "h2",
    "h3", "h4", "h5", "h6", "hr", "li", "ol", "rp", "rt", "td", "th", "tr", "ul",
    "bdi", "bdo", "col", "del", "dfn", "div", "img", "ins", "kbd", "map", "nav",
    "pre", "sub", "sup", "var", "wbr", "abbr", "area", "base", "body", "cite",
    "code", "data", "form", "head", "html", "link", "main", "mark", "menu",
    "meta", "ruby", "samp", "span", "time",
})

_REGEXP_SPECIALS = (
    (".", "matches any character"),
    ("*", "matches 0 or more of previous"),
    ("+", "matches 1 or more of previous"),
    ("?", "matches 0 or 1 of previous"),
    ("(", "starts capture group"),
    (")", "ends capture group"),
    ("[", "starts character class"),
    ("]", "ends character class"),
    ("{", "starts quantifier"),
    ("}", "ends quantifier"),
    ("|", "alternation (OR)"),
    ("^", "matches start of string"),
    ("$", "matches end of string"),
)


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        cur = [i]
        for j, cb in enumerate(b, 1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def suggest(word: str, options: Tuple[str, ...] = VALID_SCHEMES) -> str:
    best, best_distance = "", SUGGESTION_THRESHOLD + 1
    for option in options:
        d = levenshtein(word, option)
        if d < best_distance:
            best, best_distance = option, d
    return best


def _snippet(query: str, pos: int, pointer: str) -> str:
    start, end, prefix, suffix = 0, len(query), "", ""
    if len(query) > SNIPPET_RADIUS * 2:
        start = max(0, min(pos - SNIPPET_RADIUS, len(query)))
        end = max(0, min(pos + SNIPPET_RADIUS, len(query)))
        prefix = "..." if start > 0 else ""
        suffix = "..." if end < len(query) else ""
    line = f"Query: {prefix}{query[start:end]}{suffix}"
    marker = " " * (7 + len(prefix) + pos - start) + pointer
    return f"{line}\n{marker}"


# =================================================================
# Result types
# =================================================================

@dataclass
class ValidationError:
    message: str
    position: int
    suggestion: str = ""
    example: str = ""
    part_index: Optional[int] = None

    kind = "Error"
    pointer = "^^^"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"message": self.message, "position": self.position}
        if self.suggestion:
            out["suggestion"] = self.suggestion
        if getattr(self, "example", ""):
            out["example"] = self.example
        if self.part_index is not None:
            out["queryPartIndex"] = self.part_index
        return out

    def format(self, query: str) -> str:
        where = f" (in query part {self.part_index + 1})" if self.part_index is not None else ""
        lines = [f"{self.kind} at position {self.position}{where}: {self.message}", "",
                 _snippet(query, self.position, self.pointer), ""]
        if self.suggestion:
            lines.append(self.suggestion)
        if getattr(self, "example", ""):
            lines.append(self.example)
        return "\n".join(lines)


@dataclass
class ValidationWarning(ValidationError):
    kind = "Warning"
    pointer = "^"


@dataclass
class QueryPartInfo:
    scheme: str
    path: str
    parameters: Dict[str, List[str]]
    transforms: Dict[str, List[str]]
    is_pipe: bool
    is_required: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "path": self.path,
            "parameters": self.parameters,
            "transforms": self.transforms,
            "isPipe": self.is_pipe,
            "isRequired": self.is_required,
        }

    def __str__(self) -> str:
        text = f"{self.scheme}:{self.path}"
        if self.parameters:
            text += f" [params: {', '.join(self.parameters)}]"
        if self.transforms:
            text += f" [transforms: {', '.join(self.transforms)}]"
        if self.is_pipe:
            text += " [pipe]"
        if self.is_required:
            text += " [required]"
        return text


@dataclass
class QueryInfo:
    parts: List[QueryPartInfo]
    operators: List[str]
    variables: List[str]

    @property
    def total_parts(self) -> int:
        return len(self.parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalParts": self.total_parts,
            "operators": self.operators,
            "variables": self.variables,
            "parts": [p.to_dict() for p in self.parts],
        }

    def __str__(self) -> str:
        lines = ["Query Information:", f"  Total parts: {self.total_parts}"]
        if self.operators:
            lines.append(f"  Operators: {', '.join(self.operators)}")
        if self.variables:
            lines.append(f"  Variables: {', '.join(self.variables)}")
        lines.append("  Parts:")
        lines.extend(f"    {i}. {p}" for i, p in enumerate(self.parts, 1))
        return "\n".join(lines)


@dataclass
class ValidationResult:
    query: str
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    info: Optional[QueryInfo] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "info": self.info.to_dict() if self.info else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __str__(self) -> str:
        if self.is_valid and self.info is not None and not self.warnings:
            return str(self.info)
        out: List[str] = []
        if self.errors:
            out.append(f"Errors ({len(self.errors)}):")
            out.extend(e.format(self.query) for e in self.errors)
        if self.warnings:
            out.append(f"Warnings ({len(self.warnings)}):")
            out.extend(w.format(self.query) for w in self.warnings)
        return "\n".join(out)


# =================================================================
# Checks
# =================================================================

def _split_parts(query: str) -> Tuple[List[Tuple[int, str]], List[str]]:
    """Segments with their start offsets, and the operators between them."""
    parts: List[Tuple[int, str]] = []
    operators: List[str] = []
    start = 0
    for m in OPERATOR_RE.finditer(query):
        parts.append((start, query[start:m.start()]))
        operators.append(m.group(0))
        start = m.end()
    parts.append((start, query[start:]))
    out = []
    for offset, text in parts:
        stripped = text.lstrip()
        out.append((offset + len(text) - len(stripped), stripped.rstrip()))
    return [p for p in out if p[1]], operators


def _check_scheme(part: str, offset: int, index: int, errors: List[ValidationError]) -> None:
    m = re.match(r"^([a-z]+):", part)
    if m is None:
        word = re.match(r"^([a-z]+)", part)
        if word and word.group(1) not in HTML_TAGS and suggest(word.group(1)):
            w = word.group(1)
            errors.append(ValidationError(
                message=f'Missing ":" after scheme "{w}"',
                position=offset + len(w),
                suggestion=f"Use: {w}:path",
                example=f"Valid schemes: {', '.join(VALID_SCHEMES)}",
                part_index=index,
            ))
        return
    scheme = m.group(1)
    if scheme in VALID_SCHEMES:
        return
    pseudo = re.match(r"[A-Za-z-]+", part[m.end():])
    if pseudo and pseudo.group(0) in CSS_PSEUDO_CLASSES:
        return
    guess = suggest(scheme)
    errors.append(ValidationError(
        message=f'Invalid scheme "{scheme}"',
        position=offset,
        suggestion=f'Did you mean "{guess}"?' if guess else "",
        example=f"Valid schemes: {', '.join(VALID_SCHEMES)}",
        part_index=index,
    ))


def _check_parameters(part: str, offset: int, index: int, errors: List[ValidationError]) -> None:
    marks = [i for i, ch in enumerate(part) if ch == "?"]
    if len(marks) < 2:
        return
    # A `?` inside a regexp body is a quantifier, not a parameter separator.
    body = part[marks[0] + 1:]
    for m in re.finditer(r"(?:regexp=|regexp:)(/(?:\\.|[^/])*/(?:(?:\\.|[^/])*/)?)", body):
        body = body[:m.start(1)] + "_" * len(m.group(1)) + body[m.end(1):]
    for i, ch in enumerate(body):
        if ch == "?":
            errors.append(ValidationError(
                message='Multiple "?" found in parameters. Use "&" to separate parameters',
                position=offset + marks[0] + 1 + i,
                suggestion='Replace additional "?" with "&"',
                example="Example: ?param1=value&param2=value",
                part_index=index,
            ))


def _check_variables(part: str, offset: int, index: int, errors: List[ValidationError]) -> None:
    depth, last_open, i = 0, -1, 0
    while i < len(part):
        if part.startswith("${", i):
            depth += 1
            if last_open == -1:
                last_open = i
            i += 2
            continue
        if part[i] == "}" and depth:
            depth -= 1
            if depth == 0:
                last_open = -1
        i += 1
    if depth:
        errors.append(ValidationError(
            message='Unmatched "${" in variable syntax',
            position=offset + last_open,
            example="Variables should be: ${varName}",
            part_index=index,
        ))


def _operator_hint(op: str) -> Tuple[str, str]:
    if op == "+" or op.startswith("++"):
        return 'Did you mean "++"?', "Use: query1 ++ query2"
    if op == "|" or op.startswith("||"):
        return 'Did you mean "||"?', "Use: query1 || query2"
    if op == ">":
        return 'Did you mean ">>" or ">>>"?', "Use: query1 >> query2 or query1 >>> query2"
    if len(op) > 3 and set(op) == {">"}:
        return 'Did you mean ">>>" or ">>"?', "Use: query1 >>> query2 or query1 >> query2"
    return f"Valid operators: {', '.join(VALID_OPERATORS)}", ""


def _check_operators(query: str, errors: List[ValidationError]) -> None:
    placeholders = [m.span() for m in re.finditer(r"\$\{[^}]*\}", query)]
    for m in re.finditer(r"[+|>]+", query):
        if any(start <= m.start() < end for start, end in placeholders):
            continue
        before_ok = m.start() == 0 or query[m.start() - 1] == " "
        after_ok = m.end() == len(query) or query[m.end()] == " "
        if not (before_ok and after_ok) or m.group(0) in VALID_OPERATORS:
            continue
        hint, example = _operator_hint(m.group(0))
        errors.append(ValidationError(
            message=f'Invalid operator "{m.group(0)}"',
            position=m.start(),
            suggestion=hint,
            example=example,
        ))


def _check_regexp(part: str, offset: int, index: int, warnings: List[ValidationWarning]) -> None:
    m = re.search(r"[?&](?:transform=regexp:|regexp=)([^&\s]+)", part)
    if not m:
        return
    pieces = re.split(r"(?<!\\)/", m.group(1))
    if len(pieces) < 2:
        return
    pattern = pieces[1]
    start = offset + m.start(1) + 1
    for ch, meaning in _REGEXP_SPECIALS:
        if "\\" + ch in pattern or ch not in pattern:
            continue
        if ch == "." and all(i + 1 < len(pattern) and pattern[i + 1] in "*+?"
                             for i, c in enumerate(pattern) if c == "."):
            continue
        if (ch == "*" and ".*" in pattern) or (ch == "+" and ".+" in pattern) or (ch == "?" and ".?" in pattern):
            continue
        if (ch == "^" and pattern.startswith("^")) or (ch == "$" and pattern.endswith("$")):
            continue
        warnings.append(ValidationWarning(
            message=f'Unescaped special character "{ch}" in regexp pattern',
            position=start + pattern.index(ch),
            suggestion=f'In regex, "{ch}" {meaning}. If you want a literal "{ch}", use "\\{ch}"',
            part_index=index,
        ))
        return


def _check_template(part: str, offset: int, index: int, warnings: List[ValidationWarning]) -> None:
    if not part.startswith("template:"):
        return
    content = part[len("template:"):]
    base = offset + len("template:")
    for m in re.finditer(r"(?<!\$)\{([A-Za-z_][A-Za-z0-9_]*)\}", content):
        warnings.append(ValidationWarning(
            message='Template variable missing "$" prefix',
            position=base + m.start(),
            suggestion=f'Use "${{{m.group(1)}}}" instead of "{{{m.group(1)}}}" for variable substitution',
            part_index=index,
        ))
    for m in re.finditer(r"\$\{([^}]*)\}", content):
        inner = m.group(1)
        if not inner.strip():
            warnings.append(ValidationWarning(
                message="Empty template variable",
                position=base + m.start(),
                suggestion="Template variables should contain a variable name: ${varName}",
                part_index=index,
            ))
        elif inner != inner.strip():
            warnings.append(ValidationWarning(
                message="Template variable has leading/trailing whitespace",
                position=base + m.start(),
                suggestion=f'Use "${{{inner.strip()}}}" instead of "${{{inner}}}"',
                part_index=index,
            ))
    for m in re.finditer(r"\$(?!\{)([A-Za-z_][A-Za-z0-9_]*)", content):
        warnings.append(ValidationWarning(
            message="Possible template variable without braces",
            position=base + m.start(),
            suggestion=f'Use "${{{m.group(1)}}}" instead of "${m.group(1)}" for variable substitution',
            part_index=index,
        ))


def _query_info(parts: List[Tuple[int, str]], operators: List[str], query: str) -> QueryInfo:
    infos: List[QueryPartInfo] = []
    required, pipe = True, False
    for i, (_, text) in enumerate(parts):
        try:
            seg = parse_segment(text, required=required, is_pipe=pipe)
            infos.append(QueryPartInfo(seg.scheme.value, seg.path,
                                       {k: list(v) for k, v in seg.parameters.items()},
                                       {k: list(v) for k, v in seg.transforms.items()},
                                       seg.is_pipe, seg.required))
        except QueryFormatError:
            infos.append(QueryPartInfo("html", text, {}, {}, pipe, required))
        if i < len(operators):
            op = operators[i]
            required = op in ("++", ">>", ">>>")
            pipe = op in (">>", ">>>")
    return QueryInfo(parts=infos, operators=list(operators), variables=extract_variable_names(query))


def validate(query: str) -> ValidationResult:
    """Checks `query` and returns its errors, warnings and structure."""
    result = ValidationResult(query or "")
    if not query:
        return result

    parts, operators = _split_parts(query)
    for index, (offset, text) in enumerate(parts):
        _check_scheme(text, offset, index, result.errors)
        _check_parameters(text, offset, index, result.errors)
        _check_variables(text, offset, index, result.errors)
    _check_operators(query, result.errors)
    for index, (offset, text) in enumerate(parts):
        _check_regexp(text, offset, index, result.warnings)
        _check_template(text, offset, index, result.warnings)

    if result.is_valid:
        result.info = _query_info(parts, operators, query)
    return result


__all__ = [
    "validate",
    "levenshtein",
    "suggest",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "QueryInfo",
    "QueryPartInfo",
]
