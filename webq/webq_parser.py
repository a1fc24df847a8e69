"""
Turns a query expression into its AST.

    expr    := chain (">>>" chain)*
    chain   := segment (op segment)*
    op      := "||" | "++" | ">>"
    segment := [scheme ":"] path ["?" params]

The whole expression is parsed once, up front, into a `Query` holding one
`Chain` per array-pipe stage.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from webq.webq_datatypes import (
    Chain,
    Query,
    QueryFormatError,
    QuerySegment,
    Scheme,
    UnsupportedSchemeError,
)

logger = logging.getLogger(__name__)

OPERATOR_RE = re.compile(r"(\|\||\+\+|>>>|>>)")
ARRAY_PIPE = ">>>"

# Keys whose values embed their own `&`/`;` grammar.
EMBEDDED_KEYS = frozenset({"transform", "filter", "update", "regexp"})

# A `word:` prefix that is a CSS pseudo-class rather than a scheme.
CSS_PSEUDO_CLASSES = frozenset({
    "active", "checked", "contains", "default", "disabled", "empty", "enabled",
    "first", "first-child", "first-of-type", "focus", "has", "hover", "in-range",
    "invalid", "is", "lang", "last", "last-child", "last-of-type", "link", "not",
    "nth-child", "nth-last-child", "nth-last-of-type", "nth-of-type", "only-child",
    "only-of-type", "optional", "out-of-range", "read-only", "read-write",
    "required", "root", "target", "valid", "visited", "where",
})

_SCHEME_PREFIX_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):")
_PARAM_START_RE = re.compile(r"[A-Za-z_][\w-]*(?:=|&|$)")
_UNESCAPED_SEMI_RE = re.compile(r"(?<!\\);")


# =================================================================
# Lexer
# =================================================================

def split_keep(text: str, pattern: re.Pattern = OPERATOR_RE) -> List[str]:
    """Splits on `pattern`, keeping every separator as its own entry."""
    if not text:
        return []
    out: List[str] = []
    start = 0
    for m in pattern.finditer(text):
        if m.start() != start:
            out.append(text[start:m.start()])
        out.append(m.group(0))
        start = m.end()
    if start < len(text):
        out.append(text[start:])
    return out


def tokenize(expr: str) -> List[str]:
    return [t for t in (p.strip() for p in split_keep(expr or "")) if t]


def split_array_pipes(expr: str) -> List[str]:
    """Splits an expression into its `>>>` stages."""
    stages: List[str] = []
    current: List[str] = []
    for token in split_keep(expr or ""):
        if token == ARRAY_PIPE:
            stages.append("".join(current))
            current = []
        else:
            current.append(token)
    stages.append("".join(current))
    return stages


def parse_chain(expr: str) -> Chain:
    """Folds one `>>>`-free expression into flagged segments."""
    required, pipe = True, False
    segments: List[QuerySegment] = []
    for token in tokenize(expr):
        match token:
            case "||":
                required = False
            case "++":
                required = True
            case ">>":
                required, pipe = True, True
            case ">>>":
                raise QueryFormatError("array pipe inside a chain", source=expr)
            case _:
                segments.append(parse_segment(token, required=required, is_pipe=pipe))
                pipe = False
    return Chain(tuple(segments))


def parse_query(expr: str) -> Query:
    stages = tuple(parse_chain(stage) for stage in split_array_pipes(expr or ""))
    logger.debug("parsed %r into %d stage(s)", expr, len(stages))
    return Query(stages=stages, source=expr or "")


# =================================================================
# Segment parser
# =================================================================

def _find_next_slash(value: str, start: int) -> int:
    i = start
    while i < len(value):
        if value[i] == "\\":
            i += 2
            continue
        if value[i] == "/":
            return i
        i += 1
    return -1


def is_complete_regexp(value: str) -> bool:
    """True when a `regexp:/pattern/` or `regexp:/pattern/replacement/` body is closed."""
    if not value.startswith("regexp:"):
        return True
    first = value.find("/")
    if first == -1:
        return False
    second = _find_next_slash(value, first + 1)
    if second == -1:
        return False
    if second == len(value) - 1:
        return True
    third = _find_next_slash(value, second + 1)
    return third == len(value) - 1


def split_transforms(value: str) -> List[str]:
    """Splits a `transform` value on `;`, keeping regexp bodies whole."""
    result: List[str] = []
    pending: Optional[str] = None
    for part in _UNESCAPED_SEMI_RE.split(value):
        if pending is not None:
            pending = f"{pending};{part}"
        elif part.strip().startswith("regexp:"):
            pending = part.strip()
        else:
            result.append(part)
            continue
        if is_complete_regexp(pending):
            result.append(pending)
            pending = None
    if pending is not None:
        result.append(pending)
    return result


def split_regexps(value: str) -> List[str]:
    """Splits a `regexp` shorthand value on `;` between complete `/pattern/replacement/` bodies."""
    result: List[str] = []
    pending: Optional[str] = None
    for part in _UNESCAPED_SEMI_RE.split(value):
        pending = part if pending is None else f"{pending};{part}"
        if is_complete_regexp("regexp:" + pending.strip()):
            result.append(pending)
            pending = None
    if pending is not None:
        result.append(pending)
    return result


def _inside_regexp(key: str, value: str) -> bool:
    """True while `value` of `key` is still inside an unfinished regexp body."""
    if key == "regexp":
        return value.startswith("/") and not is_complete_regexp("regexp:" + value)
    if key == "transform":
        items = split_transforms(value)
        return bool(items) and not is_complete_regexp(items[-1].strip())
    return False


def split_params(text: str) -> List[Tuple[str, str]]:
    """Splits `k=v&k2=v2` into pairs.

    An `&` only separates pairs when it is unescaped, outside a regexp body and
    followed by something shaped like a parameter. A key without `=` gets the
    empty string as its value.
    """
    pairs: List[str] = []
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "&":
            current = text[start:i]
            key, _, value = current.partition("=")
            if (not (key in EMBEDDED_KEYS and _inside_regexp(key, value))
                    and _PARAM_START_RE.match(text, i + 1)):
                pairs.append(current)
                start = i + 1
        i += 1
    pairs.append(text[start:])

    out: List[Tuple[str, str]] = []
    for raw in pairs:
        if not raw:
            continue
        key, _, value = raw.partition("=")
        out.append((key.strip(), value))
    return out


def _find_params_start(text: str) -> int:
    """Index of the `?` that opens the parameters, ignoring `${...}` bodies."""
    depth = 0
    i = 0
    while i < len(text):
        if text.startswith("${", i):
            depth += 1
            i += 2
            continue
        ch = text[i]
        if ch == "}" and depth:
            depth -= 1
        elif ch == "?" and not depth:
            return i
        i += 1
    return -1


def _detect_scheme(text: str) -> Tuple[Scheme, str]:
    m = _SCHEME_PREFIX_RE.match(text)
    if not m:
        return Scheme.HTML, text
    name = m.group(1)
    if name in Scheme.names():
        return Scheme(name), text[m.end():]
    rest = text[m.end():]
    pseudo = re.match(r"[A-Za-z-]+", rest)
    if pseudo and pseudo.group(0) in CSS_PSEUDO_CLASSES:
        return Scheme.HTML, text
    raise UnsupportedSchemeError(name, source=text)


def parse_segment(text: str, *, required: bool = True, is_pipe: bool = False) -> QuerySegment:
    source = text
    scheme, text = _detect_scheme(text.strip())

    q = _find_params_start(text)
    path, params_text = (text, "") if q == -1 else (text[:q], text[q + 1:])
    if scheme in (Scheme.URL, Scheme.TEMPLATE) and path.startswith("/"):
        path = path[1:]

    params: Dict[str, List[str]] = {}
    for key, value in split_params(params_text):
        if "?" in key or (key in ("save", "keep", "index") and "?" in value):
            raise QueryFormatError(
                'Multiple "?" found in parameters. Use "&" to separate parameters',
                source=source,
            )
        if key == "transform":
            values = split_transforms(value)
        elif key == "regexp":
            values = split_regexps(value)
        elif key in ("keep", "index"):
            values = [value]
        else:
            values = _UNESCAPED_SEMI_RE.split(value)
        params.setdefault(key, []).extend(values)

    transforms: Dict[str, List[str]] = {}
    if "transform" in params:
        transforms["transform"] = params.pop("transform")
    if "regexp" in params:
        transforms.setdefault("transform", []).extend(f"regexp:{v}" for v in params.pop("regexp"))
    for stage in ("update", "filter", "index", "save", "keep"):
        if stage in params:
            transforms[stage] = params.pop(stage)

    return QuerySegment(
        scheme=scheme,
        path=path,
        parameters=params,
        transforms=transforms,
        required=required,
        is_pipe=is_pipe,
        source=source.strip(),
    )


__all__ = [
    "OPERATOR_RE",
    "split_keep",
    "tokenize",
    "split_array_pipes",
    "parse_chain",
    "parse_query",
    "parse_segment",
    "split_params",
    "split_transforms",
    "split_regexps",
    "is_complete_regexp",
]
