"""
The transform pipeline.

Every segment's value goes through the same six stages, always in this order
no matter how the parameters were written:

    transform -> update -> filter -> index -> save -> keep

`transform` is element-wise over lists. `filter` and `index` see the list as a
whole. A failing transform logs a warning and falls back to the original value
(regexp, update) or to None (index, json, jseval), so one bad transform never
aborts the rest of the chain.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from webq.webq_datatypes import (
    DiscardMarker,
    PageNode,
    element_text,
    is_element,
    is_valid_result,
    try_parse_json,
)
from webq.webq_sandbox import JsSandbox
from webq.webq_variables import VariableEnvironment, stringify

logger = logging.getLogger(__name__)

TransformFn = Callable[[Any], Any]


# =================================================================
# Registry
# =================================================================

class TransformRegistry:
    """Open mapping of transform name to a `value -> value` function.

    A registry may fall back to a parent; query-level registries use the
    module's `default_registry` as their parent.
    """

    def __init__(self, functions: Optional[Dict[str, TransformFn]] = None,
                 parent: Optional["TransformRegistry"] = None):
        self._functions: Dict[str, TransformFn] = dict(functions or {})
        self.parent = parent

    def register(self, name: str, fn: Optional[TransformFn] = None):
        """Registers `fn` under `name`. Without `fn`, works as a decorator."""
        if fn is None:
            def _decorator(f: TransformFn) -> TransformFn:
                self._functions[name] = f
                return f
            return _decorator
        self._functions[name] = fn
        return fn

    def unregister(self, name: str) -> None:
        self._functions.pop(name, None)

    def get(self, name: str) -> Optional[TransformFn]:
        if name in self._functions:
            return self._functions[name]
        if self.parent is not None:
            return self.parent.get(name)
        return None

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def names(self) -> List[str]:
        own = set(self._functions)
        if self.parent is not None:
            own.update(self.parent.names())
        return sorted(own)


default_registry = TransformRegistry()


@dataclass
class TransformContext:
    """What a running pipeline can see besides the value itself."""
    variables: VariableEnvironment
    node: Optional[PageNode] = None
    registry: Optional[TransformRegistry] = None
    sandbox: Optional[JsSandbox] = None
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str, *args: Any) -> None:
        text = message % args if args else message
        self.warnings.append(text)
        logger.warning(text)


# =================================================================
# Text transforms
# =================================================================

def as_text(value: Any) -> str:
    if is_element(value):
        return element_text(value).strip()
    return stringify(value)


def to_base64(value: Any) -> str:
    text = as_text(value)
    if not text:
        return ""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def from_base64(value: Any) -> Optional[str]:
    text = as_text(value)
    if not text:
        return ""
    try:
        return base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.warning("Failed to decode base64 %r: %s", text[:40], e)
        return None


def _digest(algorithm: str) -> TransformFn:
    def _fn(value: Any) -> str:
        return hashlib.new(algorithm, as_text(value).encode("utf-8")).hexdigest()
    _fn.__name__ = algorithm
    return _fn


TEXT_TRANSFORMS: Dict[str, TransformFn] = {
    "upper": lambda v: as_text(v).upper(),
    "lower": lambda v: as_text(v).lower(),
    "base64": to_base64,
    "base64decode": from_base64,
    "base64Decode": from_base64,
    "reverse": lambda v: as_text(v)[::-1],
    "md5": _digest("md5"),
    "sha1": _digest("sha1"),
    "sha256": _digest("sha256"),
}


# =================================================================
# regexp
# =================================================================

_UNESCAPED_SLASH_RE = re.compile(r"(?<!\\)/")
_GROUP_REF_RE = re.compile(r"\$(\d+)")


def parse_regexp_pattern(body: str) -> Optional[Tuple[str, str]]:
    """Splits `/pattern/` or `/pattern/replacement/` into (pattern, replacement).

    An absent or empty replacement selects match mode.
    """
    parts = [p for p in _UNESCAPED_SLASH_RE.split(body) if p]
    if not parts:
        return None
    pattern = parts[0].replace(r"\ALL", r"^[\s\S]*$")
    replacement = parts[1] if len(parts) > 1 else ""
    replacement = replacement.replace(r"\/", "/").replace(r"\;", ";")
    return pattern, replacement


def apply_regexp(value: Any, body: str) -> Any:
    if value is None:
        return None
    parsed = parse_regexp_pattern(body)
    if parsed is None:
        logger.warning("Invalid regexp format %r. Use: /pattern/ or /pattern/replacement/", body)
        return value
    pattern, replacement = parsed
    try:
        regexp = re.compile(pattern, re.MULTILINE)
    except re.error as e:
        logger.warning("Failed to apply regexp: %s, error: %s", pattern, e)
        return value

    text = as_text(value)
    if not replacement:
        m = regexp.search(text)
        return m.group(0) if m else None

    def _expand(m: re.Match) -> str:
        def _group(ref: re.Match) -> str:
            idx = int(ref.group(1))
            if idx > (regexp.groups or 0):
                return ref.group(0)
            return m.group(idx) or ""
        return _GROUP_REF_RE.sub(_group, replacement)

    return regexp.sub(_expand, text)


# =================================================================
# json / jseval / update
# =================================================================

def _assignment_patterns(name: str) -> List[re.Pattern]:
    escaped = re.escape(name).replace(r"\*", ".*")
    tail = r"\s*(?:;|$)"
    return [re.compile(f"{escaped}\\s*=\\s*{body}{tail}") for body in (
        r"(\{[\s\S]*?\})",
        r"(\[[\s\S]*?\])",
        r"(-?\d+\.?\d*(?:[eE][+-]?\d+)?)",
        r"([\"'][\s\S]*?[\"'])",
        r"(true|false)",
        r"(null)",
    )]


def apply_json_transform(value: Any, var_name: Optional[str] = None) -> Any:
    """Parses JSON text, or the literal assigned to `var_name` in script text."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    text = as_text(value).strip()

    if var_name:
        for pattern in _assignment_patterns(var_name.strip()):
            m = pattern.search(text)
            if m:
                text = m.group(1)
                break
        else:
            return None
        if text.startswith("'") and text.endswith("'") and len(text) >= 2:
            return text[1:-1]

    parsed = try_parse_json(text)
    if parsed is text and text:
        logger.warning("Failed to parse JSON: %r", text[:80])
    return parsed


def apply_jseval(value: Any, names: Optional[str], sandbox: Optional[JsSandbox]) -> Any:
    if value is None:
        return None
    if sandbox is None:
        logger.warning("JavaScript sandbox not configured; pass sandbox= to QueryString to use jseval")
        return None
    script = as_text(value).strip()
    if not script:
        return None
    variable_names = [n.strip() for n in names.split(",") if n.strip()] if names else None
    try:
        return sandbox.evaluate_and_extract(script, variable_names)
    except Exception as e:
        # Sandbox implementations raise engine-specific errors
        logger.warning("JavaScript evaluation failed: %s", e)
        return None


def apply_update(value: Any, update: str) -> Any:
    if not isinstance(value, dict):
        return value
    try:
        changes = json.loads(update)
    except ValueError as e:
        logger.warning("Failed to apply update %r: %s", update, e)
        return value
    if not isinstance(changes, dict):
        logger.warning("Failed to apply update %r: not a JSON object", update)
        return value
    return {**value, **changes}


# =================================================================
# filter / index
# =================================================================

def parse_filter(spec: str) -> List[str]:
    parts = re.split(r"(?<!\\) ", spec)
    out = []
    for part in parts:
        part = part.strip().replace("\\ ", " ").replace("\\;", ";").replace("\\&", "&")
        if part:
            out.append(part)
    return out


def _passes(value: Any, patterns: List[str]) -> bool:
    text = as_text(value)
    for pattern in patterns:
        if pattern.startswith("!"):
            needle = pattern[1:]
            if needle and needle in text:
                return False
        elif pattern not in text:
            return False
    return True


def apply_filter(value: Any, spec: str) -> Any:
    if value is None:
        return None
    patterns = parse_filter(spec)
    if not patterns:
        return value
    if isinstance(value, list):
        return [v for v in value if v is not None and _passes(v, patterns)]
    return value if _passes(value, patterns) else None


def apply_index(value: Any, spec: str) -> Any:
    if value is None:
        return None
    try:
        index = int(spec.strip())
    except ValueError:
        logger.warning("Invalid index %r, expected an integer", spec)
        return None
    if isinstance(value, list):
        if not value:
            return None
        if index < 0:
            index += len(value)
        if 0 <= index < len(value):
            return value[index]
        return None
    return value if index == 0 else None


# =================================================================
# Pipeline
# =================================================================

def apply_transform(value: Any, spec: str, ctx: TransformContext) -> Any:
    """Applies one `transform` entry to a single (non-list) value."""
    if value is None:
        return None
    spec = spec.strip()
    name, _, arg = spec.partition(":")

    if name == "regexp":
        return apply_regexp(value, arg)
    if name == "json":
        return apply_json_transform(value, arg or None)
    if name == "jseval":
        return apply_jseval(value, arg or None, ctx.sandbox)
    if name in TEXT_TRANSFORMS:
        return TEXT_TRANSFORMS[name](value)

    for registry in (ctx.registry, default_registry):
        if registry is None:
            continue
        fn = registry.get(spec) or registry.get(name)
        if fn is not None:
            return fn(value)
    ctx.warn("Unknown transform: %s", spec)
    return value


def _each(value: Any, fn: Callable[[Any], Any]) -> Any:
    if isinstance(value, list):
        return [fn(v) for v in value]
    return fn(value)


def apply_pipeline(value: Any, transforms: Dict[str, List[str]], ctx: TransformContext) -> Any:
    """Runs the six stages over `value`; the variable environment is updated in place."""
    for spec in transforms.get("transform", []):
        value = _each(value, lambda v, s=spec: apply_transform(v, s, ctx))
        if isinstance(value, list):
            value = [v for v in value if is_valid_result(v)]
    for spec in transforms.get("update", []):
        value = _each(value, lambda v, s=spec: apply_update(v, s))
    for spec in transforms.get("filter", []):
        value = apply_filter(value, spec)
    for spec in transforms.get("index", []):
        value = apply_index(value, spec)

    saves = [n.strip() for n in transforms.get("save", []) if n.strip()]
    if value is not None:
        for name in saves:
            ctx.variables[name] = value

    keeps = "keep" in transforms and all(
        v.strip().lower() != "false" for v in transforms["keep"])
    if saves and not keeps and value is not None:
        return DiscardMarker(value)
    return value


__all__ = [
    "TransformRegistry",
    "TransformContext",
    "default_registry",
    "TEXT_TRANSFORMS",
    "as_text",
    "parse_regexp_pattern",
    "apply_regexp",
    "apply_json_transform",
    "apply_jseval",
    "apply_update",
    "parse_filter",
    "apply_filter",
    "apply_index",
    "apply_transform",
    "apply_pipeline",
]
