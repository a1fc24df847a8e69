"""
Defines the core data types for the webq query engine.

This module provides the parsed query representation (segments, chains and
the whole-expression AST), the result containers the engine folds values
into, and the page model every query runs against.
"""

from __future__ import annotations

import enum
import html as _html
import json
import types
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import lxml.html
from lxml import etree

from webq import webq_serialize


class QueryFormatError(ValueError):
    """A query expression is structurally invalid."""

    def __init__(self, message: str, *, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedSchemeError(QueryFormatError):
    def __init__(self, scheme: str, *, source: Optional[str] = None):
        super().__init__(f"Unsupported scheme: {scheme}", source=source)
        self.scheme = scheme


# =================================================================
# Query AST
# =================================================================

class Scheme(enum.Enum):
    HTML = "html"
    JSON = "json"
    URL = "url"
    TEMPLATE = "template"

    @classmethod
    def names(cls) -> List[str]:
        return [m.value for m in cls]


# Pipeline stages in the order they always run.
STAGES: Tuple[str, ...] = ("transform", "update", "filter", "index", "save", "keep")


@dataclass(frozen=True)
class QuerySegment:
    """One `scheme:path?params` unit between combinator operators.

    `path`, parameter values and transform values are templates: `${...}`
    placeholders are resolved against the variable environment right before
    the segment runs, never at parse time.
    """
    scheme: Scheme
    path: str
    parameters: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    transforms: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    required: bool = True
    is_pipe: bool = False
    source: str = ""

    def __post_init__(self):
        # Read-only views over tuples
        for name in ("parameters", "transforms"):
            frozen = {k: tuple(v) for k, v in getattr(self, name).items()}
            object.__setattr__(self, name, types.MappingProxyType(frozen))

    @property
    def saves(self) -> List[str]:
        return list(self.transforms.get("save", []))

    @property
    def keeps(self) -> bool:
        if "keep" not in self.transforms:
            return False
        return all(v.strip().lower() != "false" for v in self.transforms["keep"])

    @property
    def discards(self) -> bool:
        """True when the value is recorded in the environment but not returned."""
        return bool(self.saves) and not self.keeps

    def uses_transform(self, prefix: str) -> bool:
        for spec in self.transforms.get("transform", []):
            name = spec.strip()
            if name == prefix or name.startswith(prefix + ":"):
                return True
        return False

    def __repr__(self) -> str:
        return (f"QuerySegment(scheme={self.scheme.value}, path={self.path!r}, "
                f"parameters={dict(self.parameters)}, transforms={dict(self.transforms)}, "
                f"required={self.required}, is_pipe={self.is_pipe})")


@dataclass(frozen=True)
class Chain:
    """The segments of one `>>>` stage, in evaluation order."""
    segments: Tuple[QuerySegment, ...]

    def __iter__(self) -> Iterator[QuerySegment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class Query:
    """A whole expression: chains linked by the array-pipe operator."""
    stages: Tuple[Chain, ...]
    source: str = ""

    def segments(self) -> Iterator[QuerySegment]:
        for chain in self.stages:
            yield from chain

    def uses_transform(self, prefix: str) -> bool:
        return any(seg.uses_transform(prefix) for seg in self.segments())


# =================================================================
# Results
# =================================================================

@dataclass(frozen=True)
class DiscardMarker:
    """A value already saved to the environment that must not be returned."""
    value: Any


def is_valid_result(value: Any) -> bool:
    """False for None, the text "null" and blank text."""
    if value is None:
        return False
    if isinstance(value, str):
        return value != "null" and bool(value.strip())
    return True


class QueryResult:
    """An ordered, flat list of raw values.

    A list input is adopted as-is, `None` gives an empty result and anything
    else becomes a one-element result.
    """

    def __init__(self, data: Any = None):
        if isinstance(data, QueryResult):
            self.data: List[Any] = list(data.data)
        elif isinstance(data, list):
            self.data = data
        elif data is None:
            self.data = []
        else:
            self.data = [data]

    def combine(self, other: "QueryResult") -> "QueryResult":
        if not other.data:
            return self
        if not self.data:
            return other
        return QueryResult([*self.data, *other.data])

    def strip_discarded(self) -> "QueryResult":
        return QueryResult([v for v in self.data if not isinstance(v, DiscardMarker)])

    def unwrapped(self) -> List[Any]:
        return [v.value if isinstance(v, DiscardMarker) else v for v in self.data]

    def simplify(self) -> Any:
        if not self.data:
            return None
        if len(self.data) == 1:
            return self.data[0]
        return self.data

    def __bool__(self) -> bool:
        return bool(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __iter__(self):
        return iter(self.data)

    def __repr__(self) -> str:
        return f"QueryResult({self.data!r})"


# =================================================================
# Page model
# =================================================================

def is_element(value: Any) -> bool:
    return isinstance(value, etree._Element) and isinstance(value.tag, str)


def parse_html(content: str) -> etree._Element:
    """Parses an HTML document and returns its root (`<html>`) element."""
    text = content if content and content.strip() else "<html></html>"
    try:
        return lxml.html.document_fromstring(text)
    except (etree.ParserError, ValueError):
        # lxml refuses unicode input carrying an encoding declaration
        return lxml.html.document_fromstring(text.encode("utf-8"))


def element_text(element: etree._Element) -> str:
    return element.text_content()


def inner_html(element: etree._Element) -> str:
    parts = [_html.escape(element.text, quote=False) if element.text else ""]
    for child in element:
        parts.append(lxml.html.tostring(child, encoding="unicode", with_tail=True))
    return "".join(parts)


def outer_html(element: etree._Element) -> str:
    return lxml.html.tostring(element, encoding="unicode", with_tail=False)


def try_parse_json(text: Any) -> Any:
    """Decodes JSON text. Text holding a JSON-encoded string is decoded once more;
    anything that is not JSON comes back unchanged."""
    if not isinstance(text, str):
        return text
    try:
        value = json.loads(text)
    except ValueError:
        return text
    if isinstance(value, str) and value.lstrip()[:1] in ("{", "["):
        try:
            return json.loads(value)
        except ValueError:
            pass
    return value


class PageData:
    """An already-fetched page: its URL, parsed HTML document and JSON data."""

    def __init__(self, url: str, html: str = "", json_data: Any = None,
                 default_json_id: Optional[str] = None):
        self.url = url or ""
        self.html = html or ""
        self.document = parse_html(self.html)
        if isinstance(json_data, str):
            json_data = try_parse_json(json_data)
        if json_data is None and default_json_id:
            json_data = self._embedded_json(default_json_id)
        self.json_data = json_data

    def _embedded_json(self, element_id: str) -> Any:
        found = self.document.get_element_by_id(element_id, None)
        if found is None:
            return None
        decoded = try_parse_json(element_text(found).strip())
        return decoded if not isinstance(decoded, str) else None

    @classmethod
    def auto(cls, url: str, content: Any, *, content_type: Optional[str] = None) -> "PageData":
        """Builds page data from raw content, sniffing XML, JSON and HTML."""
        if isinstance(content, (dict, list)):
            return cls(url, "", json_data=content)
        text = content.decode("utf-8", errors="replace") if isinstance(content, (bytes, bytearray)) else str(content or "")
        fmt = webq_serialize.detect_format(content_type, text)
        if fmt == "xml" or text.lstrip().startswith("<?xml"):
            data = webq_serialize.deserialize(text, fmt="xml")
            if not isinstance(data, str):
                return cls(url, "", json_data=data)
        if fmt in ("json", "yaml"):
            data = webq_serialize.deserialize(text, content_type=content_type, fmt=fmt)
            if not isinstance(data, str):
                return cls(url, "", json_data=data)
        return cls(url, text, json_data=None)

    @property
    def origin(self) -> str:
        parts = urlsplit(self.url)
        if not parts.scheme or not parts.netloc:
            return ""
        return f"{parts.scheme}://{parts.netloc.rsplit('@', 1)[-1]}"

    def root(self) -> "PageNode":
        return PageNode(self, element=self.document, json_data=self.json_data)

    def __repr__(self) -> str:
        return f"PageData(url={self.url!r})"


class PageNode:
    """The unit a query runs against: an element and/or JSON data of a page."""

    def __init__(self, page_data: PageData, element: Any = None, json_data: Any = None):
        self.page_data = page_data
        self.element = element
        self.json_data = json_data

    @property
    def value(self) -> Any:
        return self.element if self.element is not None else self.json_data

    def __repr__(self) -> str:
        kind = "element" if self.element is not None else "json"
        return f"PageNode({kind}, url={self.page_data.url!r})"


__all__ = [
    "QueryFormatError",
    "UnsupportedSchemeError",
    "Scheme",
    "STAGES",
    "QuerySegment",
    "Chain",
    "Query",
    "DiscardMarker",
    "QueryResult",
    "is_valid_result",
    "PageData",
    "PageNode",
    "is_element",
    "parse_html",
    "element_text",
    "inner_html",
    "outer_html",
    "try_parse_json",
]
