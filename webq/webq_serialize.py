"""
Wire formats for documents and query results.

Documents arrive as JSON, YAML, XML or HTML text. The structured formats decode
to plain dicts and lists; HTML stays text and is parsed by the page model.
Results leave as JSON, YAML or XML, with lxml elements rendered as outer HTML.
"""

from __future__ import annotations

import collections.abc
import json
import re
from typing import Any, Callable, Dict, Optional, Tuple

import xmltodict
import yaml
from lxml import etree

_CHARSET_RE = re.compile(r'charset\s*=\s*["\']?([^\s;"\']+)', re.IGNORECASE)

# Checked in order against the lower-cased Content-Type.
_CONTENT_TYPE_FORMATS: Tuple[Tuple[str, str], ...] = (
    ("json", "json"),
    ("yaml", "yaml"),
    ("html", "html"),
    ("xml", "xml"),
)


def decode_text(data: bytes | bytearray | str, content_type: Optional[str] = None) -> str:
    """Bytes to text using the Content-Type charset, falling back to UTF-8."""
    if isinstance(data, str):
        return data
    if not isinstance(data, (bytes, bytearray)):
        return str(data)
    m = _CHARSET_RE.search(content_type or "")
    encoding = m.group(1) if m else "utf-8"
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def to_plain(value: Any) -> Any:
    """Plain dicts/lists for xmltodict mappings, outer HTML for elements."""
    if isinstance(value, etree._Element):
        from webq.webq_datatypes import outer_html
        return outer_html(value)
    if isinstance(value, collections.abc.Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    One of 'json', 'yaml', 'xml' or 'html', or None when nothing matches.
    The Content-Type wins; otherwise the first non-blank character decides.
    """
    ct = (content_type or "").lower()
    for needle, fmt in _CONTENT_TYPE_FORMATS:
        if needle in ct:
            return fmt
    if data_hint is None:
        return None
    head = data_hint.lstrip()
    if head[:1] in ("{", "["):
        return 'json'
    if head.startswith("<?xml"):
        return 'xml'
    if head.startswith("<"):
        return 'html'
    return None


# --------------------------
# Loaders and dumpers
# --------------------------

def _load_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        # Labelled JSON but written as YAML
        return _load_yaml(text)


def _load_xml(text: str) -> Any:
    try:
        return to_plain(xmltodict.parse(text))
    except xmltodict.expat.ExpatError:
        return text


def _dump_xml(value: Any, pretty: bool, xml_root: str) -> str:
    if not (isinstance(value, dict) and len(value) == 1):
        value = {xml_root: value}
    return xmltodict.unparse(value, pretty=pretty)


_LOADERS: Dict[str, Callable[[str], Any]] = {
    "json": _load_json,
    "yaml": _load_yaml,
    "xml": _load_xml,
}


def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Decodes a document body. `fmt` overrides detection from `content_type`
    and the text itself. Unparseable structured text and HTML come back as text.
    """
    text = decode_text(data, content_type)
    loader = _LOADERS.get(fmt or detect_format(content_type, text) or "")
    return loader(text) if loader else text


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True,
              xml_root: str = "root") -> str:
    """
    Renders a query result as 'json', 'yaml' or 'xml'. XML output that is not
    already a single-key dict is wrapped under `xml_root`.
    """
    plain = to_plain(value)
    match (fmt or "").lower():
        case "json":
            return json.dumps(plain, ensure_ascii=False, indent=2 if pretty else None)
        case "yaml":
            return yaml.safe_dump(plain, sort_keys=False, allow_unicode=True)
        case "xml":
            return _dump_xml(plain, pretty, xml_root)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "decode_text",
    "deserialize",
    "detect_format",
    "serialize",
    "to_plain",
]
