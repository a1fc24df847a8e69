"""
Path resolvers: scheme-specific navigation from a node to raw matches.

Every resolver has the signature `resolve(node, path, parameters) -> list` and
never raises on a missing path; no match is an empty list.
"""

from __future__ import annotations

import functools
import logging
import re
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from cssselect import HTMLTranslator, SelectorError
from lxml import etree

from webq.webq_datatypes import (
    PageNode,
    QueryResult,
    Scheme,
    element_text,
    inner_html,
    is_element,
    outer_html,
)
from webq.webq_parser import split_keep

logger = logging.getLogger(__name__)

Resolver = Callable[[PageNode, str, Dict[str, List[str]]], List[Any]]


# =================================================================
# JSON
# =================================================================

_JSON_SPLIT_RE = re.compile(r"(\||,)")
_WILDCARD_SPLIT_RE = re.compile(r"(\||,|&)")


def _key_regex(pattern: str) -> re.Pattern:
    body = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{body}$")


def _expand_wildcards(data: Any, path: str) -> str:
    """Replaces `*`/`?` key patterns with the sorted, comma-joined keys they match."""
    if not isinstance(data, dict):
        return path
    out: List[str] = []
    for part in (p.strip() for p in split_keep(path, _WILDCARD_SPLIT_RE)):
        if part in ("|", ",", "&") or part == "*" or part.startswith(".."):
            out.append(part)
            continue
        if "*" in part or "?" in part:
            regex = _key_regex(part.rstrip("!"))
            matched = sorted(str(k) for k in data if regex.match(str(k)))
            out.append(",".join(matched) if matched else part)
        else:
            out.append(part)
    return "".join(out)


def _deep_search(data: Any, pattern: str) -> List[Any]:
    regex = _key_regex(pattern)
    found: List[Any] = []

    def _walk(current: Any) -> None:
        if isinstance(current, dict):
            for key, value in current.items():
                if regex.match(str(key)):
                    if isinstance(value, list):
                        found.extend(value)
                    else:
                        found.append(value)
                _walk(value)
        elif isinstance(current, list):
            for item in current:
                _walk(item)

    _walk(data)
    return found


def _json_step(data: Any, key: str) -> Any:
    if key == "*":
        return data
    if key.startswith(".."):
        return _deep_search(data, key[2:])
    if isinstance(data, list):
        if "-" in key and not key.startswith("-"):
            start_s, _, end_s = key.partition("-")
            try:
                start = int(start_s) if start_s else 0
                end = int(end_s) if end_s else len(data) - 1
            except ValueError:
                return [item[key] for item in data if isinstance(item, dict) and item.get(key) is not None]
            return data[start:end + 1]
        try:
            index = int(key)
        except ValueError:
            return [item[key] for item in data if isinstance(item, dict) and item.get(key) is not None]
        if index < 0 or index >= len(data):
            return None
        return data[index]
    if isinstance(data, dict):
        if key == "@keys":
            return list(data.keys())
        return data.get(key)
    return None


def _walk_json(data: Any, parts: List[str]) -> QueryResult:
    if not parts:
        return QueryResult(data)
    head, rest = parts[0], parts[1:]
    result = QueryResult([])
    required = True
    for p in (x.strip() for x in split_keep(_expand_wildcards(data, head), _JSON_SPLIT_RE)):
        if p in ("|", ","):
            required = p != "|"
            continue
        if p.endswith("!"):
            p = p[:-1]
            required = True
        if result and not required:
            continue
        step = _json_step(data, p)
        result = result.combine(_walk_json(step, rest) if rest else QueryResult(step))
    return result


def resolve_json(node: PageNode, path: str, parameters: Optional[Dict[str, List[str]]] = None) -> List[Any]:
    parts = [p for p in path.split("/") if p]
    return _walk_json(node.json_data, parts).data


# =================================================================
# HTML
# =================================================================

_HTML_SPLIT_RE = re.compile(r"/|(?=@)")
_translator = HTMLTranslator()


@functools.lru_cache(maxsize=512)
def _compile_selector(selector: str) -> Optional[etree.XPath]:
    try:
        return etree.XPath(_translator.css_to_xpath(selector, prefix="descendant::"))
    except (SelectorError, etree.XPathSyntaxError) as e:
        logger.warning("Invalid CSS selector %r: %s", selector, e)
        return None


def select(element: Any, selector: str) -> List[Any]:
    """CSS selection below `element`. A leading `*` returns every match,
    otherwise only the first."""
    select_all = selector.startswith("*")
    compiled = _compile_selector(selector[1:] if select_all else selector)
    if compiled is None:
        return []
    matches = [e for e in compiled(element) if is_element(e)]
    return matches if select_all else matches[:1]


def _siblings(element: Any, forward: bool) -> List[Any]:
    out = []
    current = element.getnext() if forward else element.getprevious()
    while current is not None:
        if is_element(current):
            out.append(current)
        current = current.getnext() if forward else current.getprevious()
    return out


def _navigate(element: Any, part: str) -> List[Any]:
    if not part or part.startswith("@"):
        return [element]
    match part:
        case "^^":
            return [element.getroottree().getroot()]
        case "^":
            parent = element.getparent()
            return [parent] if parent is not None else []
        case ">":
            children = [c for c in element if is_element(c)]
            return children[:1]
        case "+":
            return _siblings(element, True)[:1]
        case "*+":
            return _siblings(element, True)
        case "-":
            return _siblings(element, False)[:1]
        case "*-":
            return _siblings(element, False)
        case _:
            return select(element, part)


def _class_value(element: Any, class_pattern: str) -> Optional[str]:
    classes = (element.get("class") or "").split()
    if "*" in class_pattern:
        regex = re.compile("^" + ".*".join(re.escape(p) for p in class_pattern.split("*")) + "$")
        return "true" if any(regex.match(c) for c in classes) else None
    return "true" if class_pattern in classes else None


def _attribute_value(element: Any, attribute: str) -> Optional[str]:
    if attribute.startswith("."):
        return _class_value(element, attribute[1:])
    match attribute:
        case "" | "text":
            return element_text(element).strip()
        case "html" | "innerHtml":
            return inner_html(element)
        case "outerHtml":
            return outer_html(element)
        case _:
            return element.get(attribute)


def extract_accessor(element: Any, accessor: str) -> Optional[str]:
    """`@a|b` returns the first non-empty of the listed attributes."""
    for attribute in accessor[1:].split("|"):
        value = _attribute_value(element, attribute.strip())
        if value:
            return value
    return None


def resolve_html(node: PageNode, path: str, parameters: Optional[Dict[str, List[str]]] = None) -> List[Any]:
    element = node.element
    if element is None:
        return []
    parts = [p for p in _HTML_SPLIT_RE.split(path) if p]
    if not parts:
        return [element]
    current = [element]
    for part in parts:
        if not current:
            return []
        current = [found for e in current for found in _navigate(e, part)]
    last = parts[-1]
    if last.startswith("@"):
        return [extract_accessor(e, last) for e in current]
    return current


# =================================================================
# URL
# =================================================================

_URL_COMPONENT_KEYS = ("_scheme", "_host", "_port", "_path", "_fragment", "_userInfo")


def modify_url(url: str, parameters: Dict[str, List[str]]) -> str:
    parts = urlsplit(url)
    query = {}
    for k, v in parse_qsl(parts.query, keep_blank_values=True):
        query.setdefault(k, []).append(v)

    scheme, path, fragment = parts.scheme, parts.path, parts.fragment
    host, userinfo = parts.hostname or "", None
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
    written = parts.netloc.rsplit("@", 1)[-1]
    try:
        port = parts.port
        written = None
    except ValueError:
        # Unreadable port: host:port stays as written unless replaced
        port = None

    for key, values in parameters.items():
        value = values[-1] if values else ""
        match key:
            case "_scheme":
                scheme = value
            case "_host":
                host, written = value, None
            case "_port":
                try:
                    port, written = int(value), None
                except ValueError:
                    logger.warning("Ignoring invalid port %r", value)
            case "_path":
                path = value
            case "_fragment":
                fragment = value
            case "_userInfo":
                userinfo = value
            case "_remove":
                for v in values:
                    for name in v.split(","):
                        query.pop(name.strip(), None)
            case _:
                query[key] = list(values)

    netloc = host if written is None else written
    if port is not None:
        netloc = f"{netloc}:{port}"
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, path, urlencode(query, doseq=True), fragment))


def _default_port(scheme: str) -> Optional[int]:
    return {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}.get(scheme)


def resolve_url(node: PageNode, path: str, parameters: Optional[Dict[str, List[str]]] = None) -> List[Any]:
    url = node.page_data.url
    if parameters:
        url = modify_url(url, parameters)
    if not path:
        return [url]

    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    match path:
        case "scheme":
            return [parts.scheme]
        case "host":
            return [parts.hostname or ""]
        case "port":
            try:
                port = parts.port or _default_port(parts.scheme)
            except ValueError:
                return []
            return [str(port)] if port is not None else []
        case "path":
            return [parts.path]
        case "query":
            return [parts.query]
        case "fragment":
            return [parts.fragment]
        case "userInfo":
            return [parts.netloc.rsplit("@", 1)[0] if "@" in parts.netloc else ""]
        case "origin":
            return [f"{parts.scheme}://{parts.netloc.rsplit('@', 1)[-1]}"]
        case "queryParameters":
            return [query]
    if path.startswith("queryParameters/"):
        value = query.get(path[len("queryParameters/"):])
        return [value] if value is not None else []
    return []


RESOLVERS: Dict[Scheme, Resolver] = {
    Scheme.HTML: resolve_html,
    Scheme.JSON: resolve_json,
    Scheme.URL: resolve_url,
}


def resolve(scheme: Scheme, node: PageNode, path: str, parameters: Dict[str, List[str]]) -> List[Any]:
    return RESOLVERS[scheme](node, path, parameters)


__all__ = [
    "RESOLVERS",
    "resolve",
    "resolve_html",
    "resolve_json",
    "resolve_url",
    "modify_url",
    "select",
    "extract_accessor",
]
