"""
Query execution.

`QueryString` parses an expression once and can then run it against any number
of page nodes. One execution owns one `VariableEnvironment`; it is seeded with
`time`, `pageUrl` and `rootUrl`, overlaid with the caller's initial variables,
and threaded through every segment, every pipe element and every array-pipe
stage (as a copy at each `>>>` boundary).
"""

from __future__ import annotations

import collections.abc
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

from webq import webq_serialize
from webq.webq_datatypes import (
    Chain,
    PageData,
    PageNode,
    QueryResult,
    QuerySegment,
    Scheme,
    is_element,
    is_valid_result,
    parse_html,
    try_parse_json,
)
from webq.webq_parser import parse_query
from webq.webq_resolvers import resolve
from webq.webq_sandbox import JsSandbox
from webq.webq_transforms import TransformContext, TransformRegistry, apply_pipeline, as_text
from webq.webq_variables import VariableEnvironment, resolve_all, resolve_placeholders

logger = logging.getLogger(__name__)


def _dbg(*parts):
    if os.environ.get("WEBQ_DEBUG"):
        logger.debug(" ".join(str(p) for p in parts))


def _flatten(values: Iterable[Any]) -> List[Any]:
    out: List[Any] = []
    for v in values:
        if isinstance(v, list):
            out.extend(_flatten(v))
        else:
            out.append(v)
    return out


class QueryString:
    """A parsed query expression.

    >>> QueryString("json:user/name").execute(PageData("", json_data={"user": {"name": "Ann"}}).root())
    'Ann'

    `registry` adds named transforms on top of the default registry.
    `sandbox` is the JavaScript sandbox used by `jseval`; it is reset once at
    the start of every execution of a query that uses `jseval`.
    """

    def __init__(self, query: Optional[str], *,
                 registry: Optional[TransformRegistry] = None,
                 sandbox: Optional[JsSandbox] = None):
        self.query = query or ""
        self.ast = parse_query(self.query)
        self.registry = registry
        self.sandbox = sandbox
        self.uses_sandbox = self.ast.uses_transform("jseval")

    def __repr__(self) -> str:
        return f"QueryString({self.query!r})"

    # ----------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------

    def execute(self, node: PageNode, simplify: bool = True,
                initial_variables: Optional[collections.abc.Mapping] = None) -> Any:
        value, _ = self.execute_with_variables(node, simplify=simplify,
                                               initial_variables=initial_variables)
        return value

    def execute_with_variables(self, node: PageNode, simplify: bool = True,
                               initial_variables: Optional[collections.abc.Mapping] = None
                               ) -> Tuple[Any, VariableEnvironment]:
        """Runs the query and also returns the final variable environment."""
        env = VariableEnvironment.seeded(
            page_url=node.page_data.url,
            root_url=node.page_data.origin,
            initial=initial_variables,
        )
        if self.uses_sandbox and self.sandbox is not None:
            self.sandbox.reset()

        current = node
        *leading, last = self.ast.stages
        for chain in leading:
            result = self._run_chain(chain, current, env).strip_discarded()
            current = self._array_node(current, _flatten(result.data))
            env = env.copy()
            _dbg("array pipe ->", current.json_data, "vars", sorted(env))

        result = self._run_chain(last, current, env).strip_discarded()
        if not simplify:
            return [self._wrap(current, v) for v in result.data], env
        return result.simplify(), env

    def get_value(self, node: PageNode, separator: str = "\n") -> str:
        result = self.execute(node)
        if isinstance(result, list):
            return separator.join(self._text(v) for v in result)
        return "" if result is None else self._text(result)

    def get_collection(self, node: PageNode) -> List[PageNode]:
        return list(self.execute(node, simplify=False))

    def get_collection_value(self, node: PageNode) -> List[Any]:
        return [n.value for n in self.get_collection(node)]

    # ----------------------------------------------------------------
    # Chains and segments
    # ----------------------------------------------------------------

    def _run_chain(self, chain: Chain, node: PageNode, env: VariableEnvironment) -> QueryResult:
        result = QueryResult([])
        for i, segment in enumerate(chain):
            if result and not segment.required and not segment.is_pipe:
                _dbg("skip", segment.source)
                continue
            if segment.is_pipe and i > 0:
                piped = QueryResult([])
                for item in result.unwrapped():
                    piped = piped.combine(
                        self._run_segment(segment, self._node_for(segment.scheme, item, node), env))
                result = piped
            else:
                result = result.combine(self._run_segment(segment, node, env))
            _dbg("segment", segment.source, "->", result)
        return result

    def _run_segment(self, segment: QuerySegment, node: PageNode, env: VariableEnvironment) -> QueryResult:
        path = resolve_placeholders(segment.path, env)
        parameters: Dict[str, List[str]] = {k: resolve_all(v, env) for k, v in segment.parameters.items()}
        transforms: Dict[str, List[str]] = {k: resolve_all(v, env) for k, v in segment.transforms.items()}

        match segment.scheme:
            case Scheme.TEMPLATE:
                matches = [path]
            case Scheme.HTML | Scheme.JSON | Scheme.URL:
                matches = [m for m in resolve(segment.scheme, node, path, parameters) if m is not None]

        if not matches:
            return QueryResult([])
        # Several matches run through the pipeline as one list; a single match
        # stays one result entry even if a transform turns it into a list.
        several = len(matches) > 1
        value = matches if several else matches[0]

        ctx = TransformContext(variables=env, node=node, registry=self.registry, sandbox=self.sandbox)
        value = apply_pipeline(value, transforms, ctx)
        if several and isinstance(value, list):
            return QueryResult([v for v in value if is_valid_result(v)])
        return QueryResult([value] if is_valid_result(value) else [])

    # ----------------------------------------------------------------
    # Node synthesis
    # ----------------------------------------------------------------

    def _node_for(self, scheme: Scheme, item: Any, base: PageNode) -> PageNode:
        """A node of `scheme`'s kind for one element of a piped result."""
        page = base.page_data
        match scheme:
            case Scheme.HTML:
                if is_element(item):
                    return PageNode(page, element=item)
                if isinstance(item, (dict, list)):
                    return PageNode(page, json_data=item)
                return PageNode(page, element=parse_html(self._text(item)))
            case Scheme.JSON:
                if isinstance(item, (dict, list)):
                    return PageNode(page, json_data=item)
                if is_element(item):
                    return PageNode(page, element=item, json_data=try_parse_json(self._text(item)))
                return PageNode(page, json_data=try_parse_json(item))
            case Scheme.URL:
                return PageData(self._text(item)).root()
        return PageNode(page, element=base.element, json_data=item)

    def _array_node(self, base: PageNode, values: List[Any]) -> PageNode:
        """The synthetic JSON-array document an array pipe hands to its right side."""
        text = webq_serialize.serialize(values, fmt="json", pretty=False)
        data = webq_serialize.deserialize(text, fmt="json")
        page = PageData(base.page_data.url, "", json_data=data)
        return PageNode(page, element=page.document, json_data=data)

    @staticmethod
    def _wrap(base: PageNode, value: Any) -> PageNode:
        if is_element(value):
            return PageNode(base.page_data, element=value)
        return PageNode(base.page_data, json_data=value)

    @staticmethod
    def _text(value: Any) -> str:
        return as_text(value)


def execute(query: str, node: PageNode, *, simplify: bool = True,
            initial_variables: Optional[collections.abc.Mapping] = None,
            registry: Optional[TransformRegistry] = None,
            sandbox: Optional[JsSandbox] = None) -> Any:
    """Parses and runs `query` in one call."""
    return QueryString(query, registry=registry, sandbox=sandbox).execute(
        node, simplify=simplify, initial_variables=initial_variables)


__all__ = ["QueryString", "execute"]
