from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

from webq.webq_datatypes import PageData, QueryFormatError, UnsupportedSchemeError
from webq.webq_engine import QueryString
from webq.webq_sandbox import JsSandbox
from webq.webq_transforms import TransformRegistry
from webq.webq_validator import ValidationResult, validate

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """The structured result of running one query."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    query: Optional[str] = None
    position: Optional[int] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    def format_error(self) -> str:
        """Formats an error message with a caret under the failing segment."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.query and self.position is not None:
            return f"{msg}\n{self._source_context(self.query, self.position)}"
        return msg

    @staticmethod
    def _source_context(query: str, position: int) -> str:
        return f"  {query}\n  {' ' * position}^"


class QueryRunner:
    """Parses and executes queries against pages, turning failures into results."""

    def __init__(self, *, registry: Optional[TransformRegistry] = None,
                 sandbox: Optional[JsSandbox] = None, cache_size: int = 256):
        self.registry = registry
        self.sandbox = sandbox
        # Least recently used queries fall out first
        self.compile = functools.lru_cache(maxsize=cache_size)(self._compile)

    def _compile(self, query: str) -> QueryString:
        return QueryString(query, registry=self.registry, sandbox=self.sandbox)

    def check(self, query: str) -> ValidationResult:
        return validate(query)

    def _format_error(self, e: Exception, query: str) -> tuple[str, Optional[int]]:
        match e:
            case UnsupportedSchemeError() as us:
                msg = f"UnsupportedScheme: {us.scheme}"
            case QueryFormatError():
                msg = f"QueryFormatError: {e}"
            case _:
                msg = f"{type(e).__name__}: {e}"
        position = None
        source = getattr(e, "source", None)
        if source:
            idx = query.find(source.strip())
            position = idx if idx >= 0 else None
        return msg, position

    def handle_query(self, query: str, page: PageData, *,
                     variables: Optional[Dict[str, Any]] = None) -> ExecutionResult:
        try:
            compiled = self.compile(query)
            value, env = compiled.execute_with_variables(page.root(), initial_variables=variables)
        except Exception as e:
            # Every failure becomes an error result
            logger.debug("query %r failed", query, exc_info=True)
            msg, position = self._format_error(e, query)
            return ExecutionResult(status='error', error_message=msg, query=query, position=position)
        return ExecutionResult(status='success', value=value, query=query, variables=env.as_dict())


__all__ = ["ExecutionResult", "QueryRunner"]
