from webq.webq_datatypes import (
    DiscardMarker,
    PageData,
    PageNode,
    QueryFormatError,
    QueryResult,
    QuerySegment,
    Scheme,
    UnsupportedSchemeError,
)
from webq.webq_engine import QueryString, execute
from webq.webq_runtime import ExecutionResult, QueryRunner
from webq.webq_sandbox import JsSandbox, SandboxError
from webq.webq_transforms import TransformRegistry, default_registry
from webq.webq_validator import ValidationResult, validate
from webq.webq_variables import VariableEnvironment

__all__ = [
    "QueryString",
    "execute",
    "PageData",
    "PageNode",
    "Scheme",
    "QuerySegment",
    "QueryResult",
    "DiscardMarker",
    "QueryFormatError",
    "UnsupportedSchemeError",
    "VariableEnvironment",
    "TransformRegistry",
    "default_registry",
    "JsSandbox",
    "SandboxError",
    "validate",
    "ValidationResult",
    "QueryRunner",
    "ExecutionResult",
]
