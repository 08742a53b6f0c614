"""Expression compiler: JavaScript-style expressions to CEL.

Pipeline
--------
- parser.py: lark grammar and AST builder (``parse_expression``)
- converter.py: AST to CEL text with dependency recording
- calls.py / precedence.py: call mappings and parenthesization rules
- extractor.py: pattern-based dependency scan and fallback rewrites
- cache.py: LRU/TTL cache for trees and results
- analyzer.py: the facade tying the above together

Results are plain frozen dataclasses (:class:`ConversionResult`) so they can
be cached, shared across threads and serialized with ``to_dict()``.
"""

from __future__ import annotations

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.cache import CacheOptions, CacheStats, ExpressionCache
from kubecel.expressions.context import AnalysisContext, ContextKind, FactoryMode
from kubecel.expressions.converter import CelConverter, convert_expression
from kubecel.expressions.errors import (
    ConversionWarning,
    ErrorKind,
    ExpressionError,
    ExpressionErrorInfo,
    ParseFailure,
    ReferenceResolutionFailure,
    UnsupportedSyntax,
    ValidationFailure,
)
from kubecel.expressions.extractor import extract_from_text, extract_from_value, rewrite_fallback
from kubecel.expressions.markers import (
    SCHEMA_RESOURCE_ID,
    CelExpression,
    CelType,
    DependencyMarker,
    FieldSource,
)
from kubecel.expressions.parser import can_parse, parse_expression, parse_expression_safe, parse_script
from kubecel.expressions.results import ConversionResult
from kubecel.expressions.source_map import SourceMapBuilder, SourceMapEntry

__all__ = [
    "SCHEMA_RESOURCE_ID",
    "AnalysisContext",
    "CacheOptions",
    "CacheStats",
    "CelConverter",
    "CelExpression",
    "CelType",
    "ContextKind",
    "ConversionResult",
    "ConversionWarning",
    "DependencyMarker",
    "ErrorKind",
    "ExpressionAnalyzer",
    "ExpressionCache",
    "ExpressionError",
    "ExpressionErrorInfo",
    "FactoryMode",
    "FieldSource",
    "ParseFailure",
    "ReferenceResolutionFailure",
    "SourceMapBuilder",
    "SourceMapEntry",
    "UnsupportedSyntax",
    "ValidationFailure",
    "can_parse",
    "convert_expression",
    "extract_from_text",
    "extract_from_value",
    "parse_expression",
    "parse_expression_safe",
    "parse_script",
    "rewrite_fallback",
]
