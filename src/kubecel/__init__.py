"""kubecel: compile JavaScript-style resource expressions into CEL.

The top-level package re-exports the entry points most callers need::

    from kubecel import AnalysisContext, ExpressionAnalyzer

    analyzer = ExpressionAnalyzer()
    result = analyzer.analyze(
        "deployment.status.readyReplicas > 0",
        AnalysisContext.for_resources(["deployment"]),
    )
    result.expression.text  # 'resources.deployment.status.readyReplicas > 0'
"""

from __future__ import annotations

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.context import AnalysisContext, ContextKind, FactoryMode
from kubecel.expressions.markers import CelExpression, CelType, DependencyMarker
from kubecel.expressions.results import ConversionResult

__version__ = "0.4.0"

__all__ = [
    "__version__",
    "AnalysisContext",
    "CelExpression",
    "CelType",
    "ContextKind",
    "ConversionResult",
    "DependencyMarker",
    "ExpressionAnalyzer",
    "FactoryMode",
]
