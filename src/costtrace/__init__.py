"""costtrace: formula evaluation engine with explainable cost traces.

Public API::

    from costtrace import CalculationPipeline, FormulaRegistry, VariableSnapshot
"""

from costtrace.cache import SnapshotCache
from costtrace.context import EvaluationContext
from costtrace.models import Formula, Variable
from costtrace.pipeline import CalculationPipeline
from costtrace.registry import FormulaRegistry
from costtrace.resolver import DependencyResolver
from costtrace.snapshot import VariableSnapshot
from costtrace.trace import CalculationStep, StepError, Trace, TraceRecorder

__version__ = "0.1.0"

__all__ = [
    "CalculationPipeline",
    "CalculationStep",
    "DependencyResolver",
    "EvaluationContext",
    "Formula",
    "FormulaRegistry",
    "SnapshotCache",
    "StepError",
    "Trace",
    "TraceRecorder",
    "Variable",
    "VariableSnapshot",
    "__version__",
]
