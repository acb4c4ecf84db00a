"""
metricwatch - Metrics collector for tuning trials.

Parse training logs, stop trials early, report observations.
"""

from metricwatch.collector import MetricsCollector, ReportGuard, TrialOutcome
from metricwatch.engine import EarlyStoppingEngine, TriggerDecision
from metricwatch.extractor import MetricExtractor, MetricObservation
from metricwatch.rules import ComparisonType, ObjectiveType, StoppingRule

__version__ = "0.1.0"
__all__ = [
    "ComparisonType",
    "EarlyStoppingEngine",
    "MetricExtractor",
    "MetricObservation",
    "MetricsCollector",
    "ObjectiveType",
    "ReportGuard",
    "StoppingRule",
    "TrialOutcome",
    "TriggerDecision",
    "__version__",
]
