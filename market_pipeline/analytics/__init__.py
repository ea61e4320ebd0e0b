"""
Market Analytics Module
"""
from .metrics import (
    ComputedMetric,
    MetricsEngine,
    TransactionFact,
    compute_group_metrics,
    compute_metrics,
)
from .statistics import coefficient_of_variation, confidence_score, liquidity_score, median

__all__ = [
    "ComputedMetric",
    "MetricsEngine",
    "TransactionFact",
    "compute_group_metrics",
    "compute_metrics",
    "coefficient_of_variation",
    "confidence_score",
    "liquidity_score",
    "median",
]
