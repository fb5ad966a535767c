"""
Insights analytics

This package contains:
- metrics: extraction of counts, values and ROAS from raw insights rows
- scoring: smoothed rate estimators and the efficiency/profit scoring policies
- ranking: stable ordering and page truncation
"""

from .metrics import MetricsConfig, ExtractedMetrics, extract
from .scoring import ScoredRow, ScoringPolicy, build_policy, score_rows
from .ranking import rank

__all__ = [
    'MetricsConfig', 'ExtractedMetrics', 'extract',
    'ScoredRow', 'ScoringPolicy', 'build_policy', 'score_rows',
    'rank',
]
