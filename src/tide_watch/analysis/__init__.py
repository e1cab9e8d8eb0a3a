"""Tide analysis.

Contains:
- TideAnalyzer: Online phase detection, known extremes and height estimate
- find_log_extrema: Offline high/low extraction over a stored depth series
"""

from .phase_analyzer import TideAnalyzer, PHASE_LENGTH_MS
from .log_extrema import LogExtrema, find_log_extrema, compare_with_known

__all__ = ['TideAnalyzer', 'PHASE_LENGTH_MS', 'LogExtrema', 'find_log_extrema', 'compare_with_known']
