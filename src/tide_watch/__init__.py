"""
tide-watch: Tide observation from depth soundings

This package records the depth under the keel while a vessel sits at anchor
and infers the tide from it: current phase (ebb/flood), the last known high
and low water, predicted times of the next ones, and an estimate of the
current tide height.

Architecture:
    Signal K deltas → tide-watch → depth log (per anchorage) + Signal K deltas

Everything is learned from the sounder; no tide tables are used.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.tide_report import (
    TidePhase,
    Trend,
    Position,
    Sample,
    ExtremeRecord,
    PhaseReport,
    Location,
)

__all__ = [
    "TidePhase",
    "Trend",
    "Position",
    "Sample",
    "ExtremeRecord",
    "PhaseReport",
    "Location",
    "__version__",
]
