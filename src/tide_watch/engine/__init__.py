"""Recording engine - drives the analyzer from raw instrument readings.

Contains:
- RecordingEngine: Engine on/off detection, depth averaging and recording
- apply_delta / apply_delta_line: Signal K delta input
"""

from .recording_engine import RecordingEngine, MovingAverage, EngineEdgeDetector
from .delta_input import SignalKPaths, apply_delta, apply_delta_line

__all__ = [
    'RecordingEngine', 'MovingAverage', 'EngineEdgeDetector',
    'SignalKPaths', 'apply_delta', 'apply_delta_line',
]
