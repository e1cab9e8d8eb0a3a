"""
Offline extrema extraction over a replayed depth log.

The phase analyzer commits highs and lows online, one sample at a time.
When reprocessing a stored log we also have the whole series at hand, so
local extrema can be located directly and compared against what the
analyzer committed. Large disagreements point at noisy depth data or a
badly chosen record interval.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.signal import argrelextrema

from ..interfaces.tide_report import ExtremeRecord, Sample

logger = logging.getLogger(__name__)

MS_PER_HOUR = 60 * 60 * 1000


@dataclass
class LogExtrema:
    """High and low water found in a depth series."""
    highs: List[ExtremeRecord]
    lows: List[ExtremeRecord]

    def to_dict(self) -> dict:
        return {
            'highs': [h.to_dict() for h in self.highs],
            'lows': [l.to_dict() for l in self.lows],
        }


def find_log_extrema(
    samples: Sequence[Sample],
    min_separation_hours: float = 4.0,
) -> LogExtrema:
    """
    Locate high and low water in a chronologically ordered sample list.

    Args:
        samples: Samples in increasing timer order (as delivered by DepthLog)
        min_separation_hours: Minimum spacing between extrema of the same kind

    Returns:
        LogExtrema with one ExtremeRecord per detected high/low

    Raises:
        ValueError: If fewer than 3 samples are given
    """
    if len(samples) < 3:
        raise ValueError('At least 3 samples are required.')

    timers = np.array([s.timer for s in samples], dtype=float)
    depths = np.array([s.depth for s in samples], dtype=float)

    dt_hours = float(np.median(np.diff(timers))) / MS_PER_HOUR
    order = max(1, int(min_separation_hours / dt_hours)) if dt_hours > 0 else 1

    high_idx = argrelextrema(depths, np.greater, order=order)[0]
    low_idx = argrelextrema(depths, np.less, order=order)[0]

    logger.info(
        f"Log extrema: {len(high_idx)} highs, {len(low_idx)} lows "
        f"(order={order} samples, dt={dt_hours:.3f} h)"
    )

    def _records(indices: np.ndarray) -> List[ExtremeRecord]:
        return [
            ExtremeRecord(
                depth=float(depths[i]),
                timer=float(timers[i]),
                position=samples[i].position,
            )
            for i in indices
        ]

    return LogExtrema(highs=_records(high_idx), lows=_records(low_idx))


def nearest_extreme(
    extrema: Sequence[ExtremeRecord],
    timer: float,
) -> Optional[ExtremeRecord]:
    """Extreme whose timer is closest to timer, or None for an empty list."""
    if not extrema:
        return None
    return min(extrema, key=lambda e: abs(e.timer - timer))


def compare_with_known(
    extrema: LogExtrema,
    highest_known: Optional[ExtremeRecord],
    lowest_known: Optional[ExtremeRecord],
) -> Dict[str, Dict[str, float]]:
    """
    Timing and depth offsets between the analyzer's known tides and the
    nearest extrema found in the log.

    Returns:
        {'high': {'time_offset_minutes': ..., 'depth_offset': ...}, 'low': {...}}
        with an entry only where both sides exist
    """
    result: Dict[str, Dict[str, float]] = {}

    for key, known, candidates in (
        ('high', highest_known, extrema.highs),
        ('low', lowest_known, extrema.lows),
    ):
        if known is None or known.timer is None:
            continue
        match = nearest_extreme(candidates, known.timer)
        if match is None:
            continue
        result[key] = {
            'time_offset_minutes': (known.timer - match.timer) / 60000.0,
            'depth_offset': known.depth - match.depth,
        }

    return result
