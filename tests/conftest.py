"""
Pytest configuration and fixtures for tide-watch tests.
"""

import math
import pytest
import sys
from pathlib import Path

import numpy as np

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from tide_watch.interfaces.tide_report import Position, Sample
from tide_watch.analysis.phase_analyzer import PHASE_LENGTH_MS


# 2023-11-14 22:13:20 UTC
START_MS = 1_700_000_000_000.0
MINUTE_MS = 60 * 1000.0
HOUR_MS = 60 * MINUTE_MS


def tide_depth(timer, start=START_MS, mean=5.0, amplitude=1.0):
    """Semidiurnal tide with high water at start."""
    return mean + amplitude * math.cos(2 * math.pi * (timer - start) / PHASE_LENGTH_MS)


def make_tide_series(hours, start=START_MS, interval_minutes=5, offset_minutes=1,
                     mean=5.0, amplitude=1.0, position=None):
    """
    Samples of tide_depth at a fixed cadence.

    Depths are rounded to float32 so that they survive a trip through the
    depth log unchanged. The default one minute offset keeps samples from
    sitting symmetrically around an extreme.
    """
    position = position or Position(26.285139, -80.090347)
    count = int(hours * 60 / interval_minutes)
    samples = []
    for k in range(count):
        timer = start + (offset_minutes + k * interval_minutes) * MINUTE_MS
        depth = float(np.float32(tide_depth(timer, start, mean, amplitude)))
        samples.append(Sample(timer=timer, depth=depth, position=position))
    return samples


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now=START_MS):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def anchorage():
    """Sample anchorage (Lake Sylvia, Fort Lauderdale)."""
    return Position(26.285139, -80.090347)


@pytest.fixture
def tide_series():
    """Four days of 5-minute samples of a 2 m semidiurnal tide."""
    return make_tide_series(hours=96)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / 'tide-data'
    path.mkdir()
    return path
