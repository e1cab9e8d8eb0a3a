"""
Tide Phase Analyzer

Turns a stream of depth samples into tide phase (ebb/flood), known high and
low tides, and a rough estimate of the current tide height. No tide table is
involved - everything is inferred from the depth under the keel while the
vessel sits at anchor.

================================================================================
TREND DETECTION
================================================================================
Each new sample is compared with the sample taken 30 minutes earlier. The
slope between the two (scaled by 1e5 to get a readable magnitude) votes into
a three-bucket histogram [falling, flat, rising]:

    - While no trend is locked, whichever of falling/rising reaches 4 votes
      first (20 minutes at a 5 minute cadence) becomes the locked trend.
    - Once locked, a single vote of the opposite sign unlocks the trend and
      clears the histogram. This is how a turning tide is detected.
    - A newly locked trend that differs from the previous one is a phase
      flip. Flood -> ebb means the running high was the actual high tide,
      ebb -> flood means the running low was the actual low tide.

The first flip only tells us which way the water is moving; the running
extreme behind it started mid-phase, so nothing is committed until the
second flip.

================================================================================
HEIGHT ESTIMATE
================================================================================
With a known high, a known low, and a plausible wave height between them
(5.5 to 13 hours apart), the current height above low water is a raised
cosine anchored on the last known extreme:

    height = wave_height * (cos(radians) + 1) / 2

This is an approximation that assumes a regular semidiurnal tide with an
average period of 12h25m.
"""

import logging
import math
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from ..interfaces.tide_report import (
    ExtremeRecord,
    PhaseReport,
    Sample,
    TidePhase,
    Trend,
)

logger = logging.getLogger(__name__)


# The next tide phase will occur, on average, 12 hours 25 minutes after the last one
PHASE_LENGTH_MS = (12 * 60 + 25) * 60 * 1000

TREND_WINDOW_MINUTES = 30
TREND_LOCK_COUNT = 4
DIRECTION_SCALE = 100000.0

# Consecutive samples further apart than this invalidate the trend window
TRACKING_GAP_MS = 40 * 60 * 1000

# Plausible spacing between a high and the adjacent low
MIN_WAVE_GAP_HOURS = 5.5
MAX_WAVE_GAP_HOURS = 13.0

MS_PER_HOUR = 60 * 60 * 1000


def slope(x1: float, y1: float, x2: float, y2: float) -> float:
    return (y2 - y1) / (x2 - x1)


def sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def wave_height_between(extreme: ExtremeRecord, opposite: Optional[ExtremeRecord]) -> Optional[float]:
    """
    Depth difference between an extreme and the opposite extreme.

    Returns None unless both are timestamped and lie MIN_WAVE_GAP_HOURS to
    MAX_WAVE_GAP_HOURS apart.
    """
    if opposite is None or extreme.timer is None or opposite.timer is None:
        return None

    gap_hours = abs(extreme.timer - opposite.timer) / MS_PER_HOUR
    if MIN_WAVE_GAP_HOURS <= gap_hours <= MAX_WAVE_GAP_HOURS:
        return extreme.depth - opposite.depth
    return None


class TideAnalyzer:
    """
    Online tide phase detector.

    Feed samples in timestamp order with include_data(). Live samples
    publish a PhaseReport through phase_callback on every phase flip;
    replayed samples update state silently.

    Usage:
        analyzer = TideAnalyzer(record_interval_minutes=5, phase_callback=on_phase)
        analyzer.start()
        for sample in history:
            analyzer.include_data(sample, is_live=False)
        analyzer.include_data(new_sample, is_live=True)
        height = analyzer.estimate_tide_height_now(now_ms)
    """

    def __init__(
        self,
        record_interval_minutes: float = 5,
        phase_callback: Optional[Callable[[PhaseReport], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            record_interval_minutes: Minutes between recorded samples
            phase_callback: Receives each live PhaseReport
            clock: Returns the current time in epoch milliseconds
                   (default: system clock)
        """
        if record_interval_minutes <= 0:
            raise ValueError(f"record_interval_minutes must be positive, got {record_interval_minutes}")

        self.record_interval_minutes = record_interval_minutes
        self.phase_callback = phase_callback
        self._clock = clock
        # At least two samples, so the slope always spans a positive interval
        self.window_size = max(2, math.ceil(TREND_WINDOW_MINUTES / record_interval_minutes))

        self.start()

    def get_time(self) -> float:
        """Current time in epoch milliseconds."""
        if self._clock is not None:
            return self._clock()
        return time.time() * 1000.0

    def start(self):
        """Forget everything, including known tides and the last phase report."""
        logger.debug("Starting tide analysis")

        self.lowest_known: Optional[ExtremeRecord] = None
        self.highest_known: Optional[ExtremeRecord] = None
        self.last_phase_report: Optional[PhaseReport] = None
        self.last_reading: Optional[float] = None

        # For "average low tide" reporting
        self.total_low_tide_depths = 0.0
        self.total_low_tide_samples = 0

        self.reset_phase_tracking()

    def reset_phase_tracking(self):
        """Drop the trend window and running extremes to lock onto a new phase."""
        logger.debug("Resetting tracking status")

        self.running_low = ExtremeRecord.low_sentinel()
        self.running_high = ExtremeRecord.high_sentinel()
        self.trend_window: Deque[Sample] = deque()
        self.trend_histogram: List[int] = [0, 0, 0]
        self.tide_sample_count = 0
        self.cur_tide_dir: Optional[float] = None
        self.cur_tide_phase: Optional[TidePhase] = None
        self.locked_trend = Trend.UNDETERMINED
        self.last_known_trend = Trend.UNDETERMINED
        self.phase_switch_count = 0

    def find_depth_trend(self) -> Trend:
        """
        Trend indicated by the histogram, or UNDETERMINED.

        Rising only wins when it has strictly more votes than falling.
        """
        index = 0
        count = self.trend_histogram[0]
        if self.trend_histogram[2] > count:
            index = 2
            count = self.trend_histogram[2]

        if count >= TREND_LOCK_COUNT:
            return Trend(index - 1)
        return Trend.UNDETERMINED

    def include_data(self, sample: Sample, is_live: bool):
        """
        Add one sample to the analysis.

        Args:
            sample: The new depth sample
            is_live: True for live data, False while replaying the depth log.
                     Only live data publishes phase reports.
        """
        if is_live:
            logger.debug(f"Checking tide data {sample.to_dict()}")

        if self.last_reading is not None:
            if sample.timer <= self.last_reading:
                logger.warning(
                    f"Dropping sample at {sample.timer}: not after last reading {self.last_reading}"
                )
                return
            if sample.timer - self.last_reading > TRACKING_GAP_MS:
                gap_min = (sample.timer - self.last_reading) / 60000.0
                logger.info(f"Data gap of {gap_min:.0f} minutes, restarting phase tracking")
                self.reset_phase_tracking()

        self.last_reading = sample.timer
        self.trend_window.append(sample)

        if len(self.trend_window) >= self.window_size:
            prev = self.trend_window.popleft()

            self.cur_tide_dir = slope(prev.timer, prev.depth, sample.timer, sample.depth) * DIRECTION_SCALE
            direction_sign = sign(self.cur_tide_dir)
            self.trend_histogram[direction_sign + 1] += 1

            if not is_live:
                logger.debug(
                    f"   Playback tide data: {sample.timer} depth {sample.depth:.3f} "
                    f"dir: {self.cur_tide_dir:.4f}"
                )

            if self.locked_trend == Trend.UNDETERMINED:
                self.locked_trend = self.find_depth_trend()
                if self.locked_trend != Trend.UNDETERMINED:
                    logger.debug(f"Current phase determined as {self.locked_trend.phase.value}")
                    if self.locked_trend != self.last_known_trend:
                        self._on_phase_flip(sample, is_live)

            elif direction_sign != int(self.locked_trend):
                # About to turn; re-arm detection
                logger.debug("Suspected phase change")
                self.locked_trend = Trend.UNDETERMINED
                self.trend_histogram = [0, 0, 0]

        if sample.depth < self.running_low.depth:
            self.running_low = ExtremeRecord(
                depth=sample.depth, timer=sample.timer, position=sample.position
            )

        if sample.depth > self.running_high.depth:
            self.running_high = ExtremeRecord(
                depth=sample.depth, timer=sample.timer, position=sample.position
            )

        self.tide_sample_count += 1

    def _on_phase_flip(self, sample: Sample, is_live: bool):
        self.last_known_trend = self.locked_trend
        self.phase_switch_count += 1

        phase = self.locked_trend.phase
        self.cur_tide_phase = phase
        logger.info(f"New tide phase established: {phase.value} (switch #{self.phase_switch_count})")

        if phase is TidePhase.EBB:
            # Flood -> ebb, so the running high was the actual high tide
            if self.phase_switch_count >= 2 and self.running_high.is_set:
                self.highest_known = self.running_high.copy()
                self.highest_known.wave_height = wave_height_between(
                    self.highest_known, self.lowest_known
                )
            self.running_low = ExtremeRecord.low_sentinel()
        else:
            # Ebb -> flood, so the running low was the actual low tide
            if self.phase_switch_count >= 2 and self.running_low.is_set:
                self.lowest_known = self.running_low.copy()
                self.lowest_known.wave_height = wave_height_between(
                    self.lowest_known, self.highest_known
                )
                self.total_low_tide_depths += self.lowest_known.depth
                self.total_low_tide_samples += 1
            self.running_high = ExtremeRecord.high_sentinel()

        self.last_phase_report = PhaseReport(
            timer=sample.timer,
            phase=phase,
            lowest_known=self.lowest_known.copy() if self.lowest_known else None,
            highest_known=self.highest_known.copy() if self.highest_known else None,
        )

        if is_live and self.phase_callback is not None:
            self.phase_callback(self.last_phase_report)

    def estimate_tide_height_now(self, now: float) -> Optional[float]:
        """
        Estimated tide height above low water at time now (epoch ms).

        Returns None until a phase report exists with both known extremes and
        the wave height needed for the current phase.
        """
        report = self.last_phase_report
        if report is None:
            return None

        low = report.lowest_known
        high = report.highest_known
        if low is None or high is None or low.timer is None or high.timer is None:
            return None

        if self.cur_tide_phase is TidePhase.EBB:
            if low.wave_height is None:
                return None
            fraction = (now - high.timer) / PHASE_LENGTH_MS
            radians = fraction * math.pi
            wave_height = abs(low.wave_height)
        elif self.cur_tide_phase is TidePhase.FLOOD:
            if high.wave_height is None:
                return None
            fraction = (now - low.timer) / PHASE_LENGTH_MS
            radians = fraction * math.pi + math.pi
            wave_height = high.wave_height
        else:
            return None

        return wave_height * (math.cos(radians) + 1) / 2

    def get_future_phase(self, timer: float) -> float:
        """Project timer forward by whole tide periods until it is in the future."""
        next_phase = timer
        now = self.get_time()
        while next_phase <= now:
            next_phase += PHASE_LENGTH_MS
        return next_phase

    def get_future_phase_date(self, timer: float) -> datetime:
        return datetime.fromtimestamp(self.get_future_phase(timer) / 1000.0, tz=timezone.utc)

    def expire_known_extremes(self, max_age_ms: float) -> None:
        """Forget known tides older than max_age_ms."""
        cutoff = self.get_time() - max_age_ms

        if self.lowest_known and self.lowest_known.timer is not None and self.lowest_known.timer < cutoff:
            logger.info("Lowest known tide is stale, forgetting it")
            self.lowest_known = None

        if self.highest_known and self.highest_known.timer is not None and self.highest_known.timer < cutoff:
            logger.info("Highest known tide is stale, forgetting it")
            self.highest_known = None

    @property
    def average_low_depth(self) -> Optional[float]:
        if self.total_low_tide_samples == 0:
            return None
        return self.total_low_tide_depths / self.total_low_tide_samples

    def get_tide_status(self) -> Dict[str, Any]:
        """Snapshot of the tracking state, suitable for JSON."""
        status: Dict[str, Any] = {
            'lowest_tide': self.running_low.to_dict(),
            'highest_tide': self.running_high.to_dict(),
            'lowest_known': self.lowest_known.to_dict() if self.lowest_known else {},
            'highest_known': self.highest_known.to_dict() if self.highest_known else {},
            'tide_sample_count': self.tide_sample_count,
            'cur_tide_dir': self.cur_tide_dir,
            'depth_trend': int(self.locked_trend),
            'depth_trend_count': list(self.trend_histogram),
            'cur_tide_phase': self.cur_tide_phase.value if self.cur_tide_phase else None,
            'phase_switch_count': self.phase_switch_count,
            'last_reading': self.last_reading,
            'average_low_depth': self.average_low_depth,
        }

        if self.highest_known and self.highest_known.timer is not None:
            status['next_highest_known'] = {
                'timer': self.get_future_phase(self.highest_known.timer),
                'depth': self.highest_known.depth,
                'wave_height': self.highest_known.wave_height,
            }

        if self.lowest_known and self.lowest_known.timer is not None:
            status['next_lowest_known'] = {
                'timer': self.get_future_phase(self.lowest_known.timer),
                'depth': self.lowest_known.depth,
                'wave_height': self.lowest_known.wave_height,
            }

        return status
