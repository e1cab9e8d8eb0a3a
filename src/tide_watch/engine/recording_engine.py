#!/usr/bin/env python3
"""
Recording Engine - depth recording at anchor

Drives the tide analyzer from raw depth, position and engine RPM readings.
Everything runs from one scheduler tick, called about once a second by the
daemon:

    ┌────────────┐   ┌───────────────┐
    │ depth      │──▶│ MovingAverage │──┐
    └────────────┘   └───────────────┘  │
    ┌────────────┐                      │   ┌──────────────────────────┐
    │ position   │──────────────────────┼──▶│ tick(now)                │
    └────────────┘                      │   │  1. engine on/off edge   │
    ┌────────────┐   ┌───────────────┐  │   │  2. status message       │
    │ engine RPM │──▶│ EngineEdge    │──┘   │  3. record sample        │
    └────────────┘   │ Detector      │      │     ─▶ DepthLog          │
                     └───────────────┘      │     ─▶ TideAnalyzer      │
                                            │     ─▶ height report     │
                                            └──────────────────────────┘

Recording starts when the engine has been silent for a while (we are at
anchor) and stops as soon as it turns over. On start, the depth log for
the anchorage is replayed into the analyzer so a restart does not lose a
half-tracked tide.
"""

import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Optional, Union

import numpy as np

from ..analysis.phase_analyzer import TideAnalyzer
from ..interfaces.tide_report import Location, PhaseReport, Position, Sample
from ..location.location_manager import LocationManager
from ..output.delta_writer import DeltaWriter, build_height_values, build_phase_values
from ..storage.depth_log import DepthLog, capacity_for_interval, log_file_name

logger = logging.getLogger(__name__)


MS_PER_MINUTE = 60 * 1000
MS_PER_DAY = 24 * 60 * MS_PER_MINUTE

# Replay ignores records older than this
PLAYBACK_MAX_AGE_MS = 31 * MS_PER_DAY

# Known tides older than this are forgotten after replay
KNOWN_EXTREME_MAX_AGE_MS = 4 * MS_PER_DAY

# A replayed phase report younger than this is still current
REPORT_REUSE_MAX_AGE_MS = 7 * 60 * MS_PER_MINUTE

# Data timeouts only apply once the engine has been up this long
STARTUP_GRACE_MS = 30 * 1000


def config_match(item: Optional[str], wanted: Optional[str]) -> bool:
    """An empty filter value matches anything."""
    if not wanted or not wanted.strip():
        return True
    return item == wanted


class MovingAverage:
    """Mean of the last `size` readings, rounded to the millimeter."""

    def __init__(self, size: int):
        self._values: Deque[float] = deque(maxlen=max(1, size))

    def add(self, value: float) -> float:
        self._values.append(value)
        return self.value

    @property
    def value(self) -> Optional[float]:
        if not self._values:
            return None
        return float(np.floor(np.mean(self._values) * 1000.0 + 0.5) / 1000.0)

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


class EngineEdgeDetector:
    """
    Turns engine RPM readings into on/off edges.

    The engine counts as off once no positive RPM has been seen for
    silent_interval_ms. It starts out "on" so the first silent check
    produces an initial "off" edge.
    """

    def __init__(self, silent_interval_ms: float = 15000):
        self.silent_interval_ms = silent_interval_ms
        self.engine_on = True
        self.last_engine_on = 0.0

    def update_rpm(self, rpm: float, now: float) -> Optional[bool]:
        """Returns True on an off->on edge, else None."""
        if rpm > 0:
            self.last_engine_on = now
            if not self.engine_on:
                self.engine_on = True
                return True
        return None

    def check(self, now: float) -> Optional[bool]:
        """Returns False on an on->off edge, else None."""
        if self.engine_on and (now - self.last_engine_on) > self.silent_interval_ms:
            self.engine_on = False
            return False
        return None


class RecordingEngine:
    """
    Depth recording and tide tracking for one vessel.

    Usage:
        engine = RecordingEngine(data_dir, LocationManager(data_dir), DeltaWriter())
        engine.on_depth(4.2, now)
        engine.on_position(Position(26.28, -80.09), now)
        engine.tick(now)
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        resolver: LocationManager,
        sink: DeltaWriter,
        record_interval_minutes: float = 5,
        depth_samples_in_average: int = 60,
        depth_data_timeout: float = 30,
        pos_data_timeout: float = 30,
        engine_silent_interval: float = 15,
        depth_source_type: str = "",
        depth_source_talker: str = "",
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the recording engine.

        Args:
            data_dir: Directory for depth logs
            resolver: Maps positions to anchorages
            sink: Receives Signal K values
            record_interval_minutes: Minutes between recorded samples
            depth_samples_in_average: Depth readings in the moving average
            depth_data_timeout: Seconds before depth is considered missing
            pos_data_timeout: Seconds before position is considered missing
            engine_silent_interval: Seconds without RPM before the engine is off
            depth_source_type: Only accept depth from this source type ("" = any)
            depth_source_talker: Only accept depth from this talker ("" = any)
            clock: Returns the current time in epoch milliseconds
        """
        self.data_dir = Path(data_dir)
        self.resolver = resolver
        self.sink = sink
        self.record_interval_minutes = record_interval_minutes
        self.record_interval_ms = record_interval_minutes * MS_PER_MINUTE
        self.log_capacity = capacity_for_interval(record_interval_minutes)
        self.depth_data_timeout_ms = depth_data_timeout * 1000
        self.pos_data_timeout_ms = pos_data_timeout * 1000
        self.depth_source_type = depth_source_type
        self.depth_source_talker = depth_source_talker
        self._clock = clock

        self.depth_average = MovingAverage(depth_samples_in_average)
        self.engine_detector = EngineEdgeDetector(engine_silent_interval * 1000)
        self.analyzer = TideAnalyzer(
            record_interval_minutes=record_interval_minutes,
            phase_callback=self.on_tide_phase,
            clock=self.get_time,
        )

        # State
        self.running = False
        self.started_on: Optional[float] = None
        self.recording_data = False
        self.recording_started_at: Optional[float] = None
        self.recording_stopped_at: Optional[float] = None
        self.capture_location: Optional[Location] = None
        self.position: Optional[Position] = None
        self.last_depth_received: Optional[float] = None
        self.last_pos_received: Optional[float] = None
        self.last_record_time: Optional[float] = None
        self.status_message = "Starting..."
        self._pending_start = False

        # Guards capture_location and the resolver, which the status server
        # thread reaches through rename_location
        self._lock = threading.Lock()

        self.stats = {
            'samples_recorded': 0,
            'samples_replayed': 0,
            'phase_reports': 0,
            'log_errors': 0,
        }

    def get_time(self) -> float:
        if self._clock is not None:
            return self._clock()
        return time.time() * 1000.0

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_depth(
        self,
        depth: float,
        now: float,
        source_type: Optional[str] = None,
        source_talker: Optional[str] = None,
    ):
        if not (config_match(source_type, self.depth_source_type) and
                config_match(source_talker, self.depth_source_talker)):
            return
        self.last_depth_received = now
        self.depth_average.add(depth)

    def on_position(self, position: Position, now: float):
        self.position = position
        self.last_pos_received = now

    def on_rpm(self, rpm: float, now: float):
        if self.engine_detector.update_rpm(rpm, now):
            logger.info("Main engine is ON")
            self.stop_recording()

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def start(self):
        self.running = True
        self.started_on = self.get_time()
        logger.info("Recording engine started")

    def stop(self):
        self.running = False
        self.stop_recording()
        self.status_message = "Stopped"
        logger.info("Recording engine stopped")

    def tick(self, now: Optional[float] = None):
        """Run one pass of the pipeline."""
        if now is None:
            now = self.get_time()

        if self.engine_detector.check(now) is False:
            logger.info("Main engine is OFF")
            self._pending_start = True

        if self._pending_start and self.position is not None:
            self._pending_start = False
            self.start_recording(self.position)

        self.update_status(now)

        if self.recording_data and self._record_due(now):
            self.last_record_time = now
            depth = self.depth_average.value
            if depth is not None and self.position is not None:
                sample = Sample(timer=now, depth=depth, position=self.position)
                self.record_depth(sample)
                self.analyzer.include_data(sample, is_live=True)
                self.report_tide_height(sample.timer)

    def _record_due(self, now: float) -> bool:
        if self.last_record_time is None:
            return True
        return now - self.last_record_time >= self.record_interval_ms

    def update_status(self, now: float) -> str:
        message = self._status_for(now)
        if message != self.status_message:
            logger.info(f"Status: {message}")
            self.status_message = message
        return message

    def _status_for(self, now: float) -> str:
        if self.started_on is None:
            return "Starting..."

        if now - self.started_on > STARTUP_GRACE_MS:
            if self.last_depth_received is None or \
                    now - self.last_depth_received > self.depth_data_timeout_ms:
                return "No depth data available"
            if self.last_pos_received is None or \
                    now - self.last_pos_received > self.pos_data_timeout_ms:
                return "No position data available"

        if self.recording_data:
            if self.analyzer.cur_tide_phase is None:
                return "Watching depth for tide phase..."
            return f"Tracking phase '{self.analyzer.cur_tide_phase.value}'"

        if not self.running:
            return "Stopped"
        return "Engine on - not tracking"

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def log_path(self) -> Path:
        return self.data_dir / log_file_name(self.capture_location.id)

    def start_recording(self, position: Position):
        """Begin recording at position, rebuilding tide state from the depth log."""
        now = self.get_time()
        logger.info(f"Data recording started for pos {position.to_dict()}")

        self.recording_started_at = now
        self.recording_data = True
        self.last_record_time = None
        with self._lock:
            self.capture_location = self.resolver.resolve(position)

        self.analyzer.start()
        self.playback(now)

        report = self.analyzer.last_phase_report
        if report is not None:
            self.analyzer.expire_known_extremes(KNOWN_EXTREME_MAX_AGE_MS)

            if report.timer > now - REPORT_REUSE_MAX_AGE_MS:
                self.on_tide_phase(report)
            else:
                # Too old to be current, lock onto the tide again
                self.analyzer.reset_phase_tracking()

    def stop_recording(self):
        if self.recording_data:
            self.recording_data = False
            self.recording_stopped_at = self.get_time()
            logger.info("Data recording ended")

    def playback(self, now: float) -> int:
        """
        Replay the anchorage's depth log into the analyzer without publishing.

        Returns:
            Number of samples replayed
        """
        cutoff = now - PLAYBACK_MAX_AGE_MS
        replayed = 0
        path = self.log_path()
        logger.info(f"Playing back contents of {path}")

        try:
            with DepthLog.open(path, self.log_capacity) as log:
                for sample in log.records():
                    if sample.timer < cutoff:
                        logger.debug(f"Skipping record at {sample.timer}, older than cutoff")
                        continue
                    self.analyzer.include_data(sample, is_live=False)
                    replayed += 1
        except OSError as e:
            self.stats['log_errors'] += 1
            logger.error(f"Failed to play back {path}: {e}")

        self.stats['samples_replayed'] += replayed
        logger.info(f"Replayed {replayed} samples")
        return replayed

    def record_depth(self, sample: Sample):
        path = self.log_path()
        try:
            with DepthLog.open(path, self.log_capacity) as log:
                log.append_record(sample)
            self.stats['samples_recorded'] += 1
            logger.debug(
                f"Record data: {sample.timer}\t{sample.depth}\t{self.analyzer.cur_tide_dir}\t"
                f"{sample.position.latitude}\t{sample.position.longitude}"
            )
        except OSError as e:
            self.stats['log_errors'] += 1
            logger.error(f"Failed to record depth to {path}: {e}")

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def on_tide_phase(self, report: PhaseReport):
        logger.info(f"Tide phase: {report.to_dict()}")
        self.stats['phase_reports'] += 1
        self.sink.send(build_phase_values(report, self.analyzer))

    def report_tide_height(self, now: float):
        if self.recording_data and self.analyzer.last_phase_report is not None:
            self.sink.send(build_height_values(self.analyzer, now))

    def rename_location(self, location_id: int, name: str) -> Location:
        """
        Rename the anchorage currently being recorded.

        Raises:
            ValueError: If location_id is not the current capture location

        Called from the status server thread as well as the main loop.
        """
        with self._lock:
            if self.capture_location is None or self.capture_location.id != location_id:
                raise ValueError("Save location does not match current location")

            location = Location(id=location_id, name=name, position=self.capture_location.position)
            self.resolver.save_location(location)
            self.capture_location = location
            return location

    def get_status(self) -> Dict[str, Any]:
        status = self.analyzer.get_tide_status()
        status.update({
            'recording_data': self.recording_data,
            'recording_started_at': self.recording_started_at,
            'recording_stopped_at': self.recording_stopped_at,
            'capture_location': self.capture_location.to_dict() if self.capture_location else None,
            'status_message': self.status_message,
            'stats': dict(self.stats),
        })
        return status
