"""
Signal K Delta Writer for tide-watch

Translates phase reports and height estimates into Signal K path/value
pairs and writes them as delta documents for the boat's data server.

The delta file is updated atomically (write to temp, rename) to prevent
partial reads.

Paths produced:
    environment.tide.phaseNow    "ebb" | "flood"
    environment.tide.heightNow   estimated height above low water (m)
    environment.tide.timeLow     next predicted low (ISO-8601)
    environment.tide.heightLow   depth at the last known low (m)
    environment.tide.timeHigh    next predicted high (ISO-8601)
    environment.tide.heightHigh  depth at the last known high (m)

Usage:
    writer = DeltaWriter('/var/lib/tide-watch/delta.json')
    writer.send(build_phase_values(report, analyzer))
"""

import json
import os
import tempfile
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from ..analysis.phase_analyzer import TideAnalyzer
from ..interfaces.tide_report import DeltaUpdate, PathValue, PhaseReport

logger = logging.getLogger(__name__)


SOURCE_LABEL = "tide-watch"

PATH_PHASE_NOW = "environment.tide.phaseNow"
PATH_HEIGHT_NOW = "environment.tide.heightNow"
PATH_TIME_LOW = "environment.tide.timeLow"
PATH_HEIGHT_LOW = "environment.tide.heightLow"
PATH_TIME_HIGH = "environment.tide.timeHigh"
PATH_HEIGHT_HIGH = "environment.tide.heightHigh"


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def build_phase_values(report: PhaseReport, analyzer: TideAnalyzer) -> List[PathValue]:
    """Values published when a new tide phase is reported."""
    values = [PathValue(PATH_PHASE_NOW, report.phase.value)]

    low = report.lowest_known
    if low is not None and low.timer is not None:
        values.append(PathValue(PATH_TIME_LOW, _iso(analyzer.get_future_phase_date(low.timer))))
        values.append(PathValue(PATH_HEIGHT_LOW, low.depth))

    high = report.highest_known
    if high is not None and high.timer is not None:
        values.append(PathValue(PATH_TIME_HIGH, _iso(analyzer.get_future_phase_date(high.timer))))
        values.append(PathValue(PATH_HEIGHT_HIGH, high.depth))

    height = analyzer.estimate_tide_height_now(report.timer)
    if height is not None:
        values.append(PathValue(PATH_HEIGHT_NOW, height))

    return values


def build_height_values(analyzer: TideAnalyzer, now: float) -> List[PathValue]:
    """Values published on every record tick once a phase is known."""
    report = analyzer.last_phase_report
    if report is None:
        return []

    values = [PathValue(PATH_PHASE_NOW, report.phase.value)]
    height = analyzer.estimate_tide_height_now(now)
    if height is not None:
        values.append(PathValue(PATH_HEIGHT_NOW, height))
    return values


class DeltaWriter:
    """
    Writes Signal K deltas to a file.

    The file holds the most recent delta, JSON-formatted. Updates are atomic
    (write to temp file, then rename). With no path configured the deltas
    are only logged.
    """

    def __init__(self, delta_path: Optional[str] = None, source_label: str = SOURCE_LABEL):
        """
        Args:
            delta_path: File to write deltas to (None: log only)
            source_label: Signal K source label
        """
        self.delta_path = Path(delta_path) if delta_path else None
        self.source_label = source_label
        self.write_count = 0
        self.last_delta: Optional[DeltaUpdate] = None

        if self.delta_path is not None:
            self.delta_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"DeltaWriter initialized: {self.delta_path}")

    def send(self, values: Sequence[PathValue]) -> bool:
        """
        Publish values as one delta.

        Returns:
            True if successful, False on error or when there is nothing to send
        """
        if not values:
            return False

        delta = DeltaUpdate(
            source_label=self.source_label,
            timestamp=_iso(datetime.now(timezone.utc)),
            values=list(values),
        )
        self.last_delta = delta
        self.write_count += 1
        logger.debug(f"sending Signal K: {json.dumps(delta.to_dict())}")

        if self.delta_path is None:
            return True

        try:
            fd, temp_path = tempfile.mkstemp(
                dir=self.delta_path.parent,
                prefix='.tide_delta_',
                suffix='.tmp'
            )
            try:
                with os.fdopen(fd, 'w') as f:
                    f.write(delta.to_json())
                os.replace(temp_path, self.delta_path)
                return True
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise

        except OSError as e:
            logger.error(f"Failed to write delta: {e}")
            return False

    def read(self) -> Optional[dict]:
        """Read back the last delta written to disk."""
        if self.delta_path is None or not self.delta_path.exists():
            return None
        try:
            with open(self.delta_path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read delta: {e}")
            return None
