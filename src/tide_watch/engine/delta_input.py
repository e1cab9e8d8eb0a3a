"""
Signal K delta input.

Routes the values of incoming Signal K delta documents to the recording
engine. Only the configured depth, position and engine RPM paths are used;
everything else is ignored.

A delta looks like:

    {"updates": [{"source": {"type": "NMEA0183", "talker": "SD"},
                  "values": [{"path": "environment.depth.belowSurface",
                              "value": 4.21}]}]}
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

from ..interfaces.tide_report import Position
from .recording_engine import RecordingEngine

logger = logging.getLogger(__name__)


@dataclass
class SignalKPaths:
    depth_path: str = "environment.depth.belowSurface"
    position_path: str = "navigation.position"
    engine_rpm_path: str = "propulsion.1.revolutions"


def apply_delta(engine: RecordingEngine, delta: Dict[str, Any], now: float, paths: SignalKPaths) -> int:
    """
    Feed the values of one delta into the engine.

    Returns:
        Number of values the engine accepted
    """
    accepted = 0
    for update in delta.get('updates', []) or []:
        source = update.get('source') or {}
        for item in update.get('values', []) or []:
            path = item.get('path')
            value = item.get('value')
            try:
                if path == paths.depth_path:
                    engine.on_depth(
                        float(value), now,
                        source_type=source.get('type'),
                        source_talker=source.get('talker'),
                    )
                elif path == paths.position_path:
                    engine.on_position(Position.from_dict(value), now)
                elif path == paths.engine_rpm_path:
                    engine.on_rpm(float(value), now)
                else:
                    continue
                accepted += 1
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Ignoring bad value for {path}: {value!r} ({e})")
    return accepted


def apply_delta_line(engine: RecordingEngine, line: str, now: float, paths: SignalKPaths) -> int:
    """Parse one line of newline-delimited delta JSON and apply it."""
    line = line.strip()
    if not line:
        return 0
    try:
        delta = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid delta JSON: {e}")
        return 0
    if not isinstance(delta, dict):
        logger.warning("Ignoring delta that is not a JSON object")
        return 0
    return apply_delta(engine, delta, now, paths)
