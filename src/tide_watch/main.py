#!/usr/bin/env python3
"""
tide-watch: Tide observation daemon

Main entry point for the tide-watch daemon. This service:
1. Reads depth, position and engine RPM from Signal K deltas
2. Records averaged depth samples to a per-anchorage ring log while at anchor
3. Detects the tide phase (ebb/flood) and the last known high and low tides
4. Publishes phase, predicted high/low times and an estimated tide height
   back as Signal K deltas

Usage:
    # Live: read newline-delimited Signal K deltas from stdin
    <signal k delta producer> | python -m tide_watch --config /etc/tide-watch/config.toml

    # Live: read deltas from a capture file
    python -m tide_watch --input deltas.ndjson --data-dir /var/lib/tide-watch

    # Reprocess a stored depth log
    python -m tide_watch --reprocess --anchorage 3 --data-dir /var/lib/tide-watch

Architecture:
    ┌─────────────────────────────────────────────────────────────────┐
    │                          tide-watch                              │
    │                                                                  │
    │  ┌──────────┐   ┌──────────────────┐   ┌───────────────────┐    │
    │  │ Signal K │──▶│ RecordingEngine  │──▶│   TideAnalyzer    │    │
    │  │  deltas  │   │ (tick pipeline)  │   │                   │    │
    │  └──────────┘   └──────────────────┘   └───────────────────┘    │
    │                   │            │                  │              │
    │                   ▼            ▼                  ▼              │
    │            <data_dir>/     locations.json   Signal K delta      │
    │            00001.dat                        + /status (HTTP)    │
    └─────────────────────────────────────────────────────────────────┘
"""

import argparse
import json
import logging
import queue
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, IO, Optional
import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('tide-watch')

from .analysis.log_extrema import compare_with_known, find_log_extrema
from .analysis.phase_analyzer import TideAnalyzer
from .engine.delta_input import SignalKPaths, apply_delta_line
from .engine.recording_engine import RecordingEngine
from .location.location_manager import LocationManager
from .output.delta_writer import DeltaWriter
from .storage.depth_log import DepthLog, capacity_for_interval, log_file_name


DEFAULT_CONFIG: Dict[str, Any] = {
    'general': {
        'data_dir': '/var/lib/tide-watch',
    },
    'tide': {
        'record_interval_minutes': 5,
        'max_location_distance': 100,
        'depth_samples_in_average': 60,
        'depth_data_timeout': 30,
        'pos_data_timeout': 30,
        'engine_silent_interval': 15,
    },
    'signalk': {
        'depth_path': 'environment.depth.belowSurface',
        'depth_source_type': '',
        'depth_source_talker': '',
        'position_path': 'navigation.position',
        'engine_rpm_path': 'propulsion.1.revolutions',
    },
    'output': {
        'delta_path': '',
        'health_port': 8080,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file, filling in defaults.

    Missing sections or keys take their value from DEFAULT_CONFIG.
    """
    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, 'r') as f:
                loaded = toml.load(f)
            for section, values in loaded.items():
                if isinstance(values, dict):
                    config.setdefault(section, {}).update(values)
                else:
                    config[section] = values
        else:
            logger.warning(f"Config file {path} not found, using defaults")

    return config


class TideWatchDaemon:
    """
    Main tide-watch daemon.

    Wires the Signal K input, recording engine, delta output and status
    server together and runs the scheduler loop.
    """

    def __init__(self, config: Dict[str, Any], data_dir: Optional[str] = None):
        """
        Initialize the tide-watch daemon.

        Args:
            config: Configuration dictionary (see load_config)
            data_dir: Override data directory (for testing)
        """
        self.config = config
        tide = config.get('tide', {})
        signalk = config.get('signalk', {})
        output = config.get('output', {})

        self.data_dir = Path(data_dir or config.get('general', {}).get('data_dir', '/var/lib/tide-watch'))
        self.record_interval_minutes = tide.get('record_interval_minutes', 5)

        self.paths = SignalKPaths(
            depth_path=signalk.get('depth_path', SignalKPaths.depth_path),
            position_path=signalk.get('position_path', SignalKPaths.position_path),
            engine_rpm_path=signalk.get('engine_rpm_path', SignalKPaths.engine_rpm_path),
        )

        self.resolver = LocationManager(
            self.data_dir,
            max_location_distance=tide.get('max_location_distance', 100),
        )
        self.sink = DeltaWriter(output.get('delta_path') or None)
        self.engine = RecordingEngine(
            data_dir=self.data_dir,
            resolver=self.resolver,
            sink=self.sink,
            record_interval_minutes=self.record_interval_minutes,
            depth_samples_in_average=tide.get('depth_samples_in_average', 60),
            depth_data_timeout=tide.get('depth_data_timeout', 30),
            pos_data_timeout=tide.get('pos_data_timeout', 30),
            engine_silent_interval=tide.get('engine_silent_interval', 15),
            depth_source_type=signalk.get('depth_source_type', ''),
            depth_source_talker=signalk.get('depth_source_talker', ''),
        )
        self.health_port = output.get('health_port', 8080)

        self.running = False
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()

        logger.info("=" * 60)
        logger.info("tide-watch initializing")
        logger.info(f"  Data dir: {self.data_dir}")
        logger.info(f"  Record interval: {self.record_interval_minutes} min")
        logger.info(f"  Depth path: {self.paths.depth_path}")
        logger.info(f"  Delta output: {self.sink.delta_path or 'log only'}")
        logger.info("=" * 60)

    def _read_input(self, stream: IO[str]):
        """Reader thread: push input lines onto the queue, None at EOF."""
        try:
            for line in stream:
                self._lines.put(line)
        finally:
            self._lines.put(None)

    def start(self, stream: IO[str]):
        """Run until a signal arrives or the input stream ends."""
        logger.info("Starting tide-watch daemon")
        self.running = True

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        health_server = None
        if self.health_port and self.health_port > 0:
            from .output.health_server import HealthServer
            health_server = HealthServer(port=self.health_port)
            health_server.set_engine(self.engine)
            health_server.start()

        reader = threading.Thread(target=self._read_input, args=(stream,), name="DeltaReader", daemon=True)
        reader.start()

        self.engine.start()
        try:
            self._main_loop()
        finally:
            self.engine.stop()
            if health_server:
                health_server.stop()
            logger.info("tide-watch stopped")

    def _main_loop(self):
        logger.info("Entering main loop")
        while self.running:
            try:
                line = self._lines.get(timeout=1.0)
            except queue.Empty:
                line = ''

            if line is None:
                logger.info("Input stream closed")
                break

            now = self.engine.get_time()
            try:
                if line:
                    apply_delta_line(self.engine, line, now, self.paths)
                self.engine.tick(now)
            except Exception as e:
                logger.exception(f"Error in main loop iteration: {e}")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def reprocess(self, anchorage_id: int) -> Dict[str, Any]:
        """
        Replay a stored depth log through a fresh analyzer and summarize it.

        Useful for checking what the analyzer makes of a recorded anchorage
        without touching live state.

        Args:
            anchorage_id: Location id whose log to replay

        Returns:
            Tide status after replay, plus the log extrema comparison
        """
        path = self.data_dir / log_file_name(anchorage_id)
        logger.info("=" * 60)
        logger.info("REPROCESS MODE")
        logger.info(f"  Log: {path}")
        logger.info("=" * 60)

        if not path.exists():
            logger.error(f"No depth log at {path}")
            return {}

        analyzer = TideAnalyzer(record_interval_minutes=self.record_interval_minutes)
        with DepthLog.open_readonly(path, capacity_for_interval(self.record_interval_minutes)) as log:
            samples = list(log.records())

        for sample in samples:
            analyzer.include_data(sample, is_live=False)

        summary = analyzer.get_tide_status()
        summary['samples_in_log'] = len(samples)

        if len(samples) >= 3:
            extrema = find_log_extrema(samples)
            summary['log_extrema'] = extrema.to_dict()
            summary['known_vs_log'] = compare_with_known(
                extrema, analyzer.highest_known, analyzer.lowest_known
            )

        logger.info("=" * 60)
        logger.info(f"Reprocessing complete: {len(samples)} samples")
        logger.info(f"Phase: {summary['cur_tide_phase']}, switches: {summary['phase_switch_count']}")
        logger.info("=" * 60)
        return summary


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='tide-watch: Observe tides from depth soundings and predict future tides',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with config file, deltas on stdin
    python -m tide_watch --config /etc/tide-watch/config.toml

    # Read deltas from a capture file
    python -m tide_watch --input deltas.ndjson --data-dir /tmp/tide-test

    # Replay the stored log for anchorage 3
    python -m tide_watch --reprocess --anchorage 3
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--data-dir', '-d',
        help='Data directory for depth logs and locations (overrides config)'
    )
    parser.add_argument(
        '--input', '-i',
        help='Read Signal K deltas from this file instead of stdin'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--reprocess',
        action='store_true',
        help='Replay a stored depth log instead of running live'
    )
    parser.add_argument(
        '--anchorage', '-a',
        type=int,
        default=1,
        help='Anchorage id to replay in reprocess mode (default: 1)'
    )
    parser.add_argument(
        '--health-port',
        type=int,
        help='HTTP port for the status endpoint (overrides config, 0 to disable)'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    if args.data_dir:
        config['general']['data_dir'] = args.data_dir
    if args.health_port is not None:
        config['output']['health_port'] = args.health_port

    daemon = TideWatchDaemon(config)

    if args.reprocess:
        summary = daemon.reprocess(args.anchorage)
        print(json.dumps(summary, indent=2))
        return

    if args.input:
        with open(args.input, 'r') as stream:
            daemon.start(stream)
    else:
        daemon.start(sys.stdin)


if __name__ == '__main__':
    main()
