"""
Status HTTP Server for tide-watch.

Provides a simple HTTP endpoint for monitoring tide tracking status and
renaming the current anchorage.

Endpoints:
    GET /health       - Basic health check (200 OK if running)
    GET /status       - JSON tide status
    GET /api/status   - Same as /status
    GET /metrics      - Prometheus-compatible metrics
    PUT /api/location - Rename the current capture location
                        body: {"id": 3, "name": "Lake Sylvia"}

Usage:
    from tide_watch.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_engine(recording_engine)
    server.start()
"""

import json
import logging
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for status endpoints."""

    # Class-level references to engine callbacks
    get_status: Optional[Callable[[], Dict[str, Any]]] = None
    rename_location: Optional[Callable[[int, str], Any]] = None

    def log_message(self, format, *args):
        """Suppress default HTTP logging."""
        pass

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path in ('/status', '/api/status'):
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def do_PUT(self):
        """Handle PUT requests."""
        if self.path == '/api/location':
            self._handle_location()
        else:
            self.send_error(404, "Not Found")

    def _send_json(self, code: int, payload: Dict[str, Any]):
        self.send_response(code)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload, indent=2).encode())

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.end_headers()
        self.wfile.write(b'OK\n')

    def _handle_status(self):
        """Return JSON tide status."""
        if self.get_status:
            try:
                self._send_json(200, self.get_status())
            except Exception as e:
                logger.error(f"Status request failed: {e}")
                self._send_json(500, {'error': str(e)})
        else:
            self._send_json(503, {'error': 'No engine connected'})

    def _handle_location(self):
        """Rename the current capture location."""
        if not self.rename_location:
            self._send_json(503, {'status': 'ERROR', 'error': 'No engine connected'})
            return

        try:
            length = int(self.headers.get('Content-Length', 0))
            body = json.loads(self.rfile.read(length) or b'{}')
            location_id = int(body['id'])
            name = str(body['name'])
        except (ValueError, KeyError, TypeError) as e:
            self._send_json(400, {'status': 'ERROR', 'error': f'Invalid location: {e}'})
            return

        try:
            location = self.rename_location(location_id, name)
        except ValueError as e:
            logger.warning(f"Error saving location: {e}")
            self._send_json(409, {'status': 'ERROR', 'error': str(e)})
            return
        except OSError as e:
            logger.error(f"Error saving location: {e}")
            self._send_json(500, {'status': 'ERROR', 'error': str(e)})
            return

        self._send_json(200, {'status': 'OK', 'location': location.to_dict()})

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if self.get_status:
            try:
                status = self.get_status()
                metrics = self._format_prometheus_metrics(status)
                self.send_response(200)
                self.send_header('Content-Type', 'text/plain; version=0.0.4')
                self.end_headers()
                self.wfile.write(metrics.encode())
            except Exception as e:
                self.send_response(500)
                self.send_header('Content-Type', 'text/plain')
                self.end_headers()
                self.wfile.write(f'# Error: {e}\n'.encode())
        else:
            self.send_response(503)
            self.send_header('Content-Type', 'text/plain')
            self.end_headers()
            self.wfile.write(b'# No engine connected\n')

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        stats = status.get('stats', {})
        lines = [
            '# HELP tide_watch_recording Whether depth is being recorded (1=yes)',
            '# TYPE tide_watch_recording gauge',
            f'tide_watch_recording {1 if status.get("recording_data") else 0}',
            '',
            '# HELP tide_watch_samples Samples in the current tracking window',
            '# TYPE tide_watch_samples gauge',
            f'tide_watch_samples {status.get("tide_sample_count", 0)}',
            '',
            '# HELP tide_watch_depth_trend Locked depth trend (-1=ebb, 0=undetermined, 1=flood)',
            '# TYPE tide_watch_depth_trend gauge',
            f'tide_watch_depth_trend {status.get("depth_trend", 0)}',
            '',
            '# HELP tide_watch_phase_switches_total Phase flips since tracking started',
            '# TYPE tide_watch_phase_switches_total counter',
            f'tide_watch_phase_switches_total {status.get("phase_switch_count", 0)}',
            '',
            '# HELP tide_watch_samples_recorded_total Samples appended to the depth log',
            '# TYPE tide_watch_samples_recorded_total counter',
            f'tide_watch_samples_recorded_total {stats.get("samples_recorded", 0)}',
            '',
            '# HELP tide_watch_log_errors_total Depth log I/O failures',
            '# TYPE tide_watch_log_errors_total counter',
            f'tide_watch_log_errors_total {stats.get("log_errors", 0)}',
        ]

        for key, metric in (('highest_known', 'high'), ('lowest_known', 'low')):
            depth = (status.get(key) or {}).get('depth')
            if depth is not None:
                lines.extend([
                    '',
                    f'# HELP tide_watch_known_{metric}_depth_m Depth at the last known {metric} tide',
                    f'# TYPE tide_watch_known_{metric}_depth_m gauge',
                    f'tide_watch_known_{metric}_depth_m {depth:.3f}',
                ])

        lines.append('')
        return '\n'.join(lines)


class HealthServer:
    """
    HTTP server for status monitoring.

    Runs in a background thread and provides endpoints for monitoring
    the tide-watch daemon.
    """

    def __init__(self, port: int = 8080, bind_address: str = '0.0.0.0'):
        """
        Initialize the health server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: all interfaces)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.engine = None
        self._running = False

    def set_engine(self, engine):
        """
        Connect to a RecordingEngine for status reporting.

        Args:
            engine: RecordingEngine instance
        """
        self.engine = engine
        HealthRequestHandler.get_status = self._get_status
        HealthRequestHandler.rename_location = self._rename_location

    def _get_status(self) -> Dict[str, Any]:
        if not self.engine:
            return {'error': 'No engine connected'}
        status = self.engine.get_status()
        status['timestamp'] = time.time()
        return status

    def _rename_location(self, location_id: int, name: str):
        return self.engine.rename_location(location_id, name)

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer(
                (self.bind_address, self.port),
                HealthRequestHandler
            )
            # Set timeout so handle_request doesn't block forever
            self.server.timeout = 1.0
            self._running = True

            self.thread = threading.Thread(
                target=self._serve,
                name="HealthServer",
                daemon=True
            )
            self.thread.start()

            logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
            logger.info(f"  GET /health       - Health check")
            logger.info(f"  GET /status       - JSON tide status")
            logger.info(f"  GET /metrics      - Prometheus metrics")
            logger.info(f"  PUT /api/location - Rename current location")

        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            self._running = False

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running:
            try:
                self.server.handle_request()
            except Exception as e:
                if self._running:
                    logger.debug(f"Health server request error: {e}")

    def stop(self):
        """Stop the health server."""
        self._running = False
        if self.server:
            try:
                self.server.server_close()
            except OSError:
                pass
            self.server = None
        if self.thread:
            self.thread.join(timeout=2.0)
        logger.info("Health server stopped")
