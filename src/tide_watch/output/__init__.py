"""Output adapters - Signal K delta writer, status monitoring."""

from .delta_writer import DeltaWriter, build_phase_values, build_height_values
from .health_server import HealthServer

__all__ = ['DeltaWriter', 'build_phase_values', 'build_height_values', 'HealthServer']
