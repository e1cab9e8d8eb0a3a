"""Anchorage registry."""

from .location_manager import LocationManager, haversine_distance

__all__ = ['LocationManager', 'haversine_distance']
