"""
Anchorage registry.

Every place the vessel has recorded depth gets an entry in
<data_dir>/locations.json. A position within max_location_distance meters
of a known anchorage resolves to that anchorage; anything further away
becomes a new one. The anchorage id selects the depth log file.

File format (JSON list, ids are 1-based list positions):

    [
      {"id": 1, "name": "Location 26.28514, -80.09035",
       "position": {"latitude": 26.285139, "longitude": -80.090347}}
    ]
"""

import json
import logging
import math
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from ..interfaces.tide_report import Location, Position

logger = logging.getLogger(__name__)


LOCATIONS_FILE = "locations.json"
EARTH_RADIUS_M = 6371000.0


def haversine_distance(a: Position, b: Position) -> float:
    """
    Great circle distance between two positions.

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.asin(math.sqrt(h))

    return EARTH_RADIUS_M * c


class LocationManager:
    """
    JSON-backed registry of anchorages.

    Usage:
        manager = LocationManager(data_dir, max_location_distance=100)
        location = manager.resolve(Position(26.285, -80.090))
        log_path = data_dir / log_file_name(location.id)
    """

    def __init__(self, data_dir: Union[str, Path], max_location_distance: float = 100.0):
        """
        Args:
            data_dir: Directory holding locations.json and the depth logs
            max_location_distance: Max meters between two positions for them
                                   to count as the same anchorage
        """
        self.data_dir = Path(data_dir)
        self.max_location_distance = max_location_distance
        self.index_file = self.data_dir / LOCATIONS_FILE
        self._locations: Optional[List[Location]] = None

    @property
    def locations(self) -> List[Location]:
        if self._locations is None:
            self._locations = self._load()
        return self._locations

    def _load(self) -> List[Location]:
        try:
            with open(self.index_file, 'r') as f:
                raw = json.load(f)
            locations = [Location.from_dict(entry) for entry in raw]
            logger.info(f"Loaded {len(locations)} locations from {self.index_file}")
            return locations
        except FileNotFoundError:
            logger.info(f"No locations file at {self.index_file}, starting empty")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Can't read locations file {self.index_file}: {e}")
        return []

    def _save(self):
        """Write the registry atomically (temp file + rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir,
            prefix='.locations_',
            suffix='.tmp'
        )
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump([loc.to_dict() for loc in self.locations], f, indent=2)
            os.replace(temp_path, self.index_file)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def find_nearest(self, position: Position) -> Optional[Location]:
        """First known anchorage within max_location_distance, or None."""
        for location in self.locations:
            if haversine_distance(location.position, position) <= self.max_location_distance:
                return location
        return None

    def get(self, location_id: int) -> Optional[Location]:
        for location in self.locations:
            if location.id == location_id:
                return location
        return None

    def resolve(self, position: Position) -> Location:
        """Anchorage for position, registering a new one when none is near."""
        location = self.find_nearest(position)
        if location is not None:
            logger.debug(f"Position matches location {location.id} ({location.name})")
            return location

        location = Location(
            id=len(self.locations) + 1,
            name=f"Location {position.latitude:.5f}, {position.longitude:.5f}",
            position=position,
        )
        logger.info(f"Adding new location {location.id}: {location.name}")
        self.locations.append(location)
        self._save()
        return location

    def save_location(self, location: Location) -> Location:
        """
        Update an existing anchorage by id.

        Raises:
            KeyError: If no anchorage has that id
        """
        for i, existing in enumerate(self.locations):
            if existing.id == location.id:
                self.locations[i] = location
                self._save()
                logger.info(f"Saved location {location.id}: {location.name}")
                return location
        raise KeyError(f"Unknown location id {location.id}")
