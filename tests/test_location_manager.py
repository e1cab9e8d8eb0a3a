"""
Unit tests for the anchorage registry.
"""

import json
import pytest


class TestHaversine:
    """Great circle distance."""

    def test_zero_distance(self, anchorage):
        from tide_watch.location.location_manager import haversine_distance
        assert haversine_distance(anchorage, anchorage) == 0.0

    def test_one_degree_latitude(self):
        from tide_watch.interfaces.tide_report import Position
        from tide_watch.location.location_manager import haversine_distance

        d = haversine_distance(Position(0.0, 0.0), Position(1.0, 0.0))
        assert d == pytest.approx(111195, rel=1e-4)

    def test_symmetric(self, anchorage):
        from tide_watch.interfaces.tide_report import Position
        from tide_watch.location.location_manager import haversine_distance

        other = Position(26.3, -80.1)
        assert haversine_distance(anchorage, other) == pytest.approx(haversine_distance(other, anchorage))


class TestLocationManager:
    """Resolving positions to anchorages."""

    def test_first_position_creates_location(self, data_dir, anchorage):
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir)
        location = manager.resolve(anchorage)

        assert location.id == 1
        assert location.name == "Location 26.28514, -80.09035"
        assert location.position == anchorage

        stored = json.loads((data_dir / "locations.json").read_text())
        assert stored[0]['id'] == 1
        assert stored[0]['position']['latitude'] == 26.285139

    def test_nearby_position_reuses_location(self, data_dir, anchorage):
        from tide_watch.interfaces.tide_report import Position
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir, max_location_distance=100)
        manager.resolve(anchorage)

        # About 33 m north
        nearby = Position(anchorage.latitude + 0.0003, anchorage.longitude)
        assert manager.resolve(nearby).id == 1
        assert len(manager.locations) == 1

    def test_distant_position_creates_new_location(self, data_dir, anchorage):
        from tide_watch.interfaces.tide_report import Position
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir, max_location_distance=100)
        manager.resolve(anchorage)

        # About 330 m north
        away = Position(anchorage.latitude + 0.003, anchorage.longitude)
        assert manager.resolve(away).id == 2
        assert len(manager.locations) == 2

    def test_registry_persists(self, data_dir, anchorage):
        from tide_watch.interfaces.tide_report import Position
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir)
        manager.resolve(anchorage)
        manager.resolve(Position(25.0, -80.0))

        reloaded = LocationManager(data_dir)
        assert [loc.id for loc in reloaded.locations] == [1, 2]
        assert reloaded.resolve(anchorage).id == 1
        assert reloaded.get(2).position == Position(25.0, -80.0)
        assert reloaded.get(3) is None

    def test_save_location(self, data_dir, anchorage):
        from tide_watch.interfaces.tide_report import Location
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir)
        manager.resolve(anchorage)
        manager.save_location(Location(id=1, name="Lake Sylvia", position=anchorage))

        assert LocationManager(data_dir).get(1).name == "Lake Sylvia"

    def test_save_unknown_location(self, data_dir, anchorage):
        from tide_watch.interfaces.tide_report import Location
        from tide_watch.location.location_manager import LocationManager

        manager = LocationManager(data_dir)
        with pytest.raises(KeyError):
            manager.save_location(Location(id=7, name="Nowhere", position=anchorage))

    def test_corrupt_file_starts_empty(self, data_dir, anchorage):
        from tide_watch.location.location_manager import LocationManager

        (data_dir / "locations.json").write_text("{not json")
        manager = LocationManager(data_dir)
        assert manager.locations == []
        assert manager.resolve(anchorage).id == 1

    def test_no_temp_files_left(self, data_dir, anchorage):
        from tide_watch.location.location_manager import LocationManager

        LocationManager(data_dir).resolve(anchorage)
        assert [p.name for p in data_dir.iterdir()] == ["locations.json"]
