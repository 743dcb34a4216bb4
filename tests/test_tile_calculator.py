#!/usr/bin/env python3
"""
Tests for TileCalculator utility
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from models.offline_map import BoundingBox, TileKey
from utils.tile_calculator import TileCalculator


SAN_FRANCISCO = BoundingBox(north=37.80, south=37.78, east=-122.40, west=-122.44)


class TestTileCalculator:
    """Test cases for TileCalculator class"""

    def test_known_coordinates(self):
        """Test coordinate conversion"""
        assert TileCalculator.lon_to_tile_x(-122.42, 10) == 163
        assert TileCalculator.lat_to_tile_y(37.79, 10) == 395

    def test_origin_at_zoom_zero(self):
        assert TileCalculator.lon_to_tile_x(0, 0) == 0
        assert TileCalculator.lat_to_tile_y(0, 0) == 0

    def test_north_maps_to_smaller_y(self):
        assert TileCalculator.lat_to_tile_y(60, 8) < TileCalculator.lat_to_tile_y(-60, 8)

    @pytest.mark.parametrize("zoom", [0, 1, 5, 10, 14])
    def test_lon_round_trip(self, zoom):
        for x in range(0, 2 ** zoom, max(1, 2 ** zoom // 64)):
            assert TileCalculator.lon_to_tile_x(TileCalculator.tile_x_to_lon(x, zoom), zoom) == x

    @pytest.mark.parametrize("zoom", [1, 5, 10, 14])
    def test_lat_round_trip_at_tile_centre(self, zoom):
        for y in range(0, 2 ** zoom, max(1, 2 ** zoom // 64)):
            lat = TileCalculator.tile_y_to_lat(y + 0.5, zoom)
            assert TileCalculator.lat_to_tile_y(lat, zoom) == y

    def test_tiles_for_bounds_single_tile(self):
        tiles = TileCalculator.tiles_for_bounds(SAN_FRANCISCO, 10, 10)
        assert tiles == [TileKey(z=10, x=163, y=395)]

    def test_tiles_for_bounds_count_and_order(self):
        """Test bbox tile calculation"""
        bounds = BoundingBox(north=41.2, south=40.8, east=29.5, west=28.5)  # Istanbul
        tiles = TileCalculator.tiles_for_bounds(bounds, 10, 12)

        expected = 0
        for zoom in range(10, 13):
            min_x = TileCalculator.lon_to_tile_x(bounds.west, zoom)
            max_x = TileCalculator.lon_to_tile_x(bounds.east, zoom)
            min_y = TileCalculator.lat_to_tile_y(bounds.north, zoom)
            max_y = TileCalculator.lat_to_tile_y(bounds.south, zoom)
            expected += (max_x - min_x + 1) * (max_y - min_y + 1)

        assert len(tiles) == expected
        assert len(set(tiles)) == len(tiles)
        assert tiles == sorted(tiles)
        assert all(10 <= t.z <= 12 for t in tiles)

    def test_calculate_tile_count_matches_enumeration(self):
        """Test tile count calculation"""
        bounds = BoundingBox(north=41.2, south=40.8, east=29.5, west=28.5)
        count = TileCalculator.calculate_tile_count(bounds, 8, 13)
        assert count == len(TileCalculator.tiles_for_bounds(bounds, 8, 13))

    def test_clamp_bounds(self):
        clamped = TileCalculator.clamp_bounds(BoundingBox(north=90, south=-90, east=180, west=-180))
        assert clamped.north == pytest.approx(TileCalculator.MAX_LATITUDE)
        assert clamped.south == pytest.approx(-TileCalculator.MAX_LATITUDE)
        tiles = TileCalculator.tiles_for_bounds(clamped, 2, 2)
        assert len(tiles) == 16

    def test_tile_bounds_contains_point(self):
        key = TileKey(z=10, x=163, y=395)
        tb = TileCalculator.tile_bounds(key)
        assert tb.west < -122.42 < tb.east
        assert tb.south < 37.79 < tb.north

    def test_tiles_for_polygon(self):
        polygon = {
            "type": "Polygon",
            "coordinates": [[[28.5, 40.8], [29.5, 40.8], [29.0, 41.2], [28.5, 40.8]]]
        }
        bounds = BoundingBox(north=41.2, south=40.8, east=29.5, west=28.5)
        triangle_tiles = TileCalculator.tiles_for_polygon(polygon, 11, 11)
        box_tiles = TileCalculator.tiles_for_bounds(bounds, 11, 11)

        assert 0 < len(triangle_tiles) < len(box_tiles)
        assert set(triangle_tiles) <= set(box_tiles)

    def test_estimate_size(self):
        assert TileCalculator.estimate_size(1) == "20 KB"
        assert TileCalculator.estimate_size(100) == "1.95 MB"
        assert TileCalculator.estimate_size(60000) == "1.14 GB"

    def test_area(self):
        assert TileCalculator.area(SAN_FRANCISCO) == pytest.approx(7.82, rel=0.01)

    def test_format_bytes(self):
        assert TileCalculator.format_bytes(0) == "0 Bytes"
        assert TileCalculator.format_bytes(500) == "500 Bytes"
        assert TileCalculator.format_bytes(1536) == "1.5 KB"
        assert TileCalculator.format_bytes(1024 * 1024) == "1 MB"
        assert TileCalculator.format_bytes(5 * 1024 ** 4) == "5120 GB"

    def test_format_date(self):
        assert TileCalculator.format_date("2024-03-05T14:07:09.123456+00:00") == "2024-03-05 14:07"


if __name__ == "__main__":
    pytest.main([__file__])
