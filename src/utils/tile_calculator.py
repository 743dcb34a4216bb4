import math
from datetime import datetime
from typing import List, Optional
from shapely.geometry import box, shape
from shapely.prepared import prep

from models.offline_map import BoundingBox, TileKey


class TileCalculator:
    """Utility class for tile coordinate calculations"""

    # Web Mercator is only defined up to this latitude
    MAX_LATITUDE = 85.0511287798
    EARTH_RADIUS_KM = 6371.0
    AVERAGE_TILE_SIZE_KB = 20

    @staticmethod
    def lat_to_tile_y(lat_deg: float, zoom: int) -> int:
        """Convert latitude to tile Y coordinate"""
        lat_rad = math.radians(lat_deg)
        n = 2.0 ** zoom
        return math.floor(
            (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
        )

    @staticmethod
    def lon_to_tile_x(lon_deg: float, zoom: int) -> int:
        """Convert longitude to tile X coordinate"""
        n = 2.0 ** zoom
        return math.floor((lon_deg + 180.0) / 360.0 * n)

    @staticmethod
    def tile_x_to_lon(x: float, zoom: int) -> float:
        """Convert tile X coordinate to the longitude of its west edge"""
        return x / (2.0 ** zoom) * 360.0 - 180.0

    @staticmethod
    def tile_y_to_lat(y: float, zoom: int) -> float:
        """Convert tile Y coordinate to the latitude of its north edge"""
        n = math.pi - 2.0 * math.pi * y / (2.0 ** zoom)
        return math.degrees(math.atan(math.sinh(n)))

    @staticmethod
    def clamp_latitude(lat_deg: float) -> float:
        """Clamp latitude into the Web Mercator range"""
        return max(-TileCalculator.MAX_LATITUDE, min(TileCalculator.MAX_LATITUDE, lat_deg))

    @staticmethod
    def clamp_bounds(bounds: BoundingBox) -> BoundingBox:
        """Return bounds with latitudes clamped into the Web Mercator range"""
        return BoundingBox(
            north=TileCalculator.clamp_latitude(bounds.north),
            south=TileCalculator.clamp_latitude(bounds.south),
            east=bounds.east,
            west=bounds.west
        )

    @staticmethod
    def _tile_range(bounds: BoundingBox, zoom: int):
        # Tile Y grows southward so the north edge gives the smallest Y
        last = 2 ** zoom - 1
        min_x = max(0, TileCalculator.lon_to_tile_x(bounds.west, zoom))
        max_x = min(last, TileCalculator.lon_to_tile_x(bounds.east, zoom))
        min_y = max(0, TileCalculator.lat_to_tile_y(bounds.north, zoom))
        max_y = min(last, TileCalculator.lat_to_tile_y(bounds.south, zoom))
        return min_x, max_x, min_y, max_y

    @staticmethod
    def tiles_for_bounds(bounds: BoundingBox, min_zoom: int, max_zoom: int) -> List[TileKey]:
        """Get all tiles for a bounding box across zoom levels.

        Ordered by zoom, then x, then y so progress reporting is reproducible.
        """
        tiles = []

        for zoom in range(min_zoom, max_zoom + 1):
            min_x, max_x, min_y, max_y = TileCalculator._tile_range(bounds, zoom)

            for x in range(min_x, max_x + 1):
                for y in range(min_y, max_y + 1):
                    tiles.append(TileKey(z=zoom, x=x, y=y))

        return tiles

    @staticmethod
    def calculate_tile_count(bounds: BoundingBox, min_zoom: int, max_zoom: int) -> int:
        """Calculate total number of tiles without enumerating them"""
        count = 0
        for zoom in range(min_zoom, max_zoom + 1):
            min_x, max_x, min_y, max_y = TileCalculator._tile_range(bounds, zoom)
            count += max(0, max_x - min_x + 1) * max(0, max_y - min_y + 1)
        return count

    @staticmethod
    def tile_bounds(key: TileKey) -> BoundingBox:
        """Return geographic bounds of a single tile"""
        return BoundingBox(
            north=TileCalculator.tile_y_to_lat(key.y, key.z),
            south=TileCalculator.tile_y_to_lat(key.y + 1, key.z),
            east=TileCalculator.tile_x_to_lon(key.x + 1, key.z),
            west=TileCalculator.tile_x_to_lon(key.x, key.z)
        )

    @staticmethod
    def polygon_bounds(polygon_geojson: dict) -> BoundingBox:
        """Web Mercator clamped bounding box of a GeoJSON geometry"""
        min_lon, min_lat, max_lon, max_lat = shape(polygon_geojson).bounds
        return TileCalculator.clamp_bounds(
            BoundingBox(north=max_lat, south=min_lat, east=max_lon, west=min_lon)
        )

    @staticmethod
    def tiles_for_polygon(polygon_geojson: dict, min_zoom: int, max_zoom: int,
                          bounds_hint: Optional[BoundingBox] = None) -> List[TileKey]:
        """Generate tiles intersecting a polygon (GeoJSON geometry dict). Uses bounds hint if provided to limit candidates."""
        poly = shape(polygon_geojson)
        poly = poly.buffer(0) if not poly.is_valid else poly
        prepared = prep(poly)

        if bounds_hint is None:
            bounds_hint = TileCalculator.polygon_bounds(polygon_geojson)

        filtered: List[TileKey] = []
        for key in TileCalculator.tiles_for_bounds(bounds_hint, min_zoom, max_zoom):
            tb = TileCalculator.tile_bounds(key)
            if prepared.intersects(box(tb.west, tb.south, tb.east, tb.north)):
                filtered.append(key)

        return filtered

    @staticmethod
    def estimate_size(tile_count: int) -> str:
        """Estimate download size based on tile count"""
        total_kb = tile_count * TileCalculator.AVERAGE_TILE_SIZE_KB

        if total_kb < 1024:
            return f"{round(total_kb)} KB"
        elif total_kb < 1024 * 1024:
            return f"{total_kb / 1024:.2f} MB"
        return f"{total_kb / 1024 / 1024:.2f} GB"

    @staticmethod
    def area(bounds: BoundingBox) -> float:
        """Approximate area in square kilometers (flat Earth, city scale)"""
        d_lat = math.radians(bounds.north - bounds.south)
        d_lon = math.radians(bounds.east - bounds.west)
        avg_lat = math.radians((bounds.north + bounds.south) / 2.0)

        width = TileCalculator.EARTH_RADIUS_KM * d_lon * math.cos(avg_lat)
        height = TileCalculator.EARTH_RADIUS_KM * d_lat
        return abs(width * height)

    @staticmethod
    def format_bytes(num_bytes: int) -> str:
        """Format bytes to human readable format"""
        if num_bytes <= 0:
            return "0 Bytes"

        sizes = ['Bytes', 'KB', 'MB', 'GB']
        i = 0
        while num_bytes >= 1024 ** (i + 1) and i < len(sizes) - 1:
            i += 1
        value = f"{num_bytes / (1024 ** i):.2f}".rstrip('0').rstrip('.')
        return f"{value} {sizes[i]}"

    @staticmethod
    def format_date(date_string: str) -> str:
        """Format a stored ISO timestamp for display"""
        return datetime.fromisoformat(date_string).strftime('%Y-%m-%d %H:%M')
