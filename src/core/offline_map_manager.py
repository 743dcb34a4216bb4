import argparse
import json
import logging
import math
from typing import Dict, Any, List, Optional
from shapely.errors import ShapelyError
from services.config_service import ConfigService
from services.tile_download_service import TileDownloadService, ProgressCallback
from services.tile_store import TileStore
from services.catalog_service import CatalogService
from utils.tile_calculator import TileCalculator
from models.offline_map import (
    BoundingBox, CancellationToken, DeleteResult, DownloadProgress,
    DownloadResult, Region, RegionStats, TileKey
)
from exceptions.offline_map_exceptions import DownloadCancelled, ValidationError

logger = logging.getLogger(__name__)


class OfflineMapManager:
    """Offline tile cache: enumerate, download, catalog and delete regions.

    The caller owns the lifecycle: ``open()`` before use and ``close()`` when
    done, or use the manager as a context manager.
    """

    MAX_ZOOM = 22

    def __init__(self, config_path: str = "config.json", config: Optional[Dict[str, Any]] = None):
        self.config_service = ConfigService()
        if config is not None:
            self.config = self.config_service.process_config(config)
        else:
            self.config = self.config_service.load_config(config_path)

        self.download_config = self.config_service.build_download_config(self.config)
        self.tile_store = TileStore(self.download_config.cache_dir,
                                    extension=self.download_config.tile_source.format)
        self.catalog = CatalogService(self.download_config.database_path)
        self.download_service = TileDownloadService(
            tile_store=self.tile_store,
            tile_source=self.download_config.tile_source,
            max_workers=self.download_config.max_workers,
            timeout=self.download_config.timeout,
            request_delay=self.download_config.request_delay
        )

    def open(self) -> None:
        self.catalog.open()

    def close(self) -> None:
        self.download_service.cancel()
        self.download_service.close()
        self.catalog.close()

    def __enter__(self) -> 'OfflineMapManager':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Validation

    def _validate_zoom_range(self, min_zoom: int, max_zoom: int) -> None:
        for value in (min_zoom, max_zoom):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"Zoom level must be an integer, got {value!r}")
            if value < 0 or value > self.MAX_ZOOM:
                raise ValidationError(f"Zoom level {value} outside 0-{self.MAX_ZOOM}")
        if min_zoom > max_zoom:
            raise ValidationError(f"min_zoom {min_zoom} is greater than max_zoom {max_zoom}")

    @staticmethod
    def _validate_bounds(bounds: BoundingBox) -> None:
        values = (bounds.north, bounds.south, bounds.east, bounds.west)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            raise ValidationError(f"Bounds must be finite numbers: {bounds}")
        if not (-90 <= bounds.south <= bounds.north <= 90):
            raise ValidationError(f"Invalid latitudes (south={bounds.south}, north={bounds.north})")
        if not (-180 <= bounds.west <= bounds.east <= 180):
            raise ValidationError(f"Invalid longitudes (west={bounds.west}, east={bounds.east})")

    @staticmethod
    def _validate_name(name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Region name must not be empty")
        return name.strip()

    # Tile enumeration

    def tiles_for_bounds(self, bounds: BoundingBox, min_zoom: int, max_zoom: int) -> List[TileKey]:
        """Tiles covering bounds across a zoom range"""
        self._validate_bounds(bounds)
        self._validate_zoom_range(min_zoom, max_zoom)
        return TileCalculator.tiles_for_bounds(TileCalculator.clamp_bounds(bounds), min_zoom, max_zoom)

    def tiles_for_polygon(self, polygon_geojson: dict, min_zoom: int, max_zoom: int) -> List[TileKey]:
        """Tiles intersecting a GeoJSON polygon"""
        self._validate_zoom_range(min_zoom, max_zoom)
        try:
            return TileCalculator.tiles_for_polygon(polygon_geojson, min_zoom, max_zoom)
        except (KeyError, TypeError, ValueError, AttributeError, ShapelyError) as e:
            raise ValidationError(f"Invalid polygon geometry: {e}")

    def estimate(self, bounds: BoundingBox, min_zoom: int, max_zoom: int) -> Dict[str, Any]:
        """Tile count, size estimate and area for a prospective download"""
        self._validate_bounds(bounds)
        self._validate_zoom_range(min_zoom, max_zoom)
        tile_count = TileCalculator.calculate_tile_count(
            TileCalculator.clamp_bounds(bounds), min_zoom, max_zoom
        )
        return {
            'tile_count': tile_count,
            'estimated_size': TileCalculator.estimate_size(tile_count),
            'area_km2': TileCalculator.area(bounds)
        }

    # Downloading

    def download_batch(self, tiles: List[TileKey], on_progress: Optional[ProgressCallback] = None,
                       token: Optional[CancellationToken] = None) -> DownloadResult:
        """Download tiles into the cache"""
        return self.download_service.download_tiles_batch(tiles, on_progress, token)

    def cancel_batch(self) -> None:
        """Cancel the running batch, if any"""
        self.download_service.cancel()

    def save_region(self, name: str, bounds: BoundingBox, min_zoom: int, max_zoom: int,
                    result: DownloadResult) -> int:
        """Record a finished batch as a named region"""
        name = self._validate_name(name)
        self._validate_bounds(bounds)
        self._validate_zoom_range(min_zoom, max_zoom)
        return self.catalog.create_region(
            name=name,
            bounds=bounds,
            min_zoom=min_zoom,
            max_zoom=max_zoom,
            tile_count=result.completed,
            size_bytes=result.total_bytes,
            tiles=result.tile_records
        )

    def download_region(self, name: str, bounds: BoundingBox, min_zoom: int, max_zoom: int,
                        on_progress: Optional[ProgressCallback] = None,
                        token: Optional[CancellationToken] = None) -> int:
        """Download a bounding box and save it as a region.

        Partial failures are saved; a cancelled batch raises DownloadCancelled
        carrying the partial result and nothing is saved.
        """
        name = self._validate_name(name)
        tiles = self.tiles_for_bounds(bounds, min_zoom, max_zoom)
        result = self.download_batch(tiles, on_progress, token)
        if result.cancelled:
            raise DownloadCancelled(result)
        if result.failed:
            logger.warning(f"Region '{name}': {result.failed} of {len(tiles)} tiles failed")
        return self.save_region(name, bounds, min_zoom, max_zoom, result)

    # Catalog access

    def list_regions(self) -> List[Region]:
        return self.catalog.list_regions()

    def get_region(self, region_id: int) -> Optional[Region]:
        return self.catalog.get_region(region_id)

    def region_stats(self, region_id: int) -> RegionStats:
        return self.catalog.region_stats(region_id)

    def lookup_tile_path(self, key: TileKey) -> Optional[str]:
        return self.catalog.lookup_tile_path(key)

    def local_tile_uri(self, key: TileKey) -> Optional[str]:
        """file:// URI for a cached tile, or None if it is not stored"""
        if not self.tile_store.exists(key):
            return None
        return self.tile_store.local_tile_uri(key)

    def delete_region(self, region_id: int) -> DeleteResult:
        """Remove a region's catalog rows, then its tile files"""
        paths = self.catalog.delete_region(region_id)
        result = self.tile_store.delete_all(paths)
        if result.errors:
            logger.warning(f"Region {region_id}: {len(result.errors)} tile files could not be deleted")
        return result

    def cache_size(self) -> int:
        return self.tile_store.total_cache_size()

    def clear_cache(self) -> None:
        """Remove every cached tile and all catalog rows"""
        self.catalog.clear()
        self.tile_store.clear()

    # Command line

    def _print_progress(self, progress: DownloadProgress) -> None:
        print(f"\r  {progress.completed + progress.failed}/{progress.total} tiles "
              f"({progress.percentage}%), failed: {progress.failed}, "
              f"{TileCalculator.format_bytes(progress.total_bytes)}", end='', flush=True)

    def _print_regions(self) -> None:
        regions = self.list_regions()
        if not regions:
            print("No offline regions saved.")
            return
        print("Offline regions:")
        for region in regions:
            b = region.bounds
            print(f"  [{region.id}] {region.name}")
            print(f"        Bounds: N {b.north:.4f} S {b.south:.4f} E {b.east:.4f} W {b.west:.4f}")
            print(f"        Zoom: {region.min_zoom}-{region.max_zoom}, tiles: {region.tile_count}, "
                  f"size: {TileCalculator.format_bytes(region.size_bytes)}")
            print(f"        Downloaded: {TileCalculator.format_date(region.download_date)}")

    def _run_download(self, name: str, tiles: List[TileKey], bounds: BoundingBox,
                      min_zoom: int, max_zoom: int) -> bool:
        print(f"=== Downloading {name} ===")
        print(f"Zoom Levels: {min_zoom} to {max_zoom}")
        print(f"Tiles: {len(tiles)} (~{TileCalculator.estimate_size(len(tiles))})")
        print(f"Cache Directory: {self.tile_store.cache_root}")

        token = CancellationToken()
        try:
            result = self.download_batch(tiles, self._print_progress, token)
        except KeyboardInterrupt:
            print("\nDownload interrupted by user. Nothing was saved.")
            return False
        print()

        if result.cancelled:
            print("Download cancelled. Nothing was saved.")
            return False

        region_id = self.save_region(name, bounds, min_zoom, max_zoom, result)
        print(f"Downloaded {result.completed} tiles "
              f"({TileCalculator.format_bytes(result.total_bytes)}), failed: {result.failed}")
        print(f"Saved region '{name}' with id {region_id}")
        if result.failed:
            print("Run the same download again to fetch the missing tiles.")
        return True

    def run_from_command_line(self, argv: Optional[List[str]] = None) -> bool:
        """Run offline map command-line interface"""
        parser = argparse.ArgumentParser(
            description='Download map tiles for offline use and manage saved regions.',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=(
                'Examples:\n\n'
                '1) Download a bounding box (north south east west):\n'
                '   python src/offline_maps.py --bbox 37.80 37.78 -122.40 -122.44 --min-zoom 10 --max-zoom 14 --name "SF"\n\n'
                '2) Download the tiles touching a GeoJSON polygon:\n'
                '   python src/offline_maps.py --polygon area.geojson --min-zoom 10 --max-zoom 12 --name "Area"\n\n'
                '3) Estimate without downloading:\n'
                '   python src/offline_maps.py --bbox 37.80 37.78 -122.40 -122.44 --estimate\n\n'
                '4) Manage saved regions:\n'
                '   python src/offline_maps.py --list-regions\n'
                '   python src/offline_maps.py --delete-region 3\n\n'
                'Notes:\n'
                '- Re-running a download only fetches tiles that are missing from the cache.\n'
                '- Cache layout: <cache_dir>/<z>/<x>/<y>.png'
            )
        )
        parser.add_argument('--config', default=None, help='Path to config.json (handled by the entry point)')
        parser.add_argument('--bbox', nargs=4, type=float, metavar=('north', 'south', 'east', 'west'),
                            help='Bounding box in degrees')
        parser.add_argument('--polygon', help='GeoJSON file with a Polygon/MultiPolygon geometry or Feature')
        parser.add_argument('--min-zoom', type=int, default=10, help='Minimum zoom level (default: 10)')
        parser.add_argument('--max-zoom', type=int, default=14, help='Maximum zoom level (default: 14)')
        parser.add_argument('--name', help='Region name to save the download under')
        parser.add_argument('--estimate', action='store_true', help='Print tile count, size estimate and area only')
        parser.add_argument('--list-regions', action='store_true', help='List saved regions')
        parser.add_argument('--region-stats', type=int, metavar='ID', help='Show live tile statistics for a region')
        parser.add_argument('--delete-region', type=int, metavar='ID', help='Delete a region and its tiles')
        parser.add_argument('--cache-size', action='store_true', help='Print the size of the tile cache')
        parser.add_argument('--clear-cache', action='store_true', help='Delete all tiles and regions')

        args = parser.parse_args(argv)

        if args.list_regions:
            self._print_regions()
            return True

        if args.region_stats is not None:
            stats = self.region_stats(args.region_stats)
            print(f"Region {args.region_stats}: {stats.count} tiles, "
                  f"{TileCalculator.format_bytes(stats.total_size)}")
            return True

        if args.delete_region is not None:
            result = self.delete_region(args.delete_region)
            print(f"Deleted region {args.delete_region}: {result.deleted} files removed, "
                  f"{result.missing} already missing")
            for path, error in result.errors.items():
                print(f"  Could not delete {path}: {error}")
            return result.ok

        if args.cache_size:
            print(f"Cache size: {TileCalculator.format_bytes(self.cache_size())}")
            return True

        if args.clear_cache:
            self.clear_cache()
            print("Cache cleared.")
            return True

        if args.polygon:
            with open(args.polygon, 'r', encoding='utf-8') as f:
                geometry = json.load(f)
            if geometry.get('type') == 'Feature':
                geometry = geometry['geometry']
            tiles = self.tiles_for_polygon(geometry, args.min_zoom, args.max_zoom)
            bounds = TileCalculator.polygon_bounds(geometry)
            if not tiles:
                print("Polygon does not cover any tiles.")
                return False
        elif args.bbox:
            north, south, east, west = args.bbox
            bounds = BoundingBox(north=max(north, south), south=min(north, south),
                                 east=max(east, west), west=min(east, west))
            tiles = self.tiles_for_bounds(bounds, args.min_zoom, args.max_zoom)
        else:
            parser.print_help()
            return False

        if args.estimate:
            print(f"Tiles: {len(tiles)}")
            print(f"Estimated size: {TileCalculator.estimate_size(len(tiles))}")
            print(f"Area: {TileCalculator.area(bounds):.2f} km²")
            return True

        if not args.name:
            print("Please provide --name for the region to download.")
            return False

        return self._run_download(self._validate_name(args.name), tiles, bounds,
                                  args.min_zoom, args.max_zoom)
