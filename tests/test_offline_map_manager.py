import json
import os
import sys
from pathlib import Path
from typing import Dict

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
from core.offline_map_manager import OfflineMapManager
from models.offline_map import BoundingBox, CancellationToken, TileKey
from exceptions.offline_map_exceptions import DownloadCancelled, StorageError, ValidationError


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"valid"
SAN_FRANCISCO = BoundingBox(north=37.80, south=37.78, east=-122.40, west=-122.44)


class DummyResponse:
    def __init__(self, status_code: int, content: bytes):
        self.status_code = status_code
        self.content = content


class DummySession:
    """Serves PNG bytes for every URL except the ones marked as failing"""

    def __init__(self):
        self.failing = set()
        self.requested = []

    def get(self, url, headers=None, timeout=None):
        self.requested.append(url)
        if url in self.failing:
            return DummyResponse(404, b"")
        return DummyResponse(200, PNG_BYTES)


def make_config(tmp_path: Path) -> Dict:
    return {
        "cache_dir": str(tmp_path / "tiles"),
        "database_path": str(tmp_path / "OfflineMaps.db"),
        "max_workers": 3,
        "timeout": 5,
        "request_delay": 0,
        "tile_source": {"base_url": "https://tiles.example.com/maps", "api_key": "test"}
    }


@pytest.fixture
def session():
    return DummySession()


@pytest.fixture
def manager(tmp_path: Path, session: DummySession):
    with OfflineMapManager(config=make_config(tmp_path)) as mgr:
        mgr.download_service.create_session = lambda: session  # type: ignore
        yield mgr


def orphan_tile_rows(manager: OfflineMapManager) -> int:
    return manager.catalog._connection.execute(
        "SELECT COUNT(*) FROM tiles WHERE region_id NOT IN (SELECT id FROM regions)"
    ).fetchone()[0]


def test_missing_config_file_raises(tmp_path: Path):
    from exceptions.offline_map_exceptions import ConfigurationError
    with pytest.raises(ConfigurationError):
        OfflineMapManager(str(tmp_path / "nope.json"))


def test_san_francisco_scenario(manager: OfflineMapManager):
    tiles = manager.tiles_for_bounds(SAN_FRANCISCO, 10, 10)
    estimate = manager.estimate(SAN_FRANCISCO, 10, 10)

    assert tiles == [TileKey(z=10, x=163, y=395)]
    assert estimate['tile_count'] == 1
    assert estimate['estimated_size'] == "20 KB"
    assert estimate['area_km2'] == pytest.approx(7.82, rel=0.01)


@pytest.mark.parametrize("bounds,min_zoom,max_zoom", [
    (SAN_FRANCISCO, 12, 10),
    (SAN_FRANCISCO, -1, 3),
    (SAN_FRANCISCO, 1, 30),
    (BoundingBox(north=37.0, south=38.0, east=-122.40, west=-122.44), 10, 10),
    (BoundingBox(north=37.8, south=37.7, east=-122.50, west=-122.44), 10, 10),
    (BoundingBox(north=float('nan'), south=37.7, east=-122.40, west=-122.44), 10, 10),
])
def test_invalid_requests_are_rejected(manager: OfflineMapManager, session, bounds, min_zoom, max_zoom):
    with pytest.raises(ValidationError):
        manager.tiles_for_bounds(bounds, min_zoom, max_zoom)
    with pytest.raises(ValidationError):
        manager.download_region("name", bounds, min_zoom, max_zoom)
    assert session.requested == []


def test_empty_name_rejected_before_any_io(manager: OfflineMapManager, session):
    with pytest.raises(ValidationError):
        manager.download_region("   ", SAN_FRANCISCO, 10, 12)
    assert session.requested == []
    assert manager.list_regions() == []


def test_download_region_saves_catalog_and_files(manager: OfflineMapManager):
    progress = []
    region_id = manager.download_region("San Francisco", SAN_FRANCISCO, 10, 13, progress.append)

    tiles = manager.tiles_for_bounds(SAN_FRANCISCO, 10, 13)
    regions = manager.list_regions()

    assert [r.id for r in regions] == [region_id]
    region = regions[0]
    assert region.name == "San Francisco"
    assert region.tile_count == len(tiles)
    assert region.size_bytes == len(tiles) * len(PNG_BYTES)
    assert progress[-1].completed == len(tiles)

    stats = manager.region_stats(region_id)
    assert stats.count == len(tiles)
    assert stats.total_size == region.size_bytes

    for key in tiles:
        path = manager.lookup_tile_path(key)
        assert path == manager.tile_store.path_for(key)
        assert os.path.exists(path)
        assert manager.local_tile_uri(key).startswith("file://")
    assert manager.cache_size() == region.size_bytes


def test_partial_failure_region_is_still_saved(manager: OfflineMapManager, session):
    tiles = manager.tiles_for_bounds(SAN_FRANCISCO, 12, 13)
    failing = tiles[1]
    session.failing.add(manager.download_config.tile_source.get_tile_url(failing))

    result = manager.download_batch(tiles)
    region_id = manager.save_region("partial", SAN_FRANCISCO, 12, 13, result)

    assert result.failed == 1
    assert result.failed_tiles == [failing]
    assert manager.get_region(region_id).tile_count == len(tiles) - 1
    assert manager.lookup_tile_path(failing) is None
    assert manager.local_tile_uri(failing) is None


def test_cancelled_download_saves_nothing(manager: OfflineMapManager, session):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(DownloadCancelled) as excinfo:
        manager.download_region("cancelled", SAN_FRANCISCO, 10, 12, token=token)

    assert excinfo.value.result.cancelled
    assert manager.list_regions() == []
    assert session.requested == []


def test_delete_region_removes_files_and_rows(manager: OfflineMapManager):
    keep_bounds = BoundingBox(north=51.52, south=51.50, east=-0.10, west=-0.14)
    keep_id = manager.download_region("London", keep_bounds, 12, 12)
    gone_id = manager.download_region("SF", SAN_FRANCISCO, 12, 13)
    gone_tiles = manager.tiles_for_bounds(SAN_FRANCISCO, 12, 13)

    result = manager.delete_region(gone_id)

    assert result.ok
    assert result.deleted == len(gone_tiles)
    assert [r.id for r in manager.list_regions()] == [keep_id]
    assert manager.region_stats(gone_id).count == 0
    assert orphan_tile_rows(manager) == 0
    for key in gone_tiles:
        assert not manager.tile_store.exists(key)
    assert manager.region_stats(keep_id).count > 0


def test_delete_region_tolerates_already_missing_files(manager: OfflineMapManager):
    region_id = manager.download_region("SF", SAN_FRANCISCO, 12, 12)
    tiles = manager.tiles_for_bounds(SAN_FRANCISCO, 12, 12)
    os.remove(manager.tile_store.path_for(tiles[0]))

    result = manager.delete_region(region_id)

    assert result.ok
    assert result.missing == 1
    assert manager.get_region(region_id) is None


def test_shared_tiles_move_to_latest_region(manager: OfflineMapManager):
    first = manager.download_region("first", SAN_FRANCISCO, 10, 10)
    second = manager.download_region("second", SAN_FRANCISCO, 10, 10)

    assert manager.region_stats(first).count == 0
    assert manager.region_stats(second).count == 1
    # The snapshot on the region row is not recomputed
    assert manager.get_region(first).tile_count == 1


def test_clear_cache(manager: OfflineMapManager):
    manager.download_region("SF", SAN_FRANCISCO, 10, 12)
    assert manager.cache_size() > 0

    manager.clear_cache()

    assert manager.cache_size() == 0
    assert manager.list_regions() == []


def test_closed_manager_raises_storage_error(tmp_path: Path):
    mgr = OfflineMapManager(config=make_config(tmp_path))
    with pytest.raises(StorageError):
        mgr.list_regions()


def test_cli_estimate(manager: OfflineMapManager, capsys):
    ok = manager.run_from_command_line(
        ['--bbox', '37.80', '37.78', '-122.40', '-122.44', '--min-zoom', '10', '--max-zoom', '10', '--estimate']
    )
    out = capsys.readouterr().out
    assert ok
    assert "Tiles: 1" in out
    assert "Estimated size: 20 KB" in out


def test_cli_download_list_and_delete(manager: OfflineMapManager, capsys):
    assert manager.run_from_command_line(
        ['--bbox', '37.78', '37.80', '-122.44', '-122.40', '--min-zoom', '10', '--max-zoom', '11', '--name', 'SF']
    )
    region = manager.list_regions()[0]
    assert region.bounds == SAN_FRANCISCO

    assert manager.run_from_command_line(['--list-regions'])
    assert manager.run_from_command_line(['--region-stats', str(region.id)])
    assert manager.run_from_command_line(['--delete-region', str(region.id)])
    out = capsys.readouterr().out

    assert "[%d] SF" % region.id in out
    assert manager.list_regions() == []


def test_cli_polygon_download(manager: OfflineMapManager, tmp_path: Path):
    polygon = {
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[-122.44, 37.78], [-122.40, 37.78], [-122.40, 37.80],
                             [-122.44, 37.80], [-122.44, 37.78]]]
        }
    }
    path = tmp_path / "area.geojson"
    path.write_text(json.dumps(polygon), encoding='utf-8')

    assert manager.run_from_command_line(
        ['--polygon', str(path), '--min-zoom', '10', '--max-zoom', '10', '--name', 'poly']
    )
    region = manager.list_regions()[0]
    assert region.tile_count == 1
    assert region.bounds.north == pytest.approx(37.80)


def test_cli_requires_name_for_download(manager: OfflineMapManager, session):
    assert not manager.run_from_command_line(['--bbox', '37.80', '37.78', '-122.40', '-122.44'])
    assert session.requested == []
