from abc import ABC, abstractmethod
from typing import Dict, Any, Callable, Iterable, List, Optional

from models.offline_map import (
    BoundingBox, CancellationToken, DeleteResult, DownloadProgress,
    DownloadResult, Region, RegionStats, TileKey, TileRecord
)


class ITileStore(ABC):
    """Interface for tile byte storage addressed by (z, x, y)"""

    @abstractmethod
    def path_for(self, key: TileKey) -> str:
        """Storage address of a tile, no I/O"""
        pass

    @abstractmethod
    def put(self, key: TileKey, data: bytes) -> str:
        """Store tile bytes and return the storage address"""
        pass

    @abstractmethod
    def exists(self, key: TileKey) -> bool:
        """Check if a tile is stored"""
        pass

    @abstractmethod
    def size_of(self, key: TileKey) -> int:
        """Size of a stored tile in bytes, 0 if absent"""
        pass

    @abstractmethod
    def delete_all(self, paths: Iterable[str]) -> DeleteResult:
        """Best-effort delete of stored files"""
        pass

    @abstractmethod
    def total_cache_size(self) -> int:
        """Sum of all stored file sizes"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored tile"""
        pass


class ICatalog(ABC):
    """Interface for the region and tile catalog"""

    @abstractmethod
    def create_region(self, name: str, bounds: BoundingBox, min_zoom: int, max_zoom: int,
                      tile_count: int, size_bytes: int,
                      tiles: Iterable[TileRecord] = ()) -> int:
        """Insert a region and return its id"""
        pass

    @abstractmethod
    def record_tile(self, region_id: int, record: TileRecord) -> None:
        """Upsert a tile row for a region"""
        pass

    @abstractmethod
    def lookup_tile_path(self, key: TileKey) -> Optional[str]:
        """File path of a cataloged tile"""
        pass

    @abstractmethod
    def list_regions(self) -> List[Region]:
        """All regions, most recent first"""
        pass

    @abstractmethod
    def delete_region(self, region_id: int) -> List[str]:
        """Delete a region and its tiles, returning their file paths"""
        pass

    @abstractmethod
    def region_stats(self, region_id: int) -> RegionStats:
        """Tile count and size of a region"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Empty the catalog"""
        pass


class ITileDownloader(ABC):
    """Interface for tile downloader implementations"""

    @abstractmethod
    def download_tile(self, key: TileKey) -> int:
        """Download a single tile into storage and return its size"""
        pass

    @abstractmethod
    def download_tiles_batch(self, tiles: List[TileKey],
                             on_progress: Optional[Callable[[DownloadProgress], None]] = None,
                             token: Optional[CancellationToken] = None) -> DownloadResult:
        """Download multiple tiles"""
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Request cancellation of the running batch"""
        pass


class IConfigLoader(ABC):
    """Interface for configuration loading"""

    @abstractmethod
    def load_config(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from file"""
        pass

    @abstractmethod
    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration"""
        pass
