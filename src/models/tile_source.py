from dataclasses import dataclass, field
from typing import Dict

from models.offline_map import TileKey


@dataclass
class TileSource:
    """Data model for the raster tile provider"""
    base_url: str
    layer: str
    tile_size: int
    format: str
    api_key: str
    headers: Dict[str, str] = field(default_factory=dict)

    def get_tile_url(self, key: TileKey) -> str:
        """Generate tile URL for given coordinates"""
        base = self.base_url.rstrip('/')
        return (f"{base}/{self.layer}/{self.tile_size}/"
                f"{key.z}/{key.x}/{key.y}.{self.format}?key={self.api_key}")

    def get_headers(self) -> Dict[str, str]:
        """Get request headers"""
        return self.headers.copy()


@dataclass
class DownloadConfig:
    """Data model for download configuration"""
    cache_dir: str
    database_path: str
    max_workers: int
    timeout: float
    request_delay: float
    tile_source: TileSource
