import threading
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple


@dataclass
class BoundingBox:
    """Geographic rectangle in degrees"""
    north: float
    south: float
    east: float
    west: float

    def to_dict(self) -> Dict[str, float]:
        """Serialize to a plain dict"""
        return {
            'north': self.north,
            'south': self.south,
            'east': self.east,
            'west': self.west
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BoundingBox':
        """Build from a dict with north/south/east/west keys"""
        return cls(
            north=float(data['north']),
            south=float(data['south']),
            east=float(data['east']),
            west=float(data['west'])
        )


@dataclass(frozen=True, order=True)
class TileKey:
    """Address of one raster tile"""
    z: int
    x: int
    y: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.z, self.x, self.y)

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


@dataclass
class TileRecord:
    """Tile whose bytes are stored on disk"""
    key: TileKey
    file_path: str
    size_bytes: int


@dataclass
class Region:
    """Saved offline region"""
    id: int
    name: str
    bounds: BoundingBox
    min_zoom: int
    max_zoom: int
    tile_count: int
    size_bytes: int
    download_date: str


@dataclass
class RegionStats:
    """Live aggregate over a region's tiles"""
    count: int
    total_size: int


@dataclass
class DownloadProgress:
    """Progress snapshot emitted during a batch"""
    completed: int
    total: int
    failed: int
    percentage: int
    total_bytes: int
    current_tile: Optional[TileKey] = None

    @property
    def processed(self) -> int:
        return self.completed + self.failed


@dataclass
class DownloadResult:
    """Terminal summary of a batch"""
    tile_records: List[TileRecord] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    total_bytes: int = 0
    failed_tiles: List[TileKey] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class DeleteResult:
    """Outcome of a best-effort file deletion"""
    deleted: int = 0
    missing: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class CancellationToken:
    """Cooperative cancellation flag shared with download workers"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
