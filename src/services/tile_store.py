import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional

from interfaces.offline_map import ITileStore
from models.offline_map import DeleteResult, TileKey
from utils.file_utils import FileUtils
from exceptions.offline_map_exceptions import StorageError

logger = logging.getLogger(__name__)


class TileStore(ITileStore):
    """Tile bytes on disk under {cache_root}/{z}/{x}/{y}.{ext}"""

    def __init__(self, cache_root: str, extension: str = 'png'):
        self.cache_root = os.path.abspath(cache_root)
        self.extension = extension

    def ensure_root(self) -> None:
        """Create the cache root, raising StorageError if impossible"""
        try:
            FileUtils.ensure_directory_exists(self.cache_root)
        except OSError as e:
            raise StorageError(f"Cannot create cache directory {self.cache_root}: {e}")

    def path_for(self, key: TileKey) -> str:
        return FileUtils.get_tile_path(self.cache_root, key.z, key.x, key.y, self.extension)

    def put(self, key: TileKey, data: bytes) -> str:
        path = self.path_for(key)
        try:
            FileUtils.atomic_write(path, data)
        except OSError as e:
            raise StorageError(f"Cannot write tile {key}: {e}")
        return path

    def exists(self, key: TileKey) -> bool:
        return FileUtils.file_exists(self.path_for(key))

    def size_of(self, key: TileKey) -> int:
        return FileUtils.get_file_size(self.path_for(key))

    def read(self, key: TileKey) -> Optional[bytes]:
        """Stored tile bytes or None"""
        try:
            with open(self.path_for(key), 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None

    def local_tile_uri(self, key: TileKey) -> str:
        """file:// URI of a stored tile"""
        return Path(self.path_for(key)).as_uri()

    def delete_all(self, paths: Iterable[str]) -> DeleteResult:
        """Delete every path; missing files count as success, other errors are collected"""
        result = DeleteResult()
        for path in paths:
            try:
                os.remove(path)
                result.deleted += 1
            except FileNotFoundError:
                result.missing += 1
            except OSError as e:
                logger.warning(f"Failed to delete tile file {path}: {e}")
                result.errors[path] = str(e)
        return result

    def total_cache_size(self) -> int:
        if not os.path.isdir(self.cache_root):
            return 0
        return FileUtils.directory_size(self.cache_root)

    def clear(self) -> None:
        if not os.path.exists(self.cache_root):
            return
        try:
            shutil.rmtree(self.cache_root)
        except OSError as e:
            raise StorageError(f"Cannot clear cache directory {self.cache_root}: {e}")
        logger.info(f"Cleared tile cache {self.cache_root}")
