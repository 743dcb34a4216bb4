import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from interfaces.offline_map import ITileDownloader
from models.offline_map import (
    CancellationToken, DownloadProgress, DownloadResult, TileKey, TileRecord
)
from models.tile_source import TileSource
from services.tile_store import TileStore
from exceptions.offline_map_exceptions import FetchError, StorageError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]

DOWNLOADED = 'downloaded'
EXISTING = 'existing'
FAILED = 'failed'
SKIPPED = 'skipped'


@dataclass
class _TileOutcome:
    index: int
    key: TileKey
    status: str
    size_bytes: int = 0
    file_path: str = ''
    error: str = ''


class TileDownloadService(ITileDownloader):
    """Downloads tiles into a TileStore with a bounded worker pool.

    Workers only fetch and write; the thread that called
    ``download_tiles_batch`` is the single writer of the batch counters and
    the only one that invokes the progress callback.
    """

    def __init__(self, tile_store: TileStore, tile_source: TileSource,
                 max_workers: int = 4, timeout: float = 30, request_delay: float = 0.05):
        self.tile_store = tile_store
        self.tile_source = tile_source
        self.max_workers = max(1, int(max_workers))
        self.timeout = timeout
        self.request_delay = request_delay
        self._token: Optional[CancellationToken] = None
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def create_session(self) -> requests.Session:
        """Create optimized session for downloads"""
        session = requests.Session()

        # Failed tiles are left for the next batch to fill in
        retry_strategy = Retry(total=0, raise_on_status=False)

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=self.max_workers,
            pool_maxsize=self.max_workers
        )

        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def _get_session(self) -> requests.Session:
        session = getattr(self._local, 'session', None)
        if session is None:
            session = self.create_session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        """Close HTTP sessions opened by worker threads"""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            close = getattr(session, 'close', None)
            if close is not None:
                close()
        self._local = threading.local()

    def download_tile(self, key: TileKey) -> int:
        """Fetch one tile with a single GET and store it. Raises FetchError."""
        tile_url = self.tile_source.get_tile_url(key)

        try:
            response = self._get_session().get(tile_url, headers=self.tile_source.get_headers(),
                                                timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to download tile {key}: {e}")

        if response.status_code != 200:
            raise FetchError(f"Failed to download tile {key}: HTTP {response.status_code}")

        content = response.content
        # Reject empty content to avoid creating zero-byte tiles
        if not content:
            raise FetchError(f"Empty content received for tile {key}")

        self.tile_store.put(key, content)
        return len(content)

    def _process_tile(self, index: int, key: TileKey, token: CancellationToken) -> _TileOutcome:
        if token.is_cancelled:
            return _TileOutcome(index, key, SKIPPED)

        file_path = self.tile_store.path_for(key)

        # Existing non-empty tiles make a re-run only fetch the gaps
        size = self.tile_store.size_of(key)
        if size > 0:
            return _TileOutcome(index, key, EXISTING, size, file_path)

        try:
            size = self.download_tile(key)
            return _TileOutcome(index, key, DOWNLOADED, size, file_path)
        except (FetchError, StorageError) as e:
            logger.warning(str(e))
            return _TileOutcome(index, key, FAILED, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error for tile {key}")
            return _TileOutcome(index, key, FAILED, error=str(e))
        finally:
            if self.request_delay > 0:
                time.sleep(self.request_delay)

    @staticmethod
    def _emit(on_progress: Optional[ProgressCallback], progress: DownloadProgress) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception:
            logger.exception("Progress callback failed")

    def _collect(self, futures, total: int, result: DownloadResult,
                 records: Dict[int, TileRecord], failed: Dict[int, TileKey],
                 on_progress: Optional[ProgressCallback]) -> None:
        for future in as_completed(futures):
            outcome = future.result()
            if outcome.status == SKIPPED:
                continue

            if outcome.status == FAILED:
                result.failed += 1
                failed[outcome.index] = outcome.key
            else:
                result.completed += 1
                result.total_bytes += outcome.size_bytes
                records[outcome.index] = TileRecord(
                    key=outcome.key,
                    file_path=outcome.file_path,
                    size_bytes=outcome.size_bytes
                )

            self._emit(on_progress, DownloadProgress(
                completed=result.completed,
                total=total,
                failed=result.failed,
                percentage=int(100 * result.completed / total + 0.5),
                total_bytes=result.total_bytes,
                current_tile=outcome.key
            ))

    def download_tiles_batch(self, tiles: List[TileKey],
                             on_progress: Optional[ProgressCallback] = None,
                             token: Optional[CancellationToken] = None) -> DownloadResult:
        """Download a batch of tiles.

        Per-tile failures are counted in the result, never raised. A
        StorageError is raised only when the cache root cannot be created,
        before any progress is reported. When ``token`` is omitted a fresh
        token is used and ``cancel()`` stops the batch.
        """
        tiles = list(tiles)
        self.tile_store.ensure_root()

        if token is None:
            token = CancellationToken()
        self._token = token

        total = len(tiles)
        result = DownloadResult()
        records: Dict[int, TileRecord] = {}
        failed: Dict[int, TileKey] = {}

        logger.info(f"Starting batch of {total} tiles with {self.max_workers} workers")
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self._process_tile, i, key, token)
                           for i, key in enumerate(tiles)]
                try:
                    self._collect(futures, total, result, records, failed, on_progress)
                except BaseException:
                    # Queued tiles see the token and drop out before the pool shuts down
                    token.cancel()
                    raise
        finally:
            self._token = None
            self.close()

        result.tile_records = [records[i] for i in sorted(records)]
        result.failed_tiles = [failed[i] for i in sorted(failed)]
        result.cancelled = token.is_cancelled

        if result.cancelled:
            logger.info(f"Batch cancelled: {result.completed} completed, {result.failed} failed of {total}")
        else:
            logger.info(f"Batch finished: {result.completed} completed, {result.failed} failed of {total}")
        return result

    def cancel(self) -> None:
        """Stop the running batch at the next tile boundary"""
        token = self._token
        if token is not None:
            token.cancel()
