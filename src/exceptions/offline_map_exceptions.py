class OfflineMapException(Exception):
    """Base exception for offline map tiles"""
    pass


class ConfigurationError(OfflineMapException):
    """Configuration related errors"""
    pass


class ValidationError(OfflineMapException):
    """Invalid bounds, zoom range or region name"""
    pass


class FetchError(OfflineMapException):
    """Single tile network or HTTP failure"""
    pass


class StorageError(OfflineMapException):
    """Tile store or catalog unavailable"""
    pass


class DownloadCancelled(OfflineMapException):
    """Batch stopped by a cancellation request"""

    def __init__(self, result=None):
        super().__init__("Download cancelled")
        self.result = result
