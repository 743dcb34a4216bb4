import os
import tempfile


class FileUtils:
    """Utility class for file operations"""

    @staticmethod
    def ensure_directory_exists(directory_path: str) -> None:
        """Create directory if it doesn't exist"""
        os.makedirs(directory_path, exist_ok=True)

    @staticmethod
    def get_tile_path(cache_dir: str, zoom: int, x: int, y: int, extension: str) -> str:
        """Generate tile file path"""
        return os.path.join(cache_dir, str(zoom), str(x), f"{y}.{extension}")

    @staticmethod
    def file_exists(file_path: str) -> bool:
        """Check if file exists"""
        return os.path.isfile(file_path)

    @staticmethod
    def get_file_size(file_path: str) -> int:
        """Get file size in bytes"""
        try:
            return os.path.getsize(file_path)
        except OSError:
            return 0

    @staticmethod
    def atomic_write(file_path: str, data: bytes) -> None:
        """Write bytes to a temporary sibling file and rename it into place"""
        directory = os.path.dirname(file_path)
        FileUtils.ensure_directory_exists(directory)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.', suffix='.part')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp_path, file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @staticmethod
    def directory_size(directory_path: str) -> int:
        """Sum sizes of all files below a directory"""
        total = 0
        for root, _dirs, files in os.walk(directory_path):
            for name in files:
                total += FileUtils.get_file_size(os.path.join(root, name))
        return total
