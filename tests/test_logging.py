import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
from infrastructure.logging import LoggingManager


def test_setup_logging_writes_to_file(tmp_path: Path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    root.handlers = []
    log_file = tmp_path / "offline.log"
    try:
        LoggingManager.setup_logging({'logging': {'level': 'debug', 'file': str(log_file)}})
        logging.getLogger('offline.test').debug("tile 10/163/395 stored")

        assert root.level == logging.DEBUG
        assert logging.getLogger('urllib3').level == logging.WARNING
        for handler in root.handlers:
            handler.flush()
        assert "tile 10/163/395 stored" in log_file.read_text(encoding='utf-8')
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)
