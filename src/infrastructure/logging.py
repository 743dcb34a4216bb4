"""Logging configuration"""
import logging
import sys
from typing import Dict, Any, List


class LoggingManager:
    """Manages application logging configuration"""
    
    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    
    @staticmethod
    def setup_logging(config: Dict[str, Any]) -> None:
        """Setup logging from the 'logging' block of the configuration.

        Keys: level (name, default INFO), format, and an optional file that
        receives the same records as stdout.
        """
        logging_config = config.get('logging') or {}
        
        level_name = str(logging_config.get('level', 'INFO')).upper()
        level = getattr(logging, level_name, logging.INFO)
        format_str = logging_config.get('format', LoggingManager.DEFAULT_FORMAT)
        
        handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
        log_file = logging_config.get('file')
        if log_file:
            handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        
        logging.basicConfig(
            level=level,
            format=format_str,
            handlers=handlers
        )
        
        # HTTP connection chatter would drown per-tile warnings
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('requests').setLevel(logging.WARNING)
