import copy
import json
import os
from typing import Dict, Any
from interfaces.offline_map import IConfigLoader
from models.tile_source import TileSource, DownloadConfig
from exceptions.offline_map_exceptions import ConfigurationError, ValidationError


DEFAULT_CONFIG: Dict[str, Any] = {
    'cache_dir': 'offline_tiles',
    'database_path': 'OfflineMaps.db',
    'max_workers': 4,
    'timeout': 30,
    'request_delay': 0.05,
    'tile_source': {
        'base_url': 'https://api.maptiler.com/maps',
        'layer': 'streets-v2',
        'tile_size': 256,
        'format': 'png',
        'api_key': '',
        'headers': {}
    },
    'logging': {
        'level': 'INFO'
    }
}


class ConfigService(IConfigLoader):
    """Service for loading and validating configuration"""

    def load_config(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Config file {config_path} not found!")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error loading config: {e}")

        return self.process_config(config)

    def process_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Merge a raw config dict over the defaults and validate it"""
        if not isinstance(config, dict):
            raise ValidationError("Configuration must be a JSON object")

        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value

        self.validate_config(merged)
        return merged

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration structure"""
        for key in ('cache_dir', 'database_path'):
            if not isinstance(config.get(key), str) or not config[key]:
                raise ValidationError(f"{key} must be a non-empty string")

        if not isinstance(config.get('max_workers'), int) or config['max_workers'] < 1:
            raise ValidationError("max_workers must be a positive integer")

        for key in ('timeout', 'request_delay'):
            value = config.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{key} must be a non-negative number")

        source = config.get('tile_source')
        if not isinstance(source, dict):
            raise ValidationError("tile_source must be a dictionary")

        for key in ('base_url', 'layer', 'format'):
            if not isinstance(source.get(key), str) or not source[key]:
                raise ValidationError(f"tile_source.{key} must be a non-empty string")

        if not isinstance(source.get('tile_size'), int):
            raise ValidationError("tile_source.tile_size must be an integer")

        return True

    def build_tile_source(self, config: Dict[str, Any]) -> TileSource:
        """Create the TileSource described by the configuration"""
        source = config['tile_source']
        return TileSource(
            base_url=source['base_url'],
            layer=source['layer'],
            tile_size=source['tile_size'],
            format=source['format'],
            api_key=source.get('api_key', ''),
            headers=source.get('headers') or {}
        )

    def build_download_config(self, config: Dict[str, Any]) -> DownloadConfig:
        """Create a DownloadConfig from a processed configuration"""
        return DownloadConfig(
            cache_dir=config['cache_dir'],
            database_path=config['database_path'],
            max_workers=config['max_workers'],
            timeout=config['timeout'],
            request_delay=config['request_delay'],
            tile_source=self.build_tile_source(config)
        )
