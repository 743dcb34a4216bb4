#!/usr/bin/env python3
"""
Offline Maps - Main Entry Point
Downloads raster map tiles for offline use and manages saved regions
"""

import sys
import os
import argparse
import logging

# Add src directory to Python path
current_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, current_dir)

from core.offline_map_manager import OfflineMapManager
from exceptions.offline_map_exceptions import OfflineMapException
from infrastructure.logging import LoggingManager


def main():
    """Main entry point for the offline maps application"""
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument('--config', default='config.json')
    known, _ = pre_parser.parse_known_args()

    try:
        manager = OfflineMapManager(known.config)
        LoggingManager.setup_logging(manager.config)
        logger = logging.getLogger(__name__)

        logger.info("Starting OfflineMaps")

        with manager:
            success = manager.run_from_command_line()

    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(1)
    except OfflineMapException as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        print("Please check your configuration and try again.")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
