"""
Command-line entry point for beamdui.

Startup sequence:
  1. Parse arguments (--config, --profile, --log-level)
  2. Load the YAML configuration (plus environment overrides)
  3. Configure rotating file logging (the terminal belongs to the TUI)
  4. Build the API client for the configured backend profile
  5. Run the Textual application until the user quits
"""

import argparse
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__, get_log_path
from .config import AppConfig, ConfigError, ConfigManager

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(config: AppConfig) -> str:
    """Send all logging to a rotating file; returns the file path."""
    log_path = config.logging.file_path or get_log_path()
    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=config.logging.max_size_mb * 1024 * 1024,
        backupCount=config.logging.backup_count,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    level = getattr(logging, config.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=[handler], force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return log_path


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="beamdui", description="Terminal dashboard for a BeamMP server host")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--profile", choices=("direct", "panel"), default=None,
                        help="Backend profile (overrides the config file)")
    parser.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_manager = ConfigManager(args.config)
    config = config_manager.get_config()
    if args.profile:
        config.api.profile = args.profile
    if args.log_level:
        config.logging.level = args.log_level

    log_path = setup_logging(config)
    logger.info(f"beamdui {__version__} starting, logging to {log_path}")

    try:
        config.api.validate()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        print(f"beamdui: {e} (edit {config_manager.config_file} or set BEAMDUI_* variables)",
              file=sys.stderr)
        return 2

    # Imported late so --help and config errors do not pay for Textual.
    from .textual_app import BeamTextualApp

    app = BeamTextualApp(config)
    try:
        app.run()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt caught, exiting...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
