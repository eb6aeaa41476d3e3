#!/usr/bin/env python
"""Main entry point for the Notegraph MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from notegraph_mcp.config import config
from notegraph_mcp.models.db_models import init_db
from notegraph_mcp.observability import DEFAULT_METRICS_FILE, configure_logging, metrics
from notegraph_mcp.server.mcp_server import NotegraphMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Notegraph MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTEGRAPH_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    config.log_level = args.log_level.upper()


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    if metrics.save_metrics():
        logging.getLogger(__name__).info(f"Metrics saved to {metrics.get_metrics_file()}")


def main(argv=None):
    """Run the Notegraph MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, config.log_level, logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to console logging if the log directory is not writable
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    metrics.set_metrics_file(DEFAULT_METRICS_FILE)
    atexit.register(_save_metrics_on_exit)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting Notegraph MCP server")
        server = NotegraphMcpServer(engine=engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
