#!/usr/bin/env python3
# Copyright (c) 2025 [Harivatsa G A]. All rights reserved.
# This work is licensed under CC BY-NC-ND 4.0.
# https://creativecommons.org/licenses/by-nc-nd/4.0/
# Attribution required. Commercial use and modifications prohibited.

"""
EduGuard - Main Entry Point

Serves the security & audit pipeline over HTTP.
"""

import sys
import argparse
import uvicorn
from dotenv import load_dotenv
from loguru import logger

from eduguard.core.config import Config
from eduguard.core.exceptions import ConfigurationError
from eduguard.core.logging_config import configure_logging_from_config, setup_logging
from eduguard.core.constants import APP_NAME, APP_VERSION
from eduguard.api.app import create_app


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} v{APP_VERSION} - Security & audit event pipeline"
    )

    parser.add_argument(
        '--host',
        type=str,
        default=None,
        help='Host to bind to (default: from config)'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=None,
        help='Port to bind to (default: from config)'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (default: $EDUGUARD_CONFIG or config.yaml)'
    )

    parser.add_argument(
        '--security-level',
        type=str,
        choices=['low', 'medium', 'high', 'critical'],
        default=None,
        help='Security level (default: from config)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Logging level (default: from config)'
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    load_dotenv()
    args = parse_args(argv)

    try:
        config_obj = Config(args.config) if args.config else Config()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        sys.exit(2)

    # Configure logging
    configure_logging_from_config(config_obj)

    # Override log level if specified
    if args.log_level:
        setup_logging(level=args.log_level)

    # Command-line values override the file
    if args.host:
        config_obj.set('server.host', args.host)
    if args.port:
        config_obj.set('server.port', args.port)
    if args.security_level:
        config_obj.set('security.security_level', args.security_level)

    host = config_obj.get('server.host', default='0.0.0.0')
    port = config_obj.get('server.port', default=8000, expected_type=int)

    # Log startup info
    logger.info("=" * 60)
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")
    logger.info("=" * 60)
    logger.info(f"Host: {host}")
    logger.info(f"Port: {port}")
    logger.info(f"Config: {args.config or 'default'}")
    logger.info(f"Environment: {config_obj.env}")
    logger.info(f"Security level: {config_obj.get('security.security_level', default='medium')}")
    logger.info("=" * 60)

    try:
        app = create_app(config_obj=config_obj)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        sys.exit(2)

    # Run server
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="info" if args.log_level is None else args.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
