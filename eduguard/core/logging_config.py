"""
Logging Configuration Module

Provides structured logging setup with proper configuration
for different environments and use cases.
"""

import sys
from loguru import logger
from typing import Optional


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    enable_file_logging: bool = False,
    log_file_path: str = "eduguard.log",
    rotation: str = "10 MB",
    retention: str = "30 days"
) -> None:
    """
    Configure structured logging with loguru.

    Sets up console and optional file logging with appropriate formatting
    and rotation.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (None for default)
        enable_file_logging: Whether to enable file logging
        log_file_path: Path to log file (if file logging enabled)
        rotation: File rotation policy (e.g., "10 MB", "1 day")
        retention: Log retention policy (e.g., "30 days", "1 week")

    Example:
        >>> setup_logging(level="DEBUG", enable_file_logging=True)
        >>> logger.info("Audit pipeline started")
    """
    logger.remove()

    if format_string is None:
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=format_string,
        level=level.upper(),
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if enable_file_logging:
        logger.add(
            log_file_path,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {extra} | {message}",
            level=level.upper(),
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

        logger.info(f"File logging enabled: {log_file_path}")

    logger.info(f"Logging configured with level: {level.upper()}")


def configure_logging_from_config(config_obj) -> None:
    """
    Configure logging from the ``logging`` section of a Config object.

    Example:
        >>> from eduguard.core.config import config
        >>> configure_logging_from_config(config)
    """
    setup_logging(
        level=config_obj.get('logging.level', default='INFO', expected_type=str),
        enable_file_logging=config_obj.get('logging.enable_file', default=False, expected_type=bool),
        log_file_path=config_obj.get('logging.file_path', default='eduguard.log', expected_type=str),
        rotation=config_obj.get('logging.rotation', default='10 MB', expected_type=str),
        retention=config_obj.get('logging.retention', default='30 days', expected_type=str)
    )


def add_client_context(client_id: str):
    """
    Create a logger bound with the client identifier for security logs.

    Example:
        >>> client_logger = add_client_context("ip:10.0.0.7")
        >>> client_logger.warning("Rate limit exceeded")
    """
    return logger.bind(client_id=client_id)


def add_user_context(user_id: str):
    """Create a logger bound with a user ID for audit trails."""
    return logger.bind(user_id=user_id)


def preview(text: str, length: int = 100) -> str:
    """Truncate untrusted input before it goes into a log line."""
    if text is None:
        return ""
    text = str(text).replace('\x00', '')
    if len(text) > length:
        return text[:length] + "..."
    return text
