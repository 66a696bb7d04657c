"""
Logging Module
==============

Structured logging with structlog: JSON lines in production, a coloured
console view in development.

Usage:
    from shared.logging import get_logger, run_context, setup_logging

    setup_logging(service_name="regtruth-cli")
    logger = get_logger(__name__)

    with run_context(command="sentinel"):
        logger.info("scan_completed", item_id="item_1", changed=True)
"""

from shared.logging.logger import get_logger, run_context, setup_logging


__all__ = [
    "get_logger",
    "setup_logging",
    "run_context",
]
