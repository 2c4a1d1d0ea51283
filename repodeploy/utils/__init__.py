"""Utility functions for repodeploy."""

from repodeploy.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
