"""Shared utilities for rulecharts."""

from rulecharts.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
