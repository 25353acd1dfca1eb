"""Utility modules: logging."""

from mcpengine.utils.logging import setup_logging, get_logger, set_log_level, set_request_id

__all__ = [
    "setup_logging",
    "get_logger",
    "set_log_level",
    "set_request_id",
]
