"""Configuration module for the harvest ledger."""

from harvest_ledger.config.logging import bind_operation, configure_logging, get_logger
from harvest_ledger.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "bind_operation",
]
