"""
Utility Module for Identity Extraction System.

This module provides common utilities used across all other modules:
    - Logging configuration
    - Custom exceptions
    - Common helpers
"""

from .logger import setup_logger, setup_logger_from_config, set_log_level, get_logger
from .helpers import ensure_directory, get_file_extension, format_file_size, merge_dicts

__all__ = [
    'setup_logger',
    'setup_logger_from_config',
    'set_log_level',
    'get_logger',
    'ensure_directory',
    'get_file_extension',
    'format_file_size',
    'merge_dicts'
]
