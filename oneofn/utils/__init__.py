"""Utility functions for oneofn package."""

from .linalg import robust_cholesky, log_det_from_cholesky
from .log import setup_logging, level_from_env

__all__ = [
    'robust_cholesky', 'log_det_from_cholesky',
    'setup_logging', 'level_from_env',
]
