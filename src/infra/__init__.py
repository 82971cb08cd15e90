"""
Infrastructure module - configuration, logging, retries, Redis adapters.
"""

from .config import SchedulerConfig, load_config
from .logging_config import setup_logging

__all__ = [
    "SchedulerConfig",
    "load_config",
    "setup_logging",
]
