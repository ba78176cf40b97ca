"""Utility modules."""

from .config_loader import ConfigLoader, load_config
from .logger import setup_logger, get_logger
from .wait_condition import QueueMode, WaitCondition

__all__ = ["ConfigLoader", "load_config", "setup_logger", "get_logger", "QueueMode", "WaitCondition"]
