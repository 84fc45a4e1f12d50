# Utilities
from .logger import setup_logging, get_logger, AlertLogger

__all__ = ["setup_logging", "get_logger", "AlertLogger"]
