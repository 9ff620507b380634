"""Common utilities for the respawn bot."""
from .config import configure_logger, get_config, load_config, setup_logging

__all__ = ['get_config', 'load_config', 'configure_logger', 'setup_logging']
