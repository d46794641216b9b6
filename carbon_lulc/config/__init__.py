"""
Configuration management for Carbon LULC library.
"""

from .config_manager import ConfigManager
from .default_config import DEFAULT_CONFIG

__all__ = ['ConfigManager', 'DEFAULT_CONFIG']
