"""
Configuration manager for Carbon LULC library.
"""

import copy
import json
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Union, Optional
import logging

from .default_config import DEFAULT_CONFIG
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Environment variables that override configuration values
ENV_OVERRIDES = {
    'CARBON_LULC_STAC_URL': 'satellite.stac_url',
    'CARBON_LULC_LOG_LEVEL': 'logging.level',
}


def deep_merge(base_dict: Dict, update_dict: Dict) -> Dict:
    """Recursively merge dictionaries."""
    for key, value in update_dict.items():
        if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
            deep_merge(base_dict[key], value)
        else:
            base_dict[key] = value
    return base_dict


class ConfigManager:
    """
    Manages configuration for Carbon LULC analysis.

    This class handles:
    - Loading configuration from files or dictionaries
    - Merging with default configuration
    - Validating configuration parameters
    - Providing easy access to configuration values
    """

    def __init__(self, config_source: Optional[Union[str, Path, Dict]] = None,
                 use_env: bool = True):
        """
        Initialize configuration manager.

        Args:
            config_source: Path to config file, config dict, or None for defaults
            use_env: Whether to apply CARBON_LULC_* environment overrides
        """
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        # Start with default configuration
        self._config = copy.deepcopy(DEFAULT_CONFIG)

        # Load additional configuration if provided
        if config_source is not None:
            self.load_config(config_source)

        if use_env:
            self._apply_env_overrides()

    @classmethod
    def from_any(cls, config: Optional[Union["ConfigManager", str, Path, Dict]]) -> "ConfigManager":
        """Return ``config`` if it already is a manager, otherwise build one."""
        if isinstance(config, ConfigManager):
            return config
        return cls(config)

    def load_config(self, config_source: Union[str, Path, Dict]) -> None:
        """
        Load configuration from various sources.

        Args:
            config_source: Path to config file or configuration dictionary
        """
        if isinstance(config_source, dict):
            self._merge_config(config_source)
        else:
            self._load_config_file(Path(config_source).expanduser())

    def _load_config_file(self, config_path: Path) -> None:
        """
        Load configuration from file.

        Args:
            config_path: Path to configuration file
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                if config_path.suffix.lower() in ['.yaml', '.yml']:
                    file_config = yaml.safe_load(f) or {}
                else:
                    file_config = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load configuration from {config_path}: {e}")
            raise ConfigurationError(f"Invalid configuration file {config_path}: {e}") from e

        self._merge_config(file_config)
        self.logger.info(f"Configuration loaded from: {config_path}")

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """
        Merge new configuration with existing configuration.

        Args:
            new_config: New configuration to merge
        """
        self._config = deep_merge(self._config, copy.deepcopy(new_config))
        self.logger.debug("Configuration merged successfully")

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.set(key, value)

    @property
    def config(self) -> Dict[str, Any]:
        """Get a copy of the current configuration."""
        return copy.deepcopy(self._config)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by key (supports dot notation).

        Args:
            key: Configuration key (e.g., 'biomass.slope' or 'classification.n_trees')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self._config
        try:
            for k in key.split('.'):
                value = value[k]
        except (KeyError, TypeError):
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value by key (supports dot notation).

        Args:
            key: Configuration key (e.g., 'processing.tile_size')
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        # Navigate to the parent of the target key
        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value
        self.logger.debug(f"Configuration set: {key} = {value}")

    def save_config(self, file_path: Union[str, Path], format: str = 'json') -> None:
        """
        Save current configuration to file.

        Args:
            file_path: Path to save configuration
            format: File format ('json' or 'yaml')
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, 'w') as f:
            if format.lower() == 'yaml':
                yaml.dump(self._config, f, default_flow_style=False, indent=2)
            else:
                json.dump(self._config, f, indent=2)

        self.logger.info(f"Configuration saved to: {file_path}")

    def validate_config(self) -> bool:
        """
        Validate current configuration.

        Returns:
            True if configuration is valid, False otherwise
        """
        required_fields = [
            'project.name',
            'satellite.bands',
            'satellite.scl_band',
            'classification.classes',
        ]

        for field in required_fields:
            if self.get(field) is None:
                self.logger.error(f"Required configuration field missing: {field}")
                return False

        date_range = self.get('satellite.date_range')
        if date_range and len(date_range) != 2:
            self.logger.error("Date range must contain exactly 2 dates")
            return False

        if int(self.get('classification.n_trees', 0)) < 1:
            self.logger.error("classification.n_trees must be at least 1")
            return False

        if float(self.get('statistics.max_pixels', 0)) <= 0:
            self.logger.error("statistics.max_pixels must be positive")
            return False

        algorithm = self.get('classification.algorithm')
        if algorithm not in ('random_forest', 'gbm'):
            self.logger.error(f"Invalid classification algorithm: {algorithm}")
            return False

        self.logger.info("Configuration validation passed")
        return True

    def get_satellite_config(self) -> Dict[str, Any]:
        """Get satellite-specific configuration."""
        return self.get('satellite', {})

    def get_classification_config(self) -> Dict[str, Any]:
        """Get classification-specific configuration."""
        return self.get('classification', {})

    def get_processing_config(self) -> Dict[str, Any]:
        """Get tiling / worker configuration."""
        return self.get('processing', {})

    def __repr__(self) -> str:
        return f"ConfigManager(project={self.get('project.name', 'unknown')})"
