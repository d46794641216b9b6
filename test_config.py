"""
Tests for configuration management.
"""

import json

import numpy as np
import pytest

from conftest import CRS, ORIGIN, RES, grid_aoi
from carbon_lulc.analysis import ZonalStatistics
from carbon_lulc.config import DEFAULT_CONFIG, ConfigManager
from carbon_lulc.exceptions import ConfigurationError
from carbon_lulc.utils.raster_utils import make_raster


def test_defaults_match_reference_coefficients():
    """Default regression and conversion coefficients."""
    config = ConfigManager(use_env=False)
    assert config.get('biomass.slope') == 150.0
    assert config.get('biomass.intercept') == 50.0
    assert config.get('carbon.carbon_fraction') == 0.47
    assert config.get('carbon.co2_conversion_factor') == 3.67
    assert config.get('classification.n_trees') == 100
    assert config.get('satellite.cloud_mask_classes') == [3, 8, 9]
    assert config.get('statistics.max_pixels') == 1e13
    assert config.validate_config()


def test_merge_does_not_mutate_defaults():
    config = ConfigManager({'classification': {'n_trees': 5}}, use_env=False)
    assert config.get('classification.n_trees') == 5
    assert config.get('classification.random_state') == 42
    assert DEFAULT_CONFIG['classification']['n_trees'] == 100


def test_dot_path_set_and_missing_key():
    config = ConfigManager(use_env=False)
    config.set('histogram.seed', 7)
    assert config.get('histogram.seed') == 7
    assert config.get('does.not.exist', 'fallback') == 'fallback'


def test_yaml_and_json_files(tmp_path):
    yaml_path = tmp_path / "config.yaml"
    yaml_path.write_text("biomass:\n  slope: 120\nproject:\n  name: katingan\n")
    config = ConfigManager(yaml_path, use_env=False)
    assert config.get('biomass.slope') == 120
    assert config.get('project.name') == 'katingan'

    json_path = tmp_path / "saved.json"
    config.save_config(json_path)
    assert json.loads(json_path.read_text())['biomass']['slope'] == 120


def test_invalid_file_raises_configuration_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        ConfigManager(path, use_env=False)


def test_validation_rejects_unknown_algorithm():
    config = ConfigManager({'classification': {'algorithm': 'svm'}}, use_env=False)
    assert not config.validate_config()


def test_environment_override(monkeypatch):
    monkeypatch.setenv("CARBON_LULC_STAC_URL", "https://example.com/stac")
    config = ConfigManager()
    assert config.get('satellite.stac_url') == "https://example.com/stac"


def test_yaml_scientific_notation_budget(tmp_path):
    # PyYAML reads 1e13 (no decimal point) as a string
    path = tmp_path / "config.yaml"
    path.write_text("statistics:\n  max_pixels: 1e13\n")
    config = ConfigManager(path, use_env=False)
    assert config.get('statistics.max_pixels') == '1e13'
    assert config.validate_config()

    stats = ZonalStatistics.from_config(config)
    assert stats.max_pixels == 1e13
    raster = make_raster(np.full((4, 4), 2.0), ORIGIN, RES, crs=CRS)
    result = stats.compute(raster, grid_aoi(4, 4))
    assert result.sample_count == 16
    assert result.mean == 2.0
