"""
Tests for biomass, carbon stock and CO2eq estimation.
"""

import numpy as np
import pytest

from conftest import CRS, ORIGIN, RES
from carbon_lulc.carbon import BiomassEstimator, CarbonEstimator
from carbon_lulc.utils.raster_utils import make_composite, make_raster
from carbon_lulc.utils.spectral_indices import IndexCalculator


def random_ndvi(shape=(37, 23), seed=5):
    rng = np.random.default_rng(seed)
    values = rng.uniform(-3.0, 3.0, shape)
    values[rng.random(shape) < 0.1] = np.nan
    return make_raster(values, ORIGIN, RES, crs=CRS, name="NDVI")


def test_agb_is_never_negative():
    ndvi = random_ndvi()
    agb = BiomassEstimator(tile_size=8).estimate(ndvi).values
    finite = np.isfinite(agb)
    assert np.all(agb[finite] >= 0)
    # No ceiling is applied
    assert agb[finite].max() > 300
    np.testing.assert_array_equal(np.isnan(agb), np.isnan(ndvi.values))


def test_agb_clamps_at_zero():
    ndvi = make_raster(np.array([[-1.0, -1 / 3, 0.0, 1.0]]), ORIGIN, RES, crs=CRS)
    agb = BiomassEstimator().estimate(ndvi).values
    np.testing.assert_allclose(agb, [[0.0, 0.0, 50.0, 200.0]], atol=1e-12)


def test_co2eq_is_chained_linear_map():
    agb = BiomassEstimator(tile_size=10).estimate(random_ndvi())
    estimator = CarbonEstimator(tile_size=6, max_workers=2)
    co2 = estimator.co2eq(estimator.carbon_stock(agb))

    assert co2.name == "CO2eq"
    np.testing.assert_array_equal(co2.values, agb.values * 0.47 * 3.67)


def test_uniform_ndvi_half_end_to_end():
    composite = make_composite(
        {"B4": np.full((10, 10), 1000.0), "B8": np.full((10, 10), 3000.0)}, ORIGIN, RES, crs=CRS
    )
    ndvi = IndexCalculator().ndvi(composite)
    assert np.all(ndvi.values == 0.5)

    agb = BiomassEstimator(tile_size=3).estimate(ndvi)
    carbon = CarbonEstimator(tile_size=3).carbon_stock(agb)
    co2 = CarbonEstimator(tile_size=3).co2eq(carbon)

    assert agb.shape == (10, 10)
    np.testing.assert_allclose(agb.values, 125.0)
    np.testing.assert_allclose(carbon.values, 58.75)
    np.testing.assert_allclose(co2.values, 215.6125)
    assert agb.rio.crs.to_epsg() == 32750
    assert agb.attrs["units"] == "t/ha"


def test_coefficients_from_config(config):
    config.set('biomass.slope', 100.0)
    config.set('carbon.carbon_fraction', 0.5)
    biomass = BiomassEstimator.from_config(config)
    carbon = CarbonEstimator.from_config(config)
    assert biomass.slope == 100.0 and biomass.intercept == 50.0
    assert carbon.carbon_fraction == 0.5
    assert carbon.co2_conversion_factor == pytest.approx(3.67)
