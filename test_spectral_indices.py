"""
Tests for spectral index calculation.
"""

import numpy as np
import pytest

from conftest import CRS, ORIGIN, RES
from carbon_lulc.exceptions import ConfigurationError, MissingBandError
from carbon_lulc.utils.raster_utils import make_composite
from carbon_lulc.utils.spectral_indices import IndexCalculator, list_indices


def composite_from(nir, red, green=None):
    nir = np.asarray(nir, dtype="float64")
    bands = {"B8": nir, "B4": np.asarray(red, dtype="float64")}
    bands["B3"] = np.asarray(green, dtype="float64") if green is not None else np.ones_like(nir)
    return make_composite(bands, ORIGIN, RES, crs=CRS)


def test_ndvi_values():
    composite = composite_from([[3000.0, 1000.0]], [[1000.0, 3000.0]])
    ndvi = IndexCalculator().ndvi(composite)
    np.testing.assert_allclose(ndvi.values, [[0.5, -0.5]])
    assert ndvi.name == "NDVI"


def test_zero_denominator_is_nodata_not_zero():
    composite = composite_from([[0.0, 5.0, np.nan]], [[0.0, 5.0, 1.0]])
    ndvi = IndexCalculator().ndvi(composite).values
    assert np.isnan(ndvi[0, 0])
    assert ndvi[0, 1] == 0.0
    assert np.isnan(ndvi[0, 2])


def test_add_index_bands_keeps_original_bands():
    composite = composite_from([[0.4]], [[0.1]], green=[[0.2]])
    result = IndexCalculator().add_index_bands(composite, ["NDVI", "ndwi"])
    assert set(result.data_vars) == {"B3", "B4", "B8", "NDVI", "NDWI"}
    assert result["NDWI"].values[0, 0] == pytest.approx((0.2 - 0.4) / (0.2 + 0.4))
    assert "NDVI" not in composite.data_vars


def test_formula_uses_configured_band_roles():
    calculator = IndexCalculator(band_roles={'nir': 'B8A'})
    assert calculator.formula('NDVI') == '(B8A - B4) / (B8A + B4)'
    assert list_indices() == ['NDVI', 'NDWI']


def test_unknown_index_and_missing_band():
    calculator = IndexCalculator()
    with pytest.raises(ConfigurationError):
        calculator.formula('EVI9')
    composite = make_composite({"B4": np.ones((2, 2))}, ORIGIN, RES, crs=CRS)
    with pytest.raises(MissingBandError):
        calculator.ndvi(composite)
