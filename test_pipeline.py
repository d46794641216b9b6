"""
End-to-end tests of the land cover and carbon pipeline on synthetic scenes.
"""

import json

import numpy as np
import pytest
import rasterio

from conftest import build_scene, landcover_bands, training_points
from carbon_lulc import LandCoverCarbonPipeline
from carbon_lulc.exceptions import InsufficientTrainingDataError, NoScenesFoundError
from carbon_lulc.stac import InMemorySceneRepository
from carbon_lulc.utils.geotiff_utils import export_geotiff


def make_pipeline(config, scenes):
    return LandCoverCarbonPipeline(config, scene_repository=InMemorySceneRepository(scenes))


def test_full_run(config, aoi, landcover_scenes):
    result = make_pipeline(config, landcover_scenes).run(aoi, training_points())

    assert result.succeeded
    assert result.n_scenes == 3
    assert result.training_table.dropped_count == 0

    landcover = result.landcover.values
    assert np.all(landcover[:4] == 0)
    assert np.all(landcover[7:] == 2)

    ndvi = result.ndvi.values
    np.testing.assert_allclose(result.agb.values, np.maximum(ndvi * 150 + 50, 0))
    np.testing.assert_array_equal(result.co2eq.values, result.agb.values * 0.47 * 3.67)

    assert set(result.zonal_stats) == {'AGB', 'CarbonStock', 'CO2eq'}
    assert result.zonal_stats['AGB'].sample_count == 100
    assert set(result.histograms) == {'AGB', 'CO2eq'}
    assert sum(b.count for b in result.histograms['CO2eq']) == 50

    summary = json.loads(json.dumps(result.summary()))
    assert summary['failures'] == {}
    assert summary['rasters'] == ['AGB', 'CO2eq', 'CarbonStock', 'NDVI', 'landcover']


def test_classification_failure_keeps_biomass(config, aoi, landcover_scenes):
    pipeline = make_pipeline(config, landcover_scenes)
    result = pipeline.run(aoi, training_points(include_water=False))

    assert 'classification' in result.failures
    assert 'InsufficientTrainingDataError' in result.failures['classification']
    assert result.landcover is None
    assert result.agb is not None and result.co2eq is not None
    assert 'CO2eq' in result.zonal_stats


def test_strict_run_raises_before_classifying(config, aoi, landcover_scenes):
    pipeline = make_pipeline(config, landcover_scenes)
    with pytest.raises(InsufficientTrainingDataError):
        pipeline.run(aoi, training_points(include_water=False), strict=True)


def test_no_scenes_is_fatal(config, aoi):
    cloudy = [build_scene("s1", "2023-04-01", landcover_bands(), cloud_cover=80)]
    with pytest.raises(NoScenesFoundError):
        make_pipeline(config, cloudy).run(aoi, training_points())


def test_export_geotiffs(config, aoi, landcover_scenes, tmp_path):
    pipeline = make_pipeline(config, landcover_scenes)
    result = pipeline.run(aoi, training_points())
    paths = pipeline.export(result, tmp_path)

    assert set(paths) == {'landcover', 'NDVI', 'AGB', 'CarbonStock', 'CO2eq'}
    with rasterio.open(paths['landcover']) as src:
        assert src.dtypes[0] == 'int16'
        assert src.nodata == -9999
        assert src.crs.to_epsg() == 32750
        assert src.descriptions == ('landcover',)
        np.testing.assert_array_equal(src.read(1), result.landcover.values)
    with rasterio.open(paths['AGB']) as src:
        assert src.dtypes[0] == 'float32'
        np.testing.assert_allclose(src.read(1), result.agb.values, rtol=1e-6)


def test_export_writes_nan_as_nodata(tmp_path, landcover_composite):
    ndvi = landcover_composite["NDVI"].copy()
    ndvi.values[0, 0] = np.nan
    path = export_geotiff(ndvi, tmp_path / "ndvi.tif", nodata_val=-9999)
    with rasterio.open(path) as src:
        assert src.read(1)[0, 0] == -9999


def test_system_info(config, landcover_scenes):
    info = make_pipeline(config, landcover_scenes).get_system_info()
    assert info['version'] == '0.1.0'
    assert info['scene_repository'] == 'InMemorySceneRepository'
