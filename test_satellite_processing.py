"""
Tests for scene retrieval, cloud masking and temporal compositing.
"""

import random
import time

import numpy as np
import pandas as pd
import pytest

from conftest import CRS, ORIGIN, RES, build_scene, grid_aoi
from carbon_lulc.core.aoi import AreaOfInterest
from carbon_lulc.exceptions import DataError, MissingBandError, NoScenesFoundError, ProcessingTimeoutError
from carbon_lulc.satellite_processing import CloudMasker, TemporalCompositor
from carbon_lulc.stac import InMemorySceneRepository, SceneRepository, filter_scenes
from carbon_lulc.utils.raster_utils import make_raster

BANDS = ["B2", "B3", "B4", "B8"]


def uniform_bands(value, shape=(6, 6)):
    return {band: np.full(shape, float(value)) for band in BANDS}


# --------------------------------------------------------------------------- #
# SceneRepository
# --------------------------------------------------------------------------- #
def test_fetch_filters_by_date_and_cloud():
    scenes = [
        build_scene("a", "2023-01-01", uniform_bands(1), cloud_cover=10),
        build_scene("b", "2023-06-01", uniform_bands(2), cloud_cover=20),
        build_scene("c", "2024-12-31", uniform_bands(3), cloud_cover=19.9),
        build_scene("d", "2025-01-01", uniform_bands(4), cloud_cover=1),
        build_scene("e", "2023-03-01", uniform_bands(5), cloud_cover=None),
    ]
    repository = InMemorySceneRepository(scenes)
    kept = repository.fetch(grid_aoi(6, 6), ("2023-01-01", "2024-12-31"), 20)
    # Date bounds inclusive, cloud strictly below the threshold
    assert [s.id for s in kept] == ["a", "c"]


def test_fetch_raises_when_every_scene_is_too_cloudy():
    scenes = [build_scene(f"s{i}", "2023-05-01", uniform_bands(i), cloud_cover=60) for i in range(3)]
    repository = InMemorySceneRepository(scenes)
    with pytest.raises(NoScenesFoundError):
        repository.fetch(grid_aoi(6, 6), ("2023-01-01", "2024-12-31"), 20)


def test_scenes_outside_aoi_are_rejected():
    far_away = AreaOfInterest.from_bounds(600000, 9700000, 600100, 9700100, crs=CRS)
    scenes = [build_scene("a", "2023-01-10", uniform_bands(1))]
    assert filter_scenes(scenes, far_away, ("2023-01-01", "2023-12-31"), 20) == []


def test_fetch_respects_timeout():
    class SlowRepository(SceneRepository):
        def _candidate_scenes(self, aoi, date_range, cloud_threshold):
            time.sleep(1)
            return [build_scene("a", "2023-01-10", uniform_bands(1))]

    with pytest.raises(ProcessingTimeoutError):
        SlowRepository().fetch(grid_aoi(6, 6), ("2023-01-01", "2023-12-31"), 20, timeout=0.05)


# --------------------------------------------------------------------------- #
# CloudMasker
# --------------------------------------------------------------------------- #
def test_cloud_classes_become_nodata_in_every_band():
    scl = np.full((6, 6), 4.0)
    scl[0, 0], scl[1, 1], scl[2, 2] = 3, 8, 9
    scl[3, 3] = 10  # thin cirrus stays valid
    scene = build_scene("a", "2023-01-10", uniform_bands(100), scl=scl)

    masked = CloudMasker(BANDS).mask(scene)

    assert masked.bands == BANDS
    for band in BANDS:
        values = masked.data.sel(band=band).values
        assert np.isnan(values[0, 0]) and np.isnan(values[1, 1]) and np.isnan(values[2, 2])
        assert values[3, 3] == 100
        assert np.isfinite(values).sum() == 33


def test_missing_scl_band_is_fatal():
    scene = build_scene("a", "2023-01-10", uniform_bands(1))
    scene = scene.with_data(scene.data.sel(band=BANDS))
    with pytest.raises(MissingBandError):
        CloudMasker(BANDS).mask(scene)


def test_masker_from_config(config):
    masker = CloudMasker.from_config(config)
    assert masker.mask_classes == (3, 8, 9)
    assert masker.scl_band == "SCL"


# --------------------------------------------------------------------------- #
# TemporalCompositor
# --------------------------------------------------------------------------- #
def masked_stack():
    masker = CloudMasker(BANDS)
    rng = np.random.default_rng(3)
    scenes = []
    for i in range(5):
        bands = {band: rng.uniform(0, 3000, (9, 7)) for band in BANDS}
        scl = np.where(rng.random((9, 7)) < 0.3, 9.0, 4.0)
        scenes.append(masker.mask(build_scene(f"s{i}", f"2023-0{i + 1}-01", bands, scl=scl)))
    return scenes


def test_median_ignores_masked_pixels():
    masker = CloudMasker(BANDS)
    scl_cloudy = np.full((6, 6), 4.0)
    scl_cloudy[0, 0] = 9
    scenes = masker.mask_all([
        build_scene("a", "2023-01-01", uniform_bands(10)),
        build_scene("b", "2023-02-01", uniform_bands(1000), scl=scl_cloudy),
        build_scene("c", "2023-03-01", uniform_bands(30)),
    ])
    composite = TemporalCompositor().composite(scenes)

    values = composite["B8"].values
    assert values[0, 0] == pytest.approx(20.0)
    assert values[1, 1] == pytest.approx(30.0)
    assert composite.attrs["n_scenes"] == 3
    assert composite.rio.crs.to_epsg() == 32750


def test_pixel_invalid_everywhere_is_nodata():
    masker = CloudMasker(BANDS)
    scl = np.full((6, 6), 4.0)
    scl[2, 3] = 8
    scenes = masker.mask_all([
        build_scene("a", "2023-01-01", uniform_bands(10), scl=scl),
        build_scene("b", "2023-02-01", uniform_bands(20), scl=scl),
    ])
    composite = TemporalCompositor().composite(scenes)
    assert np.isnan(composite["B4"].values[2, 3])
    assert np.isfinite(composite["B4"].values).sum() == 35


def test_median_is_invariant_to_scene_order():
    scenes = masked_stack()
    shuffled = list(scenes)
    random.Random(11).shuffle(shuffled)

    compositor = TemporalCompositor()
    first = compositor.composite(scenes)
    second = compositor.composite(shuffled)
    for band in BANDS:
        np.testing.assert_array_equal(first[band].values, second[band].values)


def test_tiled_composite_matches_single_pass():
    scenes = masked_stack()
    single = TemporalCompositor().composite(scenes)
    tiled = TemporalCompositor(max_tile_size=4, max_workers=3).composite(scenes)
    budgeted = TemporalCompositor(memory_budget_mb=0.001).composite(scenes)
    for band in BANDS:
        np.testing.assert_array_equal(single[band].values, tiled[band].values)
        np.testing.assert_array_equal(single[band].values, budgeted[band].values)


def test_tile_size_respects_memory_budget():
    compositor = TemporalCompositor(memory_budget_mb=1)
    side = compositor.tile_size_for(n_scenes=10, n_bands=4, shape=(10000, 10000))
    assert side * side * 10 * 4 * 8 <= 1024 * 1024
    assert compositor.tile_size_for(1, 1, (5, 5)) == 5


def test_pixels_outside_aoi_are_nodata():
    scenes = CloudMasker(BANDS).mask_all([build_scene("a", "2023-01-01", uniform_bands(10))])
    x0, y0 = ORIGIN
    left_half = AreaOfInterest.from_bounds(x0, y0 - 6 * RES, x0 + 3 * RES, y0, crs=CRS)

    composite = TemporalCompositor().composite(scenes, aoi=left_half)

    values = composite["B2"].values
    assert values.shape == (6, 6)
    assert np.all(values[:, :3] == 10)
    assert np.all(np.isnan(values[:, 3:]))


def test_empty_and_mismatched_stacks():
    compositor = TemporalCompositor()
    with pytest.raises(NoScenesFoundError):
        compositor.composite([])

    masker = CloudMasker(BANDS)
    small = masker.mask(build_scene("a", "2023-01-01", uniform_bands(1)))
    large = masker.mask(build_scene("b", "2023-01-02", uniform_bands(1, shape=(7, 7))))
    with pytest.raises(DataError):
        compositor.composite([small, large])
