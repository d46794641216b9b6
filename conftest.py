"""
Shared synthetic rasters for the carbon_lulc tests.

All fixtures live on a 10 m UTM grid (EPSG:32750) whose upper-left corner is
(500000, 9800000).
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import xarray as xr

# Add the library to Python path
sys.path.insert(0, str(Path(__file__).parent))

from carbon_lulc.config import ConfigManager
from carbon_lulc.core.aoi import AreaOfInterest
from carbon_lulc.ml_analysis import LabeledPoint
from carbon_lulc.stac.scene_repository import Scene
from carbon_lulc.utils.raster_utils import make_composite, make_raster

CRS = "EPSG:32750"
ORIGIN = (500000.0, 9800000.0)
RES = 10.0

# Per-class reflectances: (B2, B3, B4, B8)
FOREST = (300.0, 500.0, 300.0, 3000.0)
NON_FOREST = (900.0, 1200.0, 1500.0, 2000.0)
WATER = (600.0, 800.0, 300.0, 200.0)


def pixel_centre(row, col):
    return ORIGIN[0] + (col + 0.5) * RES, ORIGIN[1] - (row + 0.5) * RES


def grid_aoi(rows=10, cols=10):
    """AOI covering a rows x cols grid exactly."""
    x0, y0 = ORIGIN
    return AreaOfInterest.from_bounds(x0, y0 - rows * RES, x0 + cols * RES, y0, crs=CRS)


def landcover_bands(rows=10, cols=10):
    """Forest in rows 0-3, non-forest in rows 4-6, water below."""
    bands = {name: np.zeros((rows, cols), dtype="float64") for name in ("B2", "B3", "B4", "B8")}
    for row in range(rows):
        values = FOREST if row < 4 else NON_FOREST if row < 7 else WATER
        for name, value in zip(("B2", "B3", "B4", "B8"), values):
            bands[name][row, :] = value
    return bands


def build_scene(scene_id, date, bands, scl=None, cloud_cover=5.0):
    """Scene with the given spectral bands plus an SCL band (4 = vegetation)."""
    shape = next(iter(bands.values())).shape
    layers = dict(bands)
    layers["SCL"] = np.full(shape, 4.0) if scl is None else np.asarray(scl, dtype="float64")
    arrays = [make_raster(values, ORIGIN, RES, name=name) for name, values in layers.items()]
    data = xr.concat(arrays, dim="band").assign_coords(band=list(layers))
    data = data.rio.write_crs(CRS)
    return Scene(id=scene_id, datetime=pd.Timestamp(date), cloud_cover=cloud_cover, data=data)


def training_points(include_water=True):
    points = []
    for row in (0, 1, 3):
        points.append(LabeledPoint(*pixel_centre(row, 2), label="Forest"))
    for row in (4, 5, 6):
        points.append(LabeledPoint(*pixel_centre(row, 7), label="Non-Forest"))
    if include_water:
        for row in (7, 8, 9):
            points.append(LabeledPoint(*pixel_centre(row, 4), label="Water"))
    return points


@pytest.fixture
def config():
    return ConfigManager({
        'classification': {'n_trees': 15, 'points_crs': CRS},
        'processing': {'tile_size': 4},
        'histogram': {'num_pixels': 50},
    }, use_env=False)


@pytest.fixture
def aoi():
    return grid_aoi()


@pytest.fixture
def landcover_composite():
    bands = landcover_bands()
    composite = make_composite(bands, ORIGIN, RES, crs=CRS)
    ndvi = (bands["B8"] - bands["B4"]) / (bands["B8"] + bands["B4"])
    return composite.assign(NDVI=make_raster(ndvi, ORIGIN, RES, name="NDVI"))


@pytest.fixture
def landcover_scenes():
    bands = landcover_bands()
    cloudy = np.full((10, 10), 4.0)
    cloudy[0:2, 0:2] = 9
    return [
        build_scene("S2A_20230301", "2023-03-01", bands),
        build_scene("S2B_20230311", "2023-03-11", {k: v * 1.02 for k, v in bands.items()}, scl=cloudy),
        build_scene("S2A_20230321", "2023-03-21", {k: v * 0.98 for k, v in bands.items()}),
    ]
