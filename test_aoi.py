"""
Tests for area of interest handling.
"""

import geopandas as gpd
import pytest
from shapely.geometry import Point, Polygon

from conftest import CRS, grid_aoi
from carbon_lulc.core.aoi import WGS84, AreaOfInterest
from carbon_lulc.exceptions import GeometryError


def test_from_geojson_feature_collection():
    collection = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {},
             "geometry": {"type": "Polygon", "coordinates": [[[113, -2], [113.1, -2], [113.1, -1.9], [113, -2]]]}},
            {"type": "Feature", "properties": {},
             "geometry": {"type": "Polygon", "coordinates": [[[113.2, -2], [113.3, -2], [113.3, -1.9], [113.2, -2]]]}},
        ],
    }
    aoi = AreaOfInterest.from_geojson(collection)
    assert aoi.crs == WGS84
    assert aoi.geometry.geom_type == "MultiPolygon"


def test_invalid_geometries_raise():
    with pytest.raises(GeometryError):
        AreaOfInterest(Polygon([(0, 0), (1, 1), (1, 0), (0, 1)]))
    with pytest.raises(GeometryError):
        AreaOfInterest(Point(0, 0).buffer(0))
    with pytest.raises(GeometryError):
        AreaOfInterest.from_wkt("LINESTRING (0 0, 1 1)")


def test_reprojection_and_area():
    aoi = grid_aoi()
    assert aoi.to_crs(CRS) is aoi
    wgs84 = aoi.to_crs(WGS84)
    assert -3 < wgs84.bounds[1] < 0
    assert aoi.area_hectares(CRS) == pytest.approx(1.0)


def test_from_file_round_trip(tmp_path):
    aoi = grid_aoi()
    path = tmp_path / "aoi.gpkg"
    gpd.GeoDataFrame(geometry=[aoi.geometry], crs=CRS).to_file(path, driver="GPKG")
    loaded = AreaOfInterest.from_file(path)
    assert loaded.geometry.equals(aoi.geometry)
    assert gpd.GeoSeries([loaded.geometry], crs=loaded.crs).crs.to_epsg() == 32750
