"""
Area of interest handling.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import geopandas as gpd
from pyproj import CRS
from shapely import wkt
from shapely.geometry import MultiPolygon, Polygon, box, shape
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from ..exceptions import GeometryError

logger = logging.getLogger(__name__)

WGS84 = "EPSG:4326"


def validate_geometry(geometry: BaseGeometry, what: str = "AOI") -> BaseGeometry:
    """Raise GeometryError unless ``geometry`` is a valid, non-empty polygon."""
    if geometry is None or geometry.is_empty:
        raise GeometryError(f"{what} geometry is empty")
    if not isinstance(geometry, (Polygon, MultiPolygon)):
        raise GeometryError(f"{what} must be a polygon, got {geometry.geom_type}")
    if not geometry.is_valid:
        raise GeometryError(f"{what} geometry is invalid: {explain_validity(geometry)}")
    return geometry


@dataclass(frozen=True)
class AreaOfInterest:
    """Polygon geometry plus its coordinate reference system."""

    geometry: BaseGeometry
    crs: str = WGS84

    def __post_init__(self):
        validate_geometry(self.geometry)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AreaOfInterest":
        """Load an AOI from any vector format readable by geopandas."""
        gdf = gpd.read_file(path)
        return cls.from_geodataframe(gdf)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame) -> "AreaOfInterest":
        if gdf.empty:
            raise GeometryError("AOI file contains no features")
        if gdf.crs is None:
            logger.warning("AOI has no CRS, assuming EPSG:4326")
            crs = WGS84
        else:
            crs = gdf.crs.to_string()
        geometry = gdf.geometry.union_all()
        return cls(geometry=geometry, crs=crs)

    @classmethod
    def from_geojson(cls, geojson: Union[str, Dict[str, Any]], crs: str = WGS84) -> "AreaOfInterest":
        """Build an AOI from a GeoJSON geometry, Feature or FeatureCollection."""
        if isinstance(geojson, str):
            geojson = json.loads(geojson)
        kind = geojson.get("type")
        if kind == "FeatureCollection":
            gdf = gpd.GeoDataFrame.from_features(geojson["features"], crs=crs)
            return cls.from_geodataframe(gdf)
        if kind == "Feature":
            geojson = geojson["geometry"]
        return cls(geometry=shape(geojson), crs=crs)

    @classmethod
    def from_wkt(cls, text: str, crs: str = WGS84) -> "AreaOfInterest":
        return cls(geometry=wkt.loads(text), crs=crs)

    @classmethod
    def from_bounds(cls, minx: float, miny: float, maxx: float, maxy: float,
                    crs: str = WGS84) -> "AreaOfInterest":
        return cls(geometry=box(minx, miny, maxx, maxy), crs=crs)

    @property
    def bounds(self):
        return self.geometry.bounds

    def to_crs(self, crs) -> "AreaOfInterest":
        """Reproject the AOI; returns self when already in ``crs``."""
        if crs is None:
            return self
        target = crs.to_string() if hasattr(crs, "to_string") else str(crs)
        if CRS.from_user_input(self.crs) == CRS.from_user_input(target):
            return self
        series = gpd.GeoSeries([self.geometry], crs=self.crs)
        return AreaOfInterest(geometry=series.to_crs(target).iloc[0], crs=target)

    def area_hectares(self, projected_crs: Optional[str] = None) -> float:
        """AOI area in hectares, measured in ``projected_crs`` or a local UTM zone."""
        series = gpd.GeoSeries([self.geometry], crs=self.crs)
        if projected_crs is None:
            projected_crs = series.estimate_utm_crs()
        return float(series.to_crs(projected_crs).area.sum() / 10000)


def region_geometry(region: Union[AreaOfInterest, BaseGeometry], target_crs=None,
                    what: str = "region") -> BaseGeometry:
    """
    Return a validated shapely geometry for ``region`` in ``target_crs``.

    Plain shapely geometries are assumed to already be in the raster CRS.
    """
    if isinstance(region, AreaOfInterest):
        return region.to_crs(target_crs).geometry
    if isinstance(region, BaseGeometry):
        return validate_geometry(region, what)
    raise GeometryError(f"Unsupported {what} type: {type(region).__name__}")
