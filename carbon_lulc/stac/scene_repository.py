"""
Scene retrieval and filtering.

Scenes come either from a STAC API (Microsoft Planetary Computer by default)
or from an in-memory list. Both sources apply the same bounds, date and
scene-level cloud filters.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from shapely.geometry import box, shape
from shapely.geometry.base import BaseGeometry

from ..core.aoi import WGS84, AreaOfInterest
from ..exceptions import NoScenesFoundError, SatelliteError
from ..utils.raster_utils import get_crs, grid_shape, grid_transform
from ..utils.tiling import run_with_timeout

logger = logging.getLogger(__name__)

DateRange = Tuple[Union[str, pd.Timestamp], Union[str, pd.Timestamp]]


@dataclass(frozen=True)
class Scene:
    """
    One acquisition: a (band, y, x) DataArray plus its catalogue metadata.

    ``footprint`` is a WGS84 polygon; when absent the grid extent is used.
    """

    id: str
    datetime: pd.Timestamp
    cloud_cover: Optional[float]
    data: xr.DataArray
    footprint: Optional[BaseGeometry] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def bands(self) -> List[str]:
        return [str(b) for b in self.data.coords["band"].values]

    def grid_bounds(self) -> Tuple[float, float, float, float]:
        transform = grid_transform(self.data)
        rows, cols = grid_shape(self.data)
        x0, y0 = transform @ (0, 0)
        x1, y1 = transform @ (cols, rows)
        return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)

    def intersects(self, aoi: AreaOfInterest) -> bool:
        if self.footprint is not None:
            return aoi.to_crs(WGS84).geometry.intersects(self.footprint)
        aoi_local = aoi.to_crs(get_crs(self.data))
        return aoi_local.geometry.intersects(box(*self.grid_bounds()))

    def with_data(self, data: xr.DataArray) -> "Scene":
        return replace(self, data=data)


def _as_date(value):
    return pd.Timestamp(value).date()


def filter_scenes(scenes: Sequence[Scene], aoi: AreaOfInterest, date_range: DateRange,
                  cloud_threshold: float) -> List[Scene]:
    """
    Keep scenes intersecting ``aoi``, acquired within ``date_range`` (inclusive)
    and with a scene cloud percentage strictly below ``cloud_threshold``.
    """
    start, end = _as_date(date_range[0]), _as_date(date_range[1])
    kept = []
    for scene in scenes:
        acquired = _as_date(scene.datetime)
        if not start <= acquired <= end:
            logger.debug(f"Scene {scene.id} outside date range ({acquired})")
            continue
        if scene.cloud_cover is None or not scene.cloud_cover < cloud_threshold:
            logger.debug(f"Scene {scene.id} rejected by cloud filter ({scene.cloud_cover})")
            continue
        if not scene.intersects(aoi):
            logger.debug(f"Scene {scene.id} does not intersect the AOI")
            continue
        kept.append(scene)
    return sorted(kept, key=lambda s: (pd.Timestamp(s.datetime), s.id))


class SceneRepository(ABC):
    """Source of raw scenes for an AOI, date range and cloud threshold."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def _candidate_scenes(self, aoi: AreaOfInterest, date_range: DateRange,
                          cloud_threshold: float) -> List[Scene]:
        """Return candidate scenes; filtering is applied by ``fetch``."""

    def fetch(self, aoi: AreaOfInterest, date_range: DateRange, cloud_threshold: float,
              timeout: Optional[float] = None) -> List[Scene]:
        """
        Fetch scenes for the AOI.

        Raises:
            NoScenesFoundError: No scene passes the filters
            ProcessingTimeoutError: Retrieval exceeded ``timeout`` seconds
        """
        self.logger.info(
            f"Fetching scenes for {date_range[0]}..{date_range[1]} "
            f"(cloud < {cloud_threshold}%)"
        )
        candidates = run_with_timeout(
            self._candidate_scenes, timeout, aoi, date_range, cloud_threshold,
            description="Scene retrieval",
        )
        scenes = filter_scenes(candidates, aoi, date_range, cloud_threshold)
        if not scenes:
            raise NoScenesFoundError(
                f"No scenes found for {date_range[0]}..{date_range[1]} with cloud cover "
                f"below {cloud_threshold}% ({len(candidates)} candidates)"
            )
        self.logger.info(f"Found {len(scenes)} scenes ({len(candidates)} candidates)")
        return scenes


class InMemorySceneRepository(SceneRepository):
    """Repository over scenes already held in memory (local rasters, tests)."""

    def __init__(self, scenes: Sequence[Scene]):
        super().__init__()
        self._scenes = list(scenes)

    def _candidate_scenes(self, aoi, date_range, cloud_threshold) -> List[Scene]:
        return list(self._scenes)


class STACSceneRepository(SceneRepository):
    """
    Scenes from a STAC API, stacked lazily with stackstac.
    """

    def __init__(self, config_manager):
        """
        Initialize the STAC repository.

        Args:
            config_manager: Configuration manager instance
        """
        super().__init__()
        self.config = config_manager
        self.satellite_config = config_manager.get_satellite_config()

    def search_items(self, aoi: AreaOfInterest, date_range: DateRange,
                     cloud_threshold: float) -> list:
        """
        Search the STAC catalogue and drop duplicate reprocessed scenes.

        Returns:
            list: STAC items, one per acquisition
        """
        import planetary_computer
        import pystac_client
        from shapely import to_geojson

        aoi_wgs84 = aoi.to_crs(WGS84)
        datetime_param = f"{_as_date(date_range[0])}/{_as_date(date_range[1])}"
        self.logger.info(f"Searching {self.satellite_config['collection']} for {datetime_param}")

        catalog = pystac_client.Client.open(
            self.satellite_config['stac_url'],
            modifier=planetary_computer.sign_inplace,
        )
        search = catalog.search(
            collections=[self.satellite_config['collection']],
            intersects=to_geojson(aoi_wgs84.geometry),
            datetime=datetime_param,
            query={"eo:cloud_cover": {"lt": cloud_threshold}},
        )
        items = list(search.item_collection())
        self.logger.info(f"STAC found: {len(items)} total images before filtering duplicates")

        # Group items by acquisition, e.g. S2A_MSIL2A_20240607T075611_R035_T36NVH,
        # and keep the most recently processed one
        grouped_items = defaultdict(list)
        for item in items:
            scene_id = "_".join(item.id.split("_")[:-1])
            grouped_items[scene_id].append(item)

        best_items = [sorted(group, key=lambda x: x.id)[-1] for group in grouped_items.values()]
        self.logger.info(f"Found {len(best_items)} unique images after filtering duplicates")
        return best_items

    def _resolve_epsg(self, items: list) -> int:
        crs = self.satellite_config.get('crs')
        if not crs:
            props = items[0].properties
            crs = props.get('proj:code') or f"EPSG:{props['proj:epsg']}"
        return int(str(crs).split(':')[1])

    def create_data_stack(self, items: list, aoi: AreaOfInterest) -> xr.DataArray:
        """Stack items lazily into a (time, band, y, x) DataArray."""
        import stackstac

        epsg = self._resolve_epsg(items)
        stack = stackstac.stack(
            items,
            epsg=epsg,
            resolution=self.satellite_config['resolution'],
            assets=self.satellite_config['assets'],
            bounds_latlon=aoi.to_crs(WGS84).bounds,
            xy_coords="center",
            fill_value=np.nan,
        )
        band_mapping = self.satellite_config.get('band_mapping', {}) or {}
        stack = stack.assign_coords(
            band=[band_mapping.get(str(b), str(b)) for b in stack.coords["band"].values]
        )
        return stack.rio.write_crs(f"EPSG:{epsg}")

    def _candidate_scenes(self, aoi, date_range, cloud_threshold) -> List[Scene]:
        try:
            items = self.search_items(aoi, date_range, cloud_threshold)
        except (IOError, ValueError) as e:
            raise SatelliteError(f"STAC search failed: {e}") from e
        if not items:
            return []

        stack = self.create_data_stack(items, aoi)
        by_id = {item.id: item for item in items}
        scenes = []
        for i, item_id in enumerate(stack.coords["id"].values):
            item = by_id[str(item_id)]
            scenes.append(Scene(
                id=item.id,
                datetime=pd.Timestamp(item.datetime),
                cloud_cover=item.properties.get('eo:cloud_cover'),
                data=stack.isel(time=i),
                footprint=shape(item.geometry) if item.geometry else None,
                properties=dict(item.properties),
            ))
        return scenes
