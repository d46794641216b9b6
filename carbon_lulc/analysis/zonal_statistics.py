"""
Zonal statistics of a raster over a region.

Statistics are accumulated tile by tile into mergeable running moments
(count, mean, sum of squared deviations, min, max), so the result does not
depend on how the region is tiled and no pixel values are retained.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Union

import numpy as np
import xarray as xr
from shapely.geometry.base import BaseGeometry

from ..core.aoi import AreaOfInterest, region_geometry
from ..exceptions import AggregationBudgetExceededError, ConfigurationError
from ..utils.raster_utils import (
    bounds_window,
    coarse_grid,
    coarsening_factor,
    geometry_inside_mask,
    get_crs,
    read_block,
    window_transform,
)
from ..utils.tiling import CancellationToken, Tile, TileExecutor, count_tiles, iter_tiles

logger = logging.getLogger(__name__)

REDUCERS = ('mean', 'min', 'max', 'stddev', 'variance', 'sum', 'count')
DEFAULT_REDUCERS = ('mean', 'min', 'max', 'stddev')
DEFAULT_MAX_PIXELS = 1e13


@dataclass
class RunningStats:
    """Parallel (Chan et al.) accumulator of count, mean and M2."""

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    total: float = 0.0
    minimum: float = math.inf
    maximum: float = -math.inf

    @classmethod
    def from_values(cls, values: np.ndarray) -> "RunningStats":
        values = np.asarray(values, dtype="float64").reshape(-1)
        if values.size == 0:
            return cls()
        mean = float(values.mean())
        return cls(
            count=int(values.size),
            mean=mean,
            m2=float(((values - mean) ** 2).sum()),
            total=float(values.sum()),
            minimum=float(values.min()),
            maximum=float(values.max()),
        )

    def merge(self, other: "RunningStats") -> "RunningStats":
        if other.count == 0:
            return self
        if self.count == 0:
            return other
        count = self.count + other.count
        delta = other.mean - self.mean
        return RunningStats(
            count=count,
            mean=self.mean + delta * other.count / count,
            m2=self.m2 + other.m2 + delta * delta * self.count * other.count / count,
            total=self.total + other.total,
            minimum=min(self.minimum, other.minimum),
            maximum=max(self.maximum, other.maximum),
        )

    @property
    def variance(self) -> Optional[float]:
        # Population variance
        return self.m2 / self.count if self.count else None


@dataclass(frozen=True)
class ZonalStats:
    """Statistics of one raster over one region at one resolution."""

    mean: Optional[float]
    min: Optional[float]
    max: Optional[float]
    stddev: Optional[float]
    variance: Optional[float]
    sum: Optional[float]
    sample_count: int
    reducers: tuple = DEFAULT_REDUCERS
    resolution: Optional[float] = None
    band: Optional[str] = None

    @classmethod
    def from_running(cls, stats: RunningStats, reducers: Sequence[str],
                     resolution: Optional[float] = None, band: Optional[str] = None) -> "ZonalStats":
        empty = stats.count == 0
        variance = stats.variance
        return cls(
            mean=None if empty else stats.mean,
            min=None if empty else stats.minimum,
            max=None if empty else stats.maximum,
            stddev=None if empty else math.sqrt(max(variance, 0.0)),
            variance=variance,
            sum=None if empty else stats.total,
            sample_count=stats.count,
            reducers=tuple(reducers),
            resolution=resolution,
            band=band,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Requested reducers plus ``sample_count``; JSON-serialisable."""
        result: Dict[str, Any] = {}
        for reducer in self.reducers:
            result[reducer] = self.sample_count if reducer == 'count' else getattr(self, reducer)
        result['sample_count'] = self.sample_count
        return result


def validate_reducers(reducers: Iterable[str]) -> tuple:
    reducers = tuple(r.lower() for r in reducers)
    unknown = [r for r in reducers if r not in REDUCERS]
    if unknown:
        raise ConfigurationError(f"Unknown reducer(s) {unknown}. Supported: {list(REDUCERS)}")
    if not reducers:
        raise ConfigurationError("At least one reducer is required")
    return reducers


class ZonalStatistics:
    """
    Computes statistics over the valid pixels of a raster inside a region.

    A pixel belongs to the region when its centre lies inside the geometry.
    When ``resolution`` is coarser than the raster, pixels are first averaged
    into blocks of ``round(resolution / pixel size)`` native pixels.
    """

    def __init__(self,
                 scale: Optional[float] = None,
                 max_pixels: float = DEFAULT_MAX_PIXELS,
                 reducers: Sequence[str] = DEFAULT_REDUCERS,
                 tile_size: int = 512,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.scale = scale
        self.max_pixels = float(max_pixels) if max_pixels is not None else None
        self.reducers = validate_reducers(reducers)
        self.tile_size = int(tile_size)
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "ZonalStatistics":
        return cls(
            scale=config.get('statistics.scale'),
            max_pixels=config.get('statistics.max_pixels', DEFAULT_MAX_PIXELS),
            reducers=config.get('statistics.reducers', DEFAULT_REDUCERS),
            tile_size=config.get('processing.tile_size', 512),
            max_workers=config.get('processing.max_workers', 1),
            show_progress=bool(config.get('processing.show_progress', False)),
        )

    def compute(self,
                raster: xr.DataArray,
                aoi_geometry: Union[AreaOfInterest, BaseGeometry],
                resolution: Optional[float] = None,
                reducers: Optional[Sequence[str]] = None,
                tile_size: Optional[int] = None,
                max_pixels: Optional[float] = None,
                timeout: Optional[float] = None,
                cancel_token: Optional[CancellationToken] = None) -> ZonalStats:
        """
        Reduce ``raster`` over ``aoi_geometry``.

        Args:
            raster: Single-band raster
            aoi_geometry: AreaOfInterest, or a shapely geometry in the raster CRS
            resolution: Aggregation resolution in CRS units (defaults to the configured scale)
            reducers: Subset of mean, min, max, stddev, variance, sum, count
            tile_size: Tile edge in aggregated pixels
            max_pixels: Pixel budget for the region window

        Returns:
            ZonalStats with None statistics when no valid pixel intersects the region

        Raises:
            AggregationBudgetExceededError: The region window exceeds ``max_pixels``
            GeometryError: The region geometry is empty or invalid
        """
        reducers = validate_reducers(reducers) if reducers is not None else self.reducers
        resolution = resolution if resolution is not None else self.scale
        max_pixels = float(max_pixels) if max_pixels is not None else self.max_pixels
        tile_size = int(tile_size or self.tile_size)

        geometry = region_geometry(aoi_geometry, get_crs(raster), "AOI")
        factor = coarsening_factor(raster, resolution)
        transform, shape = coarse_grid(raster, factor)
        rows, cols = bounds_window(geometry.bounds, transform, shape)
        height, width = rows.stop - rows.start, cols.stop - cols.start

        n_pixels = height * width
        if max_pixels is not None and n_pixels > max_pixels:
            raise AggregationBudgetExceededError(
                f"Region covers {n_pixels} pixels at resolution {resolution}, "
                f"exceeding maxPixels {max_pixels:g}"
            )
        self.logger.debug(
            f"Zonal window {height}x{width} (aggregation factor {factor}, tile size {tile_size})"
        )

        def reduce_tile(tile: Tile) -> RunningStats:
            block = read_block(raster, tile.rows, tile.cols, factor)
            inside = geometry_inside_mask(
                [geometry], tile.shape, window_transform(transform, tile.rows, tile.cols)
            )
            return RunningStats.from_values(block[inside & np.isfinite(block)])

        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description="Zonal statistics",
        )
        stats = RunningStats()
        tiles = iter_tiles(height, width, tile_size, row_offset=rows.start, col_offset=cols.start)
        for _, tile_stats in executor.run(tiles, reduce_tile, total=count_tiles(height, width, tile_size)):
            stats = stats.merge(tile_stats)

        result = ZonalStats.from_running(stats, reducers, resolution=resolution, band=raster.name)
        self.logger.info(f"Zonal statistics for {raster.name}: {result.to_dict()}")
        return result
