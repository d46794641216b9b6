"""
Random pixel sampling and fixed-width histograms.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import xarray as xr
from shapely.geometry.base import BaseGeometry

from ..core.aoi import AreaOfInterest, region_geometry
from ..exceptions import ConfigurationError
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

DEFAULT_SAMPLE_COUNT = 5000
DEFAULT_BUCKET_WIDTHS = {'AGB': 5, 'CO2eq': 20}


@dataclass(frozen=True)
class HistogramBucket:
    lower_bound: float
    upper_bound: float
    count: int

    def to_dict(self) -> Dict[str, Union[float, int]]:
        return asdict(self)


def histogram(values: Sequence[float], bucket_width: float,
              start_at_zero: bool = False) -> List[HistogramBucket]:
    """
    Count ``values`` into contiguous buckets of ``bucket_width``.

    Buckets start at the smallest value, or at zero (aligned down to a bucket
    boundary for negative values) when ``start_at_zero`` is set. Every bucket
    between the first and the one holding the largest value is emitted, empty
    or not. Non-finite values are ignored.

    Examples
    --------
    >>> [(b.lower_bound, b.count) for b in histogram([1, 2, 7], 5, start_at_zero=True)]
    [(0.0, 2), (5.0, 1)]
    """
    if not bucket_width or bucket_width <= 0:
        raise ValueError(f"bucket_width must be positive, got {bucket_width}")
    width = float(bucket_width)
    values = np.asarray(values, dtype="float64").reshape(-1)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return []

    vmin, vmax = float(values.min()), float(values.max())
    start = min(0.0, math.floor(vmin / width) * width) if start_at_zero else vmin
    n_buckets = int(math.floor((vmax - start) / width)) + 1
    index = np.clip(np.floor((values - start) / width).astype(int), 0, n_buckets - 1)
    counts = np.bincount(index, minlength=n_buckets)
    return [
        HistogramBucket(
            lower_bound=start + i * width,
            upper_bound=start + (i + 1) * width,
            count=int(counts[i]),
        )
        for i in range(n_buckets)
    ]


def _smallest(keys: np.ndarray, values: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
    if keys.size <= k:
        return keys, values
    keep = np.argpartition(keys, k - 1)[:k]
    return keys[keep], values[keep]


class HistogramSampler:
    """
    Draws a uniform random sample of valid pixel values inside a region.

    Every valid pixel gets a random priority key and the ``sample_count``
    smallest keys win, which is uniform sampling without replacement. Keys are
    drawn per tile from ``(seed, tile index)`` so results do not depend on the
    worker count, and memory stays bounded by the sample plus one tile.
    """

    def __init__(self,
                 scale: Optional[float] = None,
                 sample_count: int = DEFAULT_SAMPLE_COUNT,
                 seed: int = 0,
                 start_at_zero: bool = False,
                 bucket_widths: Optional[Mapping[str, float]] = None,
                 tile_size: int = 512,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.scale = scale
        self.sample_count = int(sample_count)
        self.seed = seed
        self.start_at_zero = start_at_zero
        self.bucket_widths = dict(DEFAULT_BUCKET_WIDTHS if bucket_widths is None else bucket_widths)
        self.tile_size = int(tile_size)
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "HistogramSampler":
        return cls(
            scale=config.get('histogram.scale'),
            sample_count=config.get('histogram.num_pixels', DEFAULT_SAMPLE_COUNT),
            seed=config.get('histogram.seed', 0),
            start_at_zero=bool(config.get('histogram.start_at_zero', False)),
            bucket_widths=config.get('histogram.bucket_width', DEFAULT_BUCKET_WIDTHS),
            tile_size=config.get('processing.tile_size', 512),
            max_workers=config.get('processing.max_workers', 1),
            show_progress=bool(config.get('processing.show_progress', False)),
        )

    def sample(self,
               raster: xr.DataArray,
               region: Union[AreaOfInterest, BaseGeometry],
               resolution: Optional[float] = None,
               sample_count: Optional[int] = None,
               seed: Optional[int] = None,
               timeout: Optional[float] = None,
               cancel_token: Optional[CancellationToken] = None) -> np.ndarray:
        """
        Sample up to ``sample_count`` valid pixel values inside ``region``.

        Args:
            raster: Single-band raster
            region: AreaOfInterest, or a shapely geometry in the raster CRS
            resolution: Sampling resolution; coarser than the raster averages pixel blocks
            sample_count: Maximum number of values returned
            seed: Random seed

        Returns:
            np.ndarray: float64 values, fewer than ``sample_count`` when the
            region holds fewer valid pixels
        """
        k = int(sample_count if sample_count is not None else self.sample_count)
        if k < 0:
            raise ValueError(f"sample_count must be non-negative, got {k}")
        seed = self.seed if seed is None else seed
        resolution = resolution if resolution is not None else self.scale

        geometry = region_geometry(region, get_crs(raster), "region")
        factor = coarsening_factor(raster, resolution)
        transform, shape = coarse_grid(raster, factor)
        rows, cols = bounds_window(geometry.bounds, transform, shape)
        height, width = rows.stop - rows.start, cols.stop - cols.start
        if k == 0 or height == 0 or width == 0:
            return np.empty(0, dtype="float64")

        def draw(tile: Tile) -> Tuple[np.ndarray, np.ndarray]:
            block = read_block(raster, tile.rows, tile.cols, factor)
            inside = geometry_inside_mask(
                [geometry], tile.shape, window_transform(transform, tile.rows, tile.cols)
            )
            values = block[inside & np.isfinite(block)]
            rng = np.random.default_rng([seed, tile.index])
            return _smallest(rng.random(values.size), values, k)

        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description="Histogram sampling",
        )
        keys = np.empty(0, dtype="float64")
        values = np.empty(0, dtype="float64")
        tiles = iter_tiles(height, width, self.tile_size, row_offset=rows.start, col_offset=cols.start)
        for _, (tile_keys, tile_values) in executor.run(tiles, draw, total=count_tiles(height, width, self.tile_size)):
            keys, values = _smallest(
                np.concatenate([keys, tile_keys]), np.concatenate([values, tile_values]), k
            )

        order = np.argsort(keys, kind="stable")
        self.logger.info(f"Sampled {values.size} of up to {k} pixels from {raster.name}")
        return values[order]

    def bucket_width_for(self, name: Optional[str]) -> float:
        if name in self.bucket_widths:
            return float(self.bucket_widths[name])
        raise ConfigurationError(
            f"No histogram bucket width configured for '{name}'. Configured: {self.bucket_widths}"
        )

    def frequency(self,
                  raster: xr.DataArray,
                  region: Union[AreaOfInterest, BaseGeometry],
                  bucket_width: Optional[float] = None,
                  resolution: Optional[float] = None,
                  **kwargs) -> List[HistogramBucket]:
        """Sample ``raster`` and bucket the values, as plotted for AGB and CO2eq."""
        width = bucket_width if bucket_width is not None else self.bucket_width_for(raster.name)
        values = self.sample(raster, region, resolution=resolution, **kwargs)
        return histogram(values, width, start_at_zero=self.start_at_zero)
