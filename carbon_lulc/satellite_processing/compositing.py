"""
Per-pixel temporal median compositing of cloud-masked scenes.
"""

import logging
import math
import warnings
from typing import List, Optional, Sequence

import dask
import numpy as np
import xarray as xr

from ..core.aoi import AreaOfInterest, region_geometry
from ..exceptions import DataError, NoScenesFoundError
from ..stac.scene_repository import Scene
from ..utils.raster_utils import (
    geometry_inside_mask,
    get_crs,
    grid_shape,
    grid_transform,
    same_grid,
    window_transform,
)
from ..utils.tiling import CancellationToken, Tile, TileExecutor, count_tiles, iter_tiles

logger = logging.getLogger(__name__)

BYTES_PER_SAMPLE = 8


class TemporalCompositor:
    """
    Reduces a stack of masked scenes to one composite per band.

    Each output pixel is the median of the scenes where that pixel is valid;
    a pixel invalid in every scene stays NaN. The stack is read tile by tile,
    so at most ``memory_budget_mb`` of scene data is materialised at once.
    """

    def __init__(self,
                 memory_budget_mb: float = 512,
                 max_tile_size: Optional[int] = None,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.memory_budget_mb = float(memory_budget_mb)
        self.max_tile_size = max_tile_size
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "TemporalCompositor":
        return cls(
            memory_budget_mb=config.get('processing.memory_budget_mb', 512),
            max_tile_size=config.get('processing.tile_size'),
            max_workers=config.get('processing.max_workers', 1),
            show_progress=bool(config.get('processing.show_progress', False)),
        )

    def tile_size_for(self, n_scenes: int, n_bands: int, shape) -> int:
        """Largest square tile whose scene stack fits the memory budget."""
        budget = self.memory_budget_mb * 1024 * 1024
        per_pixel = max(n_scenes * n_bands * BYTES_PER_SAMPLE, 1)
        rows, cols = shape
        if rows * cols * per_pixel <= budget:
            side = max(rows, cols, 1)
        else:
            side = max(int(math.sqrt(budget / per_pixel)), 1)
        if self.max_tile_size:
            side = min(side, int(self.max_tile_size))
        return side

    def _check_stack(self, scenes: Sequence[Scene]) -> List[str]:
        if not scenes:
            raise NoScenesFoundError("Cannot composite an empty scene sequence")
        reference = scenes[0]
        bands = reference.bands
        for scene in scenes[1:]:
            if scene.bands != bands:
                raise DataError(
                    f"Scene {scene.id} bands {scene.bands} differ from {reference.id} bands {bands}"
                )
            if not same_grid(scene.data, reference.data):
                raise DataError(f"Scene {scene.id} does not share the grid of {reference.id}")
        return bands

    def composite(self,
                  masked_scenes: Sequence[Scene],
                  aoi: Optional[AreaOfInterest] = None,
                  timeout: Optional[float] = None,
                  cancel_token: Optional[CancellationToken] = None) -> xr.Dataset:
        """
        Median-composite masked scenes.

        Args:
            masked_scenes: Scenes returned by CloudMasker.mask
            aoi: When given, pixels whose centre lies outside it are set to NaN
            timeout: Seconds before the composite fails with ProcessingTimeoutError
            cancel_token: Cooperative cancellation flag checked between tiles

        Returns:
            xr.Dataset: One float32 variable per band on the shared scene grid
        """
        bands = self._check_stack(masked_scenes)
        arrays = [scene.data.transpose("band", "y", "x") for scene in masked_scenes]
        reference = arrays[0]
        shape = grid_shape(reference)
        transform = grid_transform(reference)
        crs = get_crs(reference)
        geometry = region_geometry(aoi, crs, "AOI") if aoi is not None else None

        tile_size = self.tile_size_for(len(arrays), len(bands), shape)
        self.logger.info(
            f"Compositing {len(arrays)} scenes x {len(bands)} bands on a "
            f"{shape[0]}x{shape[1]} grid (tile size {tile_size})"
        )

        def process(tile: Tile) -> np.ndarray:
            blocks = dask.compute(*[a.isel(y=tile.rows, x=tile.cols).data for a in arrays])
            stack = np.stack([np.asarray(b, dtype="float32") for b in blocks])
            with warnings.catch_warnings():
                # All-NaN pixels resolve to NaN
                warnings.simplefilter("ignore", category=RuntimeWarning)
                median = np.nanmedian(stack, axis=0)
            if geometry is not None:
                inside = geometry_inside_mask(
                    [geometry], tile.shape, window_transform(transform, tile.rows, tile.cols)
                )
                median[:, ~inside] = np.nan
            return median

        output = np.full((len(bands),) + shape, np.nan, dtype="float32")
        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description="Temporal median",
        )
        tiles = iter_tiles(shape[0], shape[1], tile_size)
        total = count_tiles(shape[0], shape[1], tile_size)
        for tile, median in executor.run(tiles, process, total=total):
            output[:, tile.rows, tile.cols] = median

        coords = {"y": reference.coords["y"].values, "x": reference.coords["x"].values}
        composite = xr.Dataset(
            {band: xr.DataArray(output[i], dims=("y", "x"), coords=coords, name=band)
             for i, band in enumerate(bands)}
        )
        composite.attrs["n_scenes"] = len(arrays)
        if crs is not None:
            composite = composite.rio.write_crs(crs)
        self.logger.info("Temporal composite complete")
        return composite
