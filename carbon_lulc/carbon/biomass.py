"""
Above-ground biomass (AGB) from NDVI with a linear allometric model.
"""

import logging
from typing import Optional

import numpy as np
import xarray as xr

from ..utils.tiling import CancellationToken, TileExecutor, map_tiles

logger = logging.getLogger(__name__)

DEFAULT_SLOPE = 150.0
DEFAULT_INTERCEPT = 50.0


class BiomassEstimator:
    """
    AGB (t/ha) = max(NDVI * slope + intercept, 0).

    The floor at zero is always applied; there is no upper bound.
    NaN NDVI stays NaN.
    """

    def __init__(self,
                 slope: float = DEFAULT_SLOPE,
                 intercept: float = DEFAULT_INTERCEPT,
                 tile_size: int = 512,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.slope = float(slope)
        self.intercept = float(intercept)
        self.tile_size = int(tile_size)
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "BiomassEstimator":
        return cls(
            slope=config.get('biomass.slope', DEFAULT_SLOPE),
            intercept=config.get('biomass.intercept', DEFAULT_INTERCEPT),
            tile_size=config.get('processing.tile_size', 512),
            max_workers=config.get('processing.max_workers', 1),
            show_progress=bool(config.get('processing.show_progress', False)),
        )

    def agb_values(self, ndvi: np.ndarray) -> np.ndarray:
        agb = np.asarray(ndvi, dtype="float64") * self.slope + self.intercept
        # np.maximum keeps NaN
        return np.maximum(agb, 0.0)

    def estimate(self,
                 ndvi: xr.DataArray,
                 timeout: Optional[float] = None,
                 cancel_token: Optional[CancellationToken] = None) -> xr.DataArray:
        """
        Estimate AGB from an NDVI raster.

        Args:
            ndvi: NDVI raster (NaN where nodata)
            timeout: Seconds before the estimate fails with ProcessingTimeoutError
            cancel_token: Cooperative cancellation flag checked between tiles

        Returns:
            xr.DataArray: float64 AGB raster named 'AGB'
        """
        self.logger.info(f"Estimating AGB = NDVI * {self.slope} + {self.intercept} (floored at 0)")
        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description="Biomass",
        )
        agb = map_tiles(ndvi, self.agb_values, executor, tile_size=self.tile_size, name="AGB")
        agb.attrs['units'] = 't/ha'
        return agb
