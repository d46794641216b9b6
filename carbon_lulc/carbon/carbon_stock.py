"""
Carbon stock and CO2-equivalent conversion of biomass rasters.
"""

import logging
from typing import Optional

import xarray as xr

from ..utils.tiling import CancellationToken, TileExecutor, map_tiles

logger = logging.getLogger(__name__)

# IPCC default carbon fraction of dry biomass
DEFAULT_CARBON_FRACTION = 0.47
# Molecular weight ratio CO2 / C (44 / 12)
DEFAULT_CO2_CONVERSION_FACTOR = 3.67


class CarbonEstimator:
    """
    Linear per-pixel conversions: carbon = AGB * fraction, CO2eq = carbon * factor.
    """

    def __init__(self,
                 carbon_fraction: float = DEFAULT_CARBON_FRACTION,
                 co2_conversion_factor: float = DEFAULT_CO2_CONVERSION_FACTOR,
                 tile_size: int = 512,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.carbon_fraction = float(carbon_fraction)
        self.co2_conversion_factor = float(co2_conversion_factor)
        self.tile_size = int(tile_size)
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "CarbonEstimator":
        return cls(
            carbon_fraction=config.get('carbon.carbon_fraction', DEFAULT_CARBON_FRACTION),
            co2_conversion_factor=config.get('carbon.co2_conversion_factor', DEFAULT_CO2_CONVERSION_FACTOR),
            tile_size=config.get('processing.tile_size', 512),
            max_workers=config.get('processing.max_workers', 1),
            show_progress=bool(config.get('processing.show_progress', False)),
        )

    def _scale(self, raster: xr.DataArray, factor: float, name: str, units: str,
               timeout: Optional[float], cancel_token: Optional[CancellationToken]) -> xr.DataArray:
        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description=name,
        )
        result = map_tiles(raster, lambda block: block * factor, executor,
                           tile_size=self.tile_size, name=name)
        result.attrs['units'] = units
        return result

    def carbon_stock(self, agb: xr.DataArray, timeout: Optional[float] = None,
                     cancel_token: Optional[CancellationToken] = None) -> xr.DataArray:
        """Carbon stock (t C/ha) = AGB * carbon fraction."""
        self.logger.info(f"Carbon stock = AGB * {self.carbon_fraction}")
        return self._scale(agb, self.carbon_fraction, "CarbonStock", "t/ha", timeout, cancel_token)

    def co2eq(self, carbon_stock: xr.DataArray, timeout: Optional[float] = None,
              cancel_token: Optional[CancellationToken] = None) -> xr.DataArray:
        """CO2 equivalent (t CO2/ha) = carbon stock * CO2 conversion factor."""
        self.logger.info(f"CO2eq = CarbonStock * {self.co2_conversion_factor}")
        return self._scale(carbon_stock, self.co2_conversion_factor, "CO2eq", "tCO2/ha",
                           timeout, cancel_token)
