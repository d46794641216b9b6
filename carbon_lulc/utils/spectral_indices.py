"""
Spectral Indices Utilities

Normalized-difference indices computed from composite bands. Formulas are
written over band roles (nir, red, green, blue) and resolved to sensor band
names through the configured ``band_roles`` mapping.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import xarray as xr

from ..exceptions import ConfigurationError
from .raster_utils import require_bands

logger = logging.getLogger(__name__)

# index name -> (first role, second role, long name); value = (a - b) / (a + b)
NORMALIZED_DIFFERENCE_INDICES: Dict[str, Tuple[str, str, str]] = {
    'NDVI': ('nir', 'red', 'Normalized Difference Vegetation Index'),
    'NDWI': ('green', 'nir', 'Normalized Difference Water Index'),
}

DEFAULT_BAND_ROLES = {
    'blue': 'B2',
    'green': 'B3',
    'red': 'B4',
    'nir': 'B8',
}


def list_indices() -> List[str]:
    return sorted(NORMALIZED_DIFFERENCE_INDICES)


def normalized_difference(a: xr.DataArray, b: xr.DataArray) -> xr.DataArray:
    """
    (a - b) / (a + b), NaN where either input is NaN or a + b == 0.
    """
    a = a.astype("float64")
    b = b.astype("float64")
    denominator = a + b
    with np.errstate(divide="ignore", invalid="ignore"):
        result = (a - b) / denominator
    return result.where(denominator != 0)


class IndexCalculator:
    """
    Computes spectral indices from a composite Dataset.
    """

    def __init__(self, band_roles: Optional[Dict[str, str]] = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.band_roles = dict(DEFAULT_BAND_ROLES)
        if band_roles:
            self.band_roles.update(band_roles)

    @classmethod
    def from_config(cls, config) -> "IndexCalculator":
        return cls(band_roles=config.get('satellite.band_roles'))

    def list_indices(self) -> List[str]:
        return list_indices()

    def formula(self, index_name: str) -> str:
        """
        Formula of an index using sensor band names.

        Examples
        --------
        >>> IndexCalculator().formula('NDVI')
        '(B8 - B4) / (B8 + B4)'
        """
        first, second = self._bands_for(index_name)
        return f"({first} - {second}) / ({first} + {second})"

    def _bands_for(self, index_name: str) -> Tuple[str, str]:
        key = index_name.upper()
        if key not in NORMALIZED_DIFFERENCE_INDICES:
            raise ConfigurationError(
                f"Index '{index_name}' not supported. Available: {self.list_indices()}"
            )
        first_role, second_role, _ = NORMALIZED_DIFFERENCE_INDICES[key]
        try:
            return self.band_roles[first_role], self.band_roles[second_role]
        except KeyError as e:
            raise ConfigurationError(f"No band configured for role {e}") from e

    def compute(self, composite: xr.Dataset, index_name: str) -> xr.DataArray:
        """Compute ``index_name`` from the composite bands."""
        first, second = self._bands_for(index_name)
        require_bands(composite, [first, second], "composite")
        index = normalized_difference(composite[first], composite[second])
        return index.rename(index_name.upper())

    def ndvi(self, composite: xr.Dataset) -> xr.DataArray:
        """NDVI = (NIR - Red) / (NIR + Red)."""
        return self.compute(composite, 'NDVI')

    def add_index_bands(self, composite: xr.Dataset, indices: Iterable[str] = ('NDVI',)) -> xr.Dataset:
        """Return a new composite with the index bands appended."""
        new_bands = {}
        for name in indices:
            new_bands[name.upper()] = self.compute(composite, name)
            self.logger.info(f"Computed {name.upper()}: {self.formula(name)}")
        return composite.assign(new_bands)
