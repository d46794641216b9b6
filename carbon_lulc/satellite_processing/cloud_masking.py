"""
Cloud masking using the Sentinel-2 Scene Classification Layer (SCL).
"""

import logging
from typing import Iterable, List

import xarray as xr

from ..exceptions import MissingBandError
from ..stac.scene_repository import Scene

logger = logging.getLogger(__name__)

# SCL classes: 3 cloud shadows, 8 cloud medium probability, 9 cloud high probability
DEFAULT_MASK_CLASSES = (3, 8, 9)


class CloudMasker:
    """
    Masks shadow, cloud and cirrus pixels of a scene.

    The validity mask is the logical AND of ``scl != c`` for every excluded
    class ``c``; pixels without an SCL value are invalid too.
    """

    def __init__(self,
                 spectral_bands: Iterable[str],
                 scl_band: str = "SCL",
                 mask_classes: Iterable[int] = DEFAULT_MASK_CLASSES):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.spectral_bands = list(spectral_bands)
        self.scl_band = scl_band
        self.mask_classes = tuple(int(c) for c in mask_classes)

    @classmethod
    def from_config(cls, config) -> "CloudMasker":
        return cls(
            spectral_bands=config.get('satellite.bands'),
            scl_band=config.get('satellite.scl_band', 'SCL'),
            mask_classes=config.get('satellite.cloud_mask_classes', DEFAULT_MASK_CLASSES),
        )

    def validity_mask(self, scl: xr.DataArray) -> xr.DataArray:
        """Boolean mask, True where the pixel is usable."""
        valid = scl.notnull()
        for code in self.mask_classes:
            valid = valid & (scl != code)
        return valid.rename("is_valid")

    def mask(self, scene: Scene) -> Scene:
        """
        Return a scene holding only the spectral bands, NaN where masked.

        Raises:
            MissingBandError: The SCL band or a spectral band is absent
        """
        available = scene.bands
        if self.scl_band not in available:
            raise MissingBandError(f"Scene {scene.id} has no '{self.scl_band}' band")
        missing = [b for b in self.spectral_bands if b not in available]
        if missing:
            raise MissingBandError(f"Scene {scene.id} is missing spectral band(s) {missing}")

        valid = self.validity_mask(scene.data.sel(band=self.scl_band, drop=True))
        spectral = scene.data.sel(band=self.spectral_bands)
        if not spectral.dtype.kind == "f":
            spectral = spectral.astype("float32")
        masked = spectral.where(valid)
        masked.attrs = dict(scene.data.attrs)
        self.logger.debug(f"Masked scene {scene.id} with SCL classes {self.mask_classes}")
        return scene.with_data(masked)

    def mask_all(self, scenes: Iterable[Scene]) -> List[Scene]:
        return [self.mask(scene) for scene in scenes]
