"""
GeoTIFF utilities for exporting pipeline rasters.

Single bands (land cover, AGB, carbon stock, CO2eq) and multi-band
composites are written with rioxarray; band names are stored as GeoTIFF band
descriptions.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import rasterio
import rioxarray  # noqa: F401 - registers the rio accessor
import xarray as xr

from ..exceptions import DataError
from .raster_utils import get_crs, nodata_value, require_bands

logger = logging.getLogger(__name__)


def export_geotiff(
    raster: Union[xr.DataArray, xr.Dataset],
    output_path: Union[str, Path],
    band_list: Optional[List[str]] = None,
    nodata_val: Union[int, float] = -9999,
    dtype: Optional[str] = None,
    compress: str = "LZW",
    extra_attrs: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Export a raster to a GeoTIFF file.

    NaN pixels and the raster's own nodata sentinel are written as
    ``nodata_val``.

    Args:
        raster: Single-band DataArray or multi-band Dataset
        output_path: Destination .tif path; parent directories are created
        band_list: Dataset bands to include (default: all)
        nodata_val: Value written for nodata pixels
        dtype: Output data type (default: int16 for integer rasters, float32 otherwise)
        compress: GeoTIFF compression
        extra_attrs: Additional tags written to the GeoTIFF

    Returns:
        str: Path of the written file

    Example:
        >>> export_geotiff(result.agb, "outputs/agb.tif")
        'outputs/agb.tif'
    """
    if isinstance(raster, xr.DataArray):
        name = raster.name or "band"
        dataset = raster.to_dataset(name=name)
        crs = get_crs(raster)
        band_list = [name]
    else:
        dataset = raster
        crs = get_crs(raster)
        band_list = require_bands(dataset, band_list or list(dataset.data_vars), "raster")
    if not band_list:
        raise DataError("Nothing to export: raster has no bands")

    bands = []
    for name in band_list:
        band = dataset[name]
        band_dtype = dtype or ("int16" if band.dtype.kind in "iu" else "float32")
        sentinel = nodata_value(band)
        if sentinel is not None:
            band = band.where(band != sentinel)
        bands.append(band.fillna(nodata_val).astype(band_dtype))

    stack = xr.concat(bands, dim="band").assign_coords(band=list(band_list))
    stack = stack.assign_attrs(nodata=nodata_val, **(extra_attrs or {}))
    stack = stack.rio.write_nodata(nodata_val)
    if crs is not None:
        stack = stack.rio.write_crs(crs)
    else:
        logger.warning("Raster has no CRS information; writing GeoTIFF without a CRS")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    stack.rio.to_raster(output_path, driver="GTiff", compress=compress)

    with rasterio.open(output_path, "r+") as dst:
        dst.descriptions = tuple(band_list)

    logger.info(f"Exported {list(band_list)} to {output_path}")
    return str(output_path)
