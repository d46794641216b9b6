"""
Raster grid helpers shared by the pipeline stages.

Rasters are xarray objects on a regular grid with pixel-centre ``x``/``y``
coordinates. Single bands are ``DataArray`` objects, composites are
``Dataset`` objects with one variable per band. Floating rasters mark nodata
with NaN; integer rasters carry a sentinel in ``attrs['nodata']``.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import rasterio.features
import rioxarray  # noqa: F401 - registers the rio accessor
import xarray as xr
from rasterio.transform import Affine

from ..exceptions import DataError, MissingBandError

logger = logging.getLogger(__name__)

Raster = Union[xr.DataArray, xr.Dataset]


def make_raster(
    data: np.ndarray,
    origin: Tuple[float, float],
    resolution: float,
    crs: Optional[str] = None,
    name: Optional[str] = None,
    nodata: Optional[Union[int, float]] = None,
) -> xr.DataArray:
    """
    Wrap a 2D array as a north-up raster.

    Args:
        data: Array shaped (rows, cols)
        origin: (x, y) of the upper-left corner of the grid
        resolution: Pixel size in CRS units
        crs: Coordinate reference system (e.g. 'EPSG:32749')
        name: Band name
        nodata: Sentinel for integer rasters

    Returns:
        xr.DataArray with dims (y, x)
    """
    data = np.asarray(data)
    if data.ndim != 2:
        raise DataError(f"Expected a 2D array, got shape {data.shape}")
    rows, cols = data.shape
    x0, y0 = origin
    x = x0 + (np.arange(cols) + 0.5) * resolution
    y = y0 - (np.arange(rows) + 0.5) * resolution
    da = xr.DataArray(data, dims=("y", "x"), coords={"y": y, "x": x}, name=name)
    return finalize_raster(da, crs=crs, nodata=nodata)


def make_composite(bands: dict, origin: Tuple[float, float], resolution: float,
                   crs: Optional[str] = None) -> xr.Dataset:
    """Build a multi-band composite from a ``{band_name: 2D array}`` mapping."""
    variables = {
        name: make_raster(values, origin, resolution, name=name)
        for name, values in bands.items()
    }
    ds = xr.Dataset(variables)
    if crs is not None:
        ds = ds.rio.write_crs(crs)
    return ds


def finalize_raster(da: xr.DataArray, crs=None, nodata=None) -> xr.DataArray:
    """Attach CRS and nodata metadata to a derived raster."""
    if crs is not None:
        da = da.rio.write_crs(crs)
    if nodata is not None:
        da.attrs['nodata'] = nodata
        da = da.rio.write_nodata(nodata)
    return da


def get_crs(raster: Raster):
    """Return the raster CRS or None when the raster carries none."""
    try:
        return raster.rio.crs
    except Exception:  # rioxarray raises for ambiguous/missing metadata
        return None


def grid_shape(raster: Raster) -> Tuple[int, int]:
    return int(raster.sizes["y"]), int(raster.sizes["x"])


def grid_transform(raster: Raster) -> Affine:
    """
    Affine transform of the raster grid derived from its centre coordinates.

    Single-pixel axes borrow the resolution of the other axis.
    """
    x = np.asarray(raster.coords["x"].values, dtype=float)
    y = np.asarray(raster.coords["y"].values, dtype=float)
    res_x = x[1] - x[0] if len(x) > 1 else None
    res_y = y[1] - y[0] if len(y) > 1 else None
    if res_x is None and res_y is None:
        res = raster.attrs.get('res')
        if res is None:
            raise DataError("Cannot derive pixel size from a single-pixel raster")
        res_x, res_y = float(res[0]), -float(res[1])
    elif res_x is None:
        res_x = abs(res_y)
    elif res_y is None:
        res_y = -abs(res_x)
    return Affine(res_x, 0.0, x[0] - res_x / 2, 0.0, res_y, y[0] - res_y / 2)


def pixel_size(raster: Raster) -> float:
    transform = grid_transform(raster)
    return float(abs(transform.a))


def same_grid(a: Raster, b: Raster) -> bool:
    """True when both rasters share identical grid coordinates."""
    return (
        grid_shape(a) == grid_shape(b)
        and np.array_equal(a.coords["x"].values, b.coords["x"].values)
        and np.array_equal(a.coords["y"].values, b.coords["y"].values)
    )


def nodata_value(da: xr.DataArray):
    nodata = da.attrs.get('nodata')
    if nodata is None:
        nodata = da.attrs.get('_FillValue')
    if nodata is None:
        try:
            nodata = da.rio.nodata
        except Exception:
            nodata = None
    return nodata


def valid_mask_array(values: np.ndarray, nodata=None) -> np.ndarray:
    """Boolean mask, True where ``values`` hold data."""
    if np.issubdtype(values.dtype, np.floating):
        mask = np.isfinite(values)
    else:
        mask = np.ones(values.shape, dtype=bool)
    if nodata is not None and not (isinstance(nodata, float) and np.isnan(nodata)):
        mask &= values != nodata
    return mask


def valid_mask(da: xr.DataArray) -> xr.DataArray:
    """Mask raster: True where the pixel is valid."""
    values = np.asarray(da.values)
    return xr.DataArray(
        valid_mask_array(values, nodata_value(da)),
        dims=da.dims,
        coords={"y": da.coords["y"], "x": da.coords["x"]},
        name="is_valid",
    )


def as_float(values: np.ndarray, nodata=None) -> np.ndarray:
    """Float copy of ``values`` with nodata replaced by NaN."""
    mask = valid_mask_array(values, nodata)
    out = values.astype("float64", copy=True)
    out[~mask] = np.nan
    return out


def require_bands(ds: xr.Dataset, bands: Iterable[str], context: str = "raster") -> List[str]:
    bands = list(bands)
    missing = [b for b in bands if b not in ds.data_vars]
    if missing:
        raise MissingBandError(
            f"{context} is missing band(s) {missing}; available: {list(ds.data_vars)}"
        )
    return bands


def geometry_inside_mask(geometries: Sequence, out_shape: Tuple[int, int],
                         transform: Affine) -> np.ndarray:
    """True for pixels whose centre falls inside any of ``geometries``."""
    if out_shape[0] == 0 or out_shape[1] == 0:
        return np.zeros(out_shape, dtype=bool)
    return rasterio.features.geometry_mask(
        geometries,
        out_shape=out_shape,
        transform=transform,
        invert=True,
        all_touched=False,
    )


def bounds_window(bounds: Tuple[float, float, float, float], transform: Affine,
                  shape: Tuple[int, int]) -> Tuple[slice, slice]:
    """
    Row/column slices of the grid cells intersecting ``bounds``.

    The window is clipped to the grid and may be empty.
    """
    minx, miny, maxx, maxy = bounds
    inverse = ~transform
    corners = [inverse @ (cx, cy) for cx in (minx, maxx) for cy in (miny, maxy)]
    cols = [c for c, _ in corners]
    rows = [r for _, r in corners]
    col0 = max(int(np.floor(min(cols))), 0)
    col1 = min(int(np.ceil(max(cols))), shape[1])
    row0 = max(int(np.floor(min(rows))), 0)
    row1 = min(int(np.ceil(max(rows))), shape[0])
    return slice(row0, max(row0, row1)), slice(col0, max(col0, col1))


def window_transform(transform: Affine, rows: slice, cols: slice) -> Affine:
    return transform @ Affine.translation(cols.start, rows.start)


def read_block(da: xr.DataArray, rows: slice, cols: slice, factor: int = 1) -> np.ndarray:
    """
    Read a block of ``da`` as float with NaN nodata.

    ``rows``/``cols`` are expressed on the grid coarsened by ``factor``; each
    output cell is the mean of the valid source pixels it covers.
    """
    nodata = nodata_value(da)
    src = da.isel(
        y=slice(rows.start * factor, rows.stop * factor),
        x=slice(cols.start * factor, cols.stop * factor),
    )
    block = as_float(np.asarray(src.values), nodata)
    if factor == 1:
        return block
    n_rows, n_cols = rows.stop - rows.start, cols.stop - cols.start
    pad_rows = n_rows * factor - block.shape[0]
    pad_cols = n_cols * factor - block.shape[1]
    if pad_rows or pad_cols:
        # Edge blocks only partly covered by source pixels
        block = np.pad(block, ((0, pad_rows), (0, pad_cols)), constant_values=np.nan)
    cells = block.reshape(n_rows, factor, n_cols, factor)
    valid = np.isfinite(cells)
    counts = valid.sum(axis=(1, 3))
    sums = np.where(valid, cells, 0.0).sum(axis=(1, 3))
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)


def coarsening_factor(raster: Raster, resolution: Optional[float]) -> int:
    """Integer aggregation factor for reducing ``raster`` at ``resolution``."""
    if resolution is None:
        return 1
    native = pixel_size(raster)
    if resolution <= native:
        return 1
    return max(int(round(resolution / native)), 1)


def coarse_grid(raster: Raster, factor: int) -> Tuple[Affine, Tuple[int, int]]:
    """Transform and shape of ``raster`` aggregated by ``factor`` x ``factor`` blocks."""
    rows, cols = grid_shape(raster)
    transform = grid_transform(raster) @ Affine.scale(factor)
    return transform, (-(-rows // factor), -(-cols // factor))
