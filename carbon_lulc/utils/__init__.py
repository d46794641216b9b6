"""
Utility modules for the Carbon LULC library.
"""

from .geotiff_utils import export_geotiff
from .logging_utils import setup_logging, timer
from .raster_utils import make_composite, make_raster, valid_mask
from .spectral_indices import IndexCalculator, list_indices, normalized_difference
from .tiling import CancellationToken, TileExecutor, iter_tiles, run_with_timeout

__all__ = [
    'export_geotiff',
    'setup_logging',
    'timer',
    'make_composite',
    'make_raster',
    'valid_mask',
    'IndexCalculator',
    'list_indices',
    'normalized_difference',
    'CancellationToken',
    'TileExecutor',
    'iter_tiles',
    'run_with_timeout',
]
