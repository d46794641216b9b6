"""
Zonal statistics and histograms over raster regions.
"""

from .histogram import HistogramBucket, HistogramSampler, histogram
from .zonal_statistics import REDUCERS, RunningStats, ZonalStatistics, ZonalStats

__all__ = [
    'HistogramBucket',
    'HistogramSampler',
    'histogram',
    'REDUCERS',
    'RunningStats',
    'ZonalStatistics',
    'ZonalStats',
]
