"""
Carbon LULC Library

Sentinel-2 land cover classification, above-ground biomass and CO2eq
estimation over an area of interest, with zonal statistics and histograms.
"""

__version__ = "0.1.0"
__author__ = "GIS Carbon AI Team"
__email__ = "muh.firdausiqbal@gmail.com"

from .config import ConfigManager
from .core import AreaOfInterest
from .core.main import LandCoverCarbonPipeline, PipelineResult
from .exceptions import (
    AggregationBudgetExceededError,
    CarbonLULCError,
    FeatureMismatchError,
    GeometryError,
    InsufficientTrainingDataError,
    MissingBandError,
    NoScenesFoundError,
    OperationCancelledError,
    ProcessingTimeoutError,
)

__all__ = [
    'ConfigManager',
    'AreaOfInterest',
    'LandCoverCarbonPipeline',
    'PipelineResult',
    'AggregationBudgetExceededError',
    'CarbonLULCError',
    'FeatureMismatchError',
    'GeometryError',
    'InsufficientTrainingDataError',
    'MissingBandError',
    'NoScenesFoundError',
    'OperationCancelledError',
    'ProcessingTimeoutError',
]
